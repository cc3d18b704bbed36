"""Alert instance store.

In-memory unit of work for alert instances. Duplicate-suppression lookups
and registration happen under a per-(configuration, rule) lock so that two
overlapping passes cannot both open an alert for the same rule.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Hashable, Optional

from src.alerts.models import AlertInstance

logger = logging.getLogger(__name__)


class KeyedLock:
    """One asyncio.Lock per key; no lock is shared across unrelated keys."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks[key]
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


class AlertStore:
    """Append-only store of alert instances with open-alert lookups."""

    def __init__(self) -> None:
        self._alerts: dict[str, AlertInstance] = {}
        self._locks = KeyedLock()

    def add(self, alert: AlertInstance) -> None:
        self._alerts[alert.id] = alert

    def get(self, alert_id: str) -> Optional[AlertInstance]:
        return self._alerts.get(alert_id)

    def all(self) -> list[AlertInstance]:
        return list(self._alerts.values())

    def open_alerts(self, configuration_id: Optional[str] = None) -> list[AlertInstance]:
        """Get unresolved alerts, optionally for one configuration."""
        return [
            a for a in self._alerts.values()
            if a.is_open()
            and (configuration_id is None or a.configuration_id == configuration_id)
        ]

    def find_open_duplicate(
        self,
        configuration_id: str,
        rule_id: str,
        now: datetime,
        cooldown_minutes: int,
    ) -> Optional[AlertInstance]:
        """Most recent open alert for the rule triggered within the cooldown."""
        window_start = now - timedelta(minutes=cooldown_minutes)
        candidates = [
            a for a in self._alerts.values()
            if a.configuration_id == configuration_id
            and a.rule_id == rule_id
            and a.is_open()
            and a.triggered_at >= window_start
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a.triggered_at)

    async def open_or_register(
        self,
        configuration_id: str,
        rule_id: str,
        now: datetime,
        cooldown_minutes: int,
        suppress_duplicates: bool,
        factory: Callable[[], AlertInstance],
    ) -> tuple[AlertInstance, bool]:
        """Return the open duplicate or register a new alert.

        The lookup and the insert form one critical section per rule.

        Returns:
            (alert, created) tuple.
        """
        async with self._locks.hold((configuration_id, rule_id)):
            if suppress_duplicates:
                existing = self.find_open_duplicate(
                    configuration_id, rule_id, now, cooldown_minutes,
                )
                if existing is not None:
                    logger.info(
                        "Suppressed duplicate for rule %s; alert %s still open",
                        rule_id,
                        existing.id,
                    )
                    return existing, False

            alert = factory()
            self.add(alert)
            return alert, True
