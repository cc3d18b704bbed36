"""Notification frequency limiting.

Sliding hour/day counters keyed by configuration or recipient, plus a
cooldown between notifications for the same configuration and rule.
"""

import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Hashable, Iterable

from src.alerts.config import FrequencyScope
from src.alerts.models import AlertInstance
from src.alerts.notification_models import FrequencyLimits
from src.alerts.store import KeyedLock

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


class FrequencyLimiter:
    """Check-and-record admission against frequency limits.

    Each counter key is checked and recorded under its own lock.
    """

    def __init__(self) -> None:
        self._sent: dict[Hashable, deque[datetime]] = defaultdict(deque)
        self._last_similar: dict[tuple[str, str], datetime] = {}
        self._locks = KeyedLock()

    def count(self, key: Hashable, now: datetime, window: timedelta) -> int:
        return sum(1 for t in self._sent[key] if now - t < window)

    def _prune(self, key: Hashable, now: datetime) -> None:
        sent = self._sent[key]
        while sent and now - sent[0] >= DAY:
            sent.popleft()

    def _at_limit(self, key: Hashable, limits: FrequencyLimits, now: datetime) -> bool:
        self._prune(key, now)
        return (
            self.count(key, now, HOUR) >= limits.max_alerts_per_hour
            or self.count(key, now, DAY) >= limits.max_alerts_per_day
        )

    async def _try_record(self, key: Hashable, limits: FrequencyLimits, now: datetime) -> bool:
        async with self._locks.hold(key):
            if self._at_limit(key, limits, now):
                return False
            self._sent[key].append(now)
            return True

    async def admit(
        self,
        limits: FrequencyLimits,
        alert: AlertInstance,
        recipient_ids: Iterable[str],
        now: datetime,
    ) -> list[str]:
        """Admit a notification and record it against the counters.

        Args:
            limits: Frequency limits of the configuration.
            alert: Alert about to be notified.
            recipient_ids: Candidate recipients.
            now: Current time.

        Returns:
            Recipient ids allowed to receive the notification. Empty when
            the configuration is over its limit or a similar alert was
            notified within the cooldown.
        """
        candidates = list(recipient_ids)
        similar_key = (alert.configuration_id, alert.rule_id)

        async with self._locks.hold(("similar",) + similar_key):
            if limits.cooldown_between_similar > 0:
                last = self._last_similar.get(similar_key)
                cooldown = timedelta(minutes=limits.cooldown_between_similar)
                if last is not None and now - last < cooldown:
                    logger.info(
                        "Alert %s suppressed: similar alert notified at %s",
                        alert.id,
                        last.isoformat(),
                    )
                    return []

            if limits.scope == FrequencyScope.RECIPIENT:
                admitted = []
                for rid in candidates:
                    if await self._try_record(("recipient", rid), limits, now):
                        admitted.append(rid)
                    else:
                        logger.info("Recipient %s is at frequency limit", rid)
            else:
                key = ("configuration", alert.configuration_id)
                if not await self._try_record(key, limits, now):
                    logger.info(
                        "Configuration %s is at frequency limit; alert %s not sent",
                        alert.configuration_id,
                        alert.id,
                    )
                    return []
                admitted = candidates

            if admitted:
                self._last_similar[similar_key] = now
            return admitted
