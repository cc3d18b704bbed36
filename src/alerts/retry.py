"""Retry of failed notifications with exponential backoff."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from src.alerts.config import (
    MAX_DELIVERY_RETRIES,
    NotificationStatus,
    RETRY_BACKOFF_CAP_SECONDS,
)
from src.alerts.notification_models import NotificationLog, _utc_now
from src.alerts.router import NotificationRouter, delivery_fields
from src.logging_config import alert_context

logger = logging.getLogger(__name__)


class RetryManager:
    """Re-attempts failed deliveries.

    A log becomes eligible once ``min(2**retry_count, cap)`` seconds have
    passed since its last attempt. Logs that exhaust their retries stay
    failed and are kept in the dead letter list.
    """

    def __init__(
        self,
        router: NotificationRouter,
        clock: Optional[Callable[[], datetime]] = None,
        backoff_cap_seconds: float = RETRY_BACKOFF_CAP_SECONDS,
    ) -> None:
        self.router = router
        self.clock = clock or router.clock or _utc_now
        self.backoff_cap_seconds = backoff_cap_seconds
        self._dead_letter: list[NotificationLog] = []

    def backoff(self, retry_count: int) -> float:
        """Seconds to wait before the next attempt."""
        return min(2 ** retry_count, self.backoff_cap_seconds)

    def is_eligible(
        self,
        log: NotificationLog,
        now: datetime,
        max_retries: int = MAX_DELIVERY_RETRIES,
    ) -> bool:
        if log.status != NotificationStatus.FAILED or log.request is None:
            return False
        if log.retry_count >= max_retries:
            return False
        elapsed = (now - log.sent_at).total_seconds()
        return elapsed >= self.backoff(log.retry_count)

    async def retry_failed_notifications(
        self,
        logs: Iterable[NotificationLog],
        max_retries: int = MAX_DELIVERY_RETRIES,
    ) -> list[NotificationLog]:
        """Retry every eligible failed log once.

        Args:
            logs: Notification logs to inspect.
            max_retries: Retry limit per log.

        Returns:
            The logs that were retried, updated in place.
        """
        now = self.clock()
        eligible = [log for log in logs if self.is_eligible(log, now, max_retries)]
        if not eligible:
            return []

        for log in eligible:
            log.retry_count += 1
            log.sent_at = now

        await asyncio.gather(*(self.router.attempt(log) for log in eligible))

        for log in eligible:
            with alert_context(log.alert_id):
                if log.status == NotificationStatus.SENT:
                    logger.info(
                        "Retry %d of %s to %s succeeded",
                        log.retry_count,
                        log.channel.value,
                        log.recipient,
                        extra=delivery_fields(log),
                    )
                elif log.retry_count >= max_retries:
                    self._dead_letter.append(log)
                    logger.error(
                        "Notification %s for alert %s failed permanently after %d retries: %s",
                        log.id,
                        log.alert_id,
                        log.retry_count,
                        log.error_message,
                        extra=delivery_fields(log),
                    )
        return eligible

    def next_retry_delay(self, log: NotificationLog, now: Optional[datetime] = None) -> float:
        """Seconds until ``log`` becomes eligible."""
        now = now or self.clock()
        elapsed = (now - log.sent_at).total_seconds()
        return max(self.backoff(log.retry_count) - elapsed, 0.0)

    def get_dead_letter_queue(self) -> list[NotificationLog]:
        """Get logs that exhausted their retries."""
        return self._dead_letter.copy()
