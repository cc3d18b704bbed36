"""Alert escalation.

Fires escalation stages for alerts that stay unacknowledged and schedules
the next stage on the task scheduler.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

from src.alerts.models import AlertInstance
from src.alerts.notification_models import (
    EscalationPolicy,
    EscalationStage,
    NotificationLog,
    NotificationRecipient,
    _utc_now,
)
from src.alerts.router import NotificationRouter
from src.alerts.scheduler import TaskScheduler
from src.alerts.templates import build_escalation_template
from src.logging_config import alert_context

logger = logging.getLogger(__name__)


def escalation_key(alert_id: str, level: int) -> str:
    return f"escalation:{alert_id}:{level}"


class EscalationScheduler:
    """Escalates unacknowledged alerts through a policy's stages.

    Args:
        router: Router whose ``dispatch`` delivers escalation notifications.
        recipients: Directory used to resolve stage recipient ids.
        scheduler: Task scheduler for delayed stages.
        clock: Time source.
        on_logs: Called with the logs of every scheduled stage that fires,
            e.g. to hand failed deliveries to the retry manager.
    """

    def __init__(
        self,
        router: NotificationRouter,
        recipients: Mapping[str, NotificationRecipient],
        scheduler: Optional[TaskScheduler] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_logs: Optional[Callable[[list[NotificationLog]], None]] = None,
    ) -> None:
        self.router = router
        self.recipients = recipients
        self.scheduler = scheduler or TaskScheduler()
        self.clock = clock or router.clock or _utc_now
        self.on_logs = on_logs

    def next_stage(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        current_level: int,
    ) -> Optional[EscalationStage]:
        """Stage that would fire next, ignoring the delay."""
        if not alert.is_open():
            return None
        if current_level >= policy.max_escalations:
            return None
        stage = policy.stage_after(current_level)
        if stage is None:
            return None
        if stage.skip_if_acknowledged and alert.is_acknowledged():
            return None
        return stage

    def due_at(self, alert: AlertInstance, stage: EscalationStage) -> datetime:
        last = alert.last_notified_at() or alert.triggered_at
        return last + timedelta(minutes=stage.delay_minutes)

    async def handle_escalation(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        current_level: int,
    ) -> list[NotificationLog]:
        """Fire the stage after ``current_level`` if it is due.

        Args:
            alert: Alert to escalate.
            policy: Escalation policy of the alert's configuration.
            current_level: Level already reached.

        Returns:
            Logs of the escalation deliveries; empty if nothing fired.
        """
        with alert_context(alert.id, configuration_id=alert.configuration_id):
            return await self._fire_stage(alert, policy, current_level)

    async def _fire_stage(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        current_level: int,
    ) -> list[NotificationLog]:
        stage = self.next_stage(alert, policy, current_level)
        if stage is None:
            logger.debug("Alert %s has no escalation to fire from level %d", alert.id, current_level)
            return []

        now = self.clock()
        if now < self.due_at(alert, stage):
            logger.debug("Alert %s not ready for escalation to level %d", alert.id, stage.level)
            return []

        template = build_escalation_template(
            alert, stage, stage.level, self.router.config.dashboard_url,
        )
        deliveries = []
        for recipient_id in stage.recipients:
            recipient = self.recipients.get(recipient_id)
            if recipient is None:
                logger.warning(
                    "Escalation for alert %s skips unknown recipient %s",
                    alert.id,
                    recipient_id,
                )
                continue
            for channel in stage.channels:
                if not self.router.supports(channel):
                    logger.warning("No dispatcher for escalation channel %s", channel.value)
                    continue
                contact = recipient.contact_for(channel)
                if contact is None:
                    continue
                deliveries.append(self.router.dispatch(
                    channel,
                    contact.value,
                    template,
                    alert,
                    recipient_id=recipient.id,
                    escalation_level=stage.level,
                ))

        logs = list(await asyncio.gather(*deliveries))

        alert.escalation_level = stage.level
        alert.escalated_at = now
        alert.notification_log.extend(logs)
        logger.warning(
            "Alert %s escalated to level %d (%d notifications)",
            alert.id,
            stage.level,
            len(logs),
        )
        return logs

    def schedule_escalation(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
    ) -> Optional[str]:
        """Schedule the next stage for an alert.

        Returns:
            The scheduler key, or None when no further stage applies.
        """
        stage = self.next_stage(alert, policy, alert.escalation_level)
        if stage is None:
            return None

        delay = (self.due_at(alert, stage) - self.clock()).total_seconds()
        key = escalation_key(alert.id, stage.level)

        async def fire() -> None:
            logs = await self.handle_escalation(alert, policy, alert.escalation_level)
            if logs and self.on_logs is not None:
                self.on_logs(logs)
            self.schedule_escalation(alert, policy)

        self.scheduler.schedule(key, delay, fire, alert_id=alert.id)
        return key
