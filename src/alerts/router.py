"""Notification routing.

Applies quiet hours and frequency limits, selects recipients per channel,
and fans deliveries out to the registered channel dispatchers.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from src.alerts.channels import ChannelDispatcher, build_dispatchers
from src.alerts.config import (
    AlertingConfig,
    ChannelType,
    DEFAULT_ALERTING_CONFIG,
    NotificationStatus,
)
from src.alerts.exceptions import UnsupportedChannelError
from src.alerts.frequency import FrequencyLimiter
from src.alerts.models import AlertInstance
from src.alerts.notification_models import (
    ContactMethod,
    DeliveryRequest,
    DeliveryResult,
    NotificationChannel,
    NotificationLog,
    NotificationRecipient,
    NotificationSettings,
    NotificationTemplate,
    _utc_now,
)
from src.alerts.templates import build_alert_template
from src.logging_config import alert_context

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def delivery_fields(log: NotificationLog) -> dict[str, Any]:
    """Logging extras identifying one delivery."""
    return {
        "channel": log.channel,
        "recipient": log.recipient,
        "escalation_level": log.escalation_level or None,
    }


class NotificationRouter:
    """Routes alerts to recipients over the registered channels.

    Example:
        router = NotificationRouter(config=AlertingConfig.from_settings(get_settings()))
        logs = await router.send_alert_notifications(configuration.notification_settings, alert)
    """

    def __init__(
        self,
        dispatchers: Optional[dict[ChannelType, ChannelDispatcher]] = None,
        config: Optional[AlertingConfig] = None,
        limiter: Optional[FrequencyLimiter] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or DEFAULT_ALERTING_CONFIG
        self.dispatchers = (
            dispatchers if dispatchers is not None else build_dispatchers(self.config)
        )
        self.limiter = limiter or FrequencyLimiter()
        self.clock = clock or _utc_now

    def register(self, dispatcher: ChannelDispatcher) -> None:
        """Register (or replace) the dispatcher for its channel type."""
        self.dispatchers[dispatcher.channel_type] = dispatcher

    def supports(self, channel: ChannelType) -> bool:
        return channel in self.dispatchers

    async def send_alert_notifications(
        self,
        settings: NotificationSettings,
        alert: AlertInstance,
    ) -> list[NotificationLog]:
        """Notify every eligible recipient on every eligible channel.

        Args:
            settings: Notification settings of the alert's configuration.
            alert: Triggered alert.

        Returns:
            One log per delivery, in completion order. Empty when the alert
            is held by quiet hours or frequency limits.

        Raises:
            ValueError: If settings or alert is missing.
            UnsupportedChannelError: If an eligible channel has no dispatcher.
        """
        if settings is None or alert is None:
            raise ValueError("Notification settings and alert are required")

        with alert_context(alert.id, configuration_id=alert.configuration_id):
            return await self._route(settings, alert)

    async def _route(
        self,
        settings: NotificationSettings,
        alert: AlertInstance,
    ) -> list[NotificationLog]:
        now = self.clock()
        if settings.quiet_hours.suppresses(alert.id, alert.severity, now):
            logger.info("Alert %s held by quiet hours", alert.id)
            return []

        channels = [c for c in settings.channels if c.accepts(alert.severity)]
        for channel in channels:
            if not self.supports(channel.type):
                raise UnsupportedChannelError(channel.type)

        targets = self._select_targets(settings.recipients, channels, alert, now)
        if not targets:
            logger.info("Alert %s has no eligible recipients", alert.id)
            return []

        recipient_ids = list(dict.fromkeys(r.id for r, _, _ in targets))
        admitted = set(await self.limiter.admit(
            settings.frequency_limits, alert, recipient_ids, now,
        ))
        targets = [t for t in targets if t[0].id in admitted]
        if not targets:
            return []

        template = build_alert_template(alert, self.config.dashboard_url)
        deliveries = [
            self.dispatch(
                channel.type,
                contact.value,
                template,
                alert,
                channel.configuration,
                recipient_id=recipient.id,
            )
            for recipient, channel, contact in targets
        ]

        logs = []
        for finished in asyncio.as_completed(deliveries):
            logs.append(await finished)

        alert.notification_log.extend(logs)
        sent = sum(1 for log in logs if log.status == NotificationStatus.SENT)
        logger.info(
            "Alert %s: %d/%d notifications sent",
            alert.id,
            sent,
            len(logs),
        )
        return logs

    def _select_targets(
        self,
        recipients: list[NotificationRecipient],
        channels: list[NotificationChannel],
        alert: AlertInstance,
        now: datetime,
    ) -> list[tuple[NotificationRecipient, NotificationChannel, ContactMethod]]:
        targets = []
        for channel in channels:
            for recipient in recipients:
                if not recipient.notification_preferences.wants(alert.severity, channel.type):
                    continue
                contact = recipient.contact_for(channel.type)
                if contact is None:
                    continue
                if not recipient.is_on_call(now):
                    logger.debug("Recipient %s is off call", recipient.id)
                    continue
                targets.append((recipient, channel, contact))
        return targets

    async def deliver(
        self,
        channel: ChannelType,
        recipient: str,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: dict[str, Any],
    ) -> DeliveryResult:
        """Hand one notification to the channel's dispatcher.

        Raises:
            UnsupportedChannelError: If no dispatcher is registered.
        """
        dispatcher = self.dispatchers.get(channel)
        if dispatcher is None:
            raise UnsupportedChannelError(channel)
        return await dispatcher.send(recipient, template, alert, config)

    async def dispatch(
        self,
        channel: ChannelType,
        address: str,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: Optional[dict[str, Any]] = None,
        recipient_id: Optional[str] = None,
        escalation_level: int = 0,
    ) -> NotificationLog:
        """Deliver once and record the outcome in a new log entry."""
        request = DeliveryRequest(
            channel=channel,
            recipient=address,
            template=template,
            alert=alert,
            config=dict(config or {}),
            recipient_id=recipient_id,
        )
        log = NotificationLog(
            alert_id=alert.id,
            channel=channel,
            recipient=address,
            sent_at=self.clock(),
            escalation_level=escalation_level,
            request=request,
        )
        return await self.attempt(log)

    async def attempt(self, log: NotificationLog) -> NotificationLog:
        """Run the stored delivery request with the dispatch timeout.

        Failures and timeouts mark the log failed; they are never raised.
        """
        req = log.request
        timeout = self.config.dispatch_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self.deliver(req.channel, req.recipient, req.template, req.alert, req.config),
                timeout=timeout,
            )
        except UnsupportedChannelError:
            raise
        except asyncio.TimeoutError:
            log.mark_failed(f"Delivery timed out after {timeout}s")
            logger.warning(
                "%s delivery to %s timed out for alert %s",
                log.channel.value, log.recipient, log.alert_id,
                extra=delivery_fields(log),
            )
        except Exception as e:
            log.mark_failed(str(e) or type(e).__name__)
            logger.warning(
                "%s delivery to %s failed for alert %s: %s",
                log.channel.value, log.recipient, log.alert_id, e,
                extra=delivery_fields(log),
            )
        else:
            if result.success:
                log.mark_sent(result, self.clock())
            else:
                log.mark_failed(result.error or "Delivery failed")
                logger.warning(
                    "%s delivery to %s rejected for alert %s: %s",
                    log.channel.value, log.recipient, log.alert_id, log.error_message,
                    extra=delivery_fields(log),
                )
        return log
