"""Slack notification channel.

Delivers notifications via Slack incoming webhooks.
"""

import logging
import re
from typing import Any, Optional

import aiohttp

from src.alerts.channels.base import ChannelDispatcher
from src.alerts.config import ChannelType, SlackConfig
from src.alerts.exceptions import DeliveryError
from src.alerts.models import AlertInstance
from src.alerts.notification_models import (
    DeliveryResult,
    NotificationTemplate,
    _new_id,
    _utc_now,
)

logger = logging.getLogger(__name__)

SLACK_WEBHOOK_REGEX = re.compile(
    r"^https://hooks\.slack\.com/services/T[A-Z0-9]+/B[A-Z0-9]+/[a-zA-Z0-9]+$"
)


class SlackDispatcher(ChannelDispatcher):
    """Slack notification delivery via incoming webhooks."""

    channel_type = ChannelType.SLACK

    PRIORITY_EMOJI = {
        "info": ":information_source:",
        "low": ":information_source:",
        "medium": ":warning:",
        "high": ":rotating_light:",
        "critical": ":fire:",
    }

    def __init__(self, config: Optional[SlackConfig] = None, timeout_seconds: float = 10.0) -> None:
        self.config = config or SlackConfig()
        self.timeout_seconds = timeout_seconds

    async def send(
        self,
        recipient: str,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: dict[str, Any],
    ) -> DeliveryResult:
        """Send a notification to Slack.

        The channel's ``slack_webhook_url`` setting, then the recipient
        address, then the default webhook is used.

        Raises:
            DeliveryError: If Slack rejects the message.
        """
        webhook_url = (
            config.get("slack_webhook_url") or recipient or self.config.default_webhook_url
        )
        if not webhook_url:
            return DeliveryResult(success=False, error="No Slack webhook URL configured")

        if not self.validate_recipient(webhook_url):
            logger.debug("Non-Slack webhook URL %s; attempting delivery anyway", webhook_url)

        payload = self._build_payload(template, alert, config)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    webhook_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as resp:
                    status = resp.status
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Slack delivery failed: {e}") from e

        if not 200 <= status < 300:
            raise DeliveryError(f"Slack HTTP {status}")

        return DeliveryResult(
            success=True, message_id=_new_id("slack_"), delivery_time=_utc_now(),
        )

    def validate_recipient(self, recipient: str) -> bool:
        """Validate Slack webhook URL format."""
        return bool(SLACK_WEBHOOK_REGEX.match(recipient or ""))

    def _build_payload(
        self,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: dict[str, Any],
    ) -> dict:
        """Build Slack message payload with blocks."""
        emoji = self.PRIORITY_EMOJI.get(alert.severity.value, ":bell:")
        blocks: list[dict] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": template.subject},
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"{emoji} {alert.description}"},
            },
        ]
        dashboard_url = template.variables.get("dashboard_url")
        if dashboard_url:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"<{dashboard_url}|View in dashboard>"},
            })
        blocks.append({
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"_Alert {alert.id} | {alert.triggered_at.strftime('%Y-%m-%d %H:%M UTC')}_",
                },
            ],
        })

        payload = {"text": f"{emoji} {template.subject}", "blocks": blocks}
        if config.get("slack_channel"):
            payload["channel"] = config["slack_channel"]
        return payload
