"""SMS notification channel.

Twilio REST delivery over aiohttp; demo mode without an account sid.
"""

import logging
import re
from typing import Any, Optional

import aiohttp

from src.alerts.channels.base import ChannelDispatcher
from src.alerts.config import ChannelType, SMS_MAX_LENGTH, SMSConfig
from src.alerts.exceptions import DeliveryError
from src.alerts.models import AlertInstance
from src.alerts.notification_models import (
    DeliveryResult,
    NotificationTemplate,
    _new_id,
    _utc_now,
)

logger = logging.getLogger(__name__)

PHONE_REGEX = re.compile(r"^\+?[1-9]\d{6,14}$")


def sms_text(template: NotificationTemplate) -> str:
    """Subject-led SMS text truncated to one segment."""
    text = f"{template.subject}\n{template.body}"
    if len(text) > SMS_MAX_LENGTH:
        text = text[:SMS_MAX_LENGTH - 3] + "..."
    return text


class SMSDispatcher(ChannelDispatcher):
    """SMS delivery channel."""

    channel_type = ChannelType.SMS

    def __init__(self, config: Optional[SMSConfig] = None, timeout_seconds: float = 10.0) -> None:
        self.config = config or SMSConfig()
        self.timeout_seconds = timeout_seconds

    @property
    def demo_mode(self) -> bool:
        return not self.config.account_sid

    async def send(
        self,
        recipient: str,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: dict[str, Any],
    ) -> DeliveryResult:
        """Send an SMS notification.

        Raises:
            DeliveryError: If the provider rejects the message.
        """
        if not self.validate_recipient(recipient):
            return DeliveryResult(success=False, error="Invalid phone number")

        body = sms_text(template)

        if self.demo_mode:
            logger.info("SMS (demo) to %s", recipient)
            return DeliveryResult(
                success=True, message_id=_new_id("sms_"), delivery_time=_utc_now(),
            )

        url = f"{self.config.api_base_url}/Accounts/{self.config.account_sid}/Messages.json"
        data = {
            "To": recipient,
            "From": config.get("from_number") or self.config.from_number,
            "Body": body,
        }
        auth = aiohttp.BasicAuth(self.config.account_sid, self.config.auth_token)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    data=data,
                    auth=auth,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as resp:
                    payload = await resp.json(content_type=None)
                    if resp.status >= 300:
                        message = payload.get("message", "") if isinstance(payload, dict) else ""
                        raise DeliveryError(f"SMS provider HTTP {resp.status}: {message}")
        except aiohttp.ClientError as e:
            raise DeliveryError(f"SMS delivery failed: {e}") from e

        return DeliveryResult(
            success=True,
            message_id=payload.get("sid") if isinstance(payload, dict) else None,
            delivery_time=_utc_now(),
        )

    def validate_recipient(self, recipient: str) -> bool:
        """Validate phone number format (E.164)."""
        return bool(PHONE_REGEX.match(recipient or ""))
