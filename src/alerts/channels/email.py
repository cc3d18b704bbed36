"""Email notification channel.

SMTP delivery run in a worker thread; demo mode when no SMTP host is set.
"""

import asyncio
import logging
import re
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

from src.alerts.channels.base import ChannelDispatcher
from src.alerts.config import ChannelType, EmailConfig
from src.alerts.exceptions import DeliveryError
from src.alerts.models import AlertInstance
from src.alerts.notification_models import (
    DeliveryResult,
    NotificationTemplate,
    _new_id,
    _utc_now,
)

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")


class EmailDispatcher(ChannelDispatcher):
    """Email delivery channel."""

    channel_type = ChannelType.EMAIL

    def __init__(self, config: Optional[EmailConfig] = None) -> None:
        self.config = config or EmailConfig()

    @property
    def demo_mode(self) -> bool:
        return not self.config.smtp_host

    async def send(
        self,
        recipient: str,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: dict[str, Any],
    ) -> DeliveryResult:
        """Send an email notification.

        Raises:
            DeliveryError: If the SMTP exchange fails.
        """
        if not self.validate_recipient(recipient):
            return DeliveryResult(success=False, error=f"Invalid email address: {recipient}")

        message_id = _new_id("email_")
        if self.demo_mode:
            logger.info("Email (demo) to %s: %s", recipient, template.subject)
            return DeliveryResult(success=True, message_id=message_id, delivery_time=_utc_now())

        msg = self._build_message(recipient, template, config)
        msg["Message-ID"] = f"<{message_id}@{self.config.smtp_host}>"
        try:
            await asyncio.to_thread(self._send_smtp, msg, recipient)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery failed: {e}") from e

        return DeliveryResult(success=True, message_id=message_id, delivery_time=_utc_now())

    def validate_recipient(self, recipient: str) -> bool:
        """Validate email address format."""
        return bool(EMAIL_REGEX.match(recipient or ""))

    def _build_message(
        self,
        recipient: str,
        template: NotificationTemplate,
        config: dict[str, Any],
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = template.subject
        msg["From"] = f"{self.config.sender_name} <{self.config.sender_email}>"
        msg["To"] = recipient
        if config.get("reply_to"):
            msg["Reply-To"] = config["reply_to"]

        msg.attach(MIMEText(template.body, "plain"))
        if template.html_body:
            msg.attach(MIMEText(template.html_body, "html"))
        return msg

    def _send_smtp(self, msg: MIMEMultipart, recipient: str) -> None:
        with smtplib.SMTP(
            self.config.smtp_host, self.config.smtp_port, timeout=30,
        ) as server:
            if self.config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.config.username and self.config.password:
                server.login(self.config.username, self.config.password)
            server.sendmail(self.config.sender_email, [recipient], msg.as_string())
