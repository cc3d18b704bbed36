"""Webhook notification channel.

HTTP delivery with HMAC signing.
"""

import hashlib
import hmac
import json
import logging
import re
from typing import Any, Optional

import aiohttp

from src.alerts.channels.base import ChannelDispatcher
from src.alerts.config import ChannelType, WebhookConfig
from src.alerts.exceptions import DeliveryError
from src.alerts.models import AlertInstance
from src.alerts.notification_models import (
    DeliveryResult,
    NotificationTemplate,
    _new_id,
    _utc_now,
)
from src.alerts.templates import build_webhook_payload

logger = logging.getLogger(__name__)

URL_REGEX = re.compile(
    r"^https?://[a-zA-Z0-9]([a-zA-Z0-9\-]*[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9\-]*[a-zA-Z0-9])?)*"
    r"(:\d+)?(/.*)?$"
)

SIGNATURE_HEADER = "X-Alert-Signature"


class WebhookDispatcher(ChannelDispatcher):
    """Webhook delivery channel with HMAC signing.

    The channel's ``webhook_url`` setting wins over the recipient address;
    extra ``headers`` from the channel settings are sent as-is.
    """

    channel_type = ChannelType.WEBHOOK

    def __init__(self, config: Optional[WebhookConfig] = None) -> None:
        self.config = config or WebhookConfig()

    async def send(
        self,
        recipient: str,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: dict[str, Any],
    ) -> DeliveryResult:
        """Post the alert payload to the webhook.

        Raises:
            DeliveryError: If the endpoint answers with a non-2xx status or
                cannot be reached.
        """
        url = config.get("webhook_url") or recipient
        if not self.validate_recipient(url):
            return DeliveryResult(success=False, error="Invalid webhook URL")

        body = json.dumps(build_webhook_payload(alert, template), default=str)
        headers = {"Content-Type": "application/json"}
        headers.update(config.get("headers") or {})

        secret = config.get("signing_secret") or self.config.signing_secret
        if secret:
            headers[SIGNATURE_HEADER] = self.sign(body, secret)

        method = (config.get("method") or self.config.method).upper()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    data=body.encode("utf-8"),
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
                ) as resp:
                    status = resp.status
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Webhook delivery failed: {e}") from e

        if not 200 <= status < 300:
            raise DeliveryError(f"Webhook HTTP {status}")

        return DeliveryResult(
            success=True, message_id=_new_id("webhook_"), delivery_time=_utc_now(),
        )

    def validate_recipient(self, recipient: str) -> bool:
        """Validate webhook URL format."""
        return bool(URL_REGEX.match(recipient or ""))

    @staticmethod
    def sign(payload: str, secret: str) -> str:
        """HMAC-SHA256 sign the payload.

        Returns:
            Hex-encoded signature.
        """
        return hmac.new(
            secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
