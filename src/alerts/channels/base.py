"""Abstract base for channel dispatchers."""

from abc import ABC, abstractmethod
from typing import Any

from src.alerts.config import ChannelType
from src.alerts.models import AlertInstance
from src.alerts.notification_models import DeliveryResult, NotificationTemplate


class ChannelDispatcher(ABC):
    """Delivers a rendered notification over one channel type."""

    channel_type: ChannelType

    @abstractmethod
    async def send(
        self,
        recipient: str,
        template: NotificationTemplate,
        alert: AlertInstance,
        config: dict[str, Any],
    ) -> DeliveryResult:
        """Send a notification through this channel.

        Args:
            recipient: Channel-specific address (email, phone, URL).
            template: Rendered notification.
            alert: Alert being notified.
            config: Per-configuration channel settings.

        Returns:
            DeliveryResult describing the outcome.

        Raises:
            DeliveryError: If the provider rejects the delivery.
        """

    @abstractmethod
    def validate_recipient(self, recipient: str) -> bool:
        """Validate that the recipient is valid for this channel.

        Args:
            recipient: Channel-specific recipient identifier.

        Returns:
            True if recipient is valid.
        """
