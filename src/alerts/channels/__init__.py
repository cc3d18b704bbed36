"""Notification delivery channels."""

from typing import Optional

from src.alerts.channels.base import ChannelDispatcher
from src.alerts.channels.email import EmailDispatcher
from src.alerts.channels.sms import SMSDispatcher
from src.alerts.channels.webhook import WebhookDispatcher
from src.alerts.channels.slack import SlackDispatcher
from src.alerts.config import AlertingConfig, ChannelType, DEFAULT_ALERTING_CONFIG


def build_dispatchers(
    config: Optional[AlertingConfig] = None,
) -> dict[ChannelType, ChannelDispatcher]:
    """Registry of the built-in dispatchers keyed by channel type.

    Push, Teams and phone have no built-in dispatcher; register one to
    enable them.
    """
    config = config or DEFAULT_ALERTING_CONFIG
    dispatchers: list[ChannelDispatcher] = [
        EmailDispatcher(config.email),
        SMSDispatcher(config.sms, timeout_seconds=config.dispatch_timeout_seconds),
        WebhookDispatcher(config.webhook),
        SlackDispatcher(config.slack, timeout_seconds=config.dispatch_timeout_seconds),
    ]
    return {d.channel_type: d for d in dispatchers}


__all__ = [
    "ChannelDispatcher",
    "EmailDispatcher",
    "SMSDispatcher",
    "WebhookDispatcher",
    "SlackDispatcher",
    "build_dispatchers",
]
