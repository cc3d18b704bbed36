"""Alerting exception hierarchy."""


class AlertingError(Exception):
    """Base class for alerting errors."""


class UnsupportedChannelError(AlertingError):
    """Raised when no dispatcher is registered for a channel type.

    This is a configuration error and is never retried.
    """

    def __init__(self, channel_type):
        self.channel_type = channel_type
        name = getattr(channel_type, "value", channel_type)
        super().__init__(f"Unsupported channel type: {name}")


class DeliveryError(AlertingError):
    """Raised by a dispatcher when a provider rejects or fails a delivery."""


class ConfigurationValidationError(AlertingError):
    """Raised when an alert configuration fails structural validation."""

    def __init__(self, validation):
        self.validation = validation
        messages = "; ".join(
            f"{e.field}: {e.message}" for e in validation.errors
        )
        super().__init__(f"Invalid alert configuration: {messages}")
