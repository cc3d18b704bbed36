"""Notification data models.

Dataclasses for notification settings, recipients, escalation policies,
templates, and delivery records.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
import uuid

from src.alerts.config import (
    AlertPriority,
    ChannelType,
    FrequencyScope,
    NotificationStatus,
)
from src.alerts.schedule import is_on_schedule, is_within_hours


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:16]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class NotificationChannel:
    """A delivery channel enabled for a configuration.

    Attributes:
        type: Channel type.
        enabled: Whether the channel is active.
        configuration: Channel-specific settings (webhook_url, headers, ...).
        priority_filter: Severities this channel handles.
    """
    type: ChannelType
    enabled: bool = True
    configuration: dict[str, Any] = field(default_factory=dict)
    priority_filter: list[AlertPriority] = field(
        default_factory=lambda: list(AlertPriority)
    )

    def accepts(self, severity: AlertPriority) -> bool:
        return self.enabled and severity in self.priority_filter


@dataclass
class ContactMethod:
    """A way of reaching a recipient on one channel."""
    type: ChannelType
    value: str
    verified: bool = False
    primary: bool = False


@dataclass
class SchedulePeriod:
    """On-call period. ``days_of_week`` uses 0=Sunday .. 6=Saturday.

    Equal ``start_time`` and ``end_time`` (the default) mean all day.
    """
    days_of_week: list[int] = field(default_factory=lambda: list(range(7)))
    start_time: str = "00:00"
    end_time: str = "00:00"


@dataclass
class OnCallSchedule:
    """On-call schedule in a given timezone."""
    timezone: str = "UTC"
    schedules: list[SchedulePeriod] = field(default_factory=list)

    def is_on_call(self, moment: datetime) -> bool:
        """Check whether any period covers ``moment``."""
        return any(
            is_on_schedule(
                moment, period.days_of_week,
                period.start_time, period.end_time, self.timezone,
            )
            for period in self.schedules
        )


@dataclass
class RecipientPreferences:
    """Per-recipient notification preferences.

    Attributes:
        channels_by_priority: Severity -> channels the recipient wants.
    """
    channels_by_priority: dict[AlertPriority, list[ChannelType]] = field(
        default_factory=dict
    )

    def wants(self, severity: AlertPriority, channel: ChannelType) -> bool:
        return channel in self.channels_by_priority.get(severity, [])


@dataclass
class NotificationRecipient:
    """A person or system that receives notifications."""
    id: str
    name: str = ""
    role: str = ""
    department: str = ""
    contact_methods: list[ContactMethod] = field(default_factory=list)
    notification_preferences: RecipientPreferences = field(
        default_factory=RecipientPreferences
    )
    on_call_schedule: Optional[OnCallSchedule] = None

    def contact_for(self, channel: ChannelType) -> Optional[ContactMethod]:
        """Get the verified contact method for a channel, primary first."""
        verified = [
            cm for cm in self.contact_methods
            if cm.type == channel and cm.verified
        ]
        if not verified:
            return None
        verified.sort(key=lambda cm: not cm.primary)
        return verified[0]

    def is_on_call(self, moment: datetime) -> bool:
        if self.on_call_schedule is None:
            return True
        return self.on_call_schedule.is_on_call(moment)


@dataclass
class FrequencyLimits:
    """Notification rate limits.

    Attributes:
        max_alerts_per_hour: Hourly cap.
        max_alerts_per_day: Daily cap.
        cooldown_between_similar: Minutes between notifications for the
            same configuration and rule.
        scope: Whether counters are per configuration or per recipient.
    """
    max_alerts_per_hour: int = 10
    max_alerts_per_day: int = 50
    cooldown_between_similar: int = 0
    scope: FrequencyScope = FrequencyScope.CONFIGURATION


@dataclass
class QuietHours:
    """Do Not Disturb window.

    Critical alerts and alerts listed in ``exceptions`` bypass it.
    """
    enabled: bool = False
    start_time: str = "22:00"
    end_time: str = "06:00"
    timezone: str = "UTC"
    exceptions: list[str] = field(default_factory=list)

    def suppresses(self, alert_id: str, severity: AlertPriority, moment: datetime) -> bool:
        """Check whether an alert is held back by quiet hours at ``moment``."""
        if not self.enabled:
            return False
        if severity == AlertPriority.CRITICAL or alert_id in self.exceptions:
            return False
        return is_within_hours(moment, self.start_time, self.end_time, self.timezone)


@dataclass
class NotificationSettings:
    """Routing settings owned by an alert configuration."""
    channels: list[NotificationChannel] = field(default_factory=list)
    recipients: list[NotificationRecipient] = field(default_factory=list)
    frequency_limits: FrequencyLimits = field(default_factory=FrequencyLimits)
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    escalation_delays: list[int] = field(default_factory=list)

    def recipient_directory(self) -> dict[str, NotificationRecipient]:
        return {r.id: r for r in self.recipients}


@dataclass
class EscalationStage:
    """One escalation wave."""
    level: int
    delay_minutes: int
    recipients: list[str] = field(default_factory=list)
    channels: list[ChannelType] = field(default_factory=list)
    require_acknowledgment: bool = True
    acknowledgment_timeout: int = 30
    skip_if_acknowledged: bool = True
    custom_message: str = ""


@dataclass
class EscalationPolicy:
    """Ordered escalation stages.

    Stage levels must be strictly increasing; ``max_escalations`` bounds how
    many stages fire in total.
    """
    id: str = field(default_factory=lambda: _new_id("esc_"))
    name: str = ""
    stages: list[EscalationStage] = field(default_factory=list)
    max_escalations: int = 3

    def __post_init__(self) -> None:
        levels = [s.level for s in self.stages]
        if any(b <= a for a, b in zip(levels, levels[1:])):
            raise ValueError(
                f"Escalation stage levels must be strictly increasing: {levels}"
            )

    def stage_after(self, current_level: int) -> Optional[EscalationStage]:
        """Get the stage that follows ``current_level``."""
        for stage in self.stages:
            if stage.level == current_level + 1:
                return stage
        if 0 <= current_level < len(self.stages):
            candidate = self.stages[current_level]
            if candidate.level > current_level:
                return candidate
        return None


@dataclass
class NotificationTemplate:
    """Rendered notification content."""
    subject: str
    body: str
    html_body: Optional[str] = None
    variables: dict[str, str] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Outcome reported by a channel dispatcher."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    delivery_time: Optional[datetime] = None


@dataclass
class DeliveryRequest:
    """Everything needed to (re)attempt one delivery."""
    channel: ChannelType
    recipient: str
    template: NotificationTemplate
    alert: Any
    config: dict[str, Any] = field(default_factory=dict)
    recipient_id: Optional[str] = None


@dataclass
class NotificationLog:
    """One delivery attempt record.

    Attributes:
        id: Log entry identifier.
        alert_id: Alert the notification belongs to.
        channel: Delivery channel.
        recipient: Channel-specific address (email, phone, URL).
        sent_at: When the latest attempt was made.
        status: Delivery status.
        error_message: Last error if the attempt failed.
        retry_count: Number of retries performed.
        message_id: Provider message id on success.
        escalation_level: Escalation wave that produced this entry (0 = initial).
        request: Original delivery request, kept for retries.
    """
    id: str = field(default_factory=lambda: _new_id("notif_"))
    alert_id: str = ""
    channel: ChannelType = ChannelType.EMAIL
    recipient: str = ""
    sent_at: datetime = field(default_factory=_utc_now)
    delivered_at: Optional[datetime] = None
    status: NotificationStatus = NotificationStatus.PENDING
    error_message: Optional[str] = None
    retry_count: int = 0
    message_id: Optional[str] = None
    escalation_level: int = 0
    request: Optional[DeliveryRequest] = field(
        default=None, repr=False, compare=False,
    )

    def mark_sent(self, result: DeliveryResult, at: datetime) -> None:
        self.status = NotificationStatus.SENT
        self.message_id = result.message_id
        self.delivered_at = result.delivery_time or at
        self.error_message = None

    def mark_failed(self, error: str) -> None:
        self.status = NotificationStatus.FAILED
        self.error_message = error

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "sent_at": _iso(self.sent_at),
            "delivered_at": _iso(self.delivered_at),
            "status": self.status.value,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "message_id": self.message_id,
            "escalation_level": self.escalation_level,
        }
