"""JSON loading for configurations and snapshots.

Pydantic schemas validate the incoming documents and convert them to the
engine's dataclasses.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from src.alerts.config import (
    AggregationFunction,
    AlertCategory,
    AlertPriority,
    ChannelType,
    ComparisonOperator,
    ConfigurationStatus,
    DEFAULT_BASELINE_PERIOD,
    FrequencyScope,
    ImpactLevel,
    LogicalOperator,
    MetricType,
)
from src.alerts.models import (
    AlertCondition,
    AlertConfiguration,
    AlertMetadata,
    AlertMetric,
    AlertRule,
    EvaluationContext,
    MetricFilter,
    OccupancyStatus,
    PercentageChangeThreshold,
    RangeThreshold,
    ScalarThreshold,
    SensorReading,
    SystemChange,
    TimeAggregation,
    WeatherConditions,
    threshold_type_for,
)
from src.alerts.notification_models import (
    ContactMethod,
    EscalationPolicy,
    EscalationStage,
    FrequencyLimits,
    NotificationChannel,
    NotificationRecipient,
    NotificationSettings,
    OnCallSchedule,
    QuietHours,
    RecipientPreferences,
    SchedulePeriod,
)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ─── Rules ───────────────────────────────────────────────────────────────


class MetricSchema(BaseModel):
    type: MetricType
    sensor_id: Optional[str] = None
    units: str = ""
    display_name: str = ""


class ThresholdSchema(BaseModel):
    value: float
    secondary_value: Optional[float] = None
    baseline_period: str = DEFAULT_BASELINE_PERIOD


class AggregationSchema(BaseModel):
    function: AggregationFunction = AggregationFunction.LATEST
    period: int = 5
    minimum_data_points: int = 1


class FilterSchema(BaseModel):
    field: str
    value: Any = None
    operator: str = "equals"


class ConditionSchema(BaseModel):
    id: Optional[str] = None
    metric: MetricSchema
    operator: ComparisonOperator
    threshold: ThresholdSchema
    time_aggregation: AggregationSchema = Field(default_factory=AggregationSchema)
    filters: list[FilterSchema] = Field(default_factory=list)

    def to_model(self) -> AlertCondition:
        shape = threshold_type_for(self.operator)
        if shape is RangeThreshold:
            if self.threshold.secondary_value is None:
                raise ValueError(
                    f"Operator {self.operator.value} requires threshold.secondary_value"
                )
            threshold: Union[ScalarThreshold, RangeThreshold, PercentageChangeThreshold] = (
                RangeThreshold(low=self.threshold.value, high=self.threshold.secondary_value)
            )
        elif shape is PercentageChangeThreshold:
            threshold = PercentageChangeThreshold(
                percent=self.threshold.value,
                baseline_period=self.threshold.baseline_period,
            )
        else:
            threshold = ScalarThreshold(value=self.threshold.value)

        kwargs: dict[str, Any] = {}
        if self.id:
            kwargs["id"] = self.id
        return AlertCondition(
            metric=AlertMetric(**self.metric.model_dump()),
            operator=self.operator,
            threshold=threshold,
            time_aggregation=TimeAggregation(**self.time_aggregation.model_dump()),
            filters=[MetricFilter(**f.model_dump()) for f in self.filters],
            **kwargs,
        )


class RuleSchema(BaseModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    enabled: bool = True
    priority: AlertPriority = AlertPriority.MEDIUM
    conditions: list[ConditionSchema] = Field(default_factory=list)
    logical_operator: LogicalOperator = LogicalOperator.AND
    evaluation_window: int = 5
    cooldown_period: int = 30
    suppress_duplicates: bool = True
    tags: list[str] = Field(default_factory=list)

    def to_model(self) -> AlertRule:
        data = self.model_dump(exclude={"id", "conditions"})
        if self.id:
            data["id"] = self.id
        return AlertRule(conditions=[c.to_model() for c in self.conditions], **data)


# ─── Notification settings ───────────────────────────────────────────────


class ChannelSchema(BaseModel):
    type: ChannelType
    enabled: bool = True
    configuration: dict[str, Any] = Field(default_factory=dict)
    priority_filter: list[AlertPriority] = Field(default_factory=lambda: list(AlertPriority))

    def to_model(self) -> NotificationChannel:
        return NotificationChannel(**self.model_dump())


class ContactMethodSchema(BaseModel):
    type: ChannelType
    value: str
    verified: bool = False
    primary: bool = False


class SchedulePeriodSchema(BaseModel):
    days_of_week: list[int] = Field(default_factory=lambda: list(range(7)))
    start_time: str = "00:00"
    end_time: str = "00:00"

    @field_validator("days_of_week")
    @classmethod
    def check_days(cls, days: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in days):
            raise ValueError("days_of_week uses 0=Sunday .. 6=Saturday")
        return days


class OnCallScheduleSchema(BaseModel):
    timezone: str = "UTC"
    schedules: list[SchedulePeriodSchema] = Field(default_factory=list)


class PreferencesSchema(BaseModel):
    channels_by_priority: dict[AlertPriority, list[ChannelType]] = Field(default_factory=dict)


class RecipientSchema(BaseModel):
    id: str
    name: str = ""
    role: str = ""
    department: str = ""
    contact_methods: list[ContactMethodSchema] = Field(default_factory=list)
    notification_preferences: PreferencesSchema = Field(default_factory=PreferencesSchema)
    on_call_schedule: Optional[OnCallScheduleSchema] = None

    def to_model(self) -> NotificationRecipient:
        schedule = None
        if self.on_call_schedule is not None:
            schedule = OnCallSchedule(
                timezone=self.on_call_schedule.timezone,
                schedules=[SchedulePeriod(**p.model_dump()) for p in self.on_call_schedule.schedules],
            )
        return NotificationRecipient(
            id=self.id,
            name=self.name,
            role=self.role,
            department=self.department,
            contact_methods=[ContactMethod(**c.model_dump()) for c in self.contact_methods],
            notification_preferences=RecipientPreferences(
                channels_by_priority=dict(self.notification_preferences.channels_by_priority),
            ),
            on_call_schedule=schedule,
        )


class FrequencyLimitsSchema(BaseModel):
    max_alerts_per_hour: int = 10
    max_alerts_per_day: int = 50
    cooldown_between_similar: int = 0
    scope: FrequencyScope = FrequencyScope.CONFIGURATION


class QuietHoursSchema(BaseModel):
    enabled: bool = False
    start_time: str = "22:00"
    end_time: str = "06:00"
    timezone: str = "UTC"
    exceptions: list[str] = Field(default_factory=list)


class NotificationSettingsSchema(BaseModel):
    channels: list[ChannelSchema] = Field(default_factory=list)
    recipients: list[RecipientSchema] = Field(default_factory=list)
    frequency_limits: FrequencyLimitsSchema = Field(default_factory=FrequencyLimitsSchema)
    quiet_hours: QuietHoursSchema = Field(default_factory=QuietHoursSchema)
    escalation_delays: list[int] = Field(default_factory=list)

    def to_model(self) -> NotificationSettings:
        return NotificationSettings(
            channels=[c.to_model() for c in self.channels],
            recipients=[r.to_model() for r in self.recipients],
            frequency_limits=FrequencyLimits(**self.frequency_limits.model_dump()),
            quiet_hours=QuietHours(**self.quiet_hours.model_dump()),
            escalation_delays=list(self.escalation_delays),
        )


class EscalationStageSchema(BaseModel):
    level: int
    delay_minutes: int
    recipients: list[str] = Field(default_factory=list)
    channels: list[ChannelType] = Field(default_factory=list)
    require_acknowledgment: bool = True
    acknowledgment_timeout: int = 30
    skip_if_acknowledged: bool = True
    custom_message: str = ""


class EscalationPolicySchema(BaseModel):
    id: Optional[str] = None
    name: str = ""
    stages: list[EscalationStageSchema] = Field(default_factory=list)
    max_escalations: int = 3

    def to_model(self) -> EscalationPolicy:
        kwargs: dict[str, Any] = {}
        if self.id:
            kwargs["id"] = self.id
        return EscalationPolicy(
            name=self.name,
            stages=[EscalationStage(**s.model_dump()) for s in self.stages],
            max_escalations=self.max_escalations,
            **kwargs,
        )


class MetadataSchema(BaseModel):
    category: AlertCategory = AlertCategory.OPERATIONAL
    impact_level: ImpactLevel = ImpactLevel.MEDIUM
    affected_systems: list[str] = Field(default_factory=list)
    affected_locations: list[str] = Field(default_factory=list)
    runbook_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class ConfigurationSchema(BaseModel):
    id: Optional[str] = None
    name: str = ""
    description: str = ""
    status: ConfigurationStatus = ConfigurationStatus.ACTIVE
    user_id: str = ""
    organization_id: str = ""
    rules: list[RuleSchema] = Field(default_factory=list)
    notification_settings: NotificationSettingsSchema = Field(
        default_factory=NotificationSettingsSchema
    )
    escalation_policy: Optional[EscalationPolicySchema] = None
    metadata: MetadataSchema = Field(default_factory=MetadataSchema)

    def to_model(self) -> AlertConfiguration:
        kwargs: dict[str, Any] = {}
        if self.id:
            kwargs["id"] = self.id
        return AlertConfiguration(
            name=self.name,
            description=self.description,
            status=self.status,
            user_id=self.user_id,
            organization_id=self.organization_id,
            rules=[r.to_model() for r in self.rules],
            notification_settings=self.notification_settings.to_model(),
            escalation_policy=(
                self.escalation_policy.to_model() if self.escalation_policy else None
            ),
            metadata=AlertMetadata(**self.metadata.model_dump()),
            **kwargs,
        )


# ─── Snapshot ────────────────────────────────────────────────────────────


class ReadingSchema(BaseModel):
    sensor_id: str
    timestamp: datetime
    value: float
    unit: str = ""
    quality: str = "good"
    metric_type: Optional[MetricType] = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    def to_model(self) -> SensorReading:
        data = self.model_dump()
        data["timestamp"] = _aware(self.timestamp)
        return SensorReading(**data)


class WeatherSchema(BaseModel):
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    conditions: str = ""


class OccupancySchema(BaseModel):
    current: int = 0
    capacity: int = 0


class SystemChangeSchema(BaseModel):
    timestamp: datetime
    component: str = ""
    description: str = ""


class SnapshotSchema(BaseModel):
    current_time: datetime
    sensor_readings: list[ReadingSchema] = Field(default_factory=list)
    historical_data: list[ReadingSchema] = Field(default_factory=list)
    system_status: dict[str, Any] = Field(default_factory=dict)
    weather: Optional[WeatherSchema] = None
    occupancy: Optional[OccupancySchema] = None
    recent_changes: list[SystemChangeSchema] = Field(default_factory=list)

    def to_model(self) -> EvaluationContext:
        return EvaluationContext(
            current_time=_aware(self.current_time),
            sensor_readings=tuple(r.to_model() for r in self.sensor_readings),
            historical_data=tuple(r.to_model() for r in self.historical_data),
            system_status=dict(self.system_status),
            weather=WeatherConditions(**self.weather.model_dump()) if self.weather else None,
            occupancy=OccupancyStatus(**self.occupancy.model_dump()) if self.occupancy else None,
            recent_changes=tuple(
                SystemChange(
                    timestamp=_aware(c.timestamp),
                    component=c.component,
                    description=c.description,
                )
                for c in self.recent_changes
            ),
        )


# ─── Entry points ────────────────────────────────────────────────────────


def parse_configuration(data: dict) -> AlertConfiguration:
    """Build an AlertConfiguration from a JSON-like dict.

    Raises:
        pydantic.ValidationError: If the document is malformed.
        ValueError: If a threshold does not fit its operator.
    """
    return ConfigurationSchema.model_validate(data).to_model()


def parse_configurations(data: Union[dict, list]) -> list[AlertConfiguration]:
    """Accept a single configuration, a list, or ``{"configurations": [...]}``."""
    if isinstance(data, dict):
        data = data.get("configurations", [data])
    return [parse_configuration(item) for item in data]


def parse_snapshot(data: dict) -> EvaluationContext:
    """Build an EvaluationContext from a JSON-like dict."""
    return SnapshotSchema.model_validate(data).to_model()


def load_configurations(path: Union[str, Path]) -> list[AlertConfiguration]:
    with open(path, encoding="utf-8") as fh:
        return parse_configurations(json.load(fh))


def load_snapshot(path: Union[str, Path]) -> EvaluationContext:
    with open(path, encoding="utf-8") as fh:
        return parse_snapshot(json.load(fh))
