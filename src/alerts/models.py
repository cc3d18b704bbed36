"""Alert rule engine data models.

Dataclasses for sensor readings, evaluation snapshots, rule definitions,
triggered alert instances, and configuration validation results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from src.alerts.config import (
    AggregationFunction,
    AlertCategory,
    AlertInstanceStatus,
    AlertPriority,
    ComparisonOperator,
    ConfigurationStatus,
    DEFAULT_BASELINE_PERIOD,
    ImpactLevel,
    LogicalOperator,
    MetricType,
)
from src.alerts.notification_models import (
    EscalationPolicy,
    NotificationLog,
    NotificationSettings,
    _iso,
    _new_id,
    _utc_now,
)


# ── Snapshot ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SensorReading:
    """A single sensor measurement."""
    sensor_id: str
    timestamp: datetime
    value: float
    unit: str = ""
    quality: str = "good"
    metric_type: Optional[MetricType] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def field_value(self, name: str) -> Any:
        """Look up a filterable field on the reading or its attributes."""
        if name in ("sensor_id", "timestamp", "value", "unit", "quality"):
            return getattr(self, name)
        if name == "metric_type":
            return self.metric_type.value if self.metric_type else None
        return self.attributes.get(name)


@dataclass(frozen=True)
class WeatherConditions:
    """Outside weather at evaluation time."""
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    conditions: str = ""


@dataclass(frozen=True)
class OccupancyStatus:
    """Building occupancy at evaluation time."""
    current: int = 0
    capacity: int = 0

    @property
    def ratio(self) -> float:
        return self.current / self.capacity if self.capacity > 0 else 0.0


@dataclass(frozen=True)
class SystemChange:
    """A recent change to building systems (maintenance, setpoint edit...)."""
    timestamp: datetime
    component: str = ""
    description: str = ""


@dataclass(frozen=True)
class EvaluationContext:
    """Immutable snapshot for one evaluation pass."""
    current_time: datetime
    sensor_readings: tuple[SensorReading, ...] = ()
    historical_data: tuple[SensorReading, ...] = ()
    system_status: Mapping[str, Any] = field(default_factory=dict)
    weather: Optional[WeatherConditions] = None
    occupancy: Optional[OccupancyStatus] = None
    recent_changes: tuple[SystemChange, ...] = ()


# ── Thresholds ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScalarThreshold:
    """Single-value threshold for ordering and equality operators."""
    value: float

    @property
    def secondary_value(self) -> Optional[float]:
        return None


@dataclass(frozen=True)
class RangeThreshold:
    """Inclusive ``[low, high]`` band for between / outside_range."""
    low: float
    high: float

    @property
    def value(self) -> float:
        return self.low

    @property
    def secondary_value(self) -> float:
        return self.high


@dataclass(frozen=True)
class PercentageChangeThreshold:
    """Percent change against a baseline period (e.g. ``"7d"``)."""
    percent: float
    baseline_period: str = DEFAULT_BASELINE_PERIOD

    @property
    def value(self) -> float:
        return self.percent

    @property
    def secondary_value(self) -> Optional[float]:
        return None


Threshold = Union[ScalarThreshold, RangeThreshold, PercentageChangeThreshold]

_RANGE_OPERATORS = {ComparisonOperator.BETWEEN, ComparisonOperator.OUTSIDE_RANGE}


def threshold_type_for(operator: ComparisonOperator) -> type:
    """Get the threshold shape an operator requires."""
    if operator in _RANGE_OPERATORS:
        return RangeThreshold
    if operator == ComparisonOperator.PERCENTAGE_CHANGE:
        return PercentageChangeThreshold
    return ScalarThreshold


# ── Rules ────────────────────────────────────────────────────────────


@dataclass
class AlertMetric:
    """Metric selector for a condition."""
    type: MetricType
    sensor_id: Optional[str] = None
    units: str = ""
    display_name: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "sensor_id": self.sensor_id,
            "units": self.units,
            "display_name": self.display_name,
        }


@dataclass
class TimeAggregation:
    """How readings inside the window are reduced to one value.

    Attributes:
        function: Aggregation function.
        period: Window length in minutes.
        minimum_data_points: Readings required before the condition can be met.
    """
    function: AggregationFunction = AggregationFunction.LATEST
    period: int = 5
    minimum_data_points: int = 1


@dataclass
class MetricFilter:
    """Field predicate applied to readings after metric selection."""
    field: str
    value: Any
    operator: str = "equals"


@dataclass
class AlertCondition:
    """A single metric-threshold test.

    Raises:
        ValueError: If the threshold shape does not fit the operator.
    """
    metric: AlertMetric
    operator: ComparisonOperator
    threshold: Threshold
    time_aggregation: TimeAggregation = field(default_factory=TimeAggregation)
    filters: list[MetricFilter] = field(default_factory=list)
    id: str = field(default_factory=lambda: _new_id("cond_"))

    def __post_init__(self) -> None:
        expected = threshold_type_for(self.operator)
        if not isinstance(self.threshold, expected):
            raise ValueError(
                f"Operator {self.operator.value} requires {expected.__name__}, "
                f"got {type(self.threshold).__name__}"
            )


@dataclass
class AlertRule:
    """A named set of conditions combined with AND/OR.

    Attributes:
        evaluation_window: Minutes between evaluations (> 0).
        cooldown_period: Minutes an open alert suppresses duplicates (>= 0).
    """
    name: str
    conditions: list[AlertCondition] = field(default_factory=list)
    priority: AlertPriority = AlertPriority.MEDIUM
    logical_operator: LogicalOperator = LogicalOperator.AND
    evaluation_window: int = 5
    cooldown_period: int = 30
    suppress_duplicates: bool = True
    enabled: bool = True
    description: str = ""
    tags: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: _new_id("rule_"))


@dataclass
class AlertMetadata:
    """Descriptive metadata for a configuration."""
    category: AlertCategory = AlertCategory.OPERATIONAL
    impact_level: ImpactLevel = ImpactLevel.MEDIUM
    affected_systems: list[str] = field(default_factory=list)
    affected_locations: list[str] = field(default_factory=list)
    runbook_url: Optional[str] = None
    tags: list[str] = field(default_factory=list)


@dataclass
class AlertConfiguration:
    """User-owned container of rules plus notification routing settings."""
    name: str
    rules: list[AlertRule] = field(default_factory=list)
    notification_settings: NotificationSettings = field(
        default_factory=NotificationSettings
    )
    escalation_policy: Optional[EscalationPolicy] = None
    metadata: AlertMetadata = field(default_factory=AlertMetadata)
    status: ConfigurationStatus = ConfigurationStatus.ACTIVE
    description: str = ""
    user_id: str = ""
    organization_id: str = ""
    id: str = field(default_factory=lambda: _new_id("cfg_"))
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def is_active(self) -> bool:
        return self.status == ConfigurationStatus.ACTIVE

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None


# ── Evaluation results ───────────────────────────────────────────────


@dataclass
class ConditionResult:
    """Outcome of evaluating one condition."""
    condition_id: str
    met: bool
    actual_value: float
    threshold_value: float
    deviation: float
    evaluation_method: str


@dataclass
class MetricSnapshot:
    """Per-condition value captured when an alert triggers."""
    metric: AlertMetric
    value: float
    threshold: float
    timestamp: datetime
    evaluation_window: str
    contributing_factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "metric": self.metric.to_dict(),
            "value": self.value,
            "threshold": self.threshold,
            "timestamp": _iso(self.timestamp),
            "evaluation_window": self.evaluation_window,
            "contributing_factors": list(self.contributing_factors),
        }


@dataclass
class SensorContext:
    """Sensor summary attached to an alert."""
    sensor_id: str
    sensor_name: str
    current_value: float
    historical_average: Optional[float]
    trend: str = "stable"


@dataclass
class AlertContext:
    """Advisory context attached to an alert (never used for triggering)."""
    sensor_data: list[SensorContext] = field(default_factory=list)
    recent_changes: list[SystemChange] = field(default_factory=list)
    related_alerts: list[str] = field(default_factory=list)
    weather: Optional[WeatherConditions] = None
    occupancy: Optional[OccupancyStatus] = None

    def to_dict(self) -> dict:
        return {
            "sensor_data": [
                {
                    "sensor_id": s.sensor_id,
                    "sensor_name": s.sensor_name,
                    "current_value": s.current_value,
                    "historical_average": s.historical_average,
                    "trend": s.trend,
                }
                for s in self.sensor_data
            ],
            "recent_changes": [
                {
                    "timestamp": _iso(c.timestamp),
                    "component": c.component,
                    "description": c.description,
                }
                for c in self.recent_changes
            ],
            "related_alerts": list(self.related_alerts),
            "weather": (
                {
                    "temperature": self.weather.temperature,
                    "humidity": self.weather.humidity,
                    "conditions": self.weather.conditions,
                }
                if self.weather else None
            ),
            "occupancy": (
                {"current": self.occupancy.current, "capacity": self.occupancy.capacity}
                if self.occupancy else None
            ),
        }


@dataclass
class AlertInstance:
    """A triggered rule.

    Attributes:
        id: Alert identifier.
        configuration_id: Owning configuration.
        rule_id: Rule that triggered.
        status: Lifecycle status.
        severity: Copied from the rule priority.
        metric_values: One snapshot per evaluated condition.
        confidence: Heuristic trust score in [0, 0.95].
        escalation_level: Highest escalation stage fired.
        notification_log: Delivery attempts for this alert.
    """
    configuration_id: str
    rule_id: str
    severity: AlertPriority
    title: str
    description: str = ""
    metric_values: list[MetricSnapshot] = field(default_factory=list)
    triggered_at: datetime = field(default_factory=_utc_now)
    status: AlertInstanceStatus = AlertInstanceStatus.TRIGGERED
    confidence: float = 0.0
    escalation_level: int = 0
    escalated_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: str = ""
    false_positive: bool = False
    notification_log: list[NotificationLog] = field(default_factory=list)
    context: AlertContext = field(default_factory=AlertContext)
    suggested_actions: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: _new_id("alert_"))

    def is_open(self) -> bool:
        """Open alerts are those not yet resolved or closed out."""
        return self.status in (
            AlertInstanceStatus.TRIGGERED,
            AlertInstanceStatus.ACKNOWLEDGED,
            AlertInstanceStatus.INVESTIGATING,
        )

    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def acknowledge(self, by: str, at: Optional[datetime] = None) -> bool:
        if self.status != AlertInstanceStatus.TRIGGERED:
            return False
        self.status = AlertInstanceStatus.ACKNOWLEDGED
        self.acknowledged_at = at or _utc_now()
        self.acknowledged_by = by
        return True

    def resolve(self, by: str, notes: str = "", at: Optional[datetime] = None) -> bool:
        if not self.is_open():
            return False
        self.status = AlertInstanceStatus.RESOLVED
        self.resolved_at = at or _utc_now()
        self.resolved_by = by
        self.resolution_notes = notes
        return True

    def mark_false_positive(self, by: str, at: Optional[datetime] = None) -> None:
        self.false_positive = True
        self.status = AlertInstanceStatus.FALSE_POSITIVE
        self.resolved_at = at or _utc_now()
        self.resolved_by = by

    def last_notified_at(self) -> Optional[datetime]:
        if not self.notification_log:
            return None
        return max(log.sent_at for log in self.notification_log)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "configuration_id": self.configuration_id,
            "rule_id": self.rule_id,
            "status": self.status.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "metric_values": [m.to_dict() for m in self.metric_values],
            "triggered_at": _iso(self.triggered_at),
            "confidence": self.confidence,
            "escalation_level": self.escalation_level,
            "escalated_at": _iso(self.escalated_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
            "false_positive": self.false_positive,
            "notification_log": [n.to_dict() for n in self.notification_log],
            "context": self.context.to_dict(),
            "suggested_actions": list(self.suggested_actions),
        }


# ── Validation ───────────────────────────────────────────────────────


@dataclass
class ValidationIssue:
    """A field-level validation error, warning or suggestion."""
    field: str
    code: str
    message: str
    recommendation: str = ""

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "code": self.code,
            "message": self.message,
            "recommendation": self.recommendation,
        }


@dataclass
class AlertValidation:
    """Result of validating a configuration before it is saved."""
    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[ValidationIssue] = field(default_factory=list)
    estimated_alert_volume: int = 0
    estimated_cost_impact: float = 0.0

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "estimated_alert_volume": self.estimated_alert_volume,
            "estimated_cost_impact": self.estimated_cost_impact,
        }
