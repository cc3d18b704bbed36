"""Building Alert Rules & Notifications.

Evaluates user-defined alert rules against building sensor snapshots,
suppresses duplicates, and delivers notifications over email, SMS, webhook
and Slack with quiet hours, frequency limits, retries and escalation.

Example:
    from src.alerts import AlertManager, load_configurations, load_snapshot

    manager = AlertManager()
    for configuration in load_configurations("configs.json"):
        manager.add_configuration(configuration)

    # Create from template
    manager.create_from_template("hvac_energy_spike", sensor_id="hvac-1")

    # Evaluate a snapshot and notify
    new_alerts = await manager.run_pass(load_snapshot("snapshot.json"))
    manager.acknowledge(new_alerts[0].id, by="facilities-oncall")
"""

from src.alerts.config import (
    AlertPriority,
    ConfigurationStatus,
    AlertInstanceStatus,
    ComparisonOperator,
    LogicalOperator,
    AggregationFunction,
    MetricType,
    AlertCategory,
    ImpactLevel,
    ChannelType,
    NotificationStatus,
    FrequencyScope,
    ALERT_TEMPLATES,
    EmailConfig,
    SMSConfig,
    SlackConfig,
    WebhookConfig,
    AlertingConfig,
    DEFAULT_ALERTING_CONFIG,
)

from src.alerts.exceptions import (
    AlertingError,
    UnsupportedChannelError,
    DeliveryError,
    ConfigurationValidationError,
)

from src.alerts.models import (
    SensorReading,
    WeatherConditions,
    OccupancyStatus,
    SystemChange,
    EvaluationContext,
    ScalarThreshold,
    RangeThreshold,
    PercentageChangeThreshold,
    AlertMetric,
    TimeAggregation,
    MetricFilter,
    AlertCondition,
    AlertRule,
    AlertMetadata,
    AlertConfiguration,
    ConditionResult,
    MetricSnapshot,
    AlertContext,
    AlertInstance,
    ValidationIssue,
    AlertValidation,
)

from src.alerts.notification_models import (
    NotificationChannel,
    ContactMethod,
    SchedulePeriod,
    OnCallSchedule,
    RecipientPreferences,
    NotificationRecipient,
    FrequencyLimits,
    QuietHours,
    NotificationSettings,
    EscalationStage,
    EscalationPolicy,
    NotificationTemplate,
    DeliveryResult,
    NotificationLog,
)

from src.alerts.conditions import (
    ConditionBuilder,
    ConditionEvaluator,
)

from src.alerts.engine import AlertRuleEngine, estimate_alert_volume

from src.alerts.router import NotificationRouter

from src.alerts.escalation import EscalationScheduler

from src.alerts.retry import RetryManager

from src.alerts.scheduler import TaskScheduler

from src.alerts.manager import AlertManager

from src.alerts.worker import (
    EvaluationWorker,
    SnapshotProvider,
    StaticSnapshotProvider,
)

from src.alerts.loader import (
    parse_configuration,
    parse_configurations,
    parse_snapshot,
    load_configurations,
    load_snapshot,
)

from src.alerts.channels import (
    ChannelDispatcher,
    EmailDispatcher,
    SMSDispatcher,
    WebhookDispatcher,
    SlackDispatcher,
    build_dispatchers,
)

__all__ = [
    # Config
    "AlertPriority",
    "ConfigurationStatus",
    "AlertInstanceStatus",
    "ComparisonOperator",
    "LogicalOperator",
    "AggregationFunction",
    "MetricType",
    "AlertCategory",
    "ImpactLevel",
    "ChannelType",
    "NotificationStatus",
    "FrequencyScope",
    "ALERT_TEMPLATES",
    "EmailConfig",
    "SMSConfig",
    "SlackConfig",
    "WebhookConfig",
    "AlertingConfig",
    "DEFAULT_ALERTING_CONFIG",
    # Exceptions
    "AlertingError",
    "UnsupportedChannelError",
    "DeliveryError",
    "ConfigurationValidationError",
    # Models
    "SensorReading",
    "WeatherConditions",
    "OccupancyStatus",
    "SystemChange",
    "EvaluationContext",
    "ScalarThreshold",
    "RangeThreshold",
    "PercentageChangeThreshold",
    "AlertMetric",
    "TimeAggregation",
    "MetricFilter",
    "AlertCondition",
    "AlertRule",
    "AlertMetadata",
    "AlertConfiguration",
    "ConditionResult",
    "MetricSnapshot",
    "AlertContext",
    "AlertInstance",
    "ValidationIssue",
    "AlertValidation",
    "NotificationChannel",
    "ContactMethod",
    "SchedulePeriod",
    "OnCallSchedule",
    "RecipientPreferences",
    "NotificationRecipient",
    "FrequencyLimits",
    "QuietHours",
    "NotificationSettings",
    "EscalationStage",
    "EscalationPolicy",
    "NotificationTemplate",
    "DeliveryResult",
    "NotificationLog",
    # Conditions
    "ConditionBuilder",
    "ConditionEvaluator",
    # Engine
    "AlertRuleEngine",
    "estimate_alert_volume",
    # Delivery
    "NotificationRouter",
    "EscalationScheduler",
    "RetryManager",
    "TaskScheduler",
    # Manager
    "AlertManager",
    # Worker
    "EvaluationWorker",
    "SnapshotProvider",
    "StaticSnapshotProvider",
    # Loader
    "parse_configuration",
    "parse_configurations",
    "parse_snapshot",
    "load_configurations",
    "load_snapshot",
    # Channels
    "ChannelDispatcher",
    "EmailDispatcher",
    "SMSDispatcher",
    "WebhookDispatcher",
    "SlackDispatcher",
    "build_dispatchers",
]
