"""Alert rule engine & notification delivery configuration.

Enums, constants, and configuration dataclasses for the alerting system.
"""

import enum
from dataclasses import dataclass, field
from typing import Optional


class AlertPriority(enum.Enum):
    """Alert priority (severity) levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ConfigurationStatus(enum.Enum):
    """Alert configuration lifecycle status.

    Configurations are soft-disabled (paused/archived), never deleted.
    """
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class AlertInstanceStatus(enum.Enum):
    """Triggered alert lifecycle status."""
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"
    EXPIRED = "expired"
    FALSE_POSITIVE = "false_positive"


class ComparisonOperator(enum.Enum):
    """Condition comparison operators."""
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    BETWEEN = "between"
    OUTSIDE_RANGE = "outside_range"
    PERCENTAGE_CHANGE = "percentage_change"
    RATE_OF_CHANGE = "rate_of_change"


class LogicalOperator(enum.Enum):
    """Logical operators combining rule conditions."""
    AND = "AND"
    OR = "OR"


class AggregationFunction(enum.Enum):
    """Time aggregation functions applied to windowed readings."""
    AVERAGE = "average"
    SUM = "sum"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    COUNT = "count"
    MEDIAN = "median"
    PERCENTILE = "percentile"
    STANDARD_DEVIATION = "standard_deviation"
    RATE_OF_CHANGE = "rate_of_change"
    LATEST = "latest"


class MetricType(enum.Enum):
    """Building metric types a condition can select."""
    ENERGY_CONSUMPTION = "energy_consumption"
    POWER_DEMAND = "power_demand"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PRESSURE = "pressure"
    AIR_QUALITY = "air_quality"
    OCCUPANCY = "occupancy"
    EQUIPMENT_STATUS = "equipment_status"
    EFFICIENCY_RATIO = "efficiency_ratio"
    COST_PER_HOUR = "cost_per_hour"
    CARBON_EMISSIONS = "carbon_emissions"
    SYSTEM_HEALTH = "system_health"
    SENSOR_CONNECTIVITY = "sensor_connectivity"
    DATA_QUALITY = "data_quality"


class AlertCategory(enum.Enum):
    """Alert configuration category."""
    ENERGY_EFFICIENCY = "energy_efficiency"
    EQUIPMENT_HEALTH = "equipment_health"
    OCCUPANT_COMFORT = "occupant_comfort"
    SECURITY = "security"
    SAFETY = "safety"
    COST_OPTIMIZATION = "cost_optimization"
    MAINTENANCE = "maintenance"
    COMPLIANCE = "compliance"
    SUSTAINABILITY = "sustainability"
    OPERATIONAL = "operational"


class ImpactLevel(enum.Enum):
    """Business impact level of a configuration."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    MINIMAL = "minimal"


class ChannelType(enum.Enum):
    """Notification delivery channels."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WEBHOOK = "webhook"
    SLACK = "slack"
    TEAMS = "teams"
    PHONE = "phone"


class NotificationStatus(enum.Enum):
    """Notification delivery status."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class FrequencyScope(enum.Enum):
    """Which key the frequency counters are kept against."""
    CONFIGURATION = "configuration"
    RECIPIENT = "recipient"


# Readings whose sensor id or unit contains one of these keywords match the
# metric type when the reading carries no explicit metric_type.
METRIC_KEYWORDS: dict[MetricType, list[str]] = {
    MetricType.ENERGY_CONSUMPTION: ["energy", "power", "kwh"],
    MetricType.POWER_DEMAND: ["power", "kw"],
    MetricType.TEMPERATURE: ["temperature", "temp"],
    MetricType.HUMIDITY: ["humidity", "rh"],
    MetricType.PRESSURE: ["pressure", "pa"],
    MetricType.AIR_QUALITY: ["co2", "pm25", "voc"],
    MetricType.OCCUPANCY: ["occupancy", "people"],
}

# Comparison tolerance for equals / not_equals
EQUALS_TOLERANCE = 0.001

# Percentile used by the percentile aggregation
DEFAULT_PERCENTILE = 95.0

# Default baseline window for percentage_change when none is given
DEFAULT_BASELINE_PERIOD = "7d"

# Confidence scoring (heuristic business parameters)
CONFIDENCE_BASE = 0.5
CONFIDENCE_MET_WEIGHT = 0.5
CONFIDENCE_DEVIATION_WEIGHT = 0.05
CONFIDENCE_DEVIATION_BONUS_CAP = 0.1
MAX_CONFIDENCE = 0.95

# Contributing-factor heuristics
BUSINESS_HOURS = (9, 17)
AFTER_HOURS_START = 18
AFTER_HOURS_END = 6
HIGH_OUTSIDE_TEMPERATURE_C = 30.0
LOW_OUTSIDE_TEMPERATURE_C = 5.0
HIGH_OCCUPANCY_RATIO = 0.8
TREND_TOLERANCE = 0.05
MAX_SUGGESTED_ACTIONS = 5

# Volume estimation (heuristic business parameters)
ESTIMATED_TRIGGER_RATE = 0.05
HIGH_VOLUME_THRESHOLD = 100
COST_PER_ALERT = 0.10
MINUTES_PER_DAY = 24 * 60

# Retry configuration
MAX_DELIVERY_RETRIES = 3
RETRY_BACKOFF_CAP_SECONDS = 60.0
DEFAULT_DISPATCH_TIMEOUT_SECONDS = 10.0

SMS_MAX_LENGTH = 160


# Pre-built building alert templates
ALERT_TEMPLATES: dict[str, dict] = {
    "hvac_energy_spike": {
        "name": "HVAC Energy Spike",
        "description": "Total HVAC energy over the window exceeds a budget",
        "category": AlertCategory.ENERGY_EFFICIENCY,
        "metric_type": MetricType.ENERGY_CONSUMPTION,
        "operator": ComparisonOperator.GREATER_THAN,
        "threshold": 1000.0,
        "aggregation": AggregationFunction.SUM,
        "period": 5,
        "units": "kWh",
        "priority": AlertPriority.HIGH,
    },
    "temperature_out_of_range": {
        "name": "Temperature Out Of Range",
        "description": "Average zone temperature leaves the comfort band",
        "category": AlertCategory.OCCUPANT_COMFORT,
        "metric_type": MetricType.TEMPERATURE,
        "operator": ComparisonOperator.OUTSIDE_RANGE,
        "threshold": 18.0,
        "secondary_threshold": 26.0,
        "aggregation": AggregationFunction.AVERAGE,
        "period": 15,
        "units": "C",
        "priority": AlertPriority.MEDIUM,
    },
    "high_humidity": {
        "name": "High Humidity",
        "description": "Relative humidity stays above the mould-risk level",
        "category": AlertCategory.MAINTENANCE,
        "metric_type": MetricType.HUMIDITY,
        "operator": ComparisonOperator.GREATER_THAN,
        "threshold": 70.0,
        "aggregation": AggregationFunction.AVERAGE,
        "period": 30,
        "units": "%",
        "priority": AlertPriority.MEDIUM,
    },
    "poor_air_quality": {
        "name": "Poor Air Quality",
        "description": "CO2 concentration above the ventilation target",
        "category": AlertCategory.SAFETY,
        "metric_type": MetricType.AIR_QUALITY,
        "operator": ComparisonOperator.GREATER_THAN,
        "threshold": 1000.0,
        "aggregation": AggregationFunction.AVERAGE,
        "period": 10,
        "units": "ppm",
        "priority": AlertPriority.HIGH,
    },
    "energy_usage_jump": {
        "name": "Energy Usage Jump",
        "description": "Energy use rises sharply against the weekly baseline",
        "category": AlertCategory.COST_OPTIMIZATION,
        "metric_type": MetricType.ENERGY_CONSUMPTION,
        "operator": ComparisonOperator.PERCENTAGE_CHANGE,
        "threshold": 25.0,
        "aggregation": AggregationFunction.AVERAGE,
        "period": 60,
        "units": "kWh",
        "priority": AlertPriority.LOW,
    },
}


@dataclass
class EmailConfig:
    """Email delivery configuration."""
    smtp_host: str = ""
    smtp_port: int = 587
    use_tls: bool = True
    sender_email: str = "alerts@localhost"
    sender_name: str = "Building Alerts"
    username: str = ""
    password: str = ""


@dataclass
class SMSConfig:
    """SMS delivery configuration."""
    provider: str = "twilio"
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""
    api_base_url: str = "https://api.twilio.com/2010-04-01"


@dataclass
class WebhookConfig:
    """Webhook delivery configuration."""
    signing_secret: str = ""
    timeout_seconds: float = DEFAULT_DISPATCH_TIMEOUT_SECONDS
    method: str = "POST"


@dataclass
class SlackConfig:
    """Slack delivery configuration."""
    default_webhook_url: str = ""


@dataclass
class AlertingConfig:
    """Top-level alerting system configuration."""
    email: EmailConfig = field(default_factory=EmailConfig)
    sms: SMSConfig = field(default_factory=SMSConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    slack: SlackConfig = field(default_factory=SlackConfig)
    dispatch_timeout_seconds: float = DEFAULT_DISPATCH_TIMEOUT_SECONDS
    max_delivery_retries: int = MAX_DELIVERY_RETRIES
    retry_backoff_cap_seconds: float = RETRY_BACKOFF_CAP_SECONDS
    evaluation_interval_seconds: int = 300
    dashboard_url: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "AlertingConfig":
        """Build the alerting config from environment-backed settings."""
        return cls(
            email=EmailConfig(
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port,
                use_tls=settings.smtp_use_tls,
                sender_email=settings.smtp_sender,
                username=settings.smtp_username,
                password=settings.smtp_password,
            ),
            sms=SMSConfig(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
            ),
            webhook=WebhookConfig(
                signing_secret=settings.webhook_signing_secret,
                timeout_seconds=settings.dispatch_timeout_seconds,
            ),
            slack=SlackConfig(
                default_webhook_url=settings.slack_default_webhook_url,
            ),
            dispatch_timeout_seconds=settings.dispatch_timeout_seconds,
            max_delivery_retries=settings.max_delivery_retries,
            retry_backoff_cap_seconds=settings.retry_backoff_cap_seconds,
            evaluation_interval_seconds=settings.evaluation_interval_seconds,
            dashboard_url=settings.dashboard_url or None,
        )


DEFAULT_ALERTING_CONFIG = AlertingConfig()
