"""Condition evaluation engine.

Builds alert conditions from templates and evaluates a single condition
(metric filter -> aggregation -> comparison) against an evaluation snapshot.
"""

import logging
import re
from datetime import timedelta
from typing import Optional, Protocol

import numpy as np

from src.alerts.aggregation import aggregate, has_enough_data
from src.alerts.config import (
    ALERT_TEMPLATES,
    AggregationFunction,
    ComparisonOperator,
    DEFAULT_BASELINE_PERIOD,
    EQUALS_TOLERANCE,
    METRIC_KEYWORDS,
    MetricType,
)
from src.alerts.models import (
    AlertCondition,
    AlertMetric,
    ConditionResult,
    EvaluationContext,
    MetricFilter,
    PercentageChangeThreshold,
    RangeThreshold,
    ScalarThreshold,
    SensorReading,
    TimeAggregation,
)

logger = logging.getLogger(__name__)

_PERIOD_RE = re.compile(r"^\s*(\d+)\s*([mhdw])\s*$")
_PERIOD_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def parse_period(period: str) -> timedelta:
    """Parse a baseline period like ``"30m"``, ``"24h"``, ``"7d"``, ``"2w"``.

    Raises:
        ValueError: If the period is malformed.
    """
    match = _PERIOD_RE.match(period or "")
    if not match:
        raise ValueError(f"Invalid period: {period!r}")
    amount, unit = match.groups()
    return timedelta(**{_PERIOD_UNITS[unit]: int(amount)})


def reading_matches_metric(reading: SensorReading, metric: AlertMetric) -> bool:
    """Check whether a reading belongs to the condition's metric."""
    if metric.sensor_id:
        return reading.sensor_id == metric.sensor_id

    if reading.metric_type is not None:
        return reading.metric_type == metric.type

    keywords = METRIC_KEYWORDS.get(metric.type, [])
    sensor_id = reading.sensor_id.lower()
    unit = reading.unit.lower()
    return any(k in sensor_id or k in unit for k in keywords)


def reading_passes_filter(reading: SensorReading, flt: MetricFilter) -> bool:
    """Apply one field filter to a reading."""
    actual = reading.field_value(flt.field)
    op = flt.operator

    if op == "equals":
        return actual == flt.value
    if op == "not_equals":
        return actual != flt.value
    if op == "contains":
        return str(flt.value).lower() in str(actual).lower()
    if op in ("greater_than", "less_than"):
        try:
            a, b = float(actual), float(flt.value)
        except (TypeError, ValueError):
            return False
        return a > b if op == "greater_than" else a < b

    logger.debug("Ignoring unknown filter operator %s", op)
    return True


class BaselineProvider(Protocol):
    """Resolves the baseline value for percentage_change conditions."""

    def baseline(
        self,
        condition: AlertCondition,
        context: EvaluationContext,
        period: str,
    ) -> float: ...


class HistoricalAverageBaseline:
    """Average of same-metric historical readings over the baseline period."""

    def baseline(
        self,
        condition: AlertCondition,
        context: EvaluationContext,
        period: str,
    ) -> float:
        since = context.current_time - parse_period(period or DEFAULT_BASELINE_PERIOD)
        values = [
            r.value for r in context.historical_data
            if reading_matches_metric(r, condition.metric)
            and since <= r.timestamp <= context.current_time
        ]
        if not values:
            return 0.0
        return float(np.mean(values))


class ConditionEvaluator:
    """Evaluates a single condition against an evaluation snapshot.

    Stateless given its inputs; the baseline lookup is pluggable.
    """

    def __init__(self, baseline_provider: Optional[BaselineProvider] = None) -> None:
        self.baseline_provider = baseline_provider or HistoricalAverageBaseline()

    def select_readings(
        self,
        condition: AlertCondition,
        context: EvaluationContext,
    ) -> list[SensorReading]:
        """Readings for the metric inside the aggregation window, oldest first."""
        window_start = context.current_time - timedelta(
            minutes=condition.time_aggregation.period
        )
        selected = [
            r for r in context.sensor_readings
            if reading_matches_metric(r, condition.metric)
            and window_start <= r.timestamp <= context.current_time
        ]
        for flt in condition.filters:
            selected = [r for r in selected if reading_passes_filter(r, flt)]
        selected.sort(key=lambda r: r.timestamp)
        return selected

    def evaluate(
        self,
        condition: AlertCondition,
        context: EvaluationContext,
    ) -> ConditionResult:
        """Evaluate a condition.

        Args:
            condition: Condition to evaluate.
            context: Evaluation snapshot.

        Returns:
            ConditionResult with the aggregated value and signed deviation.
        """
        readings = self.select_readings(condition, context)
        threshold_value = condition.threshold.value

        if not has_enough_data(readings, condition.time_aggregation):
            logger.debug(
                "Condition %s has %d readings, needs %d; not met",
                condition.id,
                len(readings),
                condition.time_aggregation.minimum_data_points,
            )
            return ConditionResult(
                condition_id=condition.id,
                met=False,
                actual_value=0.0,
                threshold_value=threshold_value,
                deviation=0.0 - threshold_value,
                evaluation_method="insufficient_data",
            )

        actual = aggregate(readings, condition.time_aggregation)
        met = self.compare(condition, actual, context)

        return ConditionResult(
            condition_id=condition.id,
            met=met,
            actual_value=actual,
            threshold_value=threshold_value,
            deviation=actual - threshold_value,
            evaluation_method=condition.operator.value,
        )

    def compare(
        self,
        condition: AlertCondition,
        actual: float,
        context: EvaluationContext,
    ) -> bool:
        """Apply the comparison operator to an aggregated value."""
        op = condition.operator
        threshold = condition.threshold

        if op == ComparisonOperator.PERCENTAGE_CHANGE:
            baseline = self.baseline_provider.baseline(
                condition, context, threshold.baseline_period,
            )
            return percentage_change_exceeds(actual, baseline, threshold.percent)

        return compare_value(op, actual, threshold)


def compare_value(op: ComparisonOperator, actual: float, threshold) -> bool:
    """Compare a value against a scalar or range threshold."""
    if op == ComparisonOperator.GREATER_THAN:
        return actual > threshold.value
    if op == ComparisonOperator.LESS_THAN:
        return actual < threshold.value
    if op == ComparisonOperator.GREATER_THAN_OR_EQUAL:
        return actual >= threshold.value
    if op == ComparisonOperator.LESS_THAN_OR_EQUAL:
        return actual <= threshold.value
    if op == ComparisonOperator.EQUALS:
        return abs(actual - threshold.value) < EQUALS_TOLERANCE
    if op == ComparisonOperator.NOT_EQUALS:
        return abs(actual - threshold.value) >= EQUALS_TOLERANCE
    if op == ComparisonOperator.BETWEEN:
        return threshold.low <= actual <= threshold.high
    if op == ComparisonOperator.OUTSIDE_RANGE:
        return not (threshold.low <= actual <= threshold.high)
    if op == ComparisonOperator.RATE_OF_CHANGE:
        return abs(actual) > threshold.value

    raise ValueError(f"Operator {op.value} cannot be compared directly")


def percentage_change_exceeds(actual: float, baseline: float, percent: float) -> bool:
    """``|actual - baseline| / baseline`` in percent, strictly above ``percent``.

    A zero baseline never triggers.
    """
    if baseline == 0:
        return False
    change = abs((actual - baseline) / baseline) * 100
    return change > percent


class ConditionBuilder:
    """Builder for alert conditions.

    Constructs AlertCondition objects from user input or pre-built templates.
    """

    @staticmethod
    def from_template(
        template_name: str,
        sensor_id: Optional[str] = None,
        threshold_override: Optional[float] = None,
    ) -> AlertCondition:
        """Create a condition from a pre-built template.

        Raises:
            ValueError: If template not found.
        """
        template = ALERT_TEMPLATES.get(template_name)
        if not template:
            raise ValueError(f"Unknown template: {template_name}")

        threshold = (
            threshold_override if threshold_override is not None
            else template.get("threshold", 0.0)
        )
        return ConditionBuilder.simple(
            metric_type=template["metric_type"],
            operator=template["operator"],
            threshold=threshold,
            secondary_threshold=template.get("secondary_threshold"),
            aggregation=template.get("aggregation", AggregationFunction.LATEST),
            period=template.get("period", 5),
            sensor_id=sensor_id,
            units=template.get("units", ""),
            display_name=template["name"],
        )

    @staticmethod
    def simple(
        metric_type: MetricType,
        operator: ComparisonOperator,
        threshold: float,
        secondary_threshold: Optional[float] = None,
        aggregation: AggregationFunction = AggregationFunction.LATEST,
        period: int = 5,
        minimum_data_points: int = 1,
        sensor_id: Optional[str] = None,
        baseline_period: str = DEFAULT_BASELINE_PERIOD,
        units: str = "",
        display_name: str = "",
    ) -> AlertCondition:
        """Create a condition, picking the threshold shape from the operator.

        Raises:
            ValueError: If a range operator has no secondary threshold.
        """
        if operator in (ComparisonOperator.BETWEEN, ComparisonOperator.OUTSIDE_RANGE):
            if secondary_threshold is None:
                raise ValueError(f"{operator.value} requires a secondary threshold")
            shaped = RangeThreshold(low=threshold, high=secondary_threshold)
        elif operator == ComparisonOperator.PERCENTAGE_CHANGE:
            shaped = PercentageChangeThreshold(
                percent=threshold, baseline_period=baseline_period,
            )
        else:
            shaped = ScalarThreshold(value=threshold)

        return AlertCondition(
            metric=AlertMetric(
                type=metric_type,
                sensor_id=sensor_id,
                units=units,
                display_name=display_name or metric_type.value,
            ),
            operator=operator,
            threshold=shaped,
            time_aggregation=TimeAggregation(
                function=aggregation,
                period=period,
                minimum_data_points=minimum_data_points,
            ),
        )

    @staticmethod
    def values_between(
        metric_type: MetricType,
        low: float,
        high: float,
        **kwargs,
    ) -> AlertCondition:
        """low <= value <= high."""
        return ConditionBuilder.simple(
            metric_type, ComparisonOperator.BETWEEN, low, secondary_threshold=high, **kwargs,
        )

    @staticmethod
    def pct_change(
        metric_type: MetricType,
        percent: float,
        baseline_period: str = DEFAULT_BASELINE_PERIOD,
        **kwargs,
    ) -> AlertCondition:
        """Percentage change against a historical baseline."""
        return ConditionBuilder.simple(
            metric_type,
            ComparisonOperator.PERCENTAGE_CHANGE,
            percent,
            baseline_period=baseline_period,
            **kwargs,
        )
