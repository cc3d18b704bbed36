"""Rule evaluation.

Combines condition results with AND/OR logic, scores confidence, and
builds alert instances with metric snapshots, context and suggested actions.
"""

import logging
from datetime import timedelta
from typing import Optional

import numpy as np

from src.alerts.conditions import ConditionEvaluator, reading_matches_metric
from src.alerts.config import (
    AFTER_HOURS_END,
    AFTER_HOURS_START,
    BUSINESS_HOURS,
    CONFIDENCE_BASE,
    CONFIDENCE_DEVIATION_BONUS_CAP,
    CONFIDENCE_DEVIATION_WEIGHT,
    CONFIDENCE_MET_WEIGHT,
    HIGH_OCCUPANCY_RATIO,
    HIGH_OUTSIDE_TEMPERATURE_C,
    LOW_OUTSIDE_TEMPERATURE_C,
    LogicalOperator,
    MAX_CONFIDENCE,
    MAX_SUGGESTED_ACTIONS,
    TREND_TOLERANCE,
)
from src.alerts.models import (
    AlertConfiguration,
    AlertContext,
    AlertInstance,
    AlertRule,
    ConditionResult,
    EvaluationContext,
    MetricSnapshot,
    SensorContext,
)
from src.alerts.store import AlertStore

logger = logging.getLogger(__name__)


def combine(results: list[ConditionResult], operator: LogicalOperator) -> bool:
    """AND = all met, OR = any met. No conditions never triggers."""
    if not results:
        return False
    if operator == LogicalOperator.OR:
        return any(r.met for r in results)
    return all(r.met for r in results)


def calculate_confidence(results: list[ConditionResult]) -> float:
    """Heuristic confidence in [0, MAX_CONFIDENCE].

    Base 0.5, plus up to 0.5 for the share of met conditions, plus a small
    bonus for how far met conditions overshot their thresholds.
    """
    if not results:
        return 0.0

    met = [r for r in results if r.met]
    confidence = CONFIDENCE_BASE + CONFIDENCE_MET_WEIGHT * len(met) / len(results)

    if met:
        normalized = [
            min(abs(r.deviation) / max(abs(r.threshold_value), 1.0), 2.0)
            for r in met
        ]
        bonus = float(np.mean(normalized)) * CONFIDENCE_DEVIATION_WEIGHT
        confidence += min(bonus, CONFIDENCE_DEVIATION_BONUS_CAP)

    return min(confidence, MAX_CONFIDENCE)


def contributing_factors(context: EvaluationContext) -> list[str]:
    """Environmental factors present at evaluation time."""
    factors = []
    now = context.current_time
    start, end = BUSINESS_HOURS

    if start <= now.hour <= end:
        factors.append("Business hours")
    elif now.hour >= AFTER_HOURS_START or now.hour <= AFTER_HOURS_END:
        factors.append("After hours")

    factors.append("Weekend" if now.weekday() >= 5 else "Weekday")

    weather = context.weather
    if weather is not None and weather.temperature is not None:
        if weather.temperature > HIGH_OUTSIDE_TEMPERATURE_C:
            factors.append("High outside temperature")
        elif weather.temperature < LOW_OUTSIDE_TEMPERATURE_C:
            factors.append("Low outside temperature")

    occupancy = context.occupancy
    if occupancy is not None and occupancy.capacity > 0:
        if occupancy.ratio >= HIGH_OCCUPANCY_RATIO:
            factors.append("High occupancy")

    return factors


def classify_trend(current: float, average: Optional[float]) -> str:
    """increasing / decreasing / stable relative to the historical average."""
    if average is None:
        return "stable"
    band = abs(average) * TREND_TOLERANCE
    if current > average + band:
        return "increasing"
    if current < average - band:
        return "decreasing"
    return "stable"


class RuleEvaluator:
    """Evaluates one rule and creates (or reuses) an alert instance.

    Example:
        evaluator = RuleEvaluator(ConditionEvaluator(), AlertStore())
        alert = await evaluator.evaluate(configuration, rule, context)
    """

    def __init__(
        self,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        store: Optional[AlertStore] = None,
    ) -> None:
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.store = store if store is not None else AlertStore()

    def evaluate_conditions(
        self,
        rule: AlertRule,
        context: EvaluationContext,
    ) -> list[ConditionResult]:
        return [self.condition_evaluator.evaluate(c, context) for c in rule.conditions]

    async def evaluate(
        self,
        configuration: AlertConfiguration,
        rule: AlertRule,
        context: EvaluationContext,
    ) -> Optional[AlertInstance]:
        """Evaluate a rule against a snapshot.

        Args:
            configuration: Owning configuration.
            rule: Rule to evaluate.
            context: Evaluation snapshot.

        Returns:
            The triggered alert (new, or the open duplicate within the
            cooldown), or None if the rule did not trigger.
        """
        results = self.evaluate_conditions(rule, context)
        if not combine(results, rule.logical_operator):
            return None

        alert, created = await self.store.open_or_register(
            configuration_id=configuration.id,
            rule_id=rule.id,
            now=context.current_time,
            cooldown_minutes=rule.cooldown_period,
            suppress_duplicates=rule.suppress_duplicates,
            factory=lambda: self.build_instance(configuration, rule, results, context),
        )
        if created:
            logger.info(
                "Rule %s triggered alert %s (severity=%s, confidence=%.2f)",
                rule.name,
                alert.id,
                alert.severity.value,
                alert.confidence,
            )
        return alert

    def build_instance(
        self,
        configuration: AlertConfiguration,
        rule: AlertRule,
        results: list[ConditionResult],
        context: EvaluationContext,
    ) -> AlertInstance:
        factors = contributing_factors(context)
        snapshots = [
            MetricSnapshot(
                metric=condition.metric,
                value=result.actual_value,
                threshold=result.threshold_value,
                timestamp=context.current_time,
                evaluation_window=f"{condition.time_aggregation.period} minutes",
                contributing_factors=list(factors),
            )
            for condition, result in zip(rule.conditions, results)
        ]
        alert_context = self.build_context(configuration, rule, snapshots, context)

        return AlertInstance(
            configuration_id=configuration.id,
            rule_id=rule.id,
            severity=rule.priority,
            title=f"{rule.name} - {configuration.name}",
            description=describe(rule, results),
            metric_values=snapshots,
            triggered_at=context.current_time,
            confidence=calculate_confidence(results),
            context=alert_context,
            suggested_actions=suggest_actions(results, alert_context),
        )

    def build_context(
        self,
        configuration: AlertConfiguration,
        rule: AlertRule,
        snapshots: list[MetricSnapshot],
        context: EvaluationContext,
    ) -> AlertContext:
        sensor_data = []
        for snapshot in snapshots:
            history = [
                r.value for r in context.historical_data
                if reading_matches_metric(r, snapshot.metric)
            ]
            average = float(np.mean(history)) if history else None
            sensor_data.append(
                SensorContext(
                    sensor_id=snapshot.metric.sensor_id or snapshot.metric.type.value,
                    sensor_name=snapshot.metric.display_name or snapshot.metric.type.value,
                    current_value=snapshot.value,
                    historical_average=average,
                    trend=classify_trend(snapshot.value, average),
                )
            )

        since = context.current_time - timedelta(minutes=rule.evaluation_window)
        recent_changes = [
            c for c in context.recent_changes
            if since <= c.timestamp <= context.current_time
        ]
        related = [a.id for a in self.store.open_alerts(configuration.id)]

        return AlertContext(
            sensor_data=sensor_data,
            recent_changes=recent_changes,
            related_alerts=related,
            weather=context.weather,
            occupancy=context.occupancy,
        )


def describe(rule: AlertRule, results: list[ConditionResult]) -> str:
    """Human-readable alert description."""
    prefix = rule.description or rule.name
    met = [r for r in results if r.met]
    if len(met) == 1:
        r = met[0]
        op = r.evaluation_method.replace("_", " ")
        return (
            f"{prefix}: Value {r.actual_value:.2f} {op} "
            f"threshold {r.threshold_value:.2f}"
        )
    return f"{prefix}: Multiple conditions triggered ({len(met)}/{len(results)})"


def suggest_actions(results: list[ConditionResult], context: AlertContext) -> list[str]:
    """Up to MAX_SUGGESTED_ACTIONS next steps for the responder."""
    actions: list[str] = []

    for r in results:
        if not r.met:
            continue
        direction = "exceeded" if r.deviation >= 0 else "fell below"
        actions.append(
            f"Investigate why {r.condition_id} {direction} threshold by {abs(r.deviation):.2f}"
        )
        if abs(r.deviation) > abs(r.threshold_value) * 0.5:
            actions.append("Consider immediate investigation due to significant deviation")
        actions.append(f"Check system logs for {r.condition_id}")

    actions.append("Verify sensor calibration and connectivity")
    if context.recent_changes:
        actions.append("Review recent system changes that may have caused this alert")

    # Keep first occurrence order
    unique = list(dict.fromkeys(actions))
    return unique[:MAX_SUGGESTED_ACTIONS]
