"""Alert rule engine.

Runs an evaluation pass over a batch of alert configurations and validates
configurations before they are saved.
"""

import asyncio
import logging
from typing import Optional, Sequence

from src.alerts.conditions import ConditionEvaluator
from src.alerts.config import (
    COST_PER_ALERT,
    ComparisonOperator,
    ESTIMATED_TRIGGER_RATE,
    HIGH_VOLUME_THRESHOLD,
    MINUTES_PER_DAY,
)
from src.alerts.models import (
    AlertConfiguration,
    AlertInstance,
    AlertRule,
    AlertValidation,
    EvaluationContext,
    RangeThreshold,
    ValidationIssue,
)
from src.alerts.rules import RuleEvaluator
from src.alerts.store import AlertStore
from src.logging_config import log_performance

logger = logging.getLogger(__name__)


class AlertRuleEngine:
    """Evaluates alert configurations against sensor snapshots.

    Configurations in a pass are evaluated concurrently; a failing rule or
    configuration is logged and skipped without aborting the batch.
    """

    def __init__(
        self,
        store: Optional[AlertStore] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        concurrency: Optional[int] = None,
    ) -> None:
        self.store = store if store is not None else AlertStore()
        self.rule_evaluator = RuleEvaluator(
            condition_evaluator or ConditionEvaluator(), self.store,
        )
        self._concurrency = concurrency

    @log_performance()
    async def evaluate_alerts(
        self,
        configurations: Sequence[AlertConfiguration],
        context: EvaluationContext,
    ) -> list[AlertInstance]:
        """Evaluate all active configurations.

        Args:
            configurations: Configurations to evaluate.
            context: Evaluation snapshot shared by the whole pass.

        Returns:
            Triggered alerts, in configuration order.
        """
        # Rule lists are captured up front so edits mid-pass are not observed
        batch = [
            (config, [r for r in config.rules if r.enabled])
            for config in configurations
            if config.is_active()
        ]
        semaphore = asyncio.Semaphore(self._concurrency) if self._concurrency else None

        async def run(config: AlertConfiguration, rules: list[AlertRule]) -> list[AlertInstance]:
            if semaphore is None:
                return await self._evaluate_configuration(config, rules, context)
            async with semaphore:
                return await self._evaluate_configuration(config, rules, context)

        per_config = await asyncio.gather(*(run(c, rules) for c, rules in batch))

        alerts = [alert for triggered in per_config for alert in triggered]
        logger.info(
            "Evaluated %d configurations, %d alerts triggered",
            len(batch),
            len(alerts),
        )
        return alerts

    async def _evaluate_configuration(
        self,
        config: AlertConfiguration,
        rules: list[AlertRule],
        context: EvaluationContext,
    ) -> list[AlertInstance]:
        triggered: list[AlertInstance] = []
        try:
            for rule in rules:
                try:
                    alert = await self.rule_evaluator.evaluate(config, rule, context)
                except Exception:
                    logger.exception(
                        "Rule %s in configuration %s failed to evaluate",
                        rule.id,
                        config.id,
                    )
                    continue
                if alert is not None:
                    triggered.append(alert)
        except Exception:
            logger.exception("Configuration %s failed to evaluate", config.id)
        return triggered

    # ── Validation ───────────────────────────────────────────────────

    def validate_configuration(self, config: AlertConfiguration) -> AlertValidation:
        """Validate a configuration before it is saved.

        Args:
            config: Configuration to check.

        Returns:
            AlertValidation with errors, warnings, suggestions and the
            estimated daily alert volume and cost.
        """
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        suggestions: list[ValidationIssue] = []

        if not config.name or not config.name.strip():
            errors.append(ValidationIssue("name", "REQUIRED", "Configuration name is required"))

        if not config.rules:
            errors.append(ValidationIssue("rules", "REQUIRED", "At least one rule is required"))

        for i, rule in enumerate(config.rules):
            prefix = f"rules[{i}]"
            if not rule.conditions:
                errors.append(ValidationIssue(
                    f"{prefix}.conditions", "REQUIRED",
                    f"Rule '{rule.name}' must have at least one condition",
                ))
            if rule.evaluation_window <= 0:
                errors.append(ValidationIssue(
                    f"{prefix}.evaluation_window", "INVALID_VALUE",
                    "Evaluation window must be greater than 0 minutes",
                ))
            if rule.cooldown_period < 0:
                errors.append(ValidationIssue(
                    f"{prefix}.cooldown_period", "INVALID_VALUE",
                    "Cooldown period cannot be negative",
                ))

            for j, condition in enumerate(rule.conditions):
                cprefix = f"{prefix}.conditions[{j}]"
                if condition.time_aggregation.minimum_data_points < 0:
                    errors.append(ValidationIssue(
                        f"{cprefix}.time_aggregation.minimum_data_points",
                        "INVALID_VALUE",
                        "Minimum data points cannot be negative",
                    ))
                threshold = condition.threshold
                if isinstance(threshold, RangeThreshold) and threshold.low > threshold.high:
                    errors.append(ValidationIssue(
                        f"{cprefix}.threshold", "INVALID_RANGE",
                        f"Range low ({threshold.low}) is greater than high ({threshold.high})",
                    ))
                if (
                    threshold.value == 0
                    and condition.operator != ComparisonOperator.EQUALS
                ):
                    warnings.append(ValidationIssue(
                        f"{cprefix}.threshold", "SENSITIVE_THRESHOLD",
                        "A zero threshold may trigger on every reading",
                        "Set a threshold that reflects a meaningful deviation",
                    ))

            if rule.cooldown_period == 0:
                suggestions.append(ValidationIssue(
                    f"{prefix}.cooldown_period", "ADD_COOLDOWN",
                    f"Rule '{rule.name}' has no cooldown",
                    "Add a cooldown period to avoid repeated alerts",
                ))
            if not rule.suppress_duplicates:
                suggestions.append(ValidationIssue(
                    f"{prefix}.suppress_duplicates", "ENABLE_DUPLICATE_SUPPRESSION",
                    f"Rule '{rule.name}' does not suppress duplicates",
                    "Enable duplicate suppression to reduce alert noise",
                ))

        volume = estimate_alert_volume(config)
        if volume > HIGH_VOLUME_THRESHOLD:
            warnings.append(ValidationIssue(
                "rules", "HIGH_VOLUME",
                f"Estimated {volume} alerts per day",
                "Increase evaluation windows or cooldown periods",
            ))

        return AlertValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
            estimated_alert_volume=volume,
            estimated_cost_impact=round(volume * COST_PER_ALERT, 2),
        )

    def get_stats(self) -> dict:
        """Get engine statistics.

        Returns:
            Dict with alert counts by status and severity.
        """
        alerts = self.store.all()
        return {
            "total_alerts": len(alerts),
            "open_alerts": sum(1 for a in alerts if a.is_open()),
            "alerts_by_status": self._count_by(alerts, lambda a: a.status.value),
            "alerts_by_severity": self._count_by(alerts, lambda a: a.severity.value),
        }

    @staticmethod
    def _count_by(items, key_fn) -> dict[str, int]:
        """Count items by a key function."""
        counts: dict[str, int] = {}
        for item in items:
            k = key_fn(item)
            counts[k] = counts.get(k, 0) + 1
        return counts


def estimate_alert_volume(config: AlertConfiguration) -> int:
    """Rough alerts-per-day estimate over enabled rules.

    Each rule contributes evaluations/day * trigger rate, discounted by the
    cooldown share of the day, capped at one alert per cooldown and floored
    at one.
    """
    total = 0.0
    for rule in config.rules:
        if not rule.enabled or rule.evaluation_window <= 0:
            continue
        evaluations = MINUTES_PER_DAY / rule.evaluation_window
        estimate = evaluations * ESTIMATED_TRIGGER_RATE
        estimate *= 1 - max(rule.cooldown_period, 0) / MINUTES_PER_DAY
        cap = MINUTES_PER_DAY / max(rule.cooldown_period, 1)
        total += max(min(estimate, cap), 1.0)
    return round(total)
