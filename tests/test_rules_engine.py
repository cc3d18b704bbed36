"""Tests for rule evaluation, duplicate suppression and the rule engine."""

from datetime import datetime, timedelta, timezone

import pytest

from src.alerts.conditions import ConditionBuilder, ConditionEvaluator
from src.alerts.config import (
    AggregationFunction,
    AlertPriority,
    ComparisonOperator,
    ConfigurationStatus,
    LogicalOperator,
    MetricType,
    MAX_CONFIDENCE,
)
from src.alerts.engine import AlertRuleEngine, estimate_alert_volume
from src.alerts.models import (
    AlertConfiguration,
    AlertContext,
    AlertRule,
    ConditionResult,
    EvaluationContext,
    OccupancyStatus,
    RangeThreshold,
    SensorReading,
    SystemChange,
    WeatherConditions,
)
from src.alerts.rules import (
    RuleEvaluator,
    calculate_confidence,
    classify_trend,
    combine,
    contributing_factors,
    describe,
    suggest_actions,
)
from src.alerts.store import AlertStore

NOW = datetime(2024, 6, 5, 14, 0, tzinfo=timezone.utc)


def _result(met, actual=0.0, threshold=0.0, condition_id="c1"):
    return ConditionResult(
        condition_id=condition_id,
        met=met,
        actual_value=actual,
        threshold_value=threshold,
        deviation=actual - threshold,
        evaluation_method="greater_than",
    )


def _hvac_readings(now=NOW, value=240.0, count=5, sensor_id="hvac-1"):
    return tuple(
        SensorReading(sensor_id, now - timedelta(minutes=i), value, unit="kWh")
        for i in range(count)
    )


def _hvac_context(now=NOW, **kwargs):
    return EvaluationContext(current_time=now, sensor_readings=_hvac_readings(now), **kwargs)


def _hvac_rule(**kwargs):
    kwargs.setdefault("priority", AlertPriority.HIGH)
    kwargs.setdefault("cooldown_period", 30)
    return AlertRule(
        name="HVAC Energy Spike",
        conditions=[ConditionBuilder.simple(
            MetricType.ENERGY_CONSUMPTION, ComparisonOperator.GREATER_THAN, 1000.0,
            aggregation=AggregationFunction.SUM, period=5, sensor_id="hvac-1",
        )],
        **kwargs,
    )


def _hvac_config(name="Main building", **rule_kwargs):
    return AlertConfiguration(name=name, rules=[_hvac_rule(**rule_kwargs)])


class _ExplodingEvaluator(ConditionEvaluator):
    """Raises for conditions whose metric is tagged as broken."""

    def evaluate(self, condition, context):
        if condition.metric.display_name == "broken":
            raise RuntimeError("sensor feed unavailable")
        return super().evaluate(condition, context)


# ═══════════════════════════════════════════════════════════════════════
# Test: Rule helpers
# ═══════════════════════════════════════════════════════════════════════


class TestCombine:
    """Tests for AND/OR combination of condition results."""

    def test_and_requires_all(self):
        assert combine([_result(True), _result(True)], LogicalOperator.AND) is True
        assert combine([_result(True), _result(False)], LogicalOperator.AND) is False

    def test_or_requires_any(self):
        assert combine([_result(False), _result(True)], LogicalOperator.OR) is True
        assert combine([_result(False), _result(False)], LogicalOperator.OR) is False

    def test_no_conditions_never_triggers(self):
        assert combine([], LogicalOperator.AND) is False
        assert combine([], LogicalOperator.OR) is False


class TestConfidence:
    """Tests for the confidence heuristic."""

    def test_zero_conditions(self):
        assert calculate_confidence([]) == 0.0

    def test_half_met_no_deviation(self):
        results = [_result(True, 10.0, 10.0), _result(False, 5.0, 10.0)]
        assert calculate_confidence(results) == pytest.approx(0.75)

    def test_capped(self):
        results = [_result(True, 10_000.0, 1.0) for _ in range(5)]
        assert calculate_confidence(results) == MAX_CONFIDENCE

    def test_always_in_range(self):
        for met in ([True], [False], [True, False, False]):
            results = [_result(m, 50.0, 10.0) for m in met]
            assert 0.0 <= calculate_confidence(results) <= MAX_CONFIDENCE


class TestContributingFactors:
    """Tests for environmental factor detection."""

    def test_business_hours_weekday(self):
        factors = contributing_factors(EvaluationContext(current_time=NOW))
        assert factors == ["Business hours", "Weekday"]

    def test_after_hours_weekend(self):
        saturday_night = datetime(2024, 6, 8, 22, 0, tzinfo=timezone.utc)
        factors = contributing_factors(EvaluationContext(current_time=saturday_night))
        assert factors == ["After hours", "Weekend"]

    def test_weather_and_occupancy(self):
        context = EvaluationContext(
            current_time=NOW,
            weather=WeatherConditions(temperature=35.0),
            occupancy=OccupancyStatus(current=90, capacity=100),
        )
        factors = contributing_factors(context)
        assert "High outside temperature" in factors
        assert "High occupancy" in factors

    def test_cold_weather(self):
        context = EvaluationContext(current_time=NOW, weather=WeatherConditions(temperature=-2.0))
        assert "Low outside temperature" in contributing_factors(context)


class TestDescriptionsAndActions:
    """Tests for alert text generation."""

    def test_trend(self):
        assert classify_trend(110.0, 100.0) == "increasing"
        assert classify_trend(90.0, 100.0) == "decreasing"
        assert classify_trend(104.0, 100.0) == "stable"
        assert classify_trend(50.0, None) == "stable"

    def test_describe_single_condition(self):
        rule = _hvac_rule()
        text = describe(rule, [_result(True, 1200.0, 1000.0)])
        assert text == "HVAC Energy Spike: Value 1200.00 greater than threshold 1000.00"

    def test_describe_multiple_conditions(self):
        rule = _hvac_rule(description="Plant room overload")
        text = describe(rule, [_result(True), _result(True), _result(False)])
        assert text == "Plant room overload: Multiple conditions triggered (2/3)"

    def test_suggested_actions_capped_and_unique(self):
        results = [_result(True, 5000.0, 1000.0, condition_id=f"c{i}") for i in range(3)]
        context = AlertContext(recent_changes=[SystemChange(timestamp=NOW)])
        actions = suggest_actions(results, context)
        assert len(actions) == 5
        assert len(set(actions)) == 5
        assert actions[0] == "Investigate why c0 exceeded threshold by 4000.00"
        assert actions[1] == "Consider immediate investigation due to significant deviation"

    def test_suggested_actions_fell_below(self):
        actions = suggest_actions([_result(True, 8.0, 10.0)], AlertContext())
        assert actions[0] == "Investigate why c1 fell below threshold by 2.00"
        assert "Verify sensor calibration and connectivity" in actions


# ═══════════════════════════════════════════════════════════════════════
# Test: Rule evaluator
# ═══════════════════════════════════════════════════════════════════════


class TestRuleEvaluator:
    """Tests for single-rule evaluation and alert construction."""

    def setup_method(self):
        self.store = AlertStore()
        self.evaluator = RuleEvaluator(ConditionEvaluator(), self.store)

    @pytest.mark.asyncio
    async def test_builds_alert_instance(self):
        config = _hvac_config()
        rule = config.rules[0]
        history = (SensorReading("hvac-1", NOW - timedelta(days=1), 200.0),)
        context = _hvac_context(
            historical_data=history,
            recent_changes=(SystemChange(NOW - timedelta(minutes=2), "AHU-2", "Setpoint raised"),),
        )

        alert = await self.evaluator.evaluate(config, rule, context)

        assert alert.severity == AlertPriority.HIGH
        assert alert.title == "HVAC Energy Spike - Main building"
        assert alert.triggered_at == NOW
        assert alert.metric_values[0].value == 1200.0
        assert alert.metric_values[0].threshold == 1000.0
        assert alert.metric_values[0].evaluation_window == "5 minutes"
        assert "Business hours" in alert.metric_values[0].contributing_factors
        assert alert.context.sensor_data[0].historical_average == 200.0
        assert alert.context.sensor_data[0].trend == "increasing"
        assert len(alert.context.recent_changes) == 1
        assert 0 < alert.confidence <= MAX_CONFIDENCE
        assert self.store.get(alert.id) is alert

    @pytest.mark.asyncio
    async def test_not_triggered(self):
        config = _hvac_config()
        context = EvaluationContext(current_time=NOW, sensor_readings=_hvac_readings(value=10.0))
        assert await self.evaluator.evaluate(config, config.rules[0], context) is None
        assert self.store.all() == []

    @pytest.mark.asyncio
    async def test_duplicate_within_cooldown_returns_same_alert(self):
        config = _hvac_config()
        rule = config.rules[0]

        first = await self.evaluator.evaluate(config, rule, _hvac_context())
        second = await self.evaluator.evaluate(
            config, rule, _hvac_context(NOW + timedelta(minutes=10)),
        )

        assert second.id == first.id
        assert len(self.store.all()) == 1

    @pytest.mark.asyncio
    async def test_new_alert_after_cooldown(self):
        config = _hvac_config()
        rule = config.rules[0]

        first = await self.evaluator.evaluate(config, rule, _hvac_context())
        later = await self.evaluator.evaluate(
            config, rule, _hvac_context(NOW + timedelta(minutes=31)),
        )

        assert later.id != first.id
        assert first.id in later.context.related_alerts

    @pytest.mark.asyncio
    async def test_resolved_alert_is_not_a_duplicate(self):
        config = _hvac_config()
        rule = config.rules[0]

        first = await self.evaluator.evaluate(config, rule, _hvac_context())
        first.resolve("ops")
        second = await self.evaluator.evaluate(config, rule, _hvac_context())

        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_suppression_disabled(self):
        config = _hvac_config(suppress_duplicates=False)
        rule = config.rules[0]

        first = await self.evaluator.evaluate(config, rule, _hvac_context())
        second = await self.evaluator.evaluate(config, rule, _hvac_context())

        assert second.id != first.id


# ═══════════════════════════════════════════════════════════════════════
# Test: Rule engine
# ═══════════════════════════════════════════════════════════════════════


class TestAlertRuleEngine:
    """Tests for batch evaluation."""

    def setup_method(self):
        self.engine = AlertRuleEngine()

    @pytest.mark.asyncio
    async def test_hvac_energy_spike(self):
        config = _hvac_config()
        alerts = await self.engine.evaluate_alerts([config], _hvac_context())

        assert len(alerts) == 1
        assert alerts[0].severity == AlertPriority.HIGH
        assert alerts[0].metric_values[0].value == 1200

    @pytest.mark.asyncio
    async def test_configuration_order_preserved(self):
        configs = [_hvac_config(name=f"Building {i}") for i in range(5)]
        alerts = await self.engine.evaluate_alerts(configs, _hvac_context())
        assert [a.configuration_id for a in alerts] == [c.id for c in configs]

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        engine = AlertRuleEngine(concurrency=2)
        configs = [_hvac_config(name=f"Building {i}") for i in range(4)]
        alerts = await engine.evaluate_alerts(configs, _hvac_context())
        assert len(alerts) == 4

    @pytest.mark.asyncio
    async def test_inactive_configurations_skipped(self):
        paused = _hvac_config(name="Paused")
        paused.status = ConfigurationStatus.PAUSED
        archived = _hvac_config(name="Archived")
        archived.status = ConfigurationStatus.ARCHIVED

        alerts = await self.engine.evaluate_alerts([paused, archived], _hvac_context())
        assert alerts == []

    @pytest.mark.asyncio
    async def test_disabled_rule_skipped(self):
        config = _hvac_config(enabled=False)
        assert await self.engine.evaluate_alerts([config], _hvac_context()) == []

    @pytest.mark.asyncio
    async def test_failing_rule_does_not_abort_batch(self):
        engine = AlertRuleEngine(condition_evaluator=_ExplodingEvaluator())
        broken = _hvac_config(name="Broken")
        broken.rules[0].conditions[0].metric.display_name = "broken"
        broken.rules.append(_hvac_rule())
        healthy = _hvac_config(name="Healthy")

        alerts = await engine.evaluate_alerts([broken, healthy], _hvac_context())

        assert [a.configuration_id for a in alerts] == [broken.id, healthy.id]
        assert alerts[0].rule_id == broken.rules[1].id

    @pytest.mark.asyncio
    async def test_or_rule(self):
        rule = _hvac_rule(logical_operator=LogicalOperator.OR)
        rule.conditions.append(ConditionBuilder.simple(
            MetricType.TEMPERATURE, ComparisonOperator.GREATER_THAN, 30.0,
        ))
        config = AlertConfiguration(name="Either", rules=[rule])

        alerts = await self.engine.evaluate_alerts([config], _hvac_context())

        assert len(alerts) == 1
        assert len(alerts[0].metric_values) == 2

    @pytest.mark.asyncio
    async def test_and_rule_not_met(self):
        rule = _hvac_rule(logical_operator=LogicalOperator.AND)
        rule.conditions.append(ConditionBuilder.simple(
            MetricType.TEMPERATURE, ComparisonOperator.GREATER_THAN, 30.0,
        ))
        config = AlertConfiguration(name="Both", rules=[rule])
        assert await self.engine.evaluate_alerts([config], _hvac_context()) == []

    @pytest.mark.asyncio
    async def test_stats(self):
        await self.engine.evaluate_alerts([_hvac_config()], _hvac_context())
        stats = self.engine.get_stats()
        assert stats["total_alerts"] == 1
        assert stats["open_alerts"] == 1
        assert stats["alerts_by_severity"] == {"high": 1}
        assert stats["alerts_by_status"] == {"triggered": 1}


class TestValidation:
    """Tests for configuration validation."""

    def setup_method(self):
        self.engine = AlertRuleEngine()

    def _codes(self, issues):
        return {(i.field, i.code) for i in issues}

    def test_valid_configuration(self):
        validation = self.engine.validate_configuration(_hvac_config())
        assert validation.is_valid
        assert validation.errors == []

    def test_missing_name_and_rules(self):
        validation = self.engine.validate_configuration(AlertConfiguration(name=" "))
        assert not validation.is_valid
        assert self._codes(validation.errors) == {("name", "REQUIRED"), ("rules", "REQUIRED")}

    def test_rule_errors(self):
        rule = AlertRule(name="Empty", evaluation_window=0, cooldown_period=-5)
        validation = self.engine.validate_configuration(AlertConfiguration(name="x", rules=[rule]))
        codes = self._codes(validation.errors)
        assert ("rules[0].conditions", "REQUIRED") in codes
        assert ("rules[0].evaluation_window", "INVALID_VALUE") in codes
        assert ("rules[0].cooldown_period", "INVALID_VALUE") in codes

    def test_inverted_range(self):
        rule = _hvac_rule()
        rule.conditions[0] = ConditionBuilder.simple(
            MetricType.TEMPERATURE, ComparisonOperator.BETWEEN, 18.0, secondary_threshold=26.0,
        )
        rule.conditions[0].threshold = RangeThreshold(low=30.0, high=20.0)
        validation = self.engine.validate_configuration(AlertConfiguration(name="x", rules=[rule]))
        assert ("rules[0].conditions[0].threshold", "INVALID_RANGE") in self._codes(validation.errors)

    def test_zero_threshold_warning(self):
        rule = _hvac_rule()
        rule.conditions[0] = ConditionBuilder.simple(
            MetricType.OCCUPANCY, ComparisonOperator.GREATER_THAN, 0.0,
        )
        validation = self.engine.validate_configuration(AlertConfiguration(name="x", rules=[rule]))
        assert validation.is_valid
        assert ("rules[0].conditions[0].threshold", "SENSITIVE_THRESHOLD") in self._codes(
            validation.warnings
        )

    def test_suggestions(self):
        config = _hvac_config(cooldown_period=0, suppress_duplicates=False)
        validation = self.engine.validate_configuration(config)
        codes = self._codes(validation.suggestions)
        assert ("rules[0].cooldown_period", "ADD_COOLDOWN") in codes
        assert ("rules[0].suppress_duplicates", "ENABLE_DUPLICATE_SUPPRESSION") in codes

    def test_volume_and_cost_estimate(self):
        validation = self.engine.validate_configuration(_hvac_config())
        assert validation.estimated_alert_volume == 14
        assert validation.estimated_cost_impact == 1.4

    def test_high_volume_warning(self):
        config = AlertConfiguration(
            name="Noisy",
            rules=[_hvac_rule(evaluation_window=1, cooldown_period=0) for _ in range(2)],
        )
        validation = self.engine.validate_configuration(config)
        assert validation.estimated_alert_volume == 144
        assert ("rules", "HIGH_VOLUME") in self._codes(validation.warnings)

    def test_volume_floor_and_disabled_rules(self):
        quiet = AlertConfiguration(name="q", rules=[_hvac_rule(evaluation_window=1440)])
        assert estimate_alert_volume(quiet) == 1
        off = AlertConfiguration(name="off", rules=[_hvac_rule(enabled=False)])
        assert estimate_alert_volume(off) == 0
