"""Tests for the alert manager, evaluation worker, JSON loader and settings."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.alerts.channels import ChannelDispatcher
from src.alerts.config import (
    AlertCategory,
    AlertingConfig,
    AlertInstanceStatus,
    AlertPriority,
    ChannelType,
    ComparisonOperator,
    ConfigurationStatus,
    FrequencyScope,
    MetricType,
    NotificationStatus,
)
from src.alerts.exceptions import ConfigurationValidationError
from src.alerts.loader import (
    load_configurations,
    load_snapshot,
    parse_configuration,
    parse_configurations,
    parse_snapshot,
)
from src.alerts.manager import AlertManager
from src.alerts.models import (
    AlertConfiguration,
    EvaluationContext,
    RangeThreshold,
    SensorReading,
)
from src.alerts.notification_models import (
    ContactMethod,
    DeliveryResult,
    EscalationPolicy,
    EscalationStage,
    NotificationChannel,
    NotificationRecipient,
    NotificationSettings,
    RecipientPreferences,
)
from src.alerts.router import NotificationRouter
from src.alerts.worker import EvaluationWorker, SnapshotProvider, StaticSnapshotProvider
from src.settings import Settings, get_settings

NOW = datetime(2024, 6, 5, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class FakeDispatcher(ChannelDispatcher):
    """Records email deliveries; fails every one when asked."""

    channel_type = ChannelType.EMAIL

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send(self, recipient, template, alert, config):
        self.sent.append((recipient, template, alert.id))
        if self.fail:
            return DeliveryResult(success=False, error="mailbox full")
        return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")

    def validate_recipient(self, recipient):
        return True


def _hvac_context(now=NOW, value=240.0):
    return EvaluationContext(
        current_time=now,
        sensor_readings=tuple(
            SensorReading("hvac-1", now - timedelta(minutes=i), value, unit="kWh")
            for i in range(5)
        ),
    )


def _notification_settings():
    ops = NotificationRecipient(
        id="ops",
        contact_methods=[ContactMethod(ChannelType.EMAIL, "ops@example.com", verified=True)],
        notification_preferences=RecipientPreferences(
            channels_by_priority={p: [ChannelType.EMAIL] for p in AlertPriority},
        ),
    )
    manager = NotificationRecipient(
        id="manager",
        contact_methods=[ContactMethod(ChannelType.EMAIL, "boss@example.com", verified=True)],
    )
    return NotificationSettings(
        channels=[NotificationChannel(ChannelType.EMAIL)],
        recipients=[ops, manager],
    )


def _policy():
    return EscalationPolicy(
        name="Facilities",
        stages=[EscalationStage(
            level=1, delay_minutes=30, recipients=["manager"], channels=[ChannelType.EMAIL],
        )],
    )


def _manager(dispatcher=None, clock=None):
    clock = clock or FakeClock()
    config = AlertingConfig()
    router = NotificationRouter(
        dispatchers={ChannelType.EMAIL: dispatcher or FakeDispatcher()},
        config=config,
        clock=clock,
    )
    return AlertManager(router=router, config=config, clock=clock)


# ═══════════════════════════════════════════════════════════════════════
# Test: Configuration lifecycle
# ═══════════════════════════════════════════════════════════════════════


class TestConfigurationLifecycle:
    """Tests for configuration management."""

    def setup_method(self):
        self.manager = _manager()

    def test_create_from_template(self):
        config = self.manager.create_from_template(
            "hvac_energy_spike", name="Plant room", sensor_id="hvac-1", user_id="u1",
        )
        rule = config.rules[0]
        assert config.name == "Plant room"
        assert config.metadata.category == AlertCategory.ENERGY_EFFICIENCY
        assert rule.priority == AlertPriority.HIGH
        assert rule.cooldown_period == 30
        assert rule.conditions[0].metric.sensor_id == "hvac-1"
        assert self.manager.get_configuration(config.id) is config

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            self.manager.create_from_template("does_not_exist")

    def test_available_templates(self):
        templates = self.manager.get_available_templates()
        assert "hvac_energy_spike" in templates
        assert "temperature_out_of_range" in templates

    def test_invalid_configuration_rejected(self):
        with pytest.raises(ConfigurationValidationError) as exc_info:
            self.manager.add_configuration(AlertConfiguration(name=""))
        assert not exc_info.value.validation.is_valid
        assert self.manager.list_configurations() == []

    def test_recipients_indexed(self):
        self.manager.create_from_template(
            "hvac_energy_spike", notification_settings=_notification_settings(),
        )
        assert set(self.manager.recipients) == {"ops", "manager"}
        assert self.manager.escalations.recipients is self.manager.recipients

    def test_status_transitions(self):
        config = self.manager.create_from_template("high_humidity", user_id="u1")
        self.manager.pause_configuration(config.id)
        assert config.status == ConfigurationStatus.PAUSED
        self.manager.activate_configuration(config.id)
        assert config.status == ConfigurationStatus.ACTIVE
        self.manager.archive_configuration(config.id)
        assert self.manager.list_configurations(status=ConfigurationStatus.ARCHIVED) == [config]
        assert self.manager.pause_configuration("missing") is None

    def test_list_by_owner(self):
        mine = self.manager.create_from_template("high_humidity", user_id="u1")
        self.manager.create_from_template("high_humidity", user_id="u2")
        assert self.manager.list_configurations(user_id="u1") == [mine]

    def test_update_configuration(self):
        config = self.manager.create_from_template("high_humidity")
        updated = self.manager.update_configuration(config.id, name="Basement humidity")
        assert updated.name == "Basement humidity"
        assert self.manager.get_configuration(config.id).name == "Basement humidity"

    def test_update_rejects_invalid_result(self):
        config = self.manager.create_from_template("high_humidity")
        with pytest.raises(ConfigurationValidationError):
            self.manager.update_configuration(config.id, rules=[])
        assert self.manager.get_configuration(config.id).rules

    def test_update_unknown_field(self):
        config = self.manager.create_from_template("high_humidity")
        with pytest.raises(ValueError):
            self.manager.update_configuration(config.id, status=ConfigurationStatus.PAUSED)
        with pytest.raises(KeyError):
            self.manager.update_configuration("missing", name="x")

    def test_enable_disable_rule(self):
        config = self.manager.create_from_template("high_humidity")
        rule_id = config.rules[0].id
        assert self.manager.disable_rule(config.id, rule_id).enabled is False
        assert self.manager.enable_rule(config.id, rule_id).enabled is True
        assert self.manager.disable_rule(config.id, "missing") is None


# ═══════════════════════════════════════════════════════════════════════
# Test: Evaluation passes
# ═══════════════════════════════════════════════════════════════════════


class TestEvaluationPass:
    """Tests for run_pass and the alert lifecycle."""

    @pytest.mark.asyncio
    async def test_pass_notifies_new_alerts_once(self):
        email = FakeDispatcher()
        manager = _manager(email)
        manager.create_from_template(
            "hvac_energy_spike", sensor_id="hvac-1",
            notification_settings=_notification_settings(),
        )

        first = await manager.run_pass(_hvac_context())
        second = await manager.run_pass(_hvac_context())

        assert len(first) == 1
        assert second == []
        assert [s[0] for s in email.sent] == ["ops@example.com"]
        assert first[0].notification_log[0].status.value == "sent"
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_paused_configuration_not_evaluated(self):
        manager = _manager()
        config = manager.create_from_template("hvac_energy_spike", sensor_id="hvac-1")
        manager.pause_configuration(config.id)
        assert await manager.run_pass(_hvac_context()) == []

    @pytest.mark.asyncio
    async def test_failed_delivery_schedules_retry(self):
        manager = _manager(FakeDispatcher(fail=True))
        manager.create_from_template(
            "hvac_energy_spike", sensor_id="hvac-1",
            notification_settings=_notification_settings(),
        )

        alerts = await manager.run_pass(_hvac_context())

        log = alerts[0].notification_log[0]
        assert f"retry:{log.id}" in manager.scheduler.pending(alerts[0].id)
        await manager.shutdown()
        assert manager.scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_escalation_cancelled_on_acknowledge(self):
        manager = _manager()
        manager.create_from_template(
            "hvac_energy_spike", sensor_id="hvac-1",
            notification_settings=_notification_settings(),
            escalation_policy=_policy(),
        )

        alert = (await manager.run_pass(_hvac_context()))[0]
        assert manager.scheduler.pending(alert.id) == [f"escalation:{alert.id}:1"]

        assert manager.acknowledge(alert.id, "ops") is alert
        assert alert.status == AlertInstanceStatus.ACKNOWLEDGED
        assert alert.acknowledged_by == "ops"
        assert manager.scheduler.pending(alert.id) == []
        assert manager.acknowledge(alert.id, "ops") is None
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_failed_escalation_delivery_is_retried(self):
        clock = FakeClock()
        manager = _manager(FakeDispatcher(fail=True), clock)
        config = manager.create_from_template(
            "hvac_energy_spike", sensor_id="hvac-1",
            notification_settings=_notification_settings(),
            escalation_policy=_policy(),
        )
        alert = (await manager.run_pass(_hvac_context()))[0]
        first_wave = alert.notification_log[0]

        # Stage 1 is due 30 minutes after the first wave
        clock.now += timedelta(minutes=31)
        manager.escalations.schedule_escalation(alert, config.escalation_policy)
        await asyncio.sleep(0.05)

        escalated = [log for log in alert.notification_log if log.escalation_level == 1]
        assert alert.escalation_level == 1
        assert len(escalated) == 1
        assert escalated[0].status == NotificationStatus.FAILED
        assert escalated[0].recipient == "boss@example.com"
        pending = manager.scheduler.pending(alert.id)
        assert f"retry:{escalated[0].id}" in pending
        assert f"retry:{first_wave.id}" in pending
        assert f"escalation:{alert.id}:1" not in pending
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_resolve_and_false_positive(self):
        manager = _manager()
        manager.create_from_template("hvac_energy_spike", sensor_id="hvac-1")
        manager.create_from_template("hvac_energy_spike", name="Second", sensor_id="hvac-1")
        first, second = await manager.run_pass(_hvac_context())

        resolved = manager.resolve(first.id, "ops", notes="Filter replaced")
        assert resolved.status == AlertInstanceStatus.RESOLVED
        assert resolved.resolution_notes == "Filter replaced"
        assert manager.resolve(first.id, "ops") is None

        manager.mark_false_positive(second.id, "ops")
        assert second.false_positive is True
        assert manager.get_open_alerts() == []

    @pytest.mark.asyncio
    async def test_stats(self):
        manager = _manager()
        manager.create_from_template("hvac_energy_spike", sensor_id="hvac-1")
        await manager.run_pass(_hvac_context())
        stats = manager.get_stats()
        assert stats["total_alerts"] == 1
        assert stats["total_configurations"] == 1
        assert stats["active_configurations"] == 1
        assert stats["dead_letters"] == 0


# ═══════════════════════════════════════════════════════════════════════
# Test: Worker
# ═══════════════════════════════════════════════════════════════════════


class _FailingProvider:
    async def get_evaluation_context(self, current_time):
        raise ConnectionError("historian unavailable")


class TestEvaluationWorker:
    """Tests for the periodic evaluation loop."""

    def test_static_provider_is_a_snapshot_provider(self):
        assert isinstance(StaticSnapshotProvider(_hvac_context()), SnapshotProvider)

    @pytest.mark.asyncio
    async def test_run_once(self):
        manager = _manager()
        manager.create_from_template("hvac_energy_spike", sensor_id="hvac-1")
        worker = EvaluationWorker(manager, StaticSnapshotProvider(_hvac_context()), 0)
        alerts = await worker.run_once()
        assert len(alerts) == 1
        assert worker.passes_run == 1

    @pytest.mark.asyncio
    async def test_run_forever_stops_after_max_passes(self):
        worker = EvaluationWorker(_manager(), StaticSnapshotProvider(_hvac_context()), 0)
        await worker.run_forever(max_passes=3)
        assert worker.passes_run == 3
        assert worker.is_running is False

    @pytest.mark.asyncio
    async def test_failing_pass_does_not_stop_loop(self):
        worker = EvaluationWorker(_manager(), _FailingProvider(), 0)
        await worker.run_forever(max_passes=2)
        assert worker.passes_failed == 2

    @pytest.mark.asyncio
    async def test_start_stop(self):
        worker = EvaluationWorker(_manager(), StaticSnapshotProvider(_hvac_context()), 0.01)
        await worker.start()
        assert worker.is_running
        await asyncio.sleep(0.05)
        await worker.stop()
        assert not worker.is_running
        assert worker.passes_run >= 1

    def test_interval_defaults_to_config(self):
        worker = EvaluationWorker(_manager(), StaticSnapshotProvider(_hvac_context()))
        assert worker.interval_seconds == 300


# ═══════════════════════════════════════════════════════════════════════
# Test: Loader
# ═══════════════════════════════════════════════════════════════════════


CONFIG_DOC = {
    "id": "cfg-hq",
    "name": "HQ comfort",
    "user_id": "u1",
    "rules": [{
        "id": "rule-temp",
        "name": "Zone temperature",
        "priority": "medium",
        "conditions": [{
            "metric": {"type": "temperature", "sensor_id": "zone-3"},
            "operator": "outside_range",
            "threshold": {"value": 18, "secondary_value": 26},
            "time_aggregation": {"function": "average", "period": 15},
        }],
    }],
    "notification_settings": {
        "channels": [{"type": "email"}],
        "recipients": [{
            "id": "ops",
            "contact_methods": [{"type": "email", "value": "ops@example.com", "verified": True}],
            "notification_preferences": {"channels_by_priority": {"medium": ["email"]}},
            "on_call_schedule": {
                "timezone": "Europe/London",
                "schedules": [{"days_of_week": [1, 2, 3, 4, 5], "start_time": "08:00", "end_time": "18:00"}],
            },
        }],
        "frequency_limits": {"max_alerts_per_hour": 5, "scope": "recipient"},
        "quiet_hours": {"enabled": True},
    },
    "escalation_policy": {"stages": [{"level": 1, "delay_minutes": 30, "recipients": ["ops"]}]},
}

SNAPSHOT_DOC = {
    "current_time": "2024-06-05T14:00:00",
    "sensor_readings": [
        {"sensor_id": "zone-3", "timestamp": "2024-06-05T13:55:00", "value": 28.5, "unit": "C"},
    ],
    "weather": {"temperature": 31.0},
    "occupancy": {"current": 40, "capacity": 100},
}


class TestLoader:
    """Tests for JSON document parsing."""

    def test_parse_configuration(self):
        config = parse_configuration(CONFIG_DOC)
        condition = config.rules[0].conditions[0]
        recipient = config.notification_settings.recipients[0]

        assert config.id == "cfg-hq"
        assert config.rules[0].id == "rule-temp"
        assert condition.operator == ComparisonOperator.OUTSIDE_RANGE
        assert condition.threshold == RangeThreshold(low=18.0, high=26.0)
        assert condition.metric.type == MetricType.TEMPERATURE
        assert recipient.notification_preferences.wants(AlertPriority.MEDIUM, ChannelType.EMAIL)
        assert recipient.on_call_schedule.timezone == "Europe/London"
        assert config.notification_settings.frequency_limits.scope == FrequencyScope.RECIPIENT
        assert config.notification_settings.quiet_hours.enabled is True
        assert config.escalation_policy.stages[0].delay_minutes == 30

    def test_range_requires_secondary_value(self):
        doc = json.loads(json.dumps(CONFIG_DOC))
        del doc["rules"][0]["conditions"][0]["threshold"]["secondary_value"]
        with pytest.raises(ValueError):
            parse_configuration(doc)

    def test_invalid_enum_rejected(self):
        doc = json.loads(json.dumps(CONFIG_DOC))
        doc["rules"][0]["conditions"][0]["operator"] = "roughly"
        with pytest.raises(ValidationError):
            parse_configuration(doc)

    def test_invalid_day_of_week(self):
        doc = json.loads(json.dumps(CONFIG_DOC))
        schedule = doc["notification_settings"]["recipients"][0]["on_call_schedule"]
        schedule["schedules"][0]["days_of_week"] = [7]
        with pytest.raises(ValidationError):
            parse_configuration(doc)

    def test_parse_configurations_shapes(self):
        assert len(parse_configurations(CONFIG_DOC)) == 1
        assert len(parse_configurations([CONFIG_DOC, CONFIG_DOC])) == 2
        assert len(parse_configurations({"configurations": [CONFIG_DOC]})) == 1

    def test_parse_snapshot_naive_times_are_utc(self):
        context = parse_snapshot(SNAPSHOT_DOC)
        assert context.current_time == NOW
        assert context.sensor_readings[0].timestamp.tzinfo is not None
        assert context.weather.temperature == 31.0
        assert context.occupancy.ratio == 0.4

    def test_days_only_on_call_period_covers_whole_days(self):
        doc = json.loads(json.dumps(CONFIG_DOC))
        recipient = doc["notification_settings"]["recipients"][0]
        recipient["on_call_schedule"] = {"schedules": [{"days_of_week": [1, 2, 3, 4, 5]}]}

        on_call = parse_configuration(doc).notification_settings.recipients[0]

        assert on_call.is_on_call(NOW)
        assert on_call.is_on_call(NOW.replace(hour=2))
        assert not on_call.is_on_call(NOW + timedelta(days=3))

    def test_load_from_files(self, tmp_path):
        configs_path = tmp_path / "configs.json"
        snapshot_path = tmp_path / "snapshot.json"
        configs_path.write_text(json.dumps({"configurations": [CONFIG_DOC]}))
        snapshot_path.write_text(json.dumps(SNAPSHOT_DOC))

        configs = load_configurations(configs_path)
        context = load_snapshot(snapshot_path)

        assert configs[0].name == "HQ comfort"
        assert len(context.sensor_readings) == 1

    @pytest.mark.asyncio
    async def test_loaded_documents_trigger(self):
        manager = _manager()
        manager.add_configuration(parse_configuration(CONFIG_DOC))
        alerts = await manager.run_pass(parse_snapshot(SNAPSHOT_DOC))
        assert len(alerts) == 1
        assert alerts[0].metric_values[0].value == 28.5
        assert "High outside temperature" in alerts[0].metric_values[0].contributing_factors
        await manager.shutdown()


# ═══════════════════════════════════════════════════════════════════════
# Test: Settings
# ═══════════════════════════════════════════════════════════════════════


class TestSettings:
    """Tests for environment-backed settings."""

    def test_defaults(self):
        settings = Settings()
        assert settings.evaluation_interval_seconds == 300
        assert settings.max_delivery_retries == 3
        assert settings.smtp_host == ""

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ALERTS_SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("ALERTS_DISPATCH_TIMEOUT_SECONDS", "2.5")
        settings = get_settings()
        assert settings.smtp_host == "smtp.example.com"
        assert settings.dispatch_timeout_seconds == 2.5

    def test_alerting_config_from_settings(self, monkeypatch):
        monkeypatch.setenv("ALERTS_TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setenv("ALERTS_DASHBOARD_URL", "")
        config = AlertingConfig.from_settings(get_settings())
        assert config.sms.account_sid == "AC123"
        assert config.dashboard_url is None
        assert config.email.smtp_port == 587
