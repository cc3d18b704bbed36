"""Alert management layer.

Configuration lifecycle, template instantiation, evaluation passes with
notification fan-out, and alert acknowledgment/resolution.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Mapping, Optional

from src.alerts.conditions import ConditionBuilder
from src.alerts.config import (
    ALERT_TEMPLATES,
    AlertingConfig,
    AlertPriority,
    ConfigurationStatus,
    DEFAULT_ALERTING_CONFIG,
    NotificationStatus,
)
from src.alerts.engine import AlertRuleEngine
from src.alerts.escalation import EscalationScheduler
from src.alerts.exceptions import AlertingError, ConfigurationValidationError
from src.alerts.models import (
    AlertConfiguration,
    AlertInstance,
    AlertMetadata,
    AlertRule,
    AlertValidation,
    EvaluationContext,
)
from src.alerts.notification_models import (
    EscalationPolicy,
    NotificationLog,
    NotificationRecipient,
    NotificationSettings,
    _utc_now,
)
from src.alerts.retry import RetryManager
from src.alerts.router import NotificationRouter
from src.alerts.scheduler import TaskScheduler
from src.alerts.store import AlertStore
from src.logging_config import RequestContext, alert_context

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWNS = {
    AlertPriority.CRITICAL: 15,
    AlertPriority.HIGH: 30,
    AlertPriority.MEDIUM: 60,
    AlertPriority.LOW: 120,
    AlertPriority.INFO: 240,
}

_UPDATABLE_FIELDS = {
    "name",
    "description",
    "rules",
    "notification_settings",
    "escalation_policy",
    "metadata",
}


class AlertManager:
    """High-level alert management.

    Owns the configurations, runs evaluation passes, and wires the router,
    retry manager and escalation scheduler around the rule engine.

    Example:
        manager = AlertManager(config=AlertingConfig.from_settings(get_settings()))
        manager.create_from_template("hvac_energy_spike", sensor_id="hvac-1")
        new_alerts = await manager.run_pass(context)
    """

    def __init__(
        self,
        engine: Optional[AlertRuleEngine] = None,
        router: Optional[NotificationRouter] = None,
        scheduler: Optional[TaskScheduler] = None,
        config: Optional[AlertingConfig] = None,
        recipients: Optional[Mapping[str, NotificationRecipient]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or DEFAULT_ALERTING_CONFIG
        self.clock = clock or _utc_now
        self.engine = engine or AlertRuleEngine()
        self.router = router or NotificationRouter(config=self.config, clock=self.clock)
        self.scheduler = scheduler or TaskScheduler()
        self.recipients: dict[str, NotificationRecipient] = dict(recipients or {})
        self.escalations = EscalationScheduler(
            self.router, self.recipients, self.scheduler, self.clock,
            on_logs=self.schedule_retries,
        )
        self.retries = RetryManager(
            self.router, self.clock, self.config.retry_backoff_cap_seconds,
        )
        self._configurations: dict[str, AlertConfiguration] = {}

    @property
    def store(self) -> AlertStore:
        return self.engine.store

    # ── Configurations ───────────────────────────────────────────────

    def add_configuration(self, configuration: AlertConfiguration) -> AlertValidation:
        """Validate and register a configuration.

        Returns:
            The validation result (warnings and suggestions included).

        Raises:
            ConfigurationValidationError: If the configuration is invalid.
        """
        validation = self.engine.validate_configuration(configuration)
        if not validation.is_valid:
            raise ConfigurationValidationError(validation)

        self._configurations[configuration.id] = configuration
        self._index_recipients(configuration)
        logger.info(
            "Added configuration %s (%s) with %d rules",
            configuration.id,
            configuration.name,
            len(configuration.rules),
        )
        return validation

    def _index_recipients(self, configuration: AlertConfiguration) -> None:
        self.recipients.update(configuration.notification_settings.recipient_directory())

    def get_configuration(self, configuration_id: str) -> Optional[AlertConfiguration]:
        return self._configurations.get(configuration_id)

    def list_configurations(
        self,
        status: Optional[ConfigurationStatus] = None,
        user_id: Optional[str] = None,
    ) -> list[AlertConfiguration]:
        """List configurations, optionally filtered by status and owner."""
        configs = list(self._configurations.values())
        if status is not None:
            configs = [c for c in configs if c.status == status]
        if user_id:
            configs = [c for c in configs if c.user_id == user_id]
        return configs

    def update_configuration(self, configuration_id: str, **changes) -> AlertConfiguration:
        """Update configuration fields.

        Args:
            configuration_id: Configuration to update.
            **changes: Fields to update (name, description, rules,
                notification_settings, escalation_policy, metadata).

        Returns:
            The updated configuration.

        Raises:
            KeyError: If the configuration does not exist.
            ValueError: If an unknown field is passed.
            ConfigurationValidationError: If the result is invalid; the
                stored configuration is left unchanged.
        """
        current = self._configurations.get(configuration_id)
        if current is None:
            raise KeyError(configuration_id)

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        updated = replace(current, **changes, updated_at=self.clock())
        validation = self.engine.validate_configuration(updated)
        if not validation.is_valid:
            raise ConfigurationValidationError(validation)

        self._configurations[configuration_id] = updated
        self._index_recipients(updated)
        logger.info("Updated configuration %s: %s", configuration_id, sorted(changes))
        return updated

    def _set_status(
        self,
        configuration_id: str,
        status: ConfigurationStatus,
    ) -> Optional[AlertConfiguration]:
        configuration = self._configurations.get(configuration_id)
        if configuration is None:
            return None
        configuration.status = status
        configuration.updated_at = self.clock()
        logger.info("Configuration %s is now %s", configuration_id, status.value)
        return configuration

    def pause_configuration(self, configuration_id: str) -> Optional[AlertConfiguration]:
        return self._set_status(configuration_id, ConfigurationStatus.PAUSED)

    def activate_configuration(self, configuration_id: str) -> Optional[AlertConfiguration]:
        return self._set_status(configuration_id, ConfigurationStatus.ACTIVE)

    def archive_configuration(self, configuration_id: str) -> Optional[AlertConfiguration]:
        """Soft-delete a configuration; it is kept but never evaluated."""
        return self._set_status(configuration_id, ConfigurationStatus.ARCHIVED)

    def set_rule_enabled(
        self,
        configuration_id: str,
        rule_id: str,
        enabled: bool,
    ) -> Optional[AlertRule]:
        """Enable or disable a rule. Takes effect on the next pass."""
        configuration = self._configurations.get(configuration_id)
        if configuration is None:
            return None
        rule = configuration.get_rule(rule_id)
        if rule is None:
            return None
        rule.enabled = enabled
        configuration.updated_at = self.clock()
        return rule

    def enable_rule(self, configuration_id: str, rule_id: str) -> Optional[AlertRule]:
        return self.set_rule_enabled(configuration_id, rule_id, True)

    def disable_rule(self, configuration_id: str, rule_id: str) -> Optional[AlertRule]:
        return self.set_rule_enabled(configuration_id, rule_id, False)

    def get_available_templates(self) -> dict[str, dict]:
        """Get all available alert templates."""
        return dict(ALERT_TEMPLATES)

    def create_from_template(
        self,
        template_name: str,
        name: Optional[str] = None,
        sensor_id: Optional[str] = None,
        threshold_override: Optional[float] = None,
        notification_settings: Optional[NotificationSettings] = None,
        escalation_policy: Optional[EscalationPolicy] = None,
        user_id: str = "",
        organization_id: str = "",
    ) -> AlertConfiguration:
        """Create and register a configuration from a pre-built template.

        Args:
            template_name: Template key.
            name: Configuration name; defaults to the template name.
            sensor_id: Restrict the condition to one sensor.
            threshold_override: Override default threshold.
            notification_settings: Routing settings.
            escalation_policy: Optional escalation policy.
            user_id: Owner user ID.
            organization_id: Owner organization ID.

        Returns:
            Created AlertConfiguration.

        Raises:
            ValueError: If template not found.
        """
        template = ALERT_TEMPLATES.get(template_name)
        if not template:
            raise ValueError(f"Unknown template: {template_name}")

        condition = ConditionBuilder.from_template(
            template_name, sensor_id=sensor_id, threshold_override=threshold_override,
        )
        priority = template.get("priority", AlertPriority.MEDIUM)
        rule = AlertRule(
            name=template["name"],
            description=template.get("description", ""),
            conditions=[condition],
            priority=priority,
            evaluation_window=template.get("period", 5),
            cooldown_period=DEFAULT_COOLDOWNS.get(priority, 60),
        )
        configuration = AlertConfiguration(
            name=name or template["name"],
            description=template.get("description", ""),
            rules=[rule],
            notification_settings=notification_settings or NotificationSettings(),
            escalation_policy=escalation_policy,
            metadata=AlertMetadata(category=template["category"]),
            user_id=user_id,
            organization_id=organization_id,
        )
        self.add_configuration(configuration)
        logger.info("Created configuration from template '%s'", template_name)
        return configuration

    # ── Evaluation ───────────────────────────────────────────────────

    async def run_pass(self, context: EvaluationContext) -> list[AlertInstance]:
        """Evaluate all configurations and notify for new alerts.

        Args:
            context: Evaluation snapshot.

        Returns:
            Alerts created by this pass (duplicates within cooldown excluded).
        """
        with RequestContext(extra={"operation": "evaluation_pass"}) as ctx:
            known = {a.id for a in self.store.all()}
            alerts = await self.engine.evaluate_alerts(
                list(self._configurations.values()), context,
            )
            new_alerts = list({a.id: a for a in alerts if a.id not in known}.values())

            await asyncio.gather(*(self._notify(alert) for alert in new_alerts))

            logger.info(
                "Evaluation pass %s: %d new alerts in %.1fms",
                ctx.request_id,
                len(new_alerts),
                ctx.elapsed_ms,
            )
            return new_alerts

    async def _notify(self, alert: AlertInstance) -> list[NotificationLog]:
        configuration = self._configurations.get(alert.configuration_id)
        if configuration is None:
            return []

        try:
            logs = await self.router.send_alert_notifications(
                configuration.notification_settings, alert,
            )
        except AlertingError:
            with alert_context(alert.id, configuration_id=configuration.id):
                logger.exception("Notification routing failed for alert %s", alert.id)
            return []

        self.schedule_retries(logs)

        if configuration.escalation_policy is not None:
            self.escalations.schedule_escalation(alert, configuration.escalation_policy)
        return logs

    def schedule_retries(self, logs: list[NotificationLog]) -> list[str]:
        """Schedule retries for the failed logs of one delivery wave."""
        keys = [self.schedule_retry(log) for log in logs]
        return [key for key in keys if key is not None]

    def schedule_retry(self, log: NotificationLog) -> Optional[str]:
        """Schedule the next retry of a failed log, if any remain."""
        max_retries = self.config.max_delivery_retries
        if log.status != NotificationStatus.FAILED or log.retry_count >= max_retries:
            return None

        key = f"retry:{log.id}"

        async def fire() -> None:
            await self.retries.retry_failed_notifications([log], max_retries)
            self.schedule_retry(log)

        self.scheduler.schedule(
            key, self.retries.next_retry_delay(log), fire, alert_id=log.alert_id,
        )
        return key

    # ── Alert lifecycle ──────────────────────────────────────────────

    def get_alert(self, alert_id: str) -> Optional[AlertInstance]:
        return self.store.get(alert_id)

    def get_open_alerts(self, configuration_id: Optional[str] = None) -> list[AlertInstance]:
        return self.store.open_alerts(configuration_id)

    def acknowledge(self, alert_id: str, by: str) -> Optional[AlertInstance]:
        """Acknowledge a triggered alert and stop its pending escalations.

        Returns:
            The alert, or None if not found or not in triggered state.
        """
        alert = self.store.get(alert_id)
        if alert is None or not alert.acknowledge(by, self.clock()):
            return None
        cancelled = self.scheduler.cancel_alert(alert_id)
        logger.info("Alert %s acknowledged by %s (%d tasks cancelled)", alert_id, by, cancelled)
        return alert

    def resolve(self, alert_id: str, by: str, notes: str = "") -> Optional[AlertInstance]:
        """Resolve an open alert and cancel its pending tasks."""
        alert = self.store.get(alert_id)
        if alert is None or not alert.resolve(by, notes, self.clock()):
            return None
        self.scheduler.cancel_alert(alert_id)
        logger.info("Alert %s resolved by %s", alert_id, by)
        return alert

    def mark_false_positive(self, alert_id: str, by: str) -> Optional[AlertInstance]:
        """Close an alert as a false positive and cancel its pending tasks."""
        alert = self.store.get(alert_id)
        if alert is None:
            return None
        alert.mark_false_positive(by, self.clock())
        self.scheduler.cancel_alert(alert_id)
        logger.info("Alert %s marked false positive by %s", alert_id, by)
        return alert

    def get_stats(self) -> dict:
        """Get management statistics."""
        stats = self.engine.get_stats()
        stats["total_configurations"] = len(self._configurations)
        stats["active_configurations"] = sum(
            1 for c in self._configurations.values() if c.is_active()
        )
        stats["pending_tasks"] = len(self.scheduler.pending())
        stats["dead_letters"] = len(self.retries.get_dead_letter_queue())
        return stats

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
