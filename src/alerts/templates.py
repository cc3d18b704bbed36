"""Notification templates and webhook payloads."""

from html import escape
from typing import Any, Optional

from src.alerts.models import AlertInstance
from src.alerts.notification_models import EscalationStage, NotificationTemplate


def dashboard_link(alert: AlertInstance, dashboard_url: Optional[str]) -> str:
    if not dashboard_url:
        return ""
    return f"{dashboard_url.rstrip('/')}/dashboard/alerts/{alert.id}"


def build_alert_template(
    alert: AlertInstance,
    dashboard_url: Optional[str] = None,
) -> NotificationTemplate:
    """Render the standard alert notification.

    Args:
        alert: Triggered alert.
        dashboard_url: Base URL of the dashboard, if any.

    Returns:
        NotificationTemplate with plain and HTML bodies.
    """
    severity = alert.severity.value.upper() if alert.severity else "UNKNOWN"
    link = dashboard_link(alert, dashboard_url)
    variables = {
        "alert_title": alert.title,
        "alert_description": alert.description,
        "severity": severity,
        "triggered_at": alert.triggered_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip(),
        "alert_id": alert.id,
        "dashboard_url": link,
    }

    lines = [
        "Alert Details:",
        f"- Title: {alert.title}",
        f"- Severity: {severity}",
        f"- Triggered: {variables['triggered_at']}",
        f"- Description: {alert.description}",
        "",
    ]
    if link:
        lines += [f"View in dashboard: {link}", ""]
    lines.append(f"Alert ID: {alert.id}")

    html_parts = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px;">',
        f"<h2>{severity} Alert</h2>",
        f"<h3>{escape(alert.title)}</h3>",
        f"<p><strong>Severity:</strong> {severity}</p>",
        f"<p><strong>Triggered:</strong> {escape(variables['triggered_at'])}</p>",
        f"<p><strong>Description:</strong> {escape(alert.description)}</p>",
    ]
    if link:
        html_parts.append(f'<p><a href="{escape(link)}">View in Dashboard</a></p>')
    html_parts += [f'<p style="font-size: 12px;">Alert ID: {alert.id}</p>', "</div>"]

    return NotificationTemplate(
        subject=f"{severity} Alert: {alert.title}",
        body="\n".join(lines),
        html_body="\n".join(html_parts),
        variables=variables,
    )


def build_escalation_template(
    alert: AlertInstance,
    stage: EscalationStage,
    level: int,
    dashboard_url: Optional[str] = None,
) -> NotificationTemplate:
    """Wrap the standard template with escalation markers."""
    base = build_alert_template(alert, dashboard_url)

    lines = [f"*** ESCALATED ALERT - LEVEL {level} ***", "", base.body, ""]
    lines.append("This alert has been escalated due to lack of acknowledgment.")
    if stage.require_acknowledgment:
        lines.append(
            f"Acknowledgment required within {stage.acknowledgment_timeout} minutes."
        )
    if stage.custom_message:
        lines += ["", stage.custom_message]

    html_body = None
    if base.html_body:
        html_body = base.html_body.replace(
            "<h2>",
            f"<p><strong>ESCALATED ALERT - LEVEL {level}</strong></p><h2>",
            1,
        )

    return NotificationTemplate(
        subject=f"ESCALATED (Level {level}): {base.subject}",
        body="\n".join(lines),
        html_body=html_body,
        variables={**base.variables, "escalation_level": str(level)},
    )


def build_webhook_payload(
    alert: AlertInstance,
    template: NotificationTemplate,
) -> dict[str, Any]:
    """JSON body posted to webhook recipients."""
    payload: dict[str, Any] = {
        "alert_id": alert.id,
        "alert_title": alert.title,
        "severity": alert.severity.value,
        "triggered_at": alert.triggered_at.isoformat(),
        "description": alert.description,
        "metric_values": [m.to_dict() for m in alert.metric_values],
        "custom_fields": {
            "configuration_id": alert.configuration_id,
            "rule_id": alert.rule_id,
            "escalation_level": alert.escalation_level,
        },
    }
    dashboard_url = template.variables.get("dashboard_url")
    if dashboard_url:
        payload["dashboard_url"] = dashboard_url
    return payload
