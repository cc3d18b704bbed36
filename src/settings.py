"""Centralized settings for the building alerts service.

Uses pydantic-settings to load from environment variables (prefixed ALERTS_)
with defaults suitable for local development.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Alerting service settings loaded from environment variables."""

    # --- Evaluation worker ---
    evaluation_interval_seconds: int = 300
    evaluation_concurrency: int = 16

    # --- Delivery ---
    dispatch_timeout_seconds: float = 10.0
    max_delivery_retries: int = 3
    retry_backoff_cap_seconds: float = 60.0
    dashboard_url: str = "http://localhost:3000"

    # --- Email (SMTP) ---
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_use_tls: bool = True
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = "alerts@localhost"

    # --- SMS (Twilio) ---
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    # --- Webhook / Slack ---
    webhook_signing_secret: str = ""
    slack_default_webhook_url: str = ""

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = {
        "env_prefix": "ALERTS_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
