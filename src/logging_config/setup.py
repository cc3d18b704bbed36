"""Logging Setup.

One-call configuration for structured logging across the alerting service.
JSON lines for production, colored console for development. Delivery
logs carry ``channel``, ``recipient`` and ``escalation_level`` as record
extras; alert and configuration IDs come from the bound context.
"""

import json
import logging
import sys
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import get_context_dict
from src.settings import get_settings

# Record attributes passed via ``extra=`` that formatters render
DELIVERY_FIELDS = ("channel", "recipient", "escalation_level")
TIMING_FIELDS = ("duration_ms", "extra_data")


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Bound context plus delivery and timing extras of a record."""
    fields = get_context_dict()
    for key in DELIVERY_FIELDS + TIMING_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = getattr(value, "value", value)
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per log line.

    Fixed keys are timestamp, level, logger, message and service; bound
    context and record extras are merged in at top level.
    """

    def __init__(self, service_name: str = "building-alerts", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        if self.include_caller:
            entry.update(module=record.module, function=record.funcName, line=record.lineno)

        entry.update(record_fields(record))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for development.

    Delivery logs render as ``channel -> recipient`` after the message.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S.%f")[:-3]

        fields = record_fields(record)
        channel = fields.pop("channel", None)
        recipient = fields.pop("recipient", None)

        line = (
            f"{color}{stamp} {record.levelname:8s}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if channel or recipient:
            line += f" ({channel or '?'} -> {recipient or '?'})"
        if fields:
            line += " [" + ", ".join(f"{k}={v}" for k, v in fields.items()) + "]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _with_overrides(config: LoggingConfig, settings) -> LoggingConfig:
    """Apply log level/format only when explicitly set in the environment."""
    explicit = settings.model_fields_set
    level = settings.log_level.upper()
    if "log_level" in explicit and level in LogLevel.__members__:
        config = replace(config, level=LogLevel(level))
    fmt = settings.log_format.lower()
    if "log_format" in explicit and fmt in {f.value for f in LogFormat}:
        config = replace(config, format=LogFormat(fmt))
    return config


def configure_logging(config: Optional[LoggingConfig] = None, settings=None) -> None:
    """Configure the root logger for the alerting service.

    Call once at startup.

    Args:
        config: Logging configuration. Uses defaults if not provided.
        settings: Application settings; ``ALERTS_LOG_LEVEL`` and
            ``ALERTS_LOG_FORMAT`` set there win over ``config``.
    """
    config = _with_overrides(config or DEFAULT_LOGGING_CONFIG, settings or get_settings())

    if config.format == LogFormat.JSON:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        formatter = ConsoleFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.value))

    for noisy in config.quiet_loggers:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance, typically for ``__name__``."""
    return logging.getLogger(name)
