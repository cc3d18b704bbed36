"""Structured Logging & Pass Tracing.

Provides structured JSON logging, request ID propagation across
evaluation passes, and performance timing for the alerting service.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import RequestContext, alert_context, generate_request_id
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PerformanceTimer",
    "RequestContext",
    "alert_context",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "log_performance",
]
