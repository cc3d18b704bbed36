"""Log Context Management.

Context variables binding a request ID (one per evaluation pass or CLI
run), a correlation ID, and the alert being processed to log entries.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator


_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
_alert_id_var: ContextVar[str] = ContextVar("alert_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_request_id() -> str:
    """Generate a unique request ID using UUID4."""
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Get the current request ID from context."""
    return _request_id_var.get()


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_alert_id() -> str:
    return _alert_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    req_id = _request_id_var.get()
    if req_id:
        ctx["request_id"] = req_id
    corr_id = _correlation_id_var.get()
    if corr_id and corr_id != req_id:
        ctx["correlation_id"] = corr_id
    alert_id = _alert_id_var.get()
    if alert_id:
        ctx["alert_id"] = alert_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class RequestContext:
    """Context manager for scoped logging context.

    Binds request_id, correlation_id and alert_id to all log entries
    within the context and restores the previous values on exit, so
    contexts nest.

    Example:
        with RequestContext(extra={"operation": "evaluation_pass"}):
            logger.info("pass started")  # includes request_id, operation
    """

    request_id: str = ""
    correlation_id: str = ""
    alert_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = generate_request_id()
        if not self.correlation_id:
            self.correlation_id = self.request_id

    def __enter__(self) -> "RequestContext":
        self._tokens = [
            (_request_id_var, _request_id_var.set(self.request_id)),
            (_correlation_id_var, _correlation_id_var.set(self.correlation_id)),
            (_alert_id_var, _alert_id_var.set(self.alert_id)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)


@contextmanager
def alert_context(alert_id: str, **fields: Any) -> Iterator[None]:
    """Bind an alert (and extra fields) inside the current request.

    Unlike a nested ``RequestContext`` this keeps the enclosing request and
    correlation IDs, so delivery logs stay tied to their evaluation pass.

    Example:
        with alert_context(alert.id, configuration_id=alert.configuration_id):
            logger.info("routing")  # includes request_id, alert_id, configuration_id
    """
    alert_token = _alert_id_var.set(alert_id)
    extra_token = _extra_context_var.set({**_extra_context_var.get(), **fields})
    try:
        yield
    finally:
        _extra_context_var.reset(extra_token)
        _alert_id_var.reset(alert_token)
