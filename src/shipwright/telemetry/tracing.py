"""OpenTelemetry tracing utilities for shipwright.

Provides the ``create_span()`` context manager and the ``@traced`` decorator
used to instrument planning, execution, promotion and cutover operations.
Error messages are stripped of credentials before they are recorded on a
span, since provider errors frequently echo connection strings.

Example:
    >>> with create_span("shipwright.reconcile.plan", attributes={"nodes": 3}):
    ...     pass
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode, Tracer

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span

P = ParamSpec("P")
R = TypeVar("R")

_TRACER_NAME = "shipwright"

# Set by tests that capture spans; None means "ask the global provider"
_injected_tracer: Tracer | None = None

_SENSITIVE_KEY_PATTERN = re.compile(
    r"(password|secret|access_key|token|api_key|authorization|credential)"
    r"\s*[=:]\s*\S+",
    re.IGNORECASE,
)
_URL_CREDENTIAL_PATTERN = re.compile(r"://[^@/\s]+:[^@/\s]+@")


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """Redact credentials from an error message and truncate it.

    Args:
        msg: Raw error message.
        max_length: Maximum length of the returned message.

    Returns:
        Sanitized message.

    Example:
        >>> sanitize_error_message("connect failed: password=hunter2")
        'connect failed: password=<REDACTED>'
        >>> sanitize_error_message("postgres://app:pw@db.internal/app")
        'postgres://<REDACTED>@db.internal/app'
    """
    sanitized = _URL_CREDENTIAL_PATTERN.sub("://<REDACTED>@", msg)

    def _redact(match: re.Match[str]) -> str:
        text = match.group(0)
        if "=" in text:
            return text.split("=", 1)[0] + "=<REDACTED>"
        return text.split(":", 1)[0] + ": <REDACTED>"

    sanitized = _SENSITIVE_KEY_PATTERN.sub(_redact, sanitized)
    return sanitized[:max_length]


def get_tracer() -> Tracer:
    """Return the injected tracer, else the global provider's shipwright tracer.

    The global provider is consulted on every call rather than cached, so a
    provider installed after import (by the host application) still
    receives shipwright spans. Without an SDK installed this is a no-op
    tracer.
    """
    if _injected_tracer is not None:
        return _injected_tracer
    return trace.get_tracer(_TRACER_NAME)


def set_tracer(tracer: Tracer | None) -> None:
    """Route all shipwright spans to ``tracer`` (for testing). None undoes it."""
    global _injected_tracer
    _injected_tracer = tracer


def reset_tracer() -> None:
    """Drop any injected tracer."""
    set_tracer(None)


def _record_error(span: Span, exc: Exception) -> None:
    sanitized = sanitize_error_message(str(exc))
    span.set_status(Status(StatusCode.ERROR, sanitized))
    span.set_attribute("exception.type", type(exc).__name__)
    span.set_attribute("exception.message", sanitized)


@contextmanager
def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a span as a context manager.

    Nested calls create parent-child relationships automatically. Exceptions
    raised inside the block mark the span as errored (with a sanitized
    message) and propagate unchanged.

    Args:
        name: Span name.
        attributes: Optional span attributes. ``None`` values are skipped.

    Yields:
        The created span.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            _record_error(span, e)
            raise


def traced(
    func: Callable[P, R] | None = None,
    *,
    name: str | None = None,
    attributes: dict[str, str] | None = None,
) -> Any:
    """Decorator tracing a function call with an OpenTelemetry span.

    Usable bare (``@traced``) or with arguments (``@traced(name="x")``).

    Args:
        func: Function to decorate (bare usage).
        name: Span name. Defaults to the function's qualified name.
        attributes: Static attributes set on every span.

    Returns:
        The decorated function, or a decorator.
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        span_name = name if name is not None else fn.__qualname__

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with create_span(span_name, attributes=dict(attributes or {})):
                return fn(*args, **kwargs)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


__all__ = [
    "create_span",
    "get_tracer",
    "reset_tracer",
    "sanitize_error_message",
    "set_tracer",
    "traced",
]
