"""Structured logging configuration with OpenTelemetry trace correlation.

Logs emitted inside an active span carry ``trace_id`` and ``span_id`` so
orchestration logs can be joined with traces.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry import trace

EventDict = MutableMapping[str, Any]

_VALID_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def add_trace_context(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
    """Structlog processor tagging a log line with the current span.

    Ids already bound on the event (for example, by a caller replaying a
    remote trace) are left alone.
    """
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return event_dict
    event_dict.setdefault("trace_id", trace.format_trace_id(context.trace_id))
    event_dict.setdefault("span_id", trace.format_span_id(context.span_id))
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structlog with trace context injection.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Emit JSON lines when True, console format otherwise.

    Raises:
        ValueError: If ``log_level`` is not a known level name.

    Examples:
        >>> configure_logging(log_level="DEBUG", json_output=False)
    """
    level_name = log_level.upper()
    if level_name not in _VALID_LEVELS:
        raise ValueError(
            f"Invalid log level: {log_level}. Valid levels: {sorted(_VALID_LEVELS)}"
        )
    level = logging.getLevelName(level_name)

    renderer: Any
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_trace_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


__all__ = [
    "add_trace_context",
    "configure_logging",
]
