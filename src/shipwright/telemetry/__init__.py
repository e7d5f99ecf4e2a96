"""OpenTelemetry and structlog integration for shipwright.

- create_span / traced: tracing helpers with credential-safe error recording
- configure_logging / add_trace_context: structlog setup with trace correlation
- OrchestratorMetrics / get_metrics: counters and histograms
"""

from __future__ import annotations

from shipwright.telemetry.logging import add_trace_context, configure_logging
from shipwright.telemetry.metrics import OrchestratorMetrics, get_metrics
from shipwright.telemetry.tracing import (
    create_span,
    get_tracer,
    reset_tracer,
    sanitize_error_message,
    set_tracer,
    traced,
)

__all__ = [
    "OrchestratorMetrics",
    "add_trace_context",
    "configure_logging",
    "create_span",
    "get_metrics",
    "get_tracer",
    "reset_tracer",
    "sanitize_error_message",
    "set_tracer",
    "traced",
]
