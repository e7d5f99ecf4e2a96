"""Action executor: retry, idempotency ledger, bounded concurrency."""

from __future__ import annotations

from shipwright.executor.events import EventSink, LogEventSink, NotificationBridge
from shipwright.executor.executor import ActionExecutor
from shipwright.executor.resilience import RetryPolicy

__all__ = [
    "ActionExecutor",
    "EventSink",
    "LogEventSink",
    "NotificationBridge",
    "RetryPolicy",
]
