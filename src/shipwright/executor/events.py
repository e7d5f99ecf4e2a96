"""Execution event sinks.

The executor emits one :class:`ExecutionEvent` per applied action to every
registered sink. A sink is any callable taking the event; a failing sink is
logged and otherwise ignored.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import structlog

from shipwright.providers.base import NotificationSink
from shipwright.schemas.action import ActionOperation, ActionStatus, ExecutionEvent
from shipwright.schemas.events import NotificationEvent, NotificationEventType

logger = structlog.get_logger(__name__)

EventSink = Callable[[ExecutionEvent], None]


class LogEventSink:
    """Logs every execution event."""

    def __call__(self, event: ExecutionEvent) -> None:
        result = event.result
        log = logger.bind(
            target=event.action.target,
            operation=event.action.operation.value,
            attempts=result.attempts,
            from_ledger=result.from_ledger,
        )
        if result.status == ActionStatus.SUCCESS:
            log.info("action_succeeded")
        elif result.status == ActionStatus.SKIPPED:
            log.warning("action_skipped", reason=result.error)
        else:
            log.error("action_failed", error=result.error, error_type=result.error_type)


class NotificationBridge:
    """Forwards mutating execution events to notification sinks."""

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self._sinks = list(sinks)

    def __call__(self, event: ExecutionEvent) -> None:
        if event.action.operation == ActionOperation.NOOP or event.result.from_ledger:
            return
        if event.result.status == ActionStatus.SUCCESS:
            event_type = NotificationEventType.ACTION_APPLIED
        elif event.result.status == ActionStatus.FAILED:
            event_type = NotificationEventType.ACTION_FAILED
        else:
            return
        notification = NotificationEvent(
            event_type=event_type,
            subject=event.action.target,
            data={
                "operation": event.action.operation.value,
                "attempts": event.result.attempts,
                "error": event.result.error,
            },
        )
        notify(self._sinks, notification)


def notify(sinks: Sequence[NotificationSink], event: NotificationEvent) -> None:
    """Deliver a notification to every sink. Failures never reach the caller."""
    for sink in sinks:
        try:
            sink.notify(event)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "notification_sink_failed",
                sink=type(sink).__name__,
                event_type=event.event_type.value,
                error=str(e),
            )


def emit(sinks: Sequence[EventSink], event: ExecutionEvent) -> None:
    """Deliver ``event`` to every sink, isolating sink failures."""
    for sink in sinks:
        try:
            sink(event)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "event_sink_failed",
                sink=type(sink).__name__,
                target=event.action.target,
                error=str(e),
            )


__all__ = ["EventSink", "LogEventSink", "NotificationBridge", "emit", "notify"]
