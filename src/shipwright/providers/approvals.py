"""Approval gates for cutover steps."""

from __future__ import annotations

import threading
import time

import structlog

from shipwright.errors import ApprovalExpired
from shipwright.providers.base import ApprovalGate
from shipwright.schemas.cutover import CutoverStep

logger = structlog.get_logger(__name__)

# Longest stretch a waiter goes without looking at its cancel signal
CANCEL_CHECK_INTERVAL_SECONDS = 0.05


class EventApprovalGate(ApprovalGate):
    """Approval gate driven by :meth:`approve` and :meth:`deny` calls.

    Decisions may arrive before the controller starts waiting; they are kept
    until a wait consumes them. A consumed decision is forgotten, so a
    later wait for the same step needs a fresh decision.

    Example:
        >>> gate = EventApprovalGate()
        >>> gate.approve("dns-switch")
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, threading.Event] = {}
        self._decisions: dict[str, bool] = {}

    def _event(self, step_id: str) -> threading.Event:
        with self._lock:
            return self._events.setdefault(step_id, threading.Event())

    def approve(self, step_id: str) -> None:
        self._decide(step_id, True)

    def deny(self, step_id: str) -> None:
        self._decide(step_id, False)

    def _decide(self, step_id: str, approved: bool) -> None:
        with self._lock:
            self._decisions[step_id] = approved
        self._event(step_id).set()
        logger.info("approval_decision", step_id=step_id, approved=approved)

    def pending(self) -> list[str]:
        """Step ids holding a decision no wait has consumed yet."""
        with self._lock:
            return sorted(self._decisions)

    def wait(
        self,
        step: CutoverStep,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> bool:
        event = self._event(step.step_id)
        deadline = time.monotonic() + timeout
        while not event.is_set():
            if cancel is not None and cancel.is_set():
                logger.info("approval_wait_cancelled", step_id=step.step_id)
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ApprovalExpired(step.step_id, timeout)
            event.wait(min(remaining, CANCEL_CHECK_INTERVAL_SECONDS))
        with self._lock:
            self._events.pop(step.step_id, None)
            return self._decisions.pop(step.step_id)


class AutoApprovalGate(ApprovalGate):
    """Approves every step immediately (``--auto-approve``)."""

    def wait(
        self,
        step: CutoverStep,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> bool:
        logger.info("approval_auto_granted", step_id=step.step_id)
        return True


__all__ = ["AutoApprovalGate", "EventApprovalGate"]
