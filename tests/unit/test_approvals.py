"""Unit tests for approval gates."""

from __future__ import annotations

import threading
import time

import pytest

from shipwright.errors import ApprovalExpired
from shipwright.providers.approvals import AutoApprovalGate, EventApprovalGate
from shipwright.schemas.cutover import CutoverStep

STEP = CutoverStep(
    step_id="apex",
    kind="dns_record",
    target="DnsRecord/production/apex",
    domain="example.com",
    value="green.production.svc.local",
    requires_approval=True,
)


class TestEventApprovalGate:
    def test_decision_before_wait(self) -> None:
        gate = EventApprovalGate()
        gate.approve("apex")
        assert gate.wait(STEP, timeout=1) is True

    def test_denial(self) -> None:
        gate = EventApprovalGate()
        gate.deny("apex")
        assert gate.wait(STEP, timeout=1) is False

    def test_decision_while_waiting(self) -> None:
        gate = EventApprovalGate()
        timer = threading.Timer(0.05, gate.approve, args=("apex",))
        timer.start()
        try:
            assert gate.wait(STEP, timeout=5) is True
        finally:
            timer.cancel()

    def test_timeout(self) -> None:
        gate = EventApprovalGate()
        with pytest.raises(ApprovalExpired) as exc_info:
            gate.wait(STEP, timeout=0.01)
        assert exc_info.value.step_id == "apex"
        assert exc_info.value.denied is False

    def test_decisions_are_per_step(self) -> None:
        gate = EventApprovalGate()
        gate.approve("other")
        with pytest.raises(ApprovalExpired):
            gate.wait(STEP, timeout=0.01)

    def test_decision_is_consumed_by_wait(self) -> None:
        gate = EventApprovalGate()
        gate.approve("apex")
        assert gate.pending() == ["apex"]

        assert gate.wait(STEP, timeout=1) is True

        assert gate.pending() == []
        with pytest.raises(ApprovalExpired):
            gate.wait(STEP, timeout=0.01)

    def test_fresh_decision_after_consumed_one(self) -> None:
        gate = EventApprovalGate()
        gate.approve("apex")
        gate.wait(STEP, timeout=1)
        gate.deny("apex")
        assert gate.wait(STEP, timeout=1) is False

    def test_cancel_ends_wait_early(self) -> None:
        gate = EventApprovalGate()
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            assert gate.wait(STEP, timeout=600, cancel=cancel) is False
        finally:
            timer.cancel()
        assert time.monotonic() - started < 5

    def test_cancelled_wait_leaves_later_decision_intact(self) -> None:
        gate = EventApprovalGate()
        cancel = threading.Event()
        cancel.set()
        assert gate.wait(STEP, timeout=1, cancel=cancel) is False
        gate.approve("apex")
        assert gate.wait(STEP, timeout=1) is True


def test_auto_approval_gate() -> None:
    assert AutoApprovalGate().wait(STEP, timeout=0) is True
