"""Resuming after the process died part-way through an apply.

A crash is simulated by writing the ledger and provider state a killed
process would have left behind, then opening a new orchestrator on the same
store file.
"""

from __future__ import annotations

import pytest

from shipwright.errors import LedgerInconsistency
from shipwright.plan.loader import load_plan
from shipwright.reconcile.compare import spec_hash
from shipwright.schemas.action import ActionOperation, LedgerStatus
from testing.fakes import FakeCloudProvider
from testing.fixtures.plans import example_plan_data

pytestmark = pytest.mark.integration

SERVICE = "ComputeService/staging/staging-app"
REGISTRY = "Registry/staging/app-repo"


def _record_started(orchestrator, action) -> None:
    orchestrator.store.record_in_progress(
        action.idempotency_key,
        action.target,
        action.operation,
        spec_hash(action.kind, action.payload),
    )


def test_crash_before_provider_call_reapplies(open_orchestrator, cloud: FakeCloudProvider) -> None:
    graph = load_plan(example_plan_data())
    with open_orchestrator() as orchestrator:
        plan = orchestrator.plan(graph)
        registry = next(a for a in plan.actions if a.target == REGISTRY)
        _record_started(orchestrator, registry)

    with open_orchestrator() as orchestrator:
        _, batch = orchestrator.apply(graph)
        entry = orchestrator.store.get_ledger_entry(registry.idempotency_key)

    assert batch.succeeded
    assert batch.results[REGISTRY].attempts == 1
    assert entry is not None
    assert entry.status == LedgerStatus.APPLIED
    assert cloud.mutations() == [("create", REGISTRY), ("create", SERVICE)]


def test_crash_after_provider_call_does_not_duplicate(
    open_orchestrator, cloud: FakeCloudProvider
) -> None:
    graph = load_plan(example_plan_data())
    with open_orchestrator() as orchestrator:
        plan = orchestrator.plan(graph)
        registry = next(a for a in plan.actions if a.target == REGISTRY)
        _record_started(orchestrator, registry)
        assert registry.descriptor is not None
        cloud.create(registry.descriptor)

    with open_orchestrator() as orchestrator:
        resumed = orchestrator.executor.apply(registry)
        _, batch = orchestrator.apply(graph)

    assert resumed.from_ledger
    assert resumed.attempts == 0
    assert batch.succeeded
    assert cloud.calls_to("create", REGISTRY)[0].error is None
    assert len(cloud.calls_to("create", REGISTRY)) == 1


def test_inconsistency_survives_restart_until_forgotten(
    open_orchestrator, cloud: FakeCloudProvider
) -> None:
    graph = load_plan(example_plan_data())
    with open_orchestrator() as orchestrator:
        plan, _ = orchestrator.apply(graph)
    registry = next(a for a in plan.actions if a.target == REGISTRY)
    # Someone deletes the registry by hand
    cloud.delete(REGISTRY)

    with open_orchestrator() as orchestrator:
        with pytest.raises(LedgerInconsistency) as excinfo:
            orchestrator.executor.apply(registry)
        assert excinfo.value.idempotency_key == registry.idempotency_key
        assert orchestrator.store.forget(registry.idempotency_key)

    with open_orchestrator() as orchestrator:
        result = orchestrator.executor.apply(registry)

    assert result.succeeded
    assert registry.operation == ActionOperation.CREATE
    assert cloud.describe(REGISTRY).exists
