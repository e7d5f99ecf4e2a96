"""Unit tests for the action executor."""

from __future__ import annotations

import pytest

from shipwright.errors import (
    LedgerInconsistency,
    PermanentProviderError,
    TransientProviderError,
)
from shipwright.executor.executor import ActionExecutor
from shipwright.plan.loader import load_plan
from shipwright.reconcile.compare import spec_hash
from shipwright.reconcile.reconciler import Reconciler
from shipwright.schemas.action import (
    Action,
    ActionOperation,
    ActionStatus,
    ExecutionEvent,
    LedgerStatus,
)
from shipwright.schemas.config import RetryConfig
from shipwright.store.repository import StateStore
from testing.fakes import FakeClock, FakeCloudProvider
from testing.fixtures.plans import example_plan_data

REGISTRY = "Registry/staging/app-repo"
COMPUTE = "ComputeService/staging/staging-app"


def _actions(reconciler: Reconciler, data: dict | None = None) -> dict[str, Action]:
    plan = reconciler.plan(load_plan(data or example_plan_data()))
    return {a.target: a for a in plan.actions}


def _chain_plan() -> dict:
    """secrets <- db <- app, plus an unrelated registry."""
    return {
        "resources": [
            {"kind": "SecretBundle", "name": "s", "environment": "staging"},
            {
                "kind": "Database",
                "name": "db",
                "environment": "staging",
                "dependsOn": ["SecretBundle/s"],
            },
            {
                "kind": "ComputeService",
                "name": "app",
                "environment": "staging",
                "dependsOn": ["Database/db"],
            },
            {"kind": "Registry", "name": "app-repo", "environment": "staging"},
        ]
    }


class TestApply:
    """Tests for applying a single action."""

    def test_create(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        store: StateStore,
    ) -> None:
        action = _actions(reconciler)[REGISTRY]

        result = executor.apply(action)

        assert result.status == ActionStatus.SUCCESS
        assert result.attempts == 1
        assert result.provider_id == f"mem://{REGISTRY}"
        assert result.applied_state == {"scan_on_push": True}
        assert provider.describe(REGISTRY).exists
        entry = store.get_ledger_entry(action.idempotency_key)
        assert entry is not None
        assert entry.status == LedgerStatus.APPLIED
        assert [m.descriptor_id for m in store.list_managed()] == [REGISTRY]

    def test_noop_makes_no_provider_call(
        self, executor: ActionExecutor, provider: FakeCloudProvider
    ) -> None:
        action = Action(
            target=REGISTRY,
            kind="Registry",
            environment="staging",
            operation=ActionOperation.NOOP,
            idempotency_key="0" * 64,
        )
        result = executor.apply(action)
        assert result.status == ActionStatus.SUCCESS
        assert result.attempts == 0
        assert provider.calls == []

    def test_transient_failure_is_retried(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        clock: FakeClock,
    ) -> None:
        action = _actions(reconciler)[REGISTRY]
        provider.fail(
            "create",
            REGISTRY,
            TransientProviderError("create", REGISTRY, "throttled"),
            TransientProviderError("create", REGISTRY, "throttled"),
        )

        result = executor.apply(action)

        assert result.status == ActionStatus.SUCCESS
        assert result.attempts == 3
        assert len(clock.sleeps) == 2

    def test_exhausted_retries_fail_the_action(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        store: StateStore,
    ) -> None:
        action = _actions(reconciler)[REGISTRY]
        provider.fail_always(
            "create", REGISTRY, TransientProviderError("create", REGISTRY, "throttled")
        )

        result = executor.apply(action)

        assert result.status == ActionStatus.FAILED
        assert result.attempts == 3
        assert result.error_type == "TransientProviderError"
        entry = store.get_ledger_entry(action.idempotency_key)
        assert entry is not None and entry.status == LedgerStatus.FAILED

    def test_permanent_failure_is_not_retried(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        action = _actions(reconciler)[REGISTRY]
        provider.fail("create", REGISTRY, PermanentProviderError("create", REGISTRY, "denied"))

        result = executor.apply(action)

        assert result.status == ActionStatus.FAILED
        assert result.attempts == 1
        assert "denied" in (result.error or "")
        assert not provider.describe(REGISTRY).exists

    def test_failed_action_is_retried_on_next_run(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        action = _actions(reconciler)[REGISTRY]
        provider.fail("create", REGISTRY, PermanentProviderError("create", REGISTRY, "quota"))
        assert executor.apply(action).status == ActionStatus.FAILED

        result = executor.apply(action)

        assert result.status == ActionStatus.SUCCESS
        assert result.from_ledger is False


class TestLedger:
    """Tests for the idempotency ledger protocol."""

    def test_repeated_apply_is_served_from_ledger(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        """Applying the same action twice mutates the provider once."""
        action = _actions(reconciler)[REGISTRY]
        first = executor.apply(action)

        second = executor.apply(action)

        assert second.status == ActionStatus.SUCCESS
        assert second.from_ledger is True
        assert second.provider_id == first.provider_id
        assert provider.mutations() == [("create", REGISTRY)]

    def test_applied_entry_with_drifted_state_is_inconsistent(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        """The executor refuses to guess when the ledger and live state disagree."""
        action = _actions(reconciler)[REGISTRY]
        executor.apply(action)
        provider.delete(REGISTRY)

        with pytest.raises(LedgerInconsistency) as exc_info:
            executor.apply(action)

        assert exc_info.value.idempotency_key == action.idempotency_key
        assert exc_info.value.target == REGISTRY
        assert "ledger forget" in str(exc_info.value)

    def test_replanned_deletion_is_recreated(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        store: StateStore,
    ) -> None:
        first = _actions(reconciler)[REGISTRY]
        executor.apply(first)
        provider.delete(REGISTRY)
        provider.reset_calls()

        replanned = _actions(reconciler)[REGISTRY]
        result = executor.apply(replanned)

        assert replanned.idempotency_key == first.idempotency_key
        assert replanned.corrects_drift is True
        assert result.status == ActionStatus.SUCCESS
        assert result.from_ledger is False
        assert provider.mutations() == [("create", REGISTRY)]
        assert store.get_ledger_entry(first.idempotency_key).status == LedgerStatus.APPLIED

    def test_recurring_field_drift_is_corrected_each_time(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        executor.apply_batch(list(_actions(reconciler).values()))
        provider.update(COMPUTE, {"cpu": 2})
        correction = _actions(reconciler)[COMPUTE]
        assert correction.operation == ActionOperation.UPDATE
        assert correction.corrects_drift is False
        executor.apply(correction)

        provider.update(COMPUTE, {"cpu": 4})
        provider.reset_calls()
        again = _actions(reconciler)[COMPUTE]
        result = executor.apply(again)

        assert again.idempotency_key == correction.idempotency_key
        assert again.corrects_drift is True
        assert result.status == ActionStatus.SUCCESS
        assert provider.mutations() == [("update", COMPUTE)]
        assert provider.describe(COMPUTE).spec["cpu"] == 0.5

    def test_forget_clears_inconsistency(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        store: StateStore,
    ) -> None:
        action = _actions(reconciler)[REGISTRY]
        executor.apply(action)
        provider.delete(REGISTRY)

        assert store.forget(action.idempotency_key)
        result = executor.apply(action)

        assert result.status == ActionStatus.SUCCESS
        assert provider.describe(REGISTRY).exists

    def test_in_progress_entry_reapplies_missing_change(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        store: StateStore,
    ) -> None:
        """A crash between recording in_progress and the provider call is recovered."""
        action = _actions(reconciler)[REGISTRY]
        store.record_in_progress(
            action.idempotency_key,
            action.target,
            action.operation,
            spec_hash(action.kind, action.payload),
        )

        result = executor.apply(action)

        assert result.status == ActionStatus.SUCCESS
        assert provider.mutations() == [("create", REGISTRY)]
        entry = store.get_ledger_entry(action.idempotency_key)
        assert entry is not None and entry.status == LedgerStatus.APPLIED

    def test_in_progress_entry_with_change_already_live(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        store: StateStore,
    ) -> None:
        """A crash after the provider call but before recording does not mutate twice."""
        action = _actions(reconciler)[REGISTRY]
        store.record_in_progress(
            action.idempotency_key,
            action.target,
            action.operation,
            spec_hash(action.kind, action.payload),
        )
        assert action.descriptor is not None
        provider.create(action.descriptor)
        provider.reset_calls()

        result = executor.apply(action)

        assert result.status == ActionStatus.SUCCESS
        assert result.from_ledger is True
        assert result.attempts == 0
        assert provider.mutations() == []

    def test_spec_changed_back_is_applied_again(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
        store: StateStore,
    ) -> None:
        """Superseded entries are re-applied instead of served from the ledger."""
        data = example_plan_data()
        executor.apply_batch(list(_actions(reconciler, data).values()))

        def set_cpu(cpu: float) -> Action:
            data["resources"][1]["spec"]["cpu"] = cpu
            action = _actions(reconciler, data)[COMPUTE]
            assert action.operation == ActionOperation.UPDATE
            assert executor.apply(action).status == ActionStatus.SUCCESS
            return action

        first = set_cpu(1)
        set_cpu(2)
        entry = store.get_ledger_entry(first.idempotency_key)
        assert entry is not None and entry.status == LedgerStatus.SUPERSEDED

        provider.reset_calls()
        again = set_cpu(1)

        assert again.idempotency_key == first.idempotency_key
        assert provider.mutations() == [("update", COMPUTE)]
        assert provider.describe(COMPUTE).spec["cpu"] == 1


class TestApplyBatch:
    """Tests for ActionExecutor.apply_batch()."""

    def test_applies_everything_in_order(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        batch = executor.apply_batch(list(_actions(reconciler, _chain_plan()).values()))

        assert batch.succeeded
        creates = {c.target: c for c in provider.calls_to("create")}
        secret, db = creates["SecretBundle/staging/s"], creates["Database/staging/db"]
        assert secret.finished < db.started
        assert db.finished < creates["ComputeService/staging/app"].started

    def test_failure_skips_dependents_transitively(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        """Dependents of a failed action are skipped; unrelated actions still run."""
        provider.fail(
            "create",
            "SecretBundle/staging/s",
            PermanentProviderError("create", "SecretBundle/staging/s", "kms key disabled"),
        )

        batch = executor.apply_batch(list(_actions(reconciler, _chain_plan()).values()))

        results = batch.results
        assert results["SecretBundle/staging/s"].status == ActionStatus.FAILED
        assert results["Database/staging/db"].status == ActionStatus.SKIPPED
        assert results["ComputeService/staging/app"].status == ActionStatus.SKIPPED
        assert "root failure: SecretBundle/staging/s" in (
            results["ComputeService/staging/app"].error or ""
        )
        assert results[REGISTRY].status == ActionStatus.SUCCESS
        assert not batch.succeeded
        assert len(batch.failed) == 1
        assert len(batch.skipped) == 2
        assert provider.calls_to("create", "Database/staging/db") == []

    def test_dependencies_outside_batch_are_satisfied(
        self, executor: ActionExecutor, reconciler: Reconciler
    ) -> None:
        action = _actions(reconciler)[COMPUTE]
        batch = executor.apply_batch([action])
        assert batch.succeeded

    def test_ledger_inconsistency_halts_batch(
        self,
        executor: ActionExecutor,
        reconciler: Reconciler,
        provider: FakeCloudProvider,
    ) -> None:
        actions = _actions(reconciler)
        executor.apply(actions[REGISTRY])
        provider.delete(REGISTRY)

        with pytest.raises(LedgerInconsistency):
            executor.apply_batch(list(actions.values()))
        assert provider.calls_to("create", COMPUTE) == []

    def test_empty_batch(self, executor: ActionExecutor) -> None:
        assert executor.apply_batch([]).results == {}

    def test_invalid_concurrency(self, provider: FakeCloudProvider, store: StateStore) -> None:
        with pytest.raises(ValueError):
            ActionExecutor(provider, store, concurrency=0)


class TestExecutionEvents:
    """Tests for execution event sinks."""

    def test_one_event_per_action(
        self,
        provider: FakeCloudProvider,
        store: StateStore,
        reconciler: Reconciler,
        fast_retry: RetryConfig,
    ) -> None:
        events: list[ExecutionEvent] = []
        executor = ActionExecutor(provider, store, retry=fast_retry, sinks=[events.append])

        executor.apply_batch(list(_actions(reconciler).values()))

        assert sorted(e.action.target for e in events) == [COMPUTE, REGISTRY]
        assert all(e.result.status == ActionStatus.SUCCESS for e in events)

    def test_skipped_actions_emit_events(
        self,
        provider: FakeCloudProvider,
        store: StateStore,
        reconciler: Reconciler,
        fast_retry: RetryConfig,
    ) -> None:
        events: list[ExecutionEvent] = []
        executor = ActionExecutor(provider, store, retry=fast_retry, sinks=[events.append])
        provider.fail("create", REGISTRY, PermanentProviderError("create", REGISTRY, "denied"))

        executor.apply_batch(list(_actions(reconciler).values()))

        statuses = {e.action.target: e.result.status for e in events}
        assert statuses == {REGISTRY: ActionStatus.FAILED, COMPUTE: ActionStatus.SKIPPED}

    def test_failing_sink_does_not_fail_the_action(
        self,
        provider: FakeCloudProvider,
        store: StateStore,
        reconciler: Reconciler,
        fast_retry: RetryConfig,
    ) -> None:
        def broken(event: ExecutionEvent) -> None:
            raise RuntimeError("sink down")

        executor = ActionExecutor(provider, store, retry=fast_retry, sinks=[broken])
        assert executor.apply(_actions(reconciler)[REGISTRY]).status == ActionStatus.SUCCESS
