"""Unit tests for the SQLAlchemy state store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from shipwright.errors import PromotionNotFound, StoreError
from shipwright.schemas.action import ActionOperation, LedgerStatus
from shipwright.schemas.cutover import CutoverPlan, CutoverStatus
from shipwright.schemas.descriptor import Environment
from shipwright.schemas.promotion import Cause, EnvironmentPromotion, PromotionStatus
from shipwright.store.repository import StateStore
from testing.fixtures.plans import cutover_plan_data

KEY_A = "a" * 64
KEY_B = "b" * 64
TARGET = "Registry/staging/app-repo"


class MutableClock:
    """Wall clock that tests move by hand."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class TestLedger:
    def test_entry_lifecycle(self, store: StateStore) -> None:
        assert store.get_ledger_entry(KEY_A) is None

        store.record_in_progress(KEY_A, TARGET, ActionOperation.CREATE, "h1")
        entry = store.get_ledger_entry(KEY_A)
        assert entry is not None
        assert entry.status == LedgerStatus.IN_PROGRESS
        assert entry.operation == ActionOperation.CREATE

        store.record_applied(
            KEY_A, provider_id="mem://x", applied_state={"scan_on_push": True}, attempts=2
        )
        entry = store.get_ledger_entry(KEY_A)
        assert entry is not None
        assert entry.status == LedgerStatus.APPLIED
        assert entry.provider_id == "mem://x"
        assert entry.applied_state == {"scan_on_push": True}
        assert entry.attempts == 2

    def test_failed_entry_can_restart(self, store: StateStore) -> None:
        store.record_in_progress(KEY_A, TARGET, ActionOperation.CREATE, "h1")
        store.record_failed(KEY_A, error="quota exceeded", attempts=5)
        entry = store.get_ledger_entry(KEY_A)
        assert entry is not None and entry.status == LedgerStatus.FAILED
        assert entry.error == "quota exceeded"

        store.record_in_progress(KEY_A, TARGET, ActionOperation.CREATE, "h1")
        entry = store.get_ledger_entry(KEY_A)
        assert entry is not None
        assert entry.status == LedgerStatus.IN_PROGRESS
        assert entry.error is None

    def test_record_applied_without_entry(self, store: StateStore) -> None:
        with pytest.raises(StoreError, match="no ledger entry"):
            store.record_applied(KEY_A, provider_id=None, applied_state={}, attempts=1)

    def test_supersede_keeps_latest(self, store: StateStore) -> None:
        for key in (KEY_A, KEY_B):
            store.record_in_progress(key, TARGET, ActionOperation.UPDATE, key[:4])
            store.record_applied(key, provider_id=None, applied_state={}, attempts=1)

        assert store.supersede(TARGET, KEY_B) == 1

        old, new = store.get_ledger_entry(KEY_A), store.get_ledger_entry(KEY_B)
        assert old is not None and old.status == LedgerStatus.SUPERSEDED
        assert new is not None and new.status == LedgerStatus.APPLIED

    def test_list_and_filter(self, store: StateStore) -> None:
        store.record_in_progress(KEY_A, TARGET, ActionOperation.CREATE, "h1")
        store.record_in_progress(KEY_B, "Database/staging/db", ActionOperation.CREATE, "h2")
        store.record_failed(KEY_B, error="boom", attempts=1)

        assert {e.idempotency_key for e in store.list_ledger()} == {KEY_A, KEY_B}
        assert [e.idempotency_key for e in store.list_ledger(target=TARGET)] == [KEY_A]
        failed = store.list_ledger(status=LedgerStatus.FAILED)
        assert [e.idempotency_key for e in failed] == [KEY_B]

    def test_forget(self, store: StateStore) -> None:
        store.record_in_progress(KEY_A, TARGET, ActionOperation.CREATE, "h1")
        assert store.forget(KEY_A) is True
        assert store.get_ledger_entry(KEY_A) is None
        assert store.forget(KEY_A) is False


class TestInventory:
    def test_upsert_list_remove(self, store: StateStore) -> None:
        store.upsert_managed(
            TARGET, kind="Registry", environment="staging", provider_id="mem://r", spec_hash="h"
        )
        store.upsert_managed(
            "ComputeService/production/app",
            kind="ComputeService",
            environment="production",
            provider_id=None,
            spec_hash="h",
            depends_on=["Registry/production/app-repo"],
        )

        assert [m.descriptor_id for m in store.list_managed()] == [
            "ComputeService/production/app",
            TARGET,
        ]
        staging = store.list_managed(Environment.STAGING)
        assert [m.descriptor_id for m in staging] == [TARGET]
        production = store.list_managed("production")
        assert production[0].depends_on == ["Registry/production/app-repo"]

        store.remove_managed(TARGET)
        assert store.list_managed(Environment.STAGING) == []

    def test_upsert_keeps_known_provider_id(self, store: StateStore) -> None:
        store.upsert_managed(
            TARGET, kind="Registry", environment="staging", provider_id="mem://r", spec_hash="h1"
        )
        store.upsert_managed(
            TARGET, kind="Registry", environment="staging", provider_id=None, spec_hash="h2"
        )
        [managed] = store.list_managed()
        assert managed.provider_id == "mem://r"
        assert managed.spec_hash == "h2"


class TestPromotions:
    def _promotion(self, promotion_id: str, minutes: int) -> EnvironmentPromotion:
        return EnvironmentPromotion(
            promotion_id=promotion_id,
            source_ref="abc123",
            environment=Environment.STAGING,
            started_at=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
        )

    def test_save_and_get(self, store: StateStore) -> None:
        promotion = self._promotion("p1", 0)
        store.save_promotion(promotion)

        failed = promotion.model_copy(
            update={
                "status": PromotionStatus.FAILED,
                "causes": [Cause(stage="Building", message="build failed: boom")],
            }
        )
        store.save_promotion(failed)

        loaded = store.get_promotion("p1")
        assert loaded.status == PromotionStatus.FAILED
        assert loaded.explain() == "[Building] build failed: boom"

    def test_missing_promotion(self, store: StateStore) -> None:
        with pytest.raises(PromotionNotFound):
            store.get_promotion("nope")

    def test_list_newest_first(self, store: StateStore) -> None:
        for i in range(3):
            store.save_promotion(self._promotion(f"p{i}", i))
        store.save_promotion(
            EnvironmentPromotion(
                promotion_id="prod", source_ref="abc123", environment=Environment.PRODUCTION
            )
        )

        staging = store.list_promotions(Environment.STAGING)
        assert [p.promotion_id for p in staging] == ["p2", "p1", "p0"]
        assert len(store.list_promotions(limit=2)) == 2

    def test_known_good(self, store: StateStore) -> None:
        assert store.get_known_good(Environment.PRODUCTION) is None
        store.set_known_good(Environment.PRODUCTION, "app:1", "p1")
        store.set_known_good("production", "app:2", "p2")
        assert store.get_known_good("production") == "app:2"
        assert store.get_known_good(Environment.STAGING) is None


class TestCutovers:
    def test_save_get_list(self, store: StateStore) -> None:
        plan = CutoverPlan.model_validate(cutover_plan_data())
        assert store.get_cutover(plan.plan_id) is None

        store.save_cutover(plan)
        store.save_cutover(plan.model_copy(update={"status": CutoverStatus.ABORTED}))

        loaded = store.get_cutover(plan.plan_id)
        assert loaded is not None
        assert loaded.status == CutoverStatus.ABORTED
        assert [s.step_id for s in loaded.steps] == ["secrets", "traffic", "apex"]
        assert [p.plan_id for p in store.list_cutovers()] == [plan.plan_id]


class TestLeases:
    @pytest.fixture
    def wall(self) -> MutableClock:
        return MutableClock()

    @pytest.fixture
    def leased_store(self, wall: MutableClock):
        state_store = StateStore.in_memory(clock=wall)
        yield state_store
        state_store.close()

    def test_exclusive(self, leased_store: StateStore) -> None:
        assert leased_store.acquire_lease("promotion/production", "p1")
        assert not leased_store.acquire_lease("promotion/production", "p2")
        assert leased_store.lease_holder("promotion/production") == "p1"

    def test_same_holder_refreshes(self, leased_store: StateStore) -> None:
        assert leased_store.acquire_lease("promotion/staging", "p1", ttl_seconds=10)
        assert leased_store.acquire_lease("promotion/staging", "p1", ttl_seconds=10)

    def test_release(self, leased_store: StateStore) -> None:
        leased_store.acquire_lease("promotion/staging", "p1")
        assert not leased_store.release_lease("promotion/staging", "p2")
        assert leased_store.release_lease("promotion/staging", "p1")
        assert leased_store.lease_holder("promotion/staging") is None
        assert leased_store.acquire_lease("promotion/staging", "p2")

    def test_expired_lease_can_be_taken_over(
        self, leased_store: StateStore, wall: MutableClock
    ) -> None:
        assert leased_store.acquire_lease("promotion/staging", "p1", ttl_seconds=30)
        wall.advance(29)
        assert not leased_store.acquire_lease("promotion/staging", "p2")

        wall.advance(2)
        assert leased_store.lease_holder("promotion/staging") is None
        assert leased_store.acquire_lease("promotion/staging", "p2", ttl_seconds=30)
        assert leased_store.lease_holder("promotion/staging") == "p2"

    def test_context_manager(self, leased_store: StateStore) -> None:
        with leased_store.lease("cutover/apex", "c1") as acquired:
            assert acquired
            with leased_store.lease("cutover/apex", "c2") as other:
                assert not other
            assert leased_store.lease_holder("cutover/apex") == "c1"
        assert leased_store.lease_holder("cutover/apex") is None


class TestFileBackedStore:
    def test_survives_reopen(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path}/nested/state.db"
        first = StateStore(url)
        first.record_in_progress(KEY_A, TARGET, ActionOperation.CREATE, "h1")
        first.set_known_good("staging", "app:1", "p1")
        first.close()

        second = StateStore(url)
        try:
            entry = second.get_ledger_entry(KEY_A)
            assert entry is not None and entry.status == LedgerStatus.IN_PROGRESS
            assert second.get_known_good("staging") == "app:1"
        finally:
            second.close()
