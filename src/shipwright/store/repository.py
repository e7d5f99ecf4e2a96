"""Durable state store backed by SQLAlchemy.

Holds everything that must survive a process restart: the idempotency
ledger, the managed-resource inventory, promotion and cutover records,
known-good artifacts and leases.

All public methods run in their own transaction. Calls are serialised
in-process with a re-entrant lock; across processes, the primary key of the
``leases`` table is the single-writer primitive.

Example:
    >>> store = StateStore("sqlite://")
    >>> store.acquire_lease("promotion/staging", holder="p1")
    True
    >>> store.acquire_lease("promotion/staging", holder="p2")
    False
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shipwright.errors import PromotionNotFound, StoreError
from shipwright.schemas.action import ActionOperation, LedgerEntry, LedgerStatus
from shipwright.schemas.config import DEFAULT_STORE_URL
from shipwright.schemas.cutover import CutoverPlan
from shipwright.schemas.descriptor import Environment
from shipwright.schemas.promotion import EnvironmentPromotion
from shipwright.store.models import (
    Base,
    CutoverPlanModel,
    KnownGoodArtifactModel,
    LeaseModel,
    LedgerEntryModel,
    ManagedResourceModel,
    PromotionModel,
)

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class ManagedResource(BaseModel):
    """One row of the managed-resource inventory."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    descriptor_id: str
    kind: str
    environment: str
    provider_id: str | None = None
    spec_hash: str
    depends_on: list[str] = Field(default_factory=list)
    updated_at: datetime


def _create_engine(url: str, echo: bool) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo, pool_pre_ping=True)

    database = parsed.database
    if not database or database == ":memory:":
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, echo=echo, connect_args={"check_same_thread": False})


class StateStore:
    """Repository for shipwright's durable state.

    Args:
        url: SQLAlchemy database URL. ``sqlite://`` gives an in-memory store.
        echo: Log emitted SQL.
        clock: Source of the current time (for lease expiry in tests).
    """

    def __init__(
        self,
        url: str = DEFAULT_STORE_URL,
        *,
        echo: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._url = url
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self._log = logger.bind(component="state_store")
        try:
            self._engine = _create_engine(url, echo)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StoreError("initialize", str(e)) from e
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)

    @classmethod
    def in_memory(cls, **kwargs: Any) -> StateStore:
        """Create a store that lives only as long as the process."""
        return cls("sqlite://", **kwargs)

    @property
    def url(self) -> str:
        return self._url

    def close(self) -> None:
        """Dispose of the connection pool."""
        self._engine.dispose()

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        with self._lock:
            session = self._sessions()
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                self._log.error("store_operation_failed", operation=operation, error=str(e))
                raise StoreError(operation, str(e)) from e
            finally:
                session.close()

    # ------------------------------------------------------------------
    # Idempotency ledger
    # ------------------------------------------------------------------

    @staticmethod
    def _to_entry(row: LedgerEntryModel) -> LedgerEntry:
        return LedgerEntry(
            idempotency_key=row.idempotency_key,
            target=row.target,
            operation=ActionOperation(row.operation),
            status=LedgerStatus(row.status),
            spec_hash=row.spec_hash,
            provider_id=row.provider_id,
            applied_state=dict(row.applied_state or {}),
            error=row.error,
            attempts=row.attempts,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def get_ledger_entry(self, idempotency_key: str) -> LedgerEntry | None:
        """Return the ledger entry for ``idempotency_key``, if any."""
        with self._session("get_ledger_entry") as session:
            row = session.get(LedgerEntryModel, idempotency_key)
            return self._to_entry(row) if row is not None else None

    def record_in_progress(
        self,
        idempotency_key: str,
        target: str,
        operation: ActionOperation,
        spec_hash: str,
    ) -> None:
        """Mark an action as started. Re-marking resets a failed entry."""
        now = self._clock()
        with self._session("record_in_progress") as session:
            row = session.get(LedgerEntryModel, idempotency_key)
            if row is None:
                session.add(
                    LedgerEntryModel(
                        idempotency_key=idempotency_key,
                        target=target,
                        operation=operation.value,
                        status=LedgerStatus.IN_PROGRESS.value,
                        spec_hash=spec_hash,
                        applied_state={},
                        attempts=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                row.status = LedgerStatus.IN_PROGRESS.value
                row.error = None
                row.updated_at = now

    def record_applied(
        self,
        idempotency_key: str,
        *,
        provider_id: str | None,
        applied_state: dict[str, Any],
        attempts: int,
    ) -> None:
        """Mark an action as applied with its resulting state."""
        with self._session("record_applied") as session:
            row = session.get(LedgerEntryModel, idempotency_key)
            if row is None:
                raise StoreError("record_applied", f"no ledger entry for {idempotency_key}")
            row.status = LedgerStatus.APPLIED.value
            row.provider_id = provider_id
            row.applied_state = applied_state
            row.attempts = attempts
            row.error = None
            row.updated_at = self._clock()

    def record_failed(self, idempotency_key: str, *, error: str, attempts: int) -> None:
        """Mark an action as failed. Failed entries are retried on the next run."""
        with self._session("record_failed") as session:
            row = session.get(LedgerEntryModel, idempotency_key)
            if row is None:
                raise StoreError("record_failed", f"no ledger entry for {idempotency_key}")
            row.status = LedgerStatus.FAILED.value
            row.error = error
            row.attempts = attempts
            row.updated_at = self._clock()

    def supersede(self, target: str, keep_key: str) -> int:
        """Mark applied entries for ``target`` other than ``keep_key`` as superseded.

        Returns:
            Number of entries superseded.
        """
        with self._session("supersede") as session:
            rows = session.scalars(
                select(LedgerEntryModel).where(
                    LedgerEntryModel.target == target,
                    LedgerEntryModel.status == LedgerStatus.APPLIED.value,
                    LedgerEntryModel.idempotency_key != keep_key,
                )
            ).all()
            for row in rows:
                row.status = LedgerStatus.SUPERSEDED.value
                row.updated_at = self._clock()
            return len(rows)

    def list_ledger(
        self,
        target: str | None = None,
        status: LedgerStatus | None = None,
    ) -> list[LedgerEntry]:
        """List ledger entries, newest first."""
        stmt = select(LedgerEntryModel).order_by(
            LedgerEntryModel.updated_at.desc(), LedgerEntryModel.idempotency_key
        )
        if target is not None:
            stmt = stmt.where(LedgerEntryModel.target == target)
        if status is not None:
            stmt = stmt.where(LedgerEntryModel.status == status.value)
        with self._session("list_ledger") as session:
            return [self._to_entry(row) for row in session.scalars(stmt).all()]

    def forget(self, idempotency_key: str) -> bool:
        """Delete a ledger entry. Used after manual reconciliation.

        Returns:
            True if an entry was deleted.
        """
        with self._session("forget") as session:
            result = session.execute(
                delete(LedgerEntryModel).where(
                    LedgerEntryModel.idempotency_key == idempotency_key
                )
            )
            deleted = bool(result.rowcount)
        if deleted:
            self._log.info("ledger_entry_forgotten", idempotency_key=idempotency_key)
        return deleted

    # ------------------------------------------------------------------
    # Managed-resource inventory
    # ------------------------------------------------------------------

    def upsert_managed(
        self,
        descriptor_id: str,
        *,
        kind: str,
        environment: str,
        provider_id: str | None,
        spec_hash: str,
        depends_on: list[str] | None = None,
    ) -> None:
        with self._session("upsert_managed") as session:
            row = session.get(ManagedResourceModel, descriptor_id)
            now = self._clock()
            if row is None:
                session.add(
                    ManagedResourceModel(
                        descriptor_id=descriptor_id,
                        kind=kind,
                        environment=environment,
                        provider_id=provider_id,
                        spec_hash=spec_hash,
                        depends_on=sorted(depends_on or []),
                        updated_at=now,
                    )
                )
            else:
                row.provider_id = provider_id or row.provider_id
                row.spec_hash = spec_hash
                row.depends_on = sorted(depends_on or [])
                row.updated_at = now

    def remove_managed(self, descriptor_id: str) -> None:
        with self._session("remove_managed") as session:
            session.execute(
                delete(ManagedResourceModel).where(
                    ManagedResourceModel.descriptor_id == descriptor_id
                )
            )

    def list_managed(self, environment: Environment | str | None = None) -> list[ManagedResource]:
        """List managed resources ordered by identifier."""
        stmt = select(ManagedResourceModel).order_by(ManagedResourceModel.descriptor_id)
        if environment is not None:
            stmt = stmt.where(
                ManagedResourceModel.environment == Environment(environment).value
            )
        with self._session("list_managed") as session:
            return [
                ManagedResource(
                    descriptor_id=row.descriptor_id,
                    kind=row.kind,
                    environment=row.environment,
                    provider_id=row.provider_id,
                    spec_hash=row.spec_hash,
                    depends_on=list(row.depends_on or []),
                    updated_at=_aware(row.updated_at),
                )
                for row in session.scalars(stmt).all()
            ]

    # ------------------------------------------------------------------
    # Promotions
    # ------------------------------------------------------------------

    def save_promotion(self, promotion: EnvironmentPromotion) -> None:
        """Insert or replace a promotion record."""
        record = promotion.model_dump(mode="json")
        with self._session("save_promotion") as session:
            row = session.get(PromotionModel, promotion.promotion_id)
            if row is None:
                session.add(
                    PromotionModel(
                        promotion_id=promotion.promotion_id,
                        environment=promotion.environment.value,
                        status=promotion.status.value,
                        started_at=promotion.started_at,
                        record=record,
                    )
                )
            else:
                row.status = promotion.status.value
                row.record = record

    def get_promotion(self, promotion_id: str) -> EnvironmentPromotion:
        """Load a promotion record.

        Raises:
            PromotionNotFound: If no record exists.
        """
        with self._session("get_promotion") as session:
            row = session.get(PromotionModel, promotion_id)
            if row is None:
                raise PromotionNotFound(promotion_id)
            return EnvironmentPromotion.model_validate(row.record)

    def list_promotions(
        self,
        environment: Environment | str | None = None,
        limit: int = 50,
    ) -> list[EnvironmentPromotion]:
        """List promotions, newest first."""
        stmt = select(PromotionModel).order_by(PromotionModel.started_at.desc()).limit(limit)
        if environment is not None:
            stmt = stmt.where(PromotionModel.environment == Environment(environment).value)
        with self._session("list_promotions") as session:
            return [
                EnvironmentPromotion.model_validate(row.record)
                for row in session.scalars(stmt).all()
            ]

    def set_known_good(
        self,
        environment: Environment | str,
        artifact_id: str,
        promotion_id: str,
    ) -> None:
        env = Environment(environment).value
        with self._session("set_known_good") as session:
            row = session.get(KnownGoodArtifactModel, env)
            if row is None:
                session.add(
                    KnownGoodArtifactModel(
                        environment=env,
                        artifact_id=artifact_id,
                        promotion_id=promotion_id,
                        recorded_at=self._clock(),
                    )
                )
            else:
                row.artifact_id = artifact_id
                row.promotion_id = promotion_id
                row.recorded_at = self._clock()

    def get_known_good(self, environment: Environment | str) -> str | None:
        """Artifact last promoted into ``environment``, if any."""
        with self._session("get_known_good") as session:
            row = session.get(KnownGoodArtifactModel, Environment(environment).value)
            return row.artifact_id if row is not None else None

    # ------------------------------------------------------------------
    # Cutover plans
    # ------------------------------------------------------------------

    def save_cutover(self, plan: CutoverPlan) -> None:
        record = plan.model_dump(mode="json")
        with self._session("save_cutover") as session:
            row = session.get(CutoverPlanModel, plan.plan_id)
            if row is None:
                session.add(
                    CutoverPlanModel(
                        plan_id=plan.plan_id,
                        status=plan.status.value,
                        updated_at=plan.updated_at,
                        record=record,
                    )
                )
            else:
                row.status = plan.status.value
                row.updated_at = plan.updated_at
                row.record = record

    def get_cutover(self, plan_id: str) -> CutoverPlan | None:
        with self._session("get_cutover") as session:
            row = session.get(CutoverPlanModel, plan_id)
            return CutoverPlan.model_validate(row.record) if row is not None else None

    def list_cutovers(self) -> list[CutoverPlan]:
        stmt = select(CutoverPlanModel).order_by(CutoverPlanModel.updated_at.desc())
        with self._session("list_cutovers") as session:
            return [CutoverPlan.model_validate(row.record) for row in session.scalars(stmt).all()]

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def acquire_lease(
        self,
        name: str,
        holder: str,
        ttl_seconds: float | None = None,
    ) -> bool:
        """Try to acquire the lease ``name`` for ``holder``.

        Re-acquiring a lease already held by ``holder`` refreshes it. An
        expired lease may be taken over by anyone.

        Args:
            name: Lease name (e.g. ``promotion/production``).
            holder: Identifier of the acquiring party.
            ttl_seconds: Expiry; None for a lease that lasts until released.

        Returns:
            True if ``holder`` now holds the lease.
        """
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        try:
            with self._session("acquire_lease") as session:
                row = session.get(LeaseModel, name)
                if row is None:
                    session.add(
                        LeaseModel(name=name, holder=holder, acquired_at=now, expires_at=expires_at)
                    )
                elif row.holder == holder or (
                    row.expires_at is not None and _aware(row.expires_at) <= now
                ):
                    if row.holder != holder:
                        self._log.warning(
                            "lease_expired_takeover", lease=name, previous_holder=row.holder
                        )
                    row.holder = holder
                    row.acquired_at = now
                    row.expires_at = expires_at
                else:
                    return False
        except StoreError as e:
            # Another process inserted the row between our read and write
            if isinstance(e.__cause__, IntegrityError):
                return False
            raise
        self._log.debug("lease_acquired", lease=name, holder=holder)
        return True

    def release_lease(self, name: str, holder: str) -> bool:
        """Release ``name`` if held by ``holder``.

        Returns:
            True if the lease was released.
        """
        with self._session("release_lease") as session:
            result = session.execute(
                delete(LeaseModel).where(LeaseModel.name == name, LeaseModel.holder == holder)
            )
            released = bool(result.rowcount)
        if released:
            self._log.debug("lease_released", lease=name, holder=holder)
        return released

    def lease_holder(self, name: str) -> str | None:
        """Current holder of ``name``, or None if free or expired."""
        with self._session("lease_holder") as session:
            row = session.get(LeaseModel, name)
            if row is None:
                return None
            if row.expires_at is not None and _aware(row.expires_at) <= self._clock():
                return None
            return row.holder

    @contextmanager
    def lease(self, name: str, holder: str, ttl_seconds: float | None = None) -> Iterator[bool]:
        """Hold ``name`` for the duration of the block.

        Yields:
            True if the lease was acquired. The lease is released on exit
            only when it was acquired here.
        """
        acquired = self.acquire_lease(name, holder, ttl_seconds)
        try:
            yield acquired
        finally:
            if acquired:
                self.release_lease(name, holder)


__all__ = ["ManagedResource", "StateStore"]
