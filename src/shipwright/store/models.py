"""SQLAlchemy models for shipwright's durable state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all store models."""

    pass


class LedgerEntryModel(Base):
    """Idempotency ledger row, one per idempotency key.

    Maps to the LedgerEntry pydantic model.
    """

    __tablename__ = "ledger_entries"

    idempotency_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    target: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    spec_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    applied_state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_ledger_target_status", "target", "status"),)


class ManagedResourceModel(Base):
    """Inventory of resources shipwright created or updated.

    Only resources in this table are ever candidates for pruning.
    """

    __tablename__ = "managed_resources"

    descriptor_id: Mapped[str] = mapped_column(String(512), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    environment: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    provider_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    spec_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    depends_on: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PromotionModel(Base):
    """Promotion record. ``record`` holds the serialized EnvironmentPromotion."""

    __tablename__ = "promotions"

    promotion_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    environment: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    record: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (Index("ix_promotions_env_started", "environment", "started_at"),)


class KnownGoodArtifactModel(Base):
    """Last promoted artifact per environment."""

    __tablename__ = "known_good_artifacts"

    environment: Mapped[str] = mapped_column(String(32), primary_key=True)
    artifact_id: Mapped[str] = mapped_column(String(512), nullable=False)
    promotion_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CutoverPlanModel(Base):
    """Cutover plan record. ``record`` holds the serialized CutoverPlan."""

    __tablename__ = "cutover_plans"

    plan_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    record: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class LeaseModel(Base):
    """Single-writer lease. The primary key insert is the acquisition primitive."""

    __tablename__ = "leases"

    name: Mapped[str] = mapped_column(String(256), primary_key=True)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


__all__ = [
    "Base",
    "CutoverPlanModel",
    "KnownGoodArtifactModel",
    "LeaseModel",
    "LedgerEntryModel",
    "ManagedResourceModel",
    "PromotionModel",
]
