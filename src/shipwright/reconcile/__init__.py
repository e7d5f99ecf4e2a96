"""Desired-versus-observed state reconciliation."""

from __future__ import annotations

from shipwright.reconcile.compare import (
    idempotency_key,
    normalize_spec,
    spec_differences,
    spec_hash,
)
from shipwright.reconcile.reconciler import ReconciliationPlan, Reconciler, diff

__all__ = [
    "ReconciliationPlan",
    "Reconciler",
    "diff",
    "idempotency_key",
    "normalize_spec",
    "spec_differences",
    "spec_hash",
]
