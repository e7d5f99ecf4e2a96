"""Action, result and ledger schemas.

Actions are produced by the reconciler and consumed by the executor. An
action carries everything needed to apply it, including the idempotency key
under which its outcome is recorded in the ledger.

Key Components:
    ActionOperation: create, update, delete, noop
    Action: One reconciliation step for one descriptor
    ActionResult: Outcome of applying an action
    ExecutionEvent: Emitted for every applied action
    BatchResult: Outcome of applying a batch of actions
    LedgerEntry: Durable record of an action's idempotency key
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipwright.schemas.descriptor import Environment, ResourceDescriptor, ResourceKind


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ActionOperation(str, Enum):
    """Kind of change an action performs."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"

    @property
    def mutating(self) -> bool:
        """True for operations that call a mutating provider API."""
        return self is not ActionOperation.NOOP


class Action(BaseModel):
    """A single reconciliation step.

    Attributes:
        target: Descriptor identifier the action applies to.
        kind: Resource kind of the target.
        environment: Environment of the target.
        operation: Create, Update, Delete or NoOp.
        payload: Desired spec (Create/Update) or empty (Delete/NoOp).
        descriptor: Source descriptor; None for prune deletes.
        idempotency_key: SHA-256 over target, operation and spec hash.
        depends_on: Targets of actions that must succeed first.
        reason: Human-readable explanation of why the action exists.
        corrects_drift: Planned from a describe showing that an earlier apply
            of this same key was undone out of band. The executor re-applies
            it instead of raising LedgerInconsistency.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: str = Field(..., min_length=1)
    kind: ResourceKind
    environment: Environment
    operation: ActionOperation
    payload: dict[str, Any] = Field(default_factory=dict)
    descriptor: ResourceDescriptor | None = Field(default=None)
    idempotency_key: str = Field(..., min_length=64, max_length=64)
    depends_on: frozenset[str] = Field(default_factory=frozenset)
    reason: str = Field(default="")
    corrects_drift: bool = Field(default=False)


class ActionStatus(str, Enum):
    """Outcome of an action."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionResult(BaseModel):
    """Outcome of applying one action.

    Attributes:
        target: Descriptor identifier.
        operation: Operation that was applied.
        status: success, failed or skipped.
        applied_state: Provider state after a successful apply.
        provider_id: Provider-native identifier, when known.
        error: Error message for failed and skipped actions.
        error_type: Exception class name of the failure.
        attempts: Provider calls made (0 for NoOp and ledger hits).
        from_ledger: True when the result was served from the ledger.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: str
    operation: ActionOperation
    status: ActionStatus
    applied_state: dict[str, Any] = Field(default_factory=dict)
    provider_id: str | None = Field(default=None)
    error: str | None = Field(default=None)
    error_type: str | None = Field(default=None)
    attempts: int = Field(default=0, ge=0)
    from_ledger: bool = Field(default=False)
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: datetime = Field(default_factory=_utc_now)

    @property
    def succeeded(self) -> bool:
        return self.status == ActionStatus.SUCCESS


class ExecutionEvent(BaseModel):
    """Emitted once per applied action."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: Action
    result: ActionResult
    timestamp: datetime = Field(default_factory=_utc_now)


class BatchResult(BaseModel):
    """Outcome of ``apply_batch``, keyed by action target."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    results: dict[str, ActionResult] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """True when every action succeeded."""
        return all(r.status == ActionStatus.SUCCESS for r in self.results.values())

    def by_status(self, status: ActionStatus) -> list[ActionResult]:
        return [r for r in self.results.values() if r.status == status]

    @property
    def failed(self) -> list[ActionResult]:
        return self.by_status(ActionStatus.FAILED)

    @property
    def skipped(self) -> list[ActionResult]:
        return self.by_status(ActionStatus.SKIPPED)


class LedgerStatus(str, Enum):
    """Lifecycle of a ledger entry."""

    IN_PROGRESS = "in_progress"
    APPLIED = "applied"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class LedgerEntry(BaseModel):
    """Durable record of an action keyed by its idempotency key."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    idempotency_key: str
    target: str
    operation: ActionOperation
    status: LedgerStatus
    spec_hash: str
    provider_id: str | None = None
    applied_state: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


__all__ = [
    "Action",
    "ActionOperation",
    "ActionResult",
    "ActionStatus",
    "BatchResult",
    "ExecutionEvent",
    "LedgerEntry",
    "LedgerStatus",
]
