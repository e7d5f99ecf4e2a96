"""Cutover plan schemas.

A cutover moves live traffic, DNS or credentials from an old target to a new
one in ordered, individually confirmed steps. Every step records the value
it replaced so it can be reverted.

Key Components:
    CutoverStepKind: dns_record, secret_swap, traffic_weight
    CutoverStepState: Pending -> Applied -> AwaitingApproval -> Confirmed,
        or Reverted / Failed
    CutoverStep: One phased change
    CutoverPlan: Ordered steps with plan-level status
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shipwright.schemas.promotion import Cause


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CutoverStepKind(str, Enum):
    """Kinds of cutover step."""

    DNS_RECORD = "dns_record"
    SECRET_SWAP = "secret_swap"
    TRAFFIC_WEIGHT = "traffic_weight"


class CutoverStepState(str, Enum):
    """Per-step lifecycle."""

    PENDING = "Pending"
    APPLIED = "Applied"
    AWAITING_APPROVAL = "AwaitingApproval"
    CONFIRMED = "Confirmed"
    REVERTED = "Reverted"
    FAILED = "Failed"


class CutoverStatus(str, Enum):
    """Plan-level lifecycle."""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


class CutoverStep(BaseModel):
    """One phased change.

    Attributes:
        step_id: Unique identifier within the plan.
        kind: What the step changes.
        target: Descriptor identifier of the resource changed (the DnsRecord,
            SecretBundle or ComputeService).
        domain: Domain name, for ``dns_record`` steps.
        value: New value. A hostname or address for ``dns_record``, a secret
            reference for ``secret_swap``, a mapping of revision to weight
            for ``traffic_weight``.
        predecessors: Steps that must be Confirmed before this one runs.
        requires_approval: Wait for a manual approval after applying.
        state: Current lifecycle state.
        previous_value: Snapshot taken before applying (``{"exists": bool,
            "spec": {...}}``). Used to revert.
        approved_at: When the manual approval was granted.
        error: Last error message.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    step_id: str = Field(..., min_length=1, max_length=128)
    kind: CutoverStepKind
    target: str = Field(..., min_length=1)
    domain: str | None = None
    value: str | dict[str, float] = Field(...)
    predecessors: list[str] = Field(default_factory=list)
    requires_approval: bool = False
    state: CutoverStepState = CutoverStepState.PENDING
    previous_value: dict[str, Any] | None = None
    applied_at: datetime | None = None
    approved_at: datetime | None = None
    confirmed_at: datetime | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _check_value_shape(self) -> CutoverStep:
        if self.kind == CutoverStepKind.DNS_RECORD:
            if not self.domain:
                raise ValueError(f"dns_record step '{self.step_id}' requires 'domain'")
            if not isinstance(self.value, str):
                raise ValueError(f"dns_record step '{self.step_id}' value must be a string")
        elif self.kind == CutoverStepKind.SECRET_SWAP:
            if not isinstance(self.value, str):
                raise ValueError(f"secret_swap step '{self.step_id}' value must be a reference")
        elif not isinstance(self.value, dict) or not self.value:
            raise ValueError(
                f"traffic_weight step '{self.step_id}' value must map revisions to weights"
            )
        return self


class CutoverPlan(BaseModel):
    """Ordered cutover steps with plan-level status."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    plan_id: str = Field(..., min_length=1)
    steps: list[CutoverStep] = Field(..., min_length=1)
    status: CutoverStatus = CutoverStatus.PENDING
    causes: list[Cause] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    def step(self, step_id: str) -> CutoverStep:
        """Return the step with ``step_id``.

        Raises:
            KeyError: If no such step exists.
        """
        for candidate in self.steps:
            if candidate.step_id == step_id:
                return candidate
        raise KeyError(step_id)

    def with_step(self, step: CutoverStep) -> CutoverPlan:
        """Return a copy of the plan with ``step`` replacing its namesake."""
        steps = [step if s.step_id == step.step_id else s for s in self.steps]
        return self.model_copy(update={"steps": steps, "updated_at": _utc_now()})


class StepOutcome(BaseModel):
    """Result of executing one cutover step."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    step_id: str
    applied: bool
    confirmed: bool
    reverted: bool = False
    error: str | None = None
    plan: CutoverPlan


__all__ = [
    "CutoverPlan",
    "CutoverStatus",
    "CutoverStep",
    "CutoverStepKind",
    "CutoverStepState",
    "StepOutcome",
]
