"""Pydantic schemas for shipwright.

Submodules:
    descriptor: Resource descriptors, plan documents, observed state
    action: Actions, results and ledger entries
    promotion: Promotion lifecycle records
    cutover: Cutover plans and steps
    events: Notification events
    config: Orchestrator configuration
"""

from __future__ import annotations

from shipwright.schemas.action import (
    Action,
    ActionOperation,
    ActionResult,
    ActionStatus,
    BatchResult,
    ExecutionEvent,
    LedgerEntry,
    LedgerStatus,
)
from shipwright.schemas.config import OrchestratorConfig
from shipwright.schemas.cutover import (
    CutoverPlan,
    CutoverStatus,
    CutoverStep,
    CutoverStepKind,
    CutoverStepState,
    StepOutcome,
)
from shipwright.schemas.descriptor import (
    Environment,
    ObservedState,
    PlanDocument,
    ResourceDescriptor,
    ResourceKind,
    make_descriptor_id,
    parse_descriptor_id,
)
from shipwright.schemas.events import NotificationEvent, NotificationEventType
from shipwright.schemas.promotion import (
    Cause,
    EnvironmentPromotion,
    HealthCheckResult,
    HealthStatus,
    PromotionStatus,
)

__all__ = [
    "Action",
    "ActionOperation",
    "ActionResult",
    "ActionStatus",
    "BatchResult",
    "Cause",
    "CutoverPlan",
    "CutoverStatus",
    "CutoverStep",
    "CutoverStepKind",
    "CutoverStepState",
    "Environment",
    "EnvironmentPromotion",
    "ExecutionEvent",
    "HealthCheckResult",
    "HealthStatus",
    "LedgerEntry",
    "LedgerStatus",
    "NotificationEvent",
    "NotificationEventType",
    "ObservedState",
    "OrchestratorConfig",
    "PlanDocument",
    "PromotionStatus",
    "ResourceDescriptor",
    "ResourceKind",
    "StepOutcome",
    "make_descriptor_id",
    "parse_descriptor_id",
]
