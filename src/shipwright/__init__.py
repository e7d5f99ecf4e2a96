"""shipwright: idempotent infrastructure and deployment orchestration.

This package provides:
- ResourceDescriptor, PlanGraph, load_plan: Desired state and its dependency graph
- Reconciler: Diffs desired state against live provider state
- ActionExecutor: Applies actions with retry, an idempotency ledger and bounded parallelism
- PromotionPipeline: Health-gated promotion with automatic rollback
- CutoverController: Phased, confirmed and reversible DNS/secret/traffic cutovers
- StateStore: Durable ledger, inventory, promotion and cutover records (SQLAlchemy)
- Orchestrator: Wires everything together from an OrchestratorConfig

Example:
    >>> from pathlib import Path
    >>> from shipwright import Orchestrator, load_config, load_plan
    >>> graph = load_plan(Path("plan.yaml"))
    >>> with Orchestrator.from_config(load_config()) as orchestrator:
    ...     plan, batch = orchestrator.apply(graph)

See Also:
    - shipwright.providers: Provider ABCs, the in-memory suite and httpx probes
    - shipwright.telemetry: structlog and OpenTelemetry integration
"""

from __future__ import annotations

__version__ = "0.1.0"

from shipwright.config import load_config
from shipwright.cutover.controller import CutoverController
from shipwright.cutover.loader import load_cutover_plan
from shipwright.errors import (
    ApprovalExpired,
    ConfirmationTimeout,
    CycleError,
    HealthCheckTimeout,
    LedgerInconsistency,
    PermanentProviderError,
    PromotionInProgress,
    PromotionNotFound,
    ProviderError,
    ProviderNotFoundError,
    ShipwrightError,
    StoreError,
    TransientProviderError,
    ValidationError,
)
from shipwright.executor.executor import ActionExecutor
from shipwright.orchestrator import Orchestrator
from shipwright.plan.graph import PlanGraph, topological_order
from shipwright.plan.loader import load_plan
from shipwright.promotion.pipeline import PromotionPipeline
from shipwright.reconcile.reconciler import ReconciliationPlan, Reconciler, diff
from shipwright.schemas.config import OrchestratorConfig
from shipwright.schemas.descriptor import Environment, ResourceDescriptor, ResourceKind
from shipwright.store.repository import StateStore

__all__ = [
    "ActionExecutor",
    "ApprovalExpired",
    "ConfirmationTimeout",
    "CutoverController",
    "CycleError",
    "Environment",
    "HealthCheckTimeout",
    "LedgerInconsistency",
    "Orchestrator",
    "OrchestratorConfig",
    "PermanentProviderError",
    "PlanGraph",
    "PromotionInProgress",
    "PromotionNotFound",
    "PromotionPipeline",
    "ProviderError",
    "ProviderNotFoundError",
    "ReconciliationPlan",
    "Reconciler",
    "ResourceDescriptor",
    "ResourceKind",
    "ShipwrightError",
    "StateStore",
    "StoreError",
    "TransientProviderError",
    "ValidationError",
    "__version__",
    "diff",
    "load_config",
    "load_cutover_plan",
    "load_plan",
    "topological_order",
]
