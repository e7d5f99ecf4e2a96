"""Promotion lifecycle schemas.

An EnvironmentPromotion tracks one artifact moving into one environment.
Records are immutable; each state transition produces a new record via
``model_copy`` which the pipeline persists before continuing.

Key Components:
    PromotionStatus: Pending -> Building -> Deploying -> HealthChecking ->
        Promoted | RolledBack | Failed
    HealthStatus: Result of a single health probe
    HealthCheckResult: One recorded probe
    Cause: One link in the explanation of a terminal state
    EnvironmentPromotion: Complete promotion record
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from shipwright.schemas.descriptor import Environment


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class PromotionStatus(str, Enum):
    """Promotion lifecycle states.

    Examples:
        >>> PromotionStatus.ROLLED_BACK.terminal
        True
        >>> PromotionStatus.DEPLOYING.terminal
        False
    """

    PENDING = "Pending"
    BUILDING = "Building"
    DEPLOYING = "Deploying"
    HEALTH_CHECKING = "HealthChecking"
    PROMOTED = "Promoted"
    ROLLED_BACK = "RolledBack"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {PromotionStatus.PROMOTED, PromotionStatus.ROLLED_BACK, PromotionStatus.FAILED}
)


class HealthStatus(str, Enum):
    """Result of a single health probe."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNREACHABLE = "unreachable"


# =============================================================================
# Pydantic Models
# =============================================================================


class HealthCheckResult(BaseModel):
    """One recorded health probe."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoint: str
    status: HealthStatus
    checked_at: datetime = Field(default_factory=_utc_now)
    detail: str | None = None


class Cause(BaseModel):
    """One entry of a terminal-state explanation.

    Attributes:
        stage: Stage or step where the problem occurred (e.g. ``Deploying``).
        message: What happened.
        target: Action target or cutover step, when applicable.
        error_type: Exception class name, when the cause is an error.

    Examples:
        >>> Cause(stage="Building", message="build failed: no such ref").render()
        '[Building] build failed: no such ref'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    stage: str
    message: str
    target: str | None = None
    error_type: str | None = None

    def render(self) -> str:
        where = f" {self.target}" if self.target else ""
        return f"[{self.stage}{where}] {self.message}"


class EnvironmentPromotion(BaseModel):
    """Complete record of promoting one artifact into one environment.

    Attributes:
        promotion_id: Unique identifier (UUID hex).
        source_ref: Source revision that was built.
        artifact_id: Built artifact, once known.
        environment: Target environment.
        started_at: When the promotion was initiated.
        updated_at: Last transition time.
        status: Current lifecycle state.
        health_check_results: Every probe performed, in order.
        previous_artifact_id: Known-good artifact at initiation time, used
            for rollback.
        rollback_artifact_id: Artifact restored by rollback, if any.
        endpoint: Health endpoint of the deployed service.
        causes: Ordered explanation of a RolledBack or Failed outcome.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    promotion_id: str = Field(..., min_length=1)
    source_ref: str = Field(..., min_length=1)
    artifact_id: str | None = None
    environment: Environment
    started_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    status: PromotionStatus = PromotionStatus.PENDING
    health_check_results: list[HealthCheckResult] = Field(default_factory=list)
    previous_artifact_id: str | None = None
    rollback_artifact_id: str | None = None
    endpoint: str | None = None
    causes: list[Cause] = Field(default_factory=list)

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def explain(self) -> str:
        """Render the cause chain, one cause per line."""
        return "\n".join(c.render() for c in self.causes)


__all__ = [
    "Cause",
    "EnvironmentPromotion",
    "HealthCheckResult",
    "HealthStatus",
    "PromotionStatus",
]
