"""Exception hierarchy for shipwright.

All exceptions inherit from ShipwrightError, so callers can catch every
orchestrator failure with a single except clause.

Exception Hierarchy:
    ShipwrightError (base)
    ├── ValidationError              # Malformed plan, fails before any side effect
    │   └── CycleError               # Dependency graph is not a DAG
    ├── ProviderError                # Cloud provider call failed
    │   ├── TransientProviderError   # Rate limit, eventual consistency (retried)
    │   └── PermanentProviderError   # Authorization, malformed spec (never retried)
    ├── HealthCheckTimeout           # Health threshold not reached in window
    ├── ConfirmationTimeout          # Cutover step not confirmed in time
    ├── ApprovalExpired              # Approval gate not granted in time
    ├── PromotionInProgress          # Another promotion holds the environment
    ├── PromotionNotFound            # Unknown promotion identifier
    ├── LedgerInconsistency          # Ledger disagrees with provider state (fatal)
    ├── StoreError                   # Durable store operation failed
    └── ProviderNotFoundError        # No provider registered under a name

Exit Codes:
    0  - Success
    1  - General error (ShipwrightError)
    5  - Plan validation failed (ValidationError, CycleError)
    8  - Provider error (ProviderError)
    9  - Promotion already in progress (PromotionInProgress)
    10 - Health check / confirmation / approval timeout
    11 - Ledger inconsistency (manual reconciliation required)

Example:
    >>> from shipwright.errors import CycleError
    >>> raise CycleError(["Registry/staging/a", "ComputeService/staging/b"])
    Traceback (most recent call last):
        ...
    CycleError: Dependency cycle detected: Registry/staging/a -> ComputeService/staging/b
"""

from __future__ import annotations

from collections.abc import Sequence


class ShipwrightError(Exception):
    """Base exception for all shipwright errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
    """

    exit_code: int = 1


class ValidationError(ShipwrightError):
    """Raised when a plan document is malformed.

    Raised synchronously before any provider call. Fully recoverable by
    fixing the input document.

    Attributes:
        message: Description of the problem.
        errors: Individual problems found (one entry per offending field
            or descriptor).
        exit_code: CLI exit code (5).

    Example:
        >>> raise ValidationError(
        ...     "Invalid plan",
        ...     errors=["resources.0.kind: unknown kind 'Queue'"],
        ... )
        Traceback (most recent call last):
            ...
        ValidationError: Invalid plan: resources.0.kind: unknown kind 'Queue'
    """

    exit_code: int = 5

    def __init__(self, message: str, errors: Sequence[str] | None = None) -> None:
        """Initialize ValidationError.

        Args:
            message: Description of the problem.
            errors: Optional list of individual validation failures.
        """
        self.message = message
        self.errors = list(errors or [])

        msg = message
        if self.errors:
            msg += ": " + "; ".join(self.errors[:5])
            if len(self.errors) > 5:
                msg += f" (and {len(self.errors) - 5} more)"
        super().__init__(msg)


class CycleError(ValidationError):
    """Raised when the dependency graph contains a cycle.

    Attributes:
        nodes: Descriptor identifiers participating in the cycle, in
            traversal order.
    """

    def __init__(self, nodes: Sequence[str]) -> None:
        self.nodes = list(nodes)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.nodes)}")


class ProviderError(ShipwrightError):
    """Base class for cloud provider failures.

    Attributes:
        operation: Provider operation that failed (describe, create, ...).
        target: Descriptor identifier or provider id the call targeted.
        reason: Provider error message.
        exit_code: CLI exit code (8).
    """

    exit_code: int = 8

    def __init__(self, operation: str, target: str, reason: str) -> None:
        """Initialize ProviderError.

        Args:
            operation: Provider operation that failed.
            target: Identifier the call targeted.
            reason: Provider error message.
        """
        self.operation = operation
        self.target = target
        self.reason = reason
        super().__init__(f"Provider {operation} failed for {target}: {reason}")


class TransientProviderError(ProviderError):
    """Raised for retryable provider failures.

    Rate limiting, throttling and eventual-consistency "not found yet"
    responses. The executor retries these with exponential backoff.
    """


class PermanentProviderError(ProviderError):
    """Raised for provider failures that must never be retried.

    Authorization denied, malformed specs, quota hard limits.
    """


class HealthCheckTimeout(ShipwrightError):
    """Raised when a deployment does not become healthy within its window.

    Attributes:
        environment: Environment being promoted.
        endpoint: Probed endpoint.
        window_seconds: Configured health window.
        consecutive_required: Healthy probes required in a row.
        exit_code: CLI exit code (10).
    """

    exit_code: int = 10

    def __init__(
        self,
        environment: str,
        endpoint: str,
        window_seconds: float,
        consecutive_required: int,
    ) -> None:
        self.environment = environment
        self.endpoint = endpoint
        self.window_seconds = window_seconds
        self.consecutive_required = consecutive_required
        super().__init__(
            f"Health check for {endpoint} in {environment} did not reach "
            f"{consecutive_required} consecutive healthy result(s) "
            f"within {window_seconds:.1f}s"
        )


class ConfirmationTimeout(ShipwrightError):
    """Raised when a cutover step is not confirmed in time.

    Attributes:
        step_id: Cutover step identifier.
        timeout_seconds: How long confirmation was polled.
        exit_code: CLI exit code (10).
    """

    exit_code: int = 10

    def __init__(self, step_id: str, timeout_seconds: float) -> None:
        self.step_id = step_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Cutover step '{step_id}' was not confirmed within {timeout_seconds:.1f}s"
        )


class ApprovalExpired(ShipwrightError):
    """Raised when a step requiring approval is denied or never approved.

    Attributes:
        step_id: Cutover step identifier.
        timeout_seconds: Maximum wait for approval.
        denied: True if the approval was explicitly denied.
    """

    exit_code: int = 10

    def __init__(self, step_id: str, timeout_seconds: float, *, denied: bool = False) -> None:
        self.step_id = step_id
        self.timeout_seconds = timeout_seconds
        self.denied = denied
        if denied:
            msg = f"Approval for cutover step '{step_id}' was denied"
        else:
            msg = (
                f"Approval for cutover step '{step_id}' not received "
                f"within {timeout_seconds:.1f}s"
            )
        super().__init__(msg)


class PromotionInProgress(ShipwrightError):
    """Raised when an environment already has an active promotion.

    Attributes:
        environment: Environment with the active promotion.
        holder: Identifier of the active promotion, if known.
        exit_code: CLI exit code (9).

    Example:
        >>> raise PromotionInProgress("production", holder="a1b2c3")
        Traceback (most recent call last):
            ...
        PromotionInProgress: Promotion a1b2c3 is already active for production
    """

    exit_code: int = 9

    def __init__(self, environment: str, holder: str | None = None) -> None:
        self.environment = environment
        self.holder = holder
        if holder:
            msg = f"Promotion {holder} is already active for {environment}"
        else:
            msg = f"A promotion is already active for {environment}"
        super().__init__(msg)


class PromotionNotFound(ShipwrightError):
    """Raised when a promotion identifier is not present in the store."""

    def __init__(self, promotion_id: str) -> None:
        self.promotion_id = promotion_id
        super().__init__(f"Promotion not found: {promotion_id}")


class LedgerInconsistency(ShipwrightError):
    """Raised when the idempotency ledger disagrees with observed state.

    This is fatal: the orchestrator refuses to proceed rather than guess
    whether a mutation happened. A human must reconcile the resource and
    clear the ledger entry (``shipwright ledger forget <key>``).

    Attributes:
        idempotency_key: Ledger key in conflict.
        target: Descriptor identifier.
        detail: What the ledger recorded versus what was observed.
        exit_code: CLI exit code (11).
    """

    exit_code: int = 11

    def __init__(self, idempotency_key: str, target: str, detail: str) -> None:
        self.idempotency_key = idempotency_key
        self.target = target
        self.detail = detail
        super().__init__(
            f"Ledger inconsistency for {target} (key {idempotency_key[:12]}...): {detail}. "
            "Reconcile the resource manually, then run "
            f"'shipwright ledger forget {idempotency_key}'."
        )


class StoreError(ShipwrightError):
    """Raised when a durable store operation fails.

    Attributes:
        operation: Store operation that failed.
        reason: Description of the failure.
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store operation '{operation}' failed: {reason}")


class ProviderNotFoundError(ShipwrightError):
    """Raised when no provider is registered under the requested name."""

    def __init__(self, name: str, available: Sequence[str] | None = None) -> None:
        self.name = name
        self.available = list(available or [])
        msg = f"Provider not found: {name}"
        if self.available:
            msg += f". Available providers: {', '.join(sorted(self.available))}"
        super().__init__(msg)


__all__ = [
    "ApprovalExpired",
    "ConfirmationTimeout",
    "CycleError",
    "HealthCheckTimeout",
    "LedgerInconsistency",
    "PermanentProviderError",
    "PromotionInProgress",
    "PromotionNotFound",
    "ProviderError",
    "ProviderNotFoundError",
    "ShipwrightError",
    "StoreError",
    "TransientProviderError",
    "ValidationError",
]
