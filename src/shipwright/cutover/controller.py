"""Phased, confirmed and reversible cutovers.

Each step goes through::

    Pending -> Applied [-> AwaitingApproval] -> Confirmed
                  \\______________________________> Reverted | Failed

Before a step is applied the controller snapshots the fields it is about to
change. A step that fails to apply, is denied, is not approved in time, is
not confirmed in time, or is cancelled is restored from that snapshot
(Reverted). If the restore itself fails the step ends Failed. Either way the
plan ends Aborted and no later step is attempted.

The plan record is persisted after every step transition, so an interrupted
cutover resumes from the last recorded state.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from shipwright.cutover.loader import check_step_order
from shipwright.errors import ApprovalExpired, ConfirmationTimeout, ValidationError
from shipwright.executor.events import notify
from shipwright.executor.resilience import RetryPolicy
from shipwright.providers.base import (
    ApprovalGate,
    CloudProvider,
    ConfirmationSignal,
    NotificationSink,
)
from shipwright.schemas.config import CutoverConfig, RetryConfig
from shipwright.schemas.cutover import (
    CutoverPlan,
    CutoverStatus,
    CutoverStep,
    CutoverStepKind,
    CutoverStepState,
    StepOutcome,
)
from shipwright.schemas.events import NotificationEvent, NotificationEventType
from shipwright.schemas.promotion import Cause
from shipwright.store.repository import StateStore
from shipwright.telemetry.metrics import OrchestratorMetrics, get_metrics
from shipwright.telemetry.tracing import create_span, sanitize_error_message

logger = structlog.get_logger(__name__)

# Provider spec fields each step kind changes, and therefore restores
STEP_FIELDS: dict[CutoverStepKind, tuple[str, ...]] = {
    CutoverStepKind.DNS_RECORD: ("domain", "target"),
    CutoverStepKind.SECRET_SWAP: ("value_ref",),
    CutoverStepKind.TRAFFIC_WEIGHT: ("traffic_weights",),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CutoverController:
    """Executes cutover plans one confirmed step at a time.

    Args:
        provider: Cloud provider the steps change.
        confirmation: External signal confirming a step took effect.
        store: Durable store for cutover records.
        approvals: Gate for steps with ``requires_approval``.
        config: Timeouts and polling interval.
        retry: Retry configuration for provider calls.
        sinks: Notification sinks.
        clock: Monotonic clock (seconds).
        sleep: Sleep function.
        metrics: Metrics collector.
    """

    def __init__(
        self,
        provider: CloudProvider,
        confirmation: ConfirmationSignal,
        store: StateStore,
        *,
        approvals: ApprovalGate | None = None,
        config: CutoverConfig | None = None,
        retry: RetryConfig | None = None,
        sinks: Sequence[NotificationSink] = (),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        metrics: OrchestratorMetrics | None = None,
    ) -> None:
        self._provider = provider
        self._confirmation = confirmation
        self._store = store
        self._approvals = approvals
        self._config = config or CutoverConfig()
        self._retry = RetryPolicy(retry, sleep=sleep)
        self._sinks = list(sinks)
        self._clock = clock
        self._sleep = sleep
        self._metrics = metrics or get_metrics()
        self._log = logger.bind(component="cutover_controller")

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def execute(self, plan: CutoverPlan, cancel: threading.Event | None = None) -> CutoverPlan:
        """Run every remaining step of ``plan`` in order.

        Args:
            plan: Plan to run; a partially executed plan resumes.
            cancel: Optional cancellation signal.

        Returns:
            The plan in Completed or Aborted state.

        Raises:
            ValidationError: If the plan is malformed, or a step needs
                approval and no approval gate is configured.
        """
        problems = check_step_order(plan)
        if problems:
            raise ValidationError(f"Invalid cutover plan '{plan.plan_id}'", errors=problems)
        if plan.status in (CutoverStatus.COMPLETED, CutoverStatus.ABORTED):
            return plan
        self._require_gate(plan.steps)
        cancel = cancel or threading.Event()

        with create_span(
            "shipwright.cutover.execute",
            attributes={"shipwright.cutover.plan": plan.plan_id},
        ) as span:
            plan = self._start(plan)
            for step_id in [s.step_id for s in plan.steps]:
                if plan.step(step_id).state == CutoverStepState.CONFIRMED:
                    continue
                if cancel.is_set():
                    plan = self._abort(
                        plan, Cause(stage="Pending", message="cutover cancelled", target=step_id)
                    )
                    break
                outcome = self.execute_step(plan, step_id, cancel=cancel)
                plan = outcome.plan
                if not outcome.confirmed:
                    break
            else:
                completed = plan.model_copy(
                    update={"status": CutoverStatus.COMPLETED, "updated_at": _utc_now()}
                )
                plan = self._save(completed)
                self._log.info("cutover_completed", plan_id=plan.plan_id, steps=len(plan.steps))
                self._notify(NotificationEventType.CUTOVER_COMPLETED, plan)
            span.set_attribute("shipwright.cutover.status", plan.status.value)
        return plan

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    def execute_step(
        self,
        plan: CutoverPlan,
        step_id: str,
        cancel: threading.Event | None = None,
    ) -> StepOutcome:
        """Apply, optionally approve, and confirm one step.

        Failures after the change is applied revert the step and abort the
        plan; they are reported in the outcome, not raised.

        Raises:
            ValidationError: If the step is unknown, the plan is finished,
                a predecessor is not Confirmed, the step already ended, or
                it needs approval and no gate is configured.
        """
        problems = check_step_order(plan)
        if problems:
            raise ValidationError(f"Invalid cutover plan '{plan.plan_id}'", errors=problems)
        try:
            step = plan.step(step_id)
        except KeyError:
            raise ValidationError(
                f"Unknown cutover step '{step_id}'", errors=[f"plan '{plan.plan_id}'"]
            ) from None
        if plan.status in (CutoverStatus.COMPLETED, CutoverStatus.ABORTED):
            raise ValidationError(
                f"Cutover plan '{plan.plan_id}' is {plan.status.value}",
                errors=["finished plans cannot run further steps"],
            )
        unconfirmed = [
            p for p in step.predecessors if plan.step(p).state != CutoverStepState.CONFIRMED
        ]
        if unconfirmed:
            raise ValidationError(
                f"Cutover step '{step_id}' is not ready",
                errors=[f"predecessor '{p}' is not Confirmed" for p in unconfirmed],
            )
        if step.state == CutoverStepState.CONFIRMED:
            return StepOutcome(step_id=step_id, applied=True, confirmed=True, plan=plan)
        if step.state in (CutoverStepState.REVERTED, CutoverStepState.FAILED):
            raise ValidationError(
                f"Cutover step '{step_id}' already ended {step.state.value}",
                errors=["start a new plan to retry"],
            )
        self._require_gate([step])
        cancel = cancel or threading.Event()
        log = self._log.bind(plan_id=plan.plan_id, step_id=step_id, kind=step.kind.value)

        with create_span(
            "shipwright.cutover.step",
            attributes={
                "shipwright.cutover.plan": plan.plan_id,
                "shipwright.cutover.step": step_id,
                "shipwright.cutover.kind": step.kind.value,
            },
        ) as span:
            plan = self._start(plan)

            if step.state == CutoverStepState.PENDING:
                try:
                    previous = self._snapshot(step)
                except Exception as e:  # noqa: BLE001
                    # Nothing has changed yet, so there is nothing to revert
                    message = sanitize_error_message(str(e))
                    log.error("cutover_snapshot_failed", error=message)
                    failed = step.model_copy(
                        update={"state": CutoverStepState.FAILED, "error": message}
                    )
                    plan = self._abort(
                        plan.with_step(failed),
                        Cause(
                            stage="Snapshot",
                            message=f"could not read current value: {message}",
                            target=step_id,
                            error_type=type(e).__name__,
                        ),
                        step=failed,
                    )
                    return StepOutcome(
                        step_id=step_id, applied=False, confirmed=False, error=message, plan=plan
                    )
                step = step.model_copy(update={"previous_value": previous})
                plan = self._save(plan.with_step(step))

                try:
                    self._retry.call(
                        lambda: self._apply(step), operation=f"cutover_{step.kind.value}"
                    )
                except Exception as e:  # noqa: BLE001
                    # A failed apply may still have changed something
                    message = sanitize_error_message(str(e))
                    log.error("cutover_apply_failed", error=message)
                    return self._revert(
                        plan,
                        step,
                        Cause(
                            stage="Applying",
                            message=message,
                            target=step_id,
                            error_type=type(e).__name__,
                        ),
                        applied=False,
                    )
                step = step.model_copy(
                    update={"state": CutoverStepState.APPLIED, "applied_at": _utc_now()}
                )
                plan = self._save(plan.with_step(step))
                self._metrics.record_cutover_step(step.kind.value, step.state.value)
                log.info("cutover_step_applied", target=step.target)

            if step.requires_approval and step.approved_at is None:
                step = step.model_copy(update={"state": CutoverStepState.AWAITING_APPROVAL})
                plan = self._save(plan.with_step(step))
                log.info("cutover_awaiting_approval")
                refusal = self._await_approval(step, cancel)
                if refusal is not None:
                    return self._revert(plan, step, refusal)
                step = step.model_copy(update={"approved_at": _utc_now()})
                plan = self._save(plan.with_step(step))

            failure = self._await_confirmation(step, cancel)
            if failure is not None:
                return self._revert(plan, step, failure)

            step = step.model_copy(
                update={
                    "state": CutoverStepState.CONFIRMED,
                    "confirmed_at": _utc_now(),
                    "error": None,
                }
            )
            plan = self._save(plan.with_step(step))
            span.set_attribute("shipwright.cutover.step_state", step.state.value)
        self._metrics.record_cutover_step(step.kind.value, step.state.value)
        log.info("cutover_step_confirmed")
        self._notify(NotificationEventType.CUTOVER_STEP_CONFIRMED, plan, step=step)
        return StepOutcome(step_id=step_id, applied=True, confirmed=True, plan=plan)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_gate(self, steps: Sequence[CutoverStep]) -> None:
        if self._approvals is not None:
            return
        needing = [
            s.step_id
            for s in steps
            if s.requires_approval and s.state != CutoverStepState.CONFIRMED
        ]
        if needing:
            raise ValidationError(
                "Cutover steps require approval but no approval gate is configured",
                errors=[f"step '{s}' has requires_approval" for s in needing],
            )

    def _save(self, plan: CutoverPlan) -> CutoverPlan:
        self._store.save_cutover(plan)
        return plan

    def _start(self, plan: CutoverPlan) -> CutoverPlan:
        if plan.status != CutoverStatus.PENDING:
            return plan
        self._log.info("cutover_started", plan_id=plan.plan_id, steps=len(plan.steps))
        return self._save(
            plan.model_copy(update={"status": CutoverStatus.RUNNING, "updated_at": _utc_now()})
        )

    def _snapshot(self, step: CutoverStep) -> dict[str, Any]:
        observed = self._retry.call(
            lambda: self._provider.describe(step.target), operation="describe"
        )
        return {"exists": observed.exists, "spec": dict(observed.spec)}

    def _apply(self, step: CutoverStep) -> None:
        if step.kind == CutoverStepKind.DNS_RECORD:
            assert step.domain is not None and isinstance(step.value, str)
            self._provider.associate_domain(step.target, step.domain, step.value)
        elif step.kind == CutoverStepKind.SECRET_SWAP:
            assert isinstance(step.value, str)
            self._provider.rotate_credential(step.target, step.value)
        else:
            assert isinstance(step.value, dict)
            self._provider.update(step.target, {"traffic_weights": dict(step.value)})

    def _restore(self, step: CutoverStep) -> None:
        previous = step.previous_value or {"exists": False, "spec": {}}
        if not previous["exists"]:
            self._provider.delete(step.target)
            return
        spec = previous["spec"]
        self._provider.update(step.target, {f: spec.get(f) for f in STEP_FIELDS[step.kind]})

    def _await_approval(self, step: CutoverStep, cancel: threading.Event) -> Cause | None:
        assert self._approvals is not None
        cancelled = Cause(
            stage="AwaitingApproval", message="cutover cancelled", target=step.step_id
        )
        if cancel.is_set():
            return cancelled
        timeout = self._config.approval_timeout_seconds
        try:
            approved = self._approvals.wait(step, timeout, cancel)
        except ApprovalExpired as e:
            return Cause(
                stage="AwaitingApproval",
                message=str(e),
                target=step.step_id,
                error_type=type(e).__name__,
            )
        if approved:
            return None
        if cancel.is_set():
            return cancelled
        denied = ApprovalExpired(step.step_id, timeout, denied=True)
        return Cause(
            stage="AwaitingApproval",
            message=str(denied),
            target=step.step_id,
            error_type=type(denied).__name__,
        )

    def _await_confirmation(self, step: CutoverStep, cancel: threading.Event) -> Cause | None:
        timeout = self._config.confirmation_timeout_seconds
        deadline = self._clock() + timeout
        polls = 0
        while True:
            if cancel.is_set():
                return Cause(stage="Confirming", message="cutover cancelled", target=step.step_id)
            polls += 1
            try:
                confirmed = self._confirmation.confirm(step)
            except Exception as e:  # noqa: BLE001
                # Signal errors count as "not yet confirmed"
                self._log.debug(
                    "confirmation_check_failed", step_id=step.step_id, error=str(e)
                )
                confirmed = False
            if confirmed:
                self._log.debug("cutover_step_confirmed_after", step_id=step.step_id, polls=polls)
                return None
            if self._clock() >= deadline:
                expired = ConfirmationTimeout(step.step_id, timeout)
                return Cause(
                    stage="Confirming",
                    message=str(expired),
                    target=step.step_id,
                    error_type=type(expired).__name__,
                )
            self._sleep(self._config.confirmation_interval_seconds)

    def _revert(
        self,
        plan: CutoverPlan,
        step: CutoverStep,
        cause: Cause,
        *,
        applied: bool = True,
    ) -> StepOutcome:
        log = self._log.bind(plan_id=plan.plan_id, step_id=step.step_id)
        log.warning("cutover_step_reverting", reason=cause.message)
        try:
            with create_span("shipwright.cutover.revert"):
                self._retry.call(lambda: self._restore(step), operation="cutover_revert")
        except Exception as e:  # noqa: BLE001
            message = sanitize_error_message(str(e))
            log.error("cutover_revert_failed", error=message)
            ended = step.model_copy(
                update={"state": CutoverStepState.FAILED, "error": cause.message}
            )
            outcome_cause = Cause(
                stage="Reverting",
                message=f"revert failed, manual repair needed: {message}",
                target=step.step_id,
                error_type=type(e).__name__,
            )
        else:
            ended = step.model_copy(
                update={"state": CutoverStepState.REVERTED, "error": cause.message}
            )
            outcome_cause = Cause(
                stage="Reverting", message="restored previous value", target=step.step_id
            )
        plan = self._abort(plan.with_step(ended), cause, outcome_cause, step=ended)
        return StepOutcome(
            step_id=step.step_id,
            applied=applied,
            confirmed=False,
            reverted=ended.state == CutoverStepState.REVERTED,
            error=cause.message,
            plan=plan,
        )

    def _abort(
        self,
        plan: CutoverPlan,
        *causes: Cause,
        step: CutoverStep | None = None,
    ) -> CutoverPlan:
        plan = self._save(
            plan.model_copy(
                update={
                    "status": CutoverStatus.ABORTED,
                    "causes": [*plan.causes, *causes],
                    "updated_at": _utc_now(),
                }
            )
        )
        if step is not None:
            self._metrics.record_cutover_step(step.kind.value, step.state.value)
        self._log.warning(
            "cutover_aborted",
            plan_id=plan.plan_id,
            causes=[c.render() for c in plan.causes],
        )
        self._notify(NotificationEventType.CUTOVER_ABORTED, plan, step=step)
        return plan

    def _notify(
        self,
        event_type: NotificationEventType,
        plan: CutoverPlan,
        *,
        step: CutoverStep | None = None,
    ) -> None:
        data: dict[str, Any] = {
            "status": plan.status.value,
            "causes": [c.render() for c in plan.causes],
        }
        if step is not None:
            data.update(step_id=step.step_id, kind=step.kind.value, state=step.state.value)
        event = NotificationEvent(event_type=event_type, subject=plan.plan_id, data=data)
        notify(self._sinks, event)


__all__ = ["STEP_FIELDS", "CutoverController"]
