"""Action executor.

Applies reconciliation actions against a cloud provider with retry, an
idempotency ledger and bounded parallelism.

Ledger protocol for one action (keyed by ``idempotency_key``):
    1. ``applied`` entry: describe the target. If live state still satisfies
       the action, return the recorded result without mutating anything.
       If it does not and the reconciler flagged the action as correcting
       drift, apply it again. Otherwise raise LedgerInconsistency.
    2. ``in_progress`` entry (a previous run died mid-apply): describe the
       target. If the action already took effect, mark it applied;
       otherwise apply it again.
    3. No entry, or ``failed``/``superseded``: record ``in_progress``, call
       the provider under the retry policy, record ``applied`` or
       ``failed``.

A successful apply supersedes older applied entries for the same target,
so a spec that changes and later changes back is applied again rather than
mistaken for an inconsistency.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from datetime import datetime, timezone

import structlog

from shipwright.errors import LedgerInconsistency, ProviderError
from shipwright.executor.events import EventSink, emit
from shipwright.executor.resilience import RetryPolicy
from shipwright.providers.base import CloudProvider
from shipwright.reconcile.compare import spec_differences, spec_hash
from shipwright.schemas.action import (
    Action,
    ActionOperation,
    ActionResult,
    ActionStatus,
    BatchResult,
    ExecutionEvent,
    LedgerStatus,
)
from shipwright.schemas.config import RetryConfig
from shipwright.schemas.descriptor import ObservedState
from shipwright.store.repository import StateStore
from shipwright.telemetry.metrics import OrchestratorMetrics, get_metrics
from shipwright.telemetry.tracing import create_span, sanitize_error_message

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 8


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ActionExecutor:
    """Applies actions with retry, idempotency and bounded concurrency.

    Args:
        provider: Cloud provider to mutate.
        store: Durable store holding the ledger and inventory.
        retry: Retry configuration for provider calls.
        concurrency: Maximum actions applied in parallel by apply_batch.
        sinks: Execution event sinks.
        sleep: Sleep function used between retries.
        metrics: Metrics collector.

    Example:
        >>> executor = ActionExecutor(provider, store)  # doctest: +SKIP
        >>> batch = executor.apply_batch(plan.actions)  # doctest: +SKIP
    """

    def __init__(
        self,
        provider: CloudProvider,
        store: StateStore,
        *,
        retry: RetryConfig | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        sinks: Sequence[EventSink] = (),
        sleep: Callable[[float], None] = time.sleep,
        metrics: OrchestratorMetrics | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._provider = provider
        self._store = store
        self._metrics = metrics or get_metrics()
        self._retry = RetryPolicy(retry, sleep=sleep, on_retry=self._metrics.record_retry)
        self._concurrency = concurrency
        self._sinks = list(sinks)
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._log = logger.bind(component="action_executor")

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    # ------------------------------------------------------------------
    # Single action
    # ------------------------------------------------------------------

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        with self._key_locks_guard:
            lock = self._key_locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def apply(self, action: Action) -> ActionResult:
        """Apply one action.

        Provider failures are returned as a failed result, never raised.

        Args:
            action: Action produced by the reconciler.

        Returns:
            ActionResult with status, applied state, error and attempt count.

        Raises:
            LedgerInconsistency: If an applied ledger entry disagrees with
                live provider state.
            StoreError: If the ledger cannot be read or written.
        """
        started = _utc_now()
        start = time.monotonic()

        if action.operation == ActionOperation.NOOP:
            result = ActionResult(
                target=action.target,
                operation=action.operation,
                status=ActionStatus.SUCCESS,
                started_at=started,
                completed_at=_utc_now(),
            )
        else:
            with create_span(
                "shipwright.executor.apply",
                attributes={
                    "shipwright.action.target": action.target,
                    "shipwright.action.operation": action.operation.value,
                },
            ) as span:
                with self._key_lock(action.idempotency_key):
                    result = self._apply_exclusive(action, started)
                span.set_attribute("shipwright.action.status", result.status.value)
                span.set_attribute("shipwright.action.attempts", result.attempts)

        self._metrics.record_action(
            action.operation.value,
            action.kind.value,
            result.status.value,
            duration_seconds=time.monotonic() - start,
        )
        emit(self._sinks, ExecutionEvent(action=action, result=result))
        return result

    def _describe(self, target: str) -> ObservedState:
        return self._retry.call(lambda: self._provider.describe(target), operation="describe")

    @staticmethod
    def _unsatisfied(action: Action, observed: ObservedState) -> str | None:
        """Why ``observed`` does not reflect ``action``, or None if it does."""
        if action.operation == ActionOperation.DELETE:
            return "resource still exists" if observed.exists else None
        if not observed.exists:
            return "resource does not exist"
        differences = spec_differences(action.kind, action.payload, observed.spec)
        if differences:
            return f"fields differ: {', '.join(differences)}"
        return None

    def _apply_exclusive(self, action: Action, started: datetime) -> ActionResult:
        key = action.idempotency_key
        entry = self._store.get_ledger_entry(key)
        log = self._log.bind(target=action.target, operation=action.operation.value)

        if entry is not None and entry.status in (LedgerStatus.APPLIED, LedgerStatus.IN_PROGRESS):
            try:
                observed = self._describe(action.target)
            except Exception as e:  # noqa: BLE001
                return self._failed(action, started, str(e), type(e).__name__, attempts=0)
            problem = self._unsatisfied(action, observed)

            if entry.status == LedgerStatus.APPLIED:
                if problem is None:
                    log.debug("action_served_from_ledger")
                    return ActionResult(
                        target=action.target,
                        operation=action.operation,
                        status=ActionStatus.SUCCESS,
                        applied_state=entry.applied_state,
                        provider_id=entry.provider_id,
                        from_ledger=True,
                        started_at=started,
                        completed_at=_utc_now(),
                    )
                if not action.corrects_drift:
                    log.error("ledger_inconsistency", idempotency_key=key, detail=problem)
                    raise LedgerInconsistency(
                        key, action.target, f"ledger records applied but {problem}"
                    )
                log.warning("action_reapplying_after_drift", idempotency_key=key, detail=problem)
            elif problem is None:
                log.info("action_resumed_already_applied")
                return self._succeeded(
                    action, started, observed.provider_id, attempts=0, from_ledger=True
                )
            else:
                log.info("action_resumed_reapplying", detail=problem)

        self._store.record_in_progress(
            key, action.target, action.operation, spec_hash(action.kind, action.payload)
        )
        attempts = 0

        def attempt() -> str | None:
            nonlocal attempts
            attempts += 1
            return self._mutate(action)

        try:
            provider_id = self._retry.call(attempt, operation=action.operation.value)
        except Exception as e:  # noqa: BLE001
            # Any provider exception is a failed action; non-provider ones are permanent
            error = sanitize_error_message(str(e))
            self._store.record_failed(key, error=error, attempts=attempts)
            if not isinstance(e, ProviderError):
                log.warning("provider_raised_unexpected", error_type=type(e).__name__)
            return self._failed(action, started, error, type(e).__name__, attempts=attempts)

        return self._succeeded(action, started, provider_id, attempts=attempts, from_ledger=False)

    def _mutate(self, action: Action) -> str | None:
        if action.operation == ActionOperation.CREATE:
            if action.descriptor is None:
                raise ValueError(f"create action for {action.target} has no descriptor")
            return self._provider.create(action.descriptor)
        if action.operation == ActionOperation.UPDATE:
            self._provider.update(action.target, dict(action.payload))
            return None
        self._provider.delete(action.target)
        return None

    def _succeeded(
        self,
        action: Action,
        started: datetime,
        provider_id: str | None,
        *,
        attempts: int,
        from_ledger: bool,
    ) -> ActionResult:
        applied_state = dict(action.payload)
        self._store.record_applied(
            action.idempotency_key,
            provider_id=provider_id,
            applied_state=applied_state,
            attempts=attempts,
        )
        self._store.supersede(action.target, action.idempotency_key)
        if action.operation == ActionOperation.DELETE:
            self._store.remove_managed(action.target)
        else:
            self._store.upsert_managed(
                action.target,
                kind=action.kind.value,
                environment=action.environment.value,
                provider_id=provider_id,
                spec_hash=spec_hash(action.kind, action.payload),
                depends_on=sorted(action.depends_on),
            )
        return ActionResult(
            target=action.target,
            operation=action.operation,
            status=ActionStatus.SUCCESS,
            applied_state=applied_state,
            provider_id=provider_id,
            attempts=attempts,
            from_ledger=from_ledger,
            started_at=started,
            completed_at=_utc_now(),
        )

    @staticmethod
    def _failed(
        action: Action,
        started: datetime,
        error: str,
        error_type: str,
        *,
        attempts: int,
        status: ActionStatus = ActionStatus.FAILED,
    ) -> ActionResult:
        return ActionResult(
            target=action.target,
            operation=action.operation,
            status=status,
            error=error,
            error_type=error_type,
            attempts=attempts,
            started_at=started,
            completed_at=_utc_now(),
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def _skip_dependents(
        self,
        failed_target: str,
        by_target: dict[str, Action],
        dependents: dict[str, set[str]],
        results: dict[str, ActionResult],
    ) -> None:
        queue = deque([(failed_target, failed_target)])
        while queue:
            node, root = queue.popleft()
            for dependent in sorted(dependents[node]):
                if dependent in results:
                    continue
                action = by_target[dependent]
                result = self._failed(
                    action,
                    _utc_now(),
                    f"dependency {node} did not succeed"
                    + (f" (root failure: {root})" if node != root else ""),
                    "DependencyFailed",
                    attempts=0,
                    status=ActionStatus.SKIPPED,
                )
                results[dependent] = result
                self._metrics.record_action(
                    action.operation.value, action.kind.value, result.status.value
                )
                emit(self._sinks, ExecutionEvent(action=action, result=result))
                queue.append((dependent, root))

    def apply_batch(self, actions: Sequence[Action]) -> BatchResult:
        """Apply actions in dependency order with bounded parallelism.

        An action is dispatched only after every dependency in the batch
        completed successfully. Dependents of a failed action, transitively,
        are skipped.

        Args:
            actions: Actions to apply. ``depends_on`` entries naming targets
                outside the batch are treated as satisfied.

        Returns:
            BatchResult keyed by target.

        Raises:
            LedgerInconsistency: Stops new dispatches; raised once in-flight
                actions have finished.
        """
        by_target = {a.target: a for a in actions}
        waiting = {t: set(a.depends_on) & by_target.keys() for t, a in by_target.items()}
        dependents: dict[str, set[str]] = {t: set() for t in by_target}
        for target, deps in waiting.items():
            for dep in deps:
                dependents[dep].add(target)

        results: dict[str, ActionResult] = {}
        ready = deque(sorted(t for t, deps in waiting.items() if not deps))
        fatal: Exception | None = None

        with create_span(
            "shipwright.executor.apply_batch",
            attributes={"shipwright.batch.size": len(by_target)},
        ):
            with ThreadPoolExecutor(
                max_workers=self._concurrency, thread_name_prefix="shipwright-apply"
            ) as pool:
                in_flight: dict[Future[ActionResult], str] = {}
                while ready or in_flight:
                    while ready and fatal is None and len(in_flight) < self._concurrency:
                        target = ready.popleft()
                        in_flight[pool.submit(self.apply, by_target[target])] = target
                    if not in_flight:
                        break

                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    for future in sorted(done, key=lambda f: in_flight[f]):
                        target = in_flight.pop(future)
                        try:
                            result = future.result()
                        except Exception as e:  # noqa: BLE001
                            # Halt dispatching; re-raised after in-flight work drains
                            if fatal is None:
                                fatal = e
                                self._log.error(
                                    "batch_halted",
                                    target=target,
                                    error_type=type(e).__name__,
                                    error=str(e),
                                )
                            continue

                        results[target] = result
                        if result.status == ActionStatus.SUCCESS:
                            for dependent in sorted(dependents[target]):
                                waiting[dependent].discard(target)
                                if not waiting[dependent] and dependent not in results:
                                    ready.append(dependent)
                        else:
                            self._skip_dependents(target, by_target, dependents, results)

        if fatal is not None:
            raise fatal

        batch = BatchResult(results=results)
        self._log.info(
            "batch_applied",
            total=len(results),
            failed=len(batch.failed),
            skipped=len(batch.skipped),
        )
        return batch


__all__ = ["DEFAULT_CONCURRENCY", "ActionExecutor"]
