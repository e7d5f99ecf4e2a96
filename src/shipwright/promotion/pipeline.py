"""Health-gated promotion of artifacts through environments.

Lifecycle of one EnvironmentPromotion::

    Pending -> Building -> Deploying -> HealthChecking -> Promoted
                  |            |               |
                  v            v               v
                Failed       Failed     RolledBack | Failed

Each transition is persisted before the next stage starts. :meth:`run`
dispatches on the persisted status, so calling it again for a promotion that
was interrupted resumes where it stopped; the executor's idempotency ledger
makes a repeated deploy safe.

Only one promotion may be active per environment. The guard is a durable
lease named ``promotion/<environment>``, taken by :meth:`initiate` and
released when the promotion reaches a terminal state.

Provider, build and health errors end up in the terminal record's cause
chain; they are never raised. LedgerInconsistency and unexpected errors
(a broken store, a bug) are the exception: the promotion is marked Failed,
releasing the lease, and the error propagates.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from shipwright.errors import (
    HealthCheckTimeout,
    LedgerInconsistency,
    PermanentProviderError,
    PromotionInProgress,
    ProviderError,
    ValidationError,
)
from shipwright.executor.events import notify
from shipwright.executor.executor import ActionExecutor
from shipwright.plan.graph import PlanGraph
from shipwright.providers.base import (
    ArtifactBuilder,
    CloudProvider,
    HealthProbe,
    NotificationSink,
)
from shipwright.reconcile.reconciler import Reconciler
from shipwright.schemas.action import ActionStatus
from shipwright.schemas.config import PromotionConfig
from shipwright.schemas.descriptor import Environment, ResourceDescriptor, ResourceKind
from shipwright.schemas.events import NotificationEvent, NotificationEventType
from shipwright.schemas.promotion import (
    Cause,
    EnvironmentPromotion,
    HealthCheckResult,
    HealthStatus,
    PromotionStatus,
)
from shipwright.store.repository import StateStore
from shipwright.telemetry.metrics import OrchestratorMetrics, get_metrics
from shipwright.telemetry.tracing import create_span, sanitize_error_message

logger = structlog.get_logger(__name__)

# ComputeService spec field carrying the deployed artifact
IMAGE_FIELD = "image"

_TERMINAL_EVENTS = {
    PromotionStatus.PROMOTED: NotificationEventType.PROMOTION_PROMOTED,
    PromotionStatus.ROLLED_BACK: NotificationEventType.PROMOTION_ROLLED_BACK,
    PromotionStatus.FAILED: NotificationEventType.PROMOTION_FAILED,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def lease_name(environment: Environment | str) -> str:
    """Name of the one-active-promotion lease for ``environment``."""
    return f"promotion/{Environment(environment).value}"


class _DeployTargets:
    """ComputeService and Registry a promotion deploys to in one environment."""

    def __init__(self, graph: PlanGraph, environment: Environment) -> None:
        self.graph = graph.subgraph(environment)
        computes = [
            self.graph.descriptor(n)
            for n in self.graph
            if self.graph.descriptor(n).kind == ResourceKind.COMPUTE_SERVICE
        ]
        if len(computes) != 1:
            raise ValidationError(
                f"Cannot promote into {environment.value}",
                errors=[f"expected exactly one ComputeService, found {len(computes)}"],
            )
        self.compute: ResourceDescriptor = computes[0]

        registries = sorted(
            n for n in self.graph if self.graph.descriptor(n).kind == ResourceKind.REGISTRY
        )
        linked = [r for r in registries if r in self.compute.depends_on]
        if not (linked or registries):
            raise ValidationError(
                f"Cannot promote into {environment.value}",
                errors=["no Registry declared for the environment"],
            )
        self.registry_id: str = (linked or registries)[0]

    def with_artifact(self, artifact_id: str) -> PlanGraph:
        """The environment graph with the ComputeService running ``artifact_id``."""
        pinned = self.compute.model_copy(
            update={"spec": {**self.compute.spec, IMAGE_FIELD: artifact_id}}
        )
        return PlanGraph(
            pinned if node == self.compute.id else self.graph.descriptor(node)
            for node in self.graph
        )


class PromotionPipeline:
    """Builds, deploys, health-checks and promotes artifacts.

    Args:
        store: Durable store for promotion records, leases and known-good
            artifacts.
        reconciler: Reconciler used to diff the environment before deploy.
        executor: Executor used to apply deploy and rollback actions.
        provider: Cloud provider (artifact existence, service endpoints).
        builder: Artifact builder.
        probe: Health probe.
        config: Promotion settings.
        sinks: Notification sinks for lifecycle events.
        clock: Monotonic clock (seconds).
        sleep: Sleep function.
        metrics: Metrics collector.
    """

    def __init__(
        self,
        store: StateStore,
        reconciler: Reconciler,
        executor: ActionExecutor,
        provider: CloudProvider,
        builder: ArtifactBuilder,
        probe: HealthProbe,
        *,
        config: PromotionConfig | None = None,
        sinks: Sequence[NotificationSink] = (),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        metrics: OrchestratorMetrics | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._executor = executor
        self._provider = provider
        self._builder = builder
        self._probe = probe
        self._config = config or PromotionConfig()
        self._sinks = list(sinks)
        self._clock = clock
        self._sleep = sleep
        self._metrics = metrics or get_metrics()
        self._log = logger.bind(component="promotion_pipeline")

    @property
    def config(self) -> PromotionConfig:
        return self._config

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def initiate(
        self,
        environment: Environment | str,
        source_ref: str,
        *,
        artifact_id: str | None = None,
    ) -> EnvironmentPromotion:
        """Start a promotion in Pending state.

        Args:
            environment: Target environment.
            source_ref: Source revision to build.
            artifact_id: Previously built artifact to reuse (skips the build).

        Returns:
            The persisted Pending promotion.

        Raises:
            PromotionInProgress: If another promotion holds the environment.
        """
        env = Environment(environment)
        promotion_id = uuid.uuid4().hex
        if not self._store.acquire_lease(lease_name(env), holder=promotion_id):
            holder = self._store.lease_holder(lease_name(env))
            self._log.warning(
                "promotion_rejected_in_progress", environment=env.value, holder=holder
            )
            raise PromotionInProgress(env.value, holder=holder)

        promotion = EnvironmentPromotion(
            promotion_id=promotion_id,
            source_ref=source_ref,
            artifact_id=artifact_id,
            environment=env,
            previous_artifact_id=self._store.get_known_good(env),
        )
        self._store.save_promotion(promotion)
        self._log.info(
            "promotion_initiated",
            promotion_id=promotion_id,
            environment=env.value,
            source_ref=source_ref,
            previous_artifact_id=promotion.previous_artifact_id,
        )
        self._notify(NotificationEventType.PROMOTION_STARTED, promotion)
        return promotion

    def run(
        self,
        promotion_id: str,
        graph: PlanGraph,
        cancel: threading.Event | None = None,
    ) -> EnvironmentPromotion:
        """Drive a promotion to a terminal state.

        Args:
            promotion_id: Promotion to run or resume.
            graph: Full plan graph; only the promotion's environment is used.
            cancel: Optional cancellation signal.

        Returns:
            The terminal promotion record.

        Raises:
            PromotionNotFound: If the promotion does not exist.
            ValidationError: If the environment has no single ComputeService
                or no Registry.
            LedgerInconsistency: If the executor detects one during deploy
                or rollback.
        """
        promotion = self._store.get_promotion(promotion_id)
        if promotion.terminal:
            return promotion

        try:
            targets = _DeployTargets(graph, promotion.environment)
        except ValidationError:
            self._finish(
                promotion,
                PromotionStatus.FAILED,
                Cause(stage=promotion.status.value, message="plan has no deploy target"),
            )
            raise
        cancel = cancel or threading.Event()

        with create_span(
            "shipwright.promotion.run",
            attributes={
                "shipwright.promotion.id": promotion_id,
                "shipwright.promotion.environment": promotion.environment.value,
            },
        ) as span:
            try:
                while not promotion.terminal:
                    if promotion.status == PromotionStatus.PENDING:
                        promotion = self._start(promotion, cancel)
                    elif promotion.status == PromotionStatus.BUILDING:
                        promotion = self._build(promotion, targets, cancel)
                    elif promotion.status == PromotionStatus.DEPLOYING:
                        promotion = self._deploy(promotion, targets, cancel)
                    else:
                        promotion = self._health_check(promotion, targets, cancel)
            except LedgerInconsistency as e:
                self._finish(
                    promotion,
                    PromotionStatus.FAILED,
                    Cause(
                        stage=promotion.status.value,
                        message=str(e),
                        target=e.target,
                        error_type=type(e).__name__,
                    ),
                )
                raise
            except Exception as e:
                if not promotion.terminal:
                    self._finish(
                        promotion,
                        PromotionStatus.FAILED,
                        Cause(
                            stage=promotion.status.value,
                            message=sanitize_error_message(str(e)),
                            error_type=type(e).__name__,
                        ),
                    )
                raise
            span.set_attribute("shipwright.promotion.status", promotion.status.value)
        return promotion

    def promote(
        self,
        environment: Environment | str,
        source_ref: str,
        graph: PlanGraph,
        *,
        artifact_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> EnvironmentPromotion:
        """Initiate and run a promotion.

        The plan is checked for a deploy target before the environment lease
        is taken, so a bad plan never blocks the environment.
        """
        _DeployTargets(graph, Environment(environment))
        promotion = self.initiate(environment, source_ref, artifact_id=artifact_id)
        return self.run(promotion.promotion_id, graph, cancel=cancel)

    def promote_through(
        self,
        source_ref: str,
        graph: PlanGraph,
        environments: Sequence[Environment | str] = (Environment.STAGING, Environment.PRODUCTION),
        *,
        cancel: threading.Event | None = None,
    ) -> list[EnvironmentPromotion]:
        """Promote through environments in order, stopping at the first failure.

        The artifact built for the first environment is reused for the rest.

        Returns:
            One record per environment attempted.
        """
        for environment in environments:
            _DeployTargets(graph, Environment(environment))

        results: list[EnvironmentPromotion] = []
        artifact_id: str | None = None
        for environment in environments:
            promotion = self.promote(
                environment, source_ref, graph, artifact_id=artifact_id, cancel=cancel
            )
            results.append(promotion)
            if promotion.status != PromotionStatus.PROMOTED:
                self._log.warning(
                    "promotion_chain_stopped",
                    environment=promotion.environment.value,
                    status=promotion.status.value,
                )
                break
            artifact_id = promotion.artifact_id
        return results

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _transition(self, promotion: EnvironmentPromotion, **update: Any) -> EnvironmentPromotion:
        updated = promotion.model_copy(update={**update, "updated_at": _utc_now()})
        self._store.save_promotion(updated)
        if updated.status != promotion.status:
            self._log.info(
                "promotion_transition",
                promotion_id=promotion.promotion_id,
                environment=promotion.environment.value,
                from_status=promotion.status.value,
                to_status=updated.status.value,
            )
        return updated

    def _finish(
        self,
        promotion: EnvironmentPromotion,
        status: PromotionStatus,
        *causes: Cause,
        **update: Any,
    ) -> EnvironmentPromotion:
        finished = self._transition(
            promotion,
            status=status,
            causes=[*promotion.causes, *causes],
            **update,
        )
        if status == PromotionStatus.PROMOTED and finished.artifact_id:
            self._store.set_known_good(
                finished.environment, finished.artifact_id, finished.promotion_id
            )
        self._store.release_lease(lease_name(finished.environment), finished.promotion_id)
        self._metrics.record_promotion(finished.environment.value, status.value)
        self._notify(_TERMINAL_EVENTS[status], finished)
        log = self._log.bind(
            promotion_id=finished.promotion_id,
            environment=finished.environment.value,
            artifact_id=finished.artifact_id,
        )
        if status == PromotionStatus.PROMOTED:
            log.info("promotion_promoted")
        else:
            log.warning("promotion_not_promoted", status=status.value, causes=finished.explain())
        return finished

    def _cancelled(self, promotion: EnvironmentPromotion) -> EnvironmentPromotion:
        return self._finish(
            promotion,
            PromotionStatus.FAILED,
            Cause(stage=promotion.status.value, message="promotion cancelled"),
        )

    def _start(
        self, promotion: EnvironmentPromotion, cancel: threading.Event
    ) -> EnvironmentPromotion:
        if cancel.is_set():
            return self._cancelled(promotion)
        return self._transition(promotion, status=PromotionStatus.BUILDING)

    def _build(
        self,
        promotion: EnvironmentPromotion,
        targets: _DeployTargets,
        cancel: threading.Event,
    ) -> EnvironmentPromotion:
        stage = PromotionStatus.BUILDING.value
        if promotion.artifact_id is None:
            try:
                with create_span("shipwright.promotion.build"):
                    artifact_id = self._builder.build(promotion.source_ref)
            except Exception as e:  # noqa: BLE001
                # Builders are third-party code; any failure is a build failure
                return self._finish(
                    promotion,
                    PromotionStatus.FAILED,
                    Cause(
                        stage=stage,
                        message=f"build failed: {sanitize_error_message(str(e))}",
                        error_type=type(e).__name__,
                    ),
                )
            promotion = self._transition(promotion, artifact_id=artifact_id)
        artifact_id = promotion.artifact_id
        assert artifact_id is not None

        deadline = self._clock() + self._config.artifact_wait_seconds
        while True:
            if cancel.is_set():
                return self._cancelled(promotion)
            try:
                present = self._provider.artifact_exists(targets.registry_id, artifact_id)
            except ProviderError as e:
                self._log.warning("artifact_check_failed", artifact_id=artifact_id, error=str(e))
                present = False
            if present:
                break
            if self._clock() >= deadline:
                return self._finish(
                    promotion,
                    PromotionStatus.FAILED,
                    Cause(
                        stage=stage,
                        message=(
                            f"artifact {artifact_id} not present in {targets.registry_id} "
                            f"after {self._config.artifact_wait_seconds:.1f}s"
                        ),
                        target=targets.registry_id,
                    ),
                )
            self._sleep(self._config.artifact_poll_interval_seconds)

        self._log.info("artifact_published", artifact_id=artifact_id, registry=targets.registry_id)
        return self._transition(promotion, status=PromotionStatus.DEPLOYING)

    def _apply_graph(self, graph: PlanGraph, stage: str) -> list[Cause]:
        """Reconcile and apply ``graph``; return causes on failure."""
        plan = self._reconciler.plan(graph)
        if plan.blocked:
            return [
                Cause(stage=stage, message=reason, target=target)
                for target, reason in sorted(plan.blocked.items())
            ]
        batch = self._executor.apply_batch(plan.actions)
        return [
            Cause(
                stage=stage,
                message=result.error or result.status.value,
                target=result.target,
                error_type=result.error_type,
            )
            for result in sorted(batch.results.values(), key=lambda r: r.target)
            if result.status != ActionStatus.SUCCESS
        ]

    def _resolve_endpoint(self, targets: _DeployTargets) -> str | None:
        spec = targets.compute.spec
        if spec.get("health_url"):
            return str(spec["health_url"])
        try:
            observed = self._provider.describe(targets.compute.id)
        except ProviderError:
            raise
        except Exception as e:  # noqa: BLE001
            raise PermanentProviderError(
                "describe", targets.compute.id, sanitize_error_message(str(e))
            ) from e
        service_url = observed.spec.get("service_url")
        if not service_url:
            return None
        return str(service_url).rstrip("/") + self._config.health_path

    def _deploy(
        self,
        promotion: EnvironmentPromotion,
        targets: _DeployTargets,
        cancel: threading.Event,
    ) -> EnvironmentPromotion:
        stage = PromotionStatus.DEPLOYING.value
        if cancel.is_set():
            return self._cancelled(promotion)
        assert promotion.artifact_id is not None

        try:
            with create_span("shipwright.promotion.deploy"):
                causes = self._apply_graph(targets.with_artifact(promotion.artifact_id), stage)
                if causes:
                    return self._finish(promotion, PromotionStatus.FAILED, *causes)
                endpoint = self._resolve_endpoint(targets)
        except ProviderError as e:
            return self._finish(
                promotion,
                PromotionStatus.FAILED,
                Cause(stage=stage, message=str(e), target=e.target, error_type=type(e).__name__),
            )

        if endpoint is None:
            return self._finish(
                promotion,
                PromotionStatus.FAILED,
                Cause(
                    stage=stage,
                    message="no health endpoint: set health_url or expose service_url",
                    target=targets.compute.id,
                ),
            )
        return self._transition(
            promotion, status=PromotionStatus.HEALTH_CHECKING, endpoint=endpoint
        )

    def _check_health(self, endpoint: str) -> HealthStatus:
        try:
            return self._probe.probe(endpoint)
        except Exception as e:  # noqa: BLE001
            # A probe that raises has not reached the service
            self._log.debug("health_probe_raised", endpoint=endpoint, error=str(e))
            return HealthStatus.UNREACHABLE

    def _health_check(
        self,
        promotion: EnvironmentPromotion,
        targets: _DeployTargets,
        cancel: threading.Event,
    ) -> EnvironmentPromotion:
        stage = PromotionStatus.HEALTH_CHECKING.value
        endpoint = promotion.endpoint or self._resolve_endpoint(targets) or ""
        threshold = self._config.healthy_threshold
        window = self._config.health_window_seconds
        results = list(promotion.health_check_results)
        consecutive = 0
        started = self._clock()

        with create_span(
            "shipwright.promotion.health_check",
            attributes={"shipwright.health.endpoint": endpoint},
        ):
            while True:
                if cancel.is_set():
                    promotion = self._transition(promotion, health_check_results=results)
                    return self._rollback(
                        promotion, targets, Cause(stage=stage, message="promotion cancelled")
                    )
                status = self._check_health(endpoint)
                results.append(HealthCheckResult(endpoint=endpoint, status=status))
                consecutive = consecutive + 1 if status == HealthStatus.HEALTHY else 0
                if consecutive >= threshold:
                    return self._finish(
                        promotion, PromotionStatus.PROMOTED, health_check_results=results
                    )
                if self._clock() - started >= window:
                    timeout = HealthCheckTimeout(
                        promotion.environment.value, endpoint, window, threshold
                    )
                    promotion = self._transition(promotion, health_check_results=results)
                    return self._rollback(
                        promotion,
                        targets,
                        Cause(
                            stage=stage,
                            message=str(timeout),
                            target=targets.compute.id,
                            error_type=type(timeout).__name__,
                        ),
                    )
                self._sleep(self._config.probe_interval_seconds)

    def _rollback(
        self,
        promotion: EnvironmentPromotion,
        targets: _DeployTargets,
        reason: Cause,
    ) -> EnvironmentPromotion:
        stage = "RollingBack"
        previous = promotion.previous_artifact_id
        if previous is None:
            return self._finish(
                promotion,
                PromotionStatus.FAILED,
                reason,
                Cause(stage=stage, message="no known-good artifact to roll back to"),
            )

        self._log.warning(
            "promotion_rolling_back",
            promotion_id=promotion.promotion_id,
            environment=promotion.environment.value,
            artifact_id=promotion.artifact_id,
            rollback_artifact_id=previous,
        )
        try:
            with create_span("shipwright.promotion.rollback"):
                causes = self._apply_graph(targets.with_artifact(previous), stage)
        except ProviderError as e:
            causes = [
                Cause(stage=stage, message=str(e), target=e.target, error_type=type(e).__name__)
            ]
        if causes:
            return self._finish(
                promotion,
                PromotionStatus.FAILED,
                reason,
                Cause(stage=stage, message=f"rollback to {previous} failed"),
                *causes,
            )
        return self._finish(
            promotion,
            PromotionStatus.ROLLED_BACK,
            reason,
            Cause(stage=stage, message=f"rolled back to {previous}"),
            rollback_artifact_id=previous,
        )

    def _notify(self, event_type: NotificationEventType, promotion: EnvironmentPromotion) -> None:
        notify(
            self._sinks,
            NotificationEvent(
                event_type=event_type,
                subject=promotion.environment.value,
                data={
                    "promotion_id": promotion.promotion_id,
                    "source_ref": promotion.source_ref,
                    "artifact_id": promotion.artifact_id,
                    "status": promotion.status.value,
                    "causes": [c.render() for c in promotion.causes],
                },
            ),
        )


__all__ = ["IMAGE_FIELD", "PromotionPipeline", "lease_name"]
