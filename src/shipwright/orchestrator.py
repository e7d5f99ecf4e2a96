"""Wiring of store, provider suite and the orchestration components.

:class:`Orchestrator` is what the CLI talks to. It owns the state store and
the notification sinks and builds the reconciler, executor, promotion
pipeline and cutover controller from one :class:`OrchestratorConfig`.

Example:
    >>> with Orchestrator.from_config(load_config()) as orch:  # doctest: +SKIP
    ...     plan, batch = orch.apply(load_plan(Path("plan.yaml")))
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from types import TracebackType

import structlog

from shipwright.cutover.controller import CutoverController
from shipwright.errors import ValidationError
from shipwright.executor.events import LogEventSink, NotificationBridge
from shipwright.executor.executor import ActionExecutor
from shipwright.plan.graph import PlanGraph
from shipwright.promotion.pipeline import PromotionPipeline
from shipwright.providers.base import ApprovalGate, NotificationSink
from shipwright.providers.registry import BUILTIN_PROVIDER, ProviderSuite, load_provider_suite
from shipwright.providers.webhooks import (
    LogNotificationSink,
    WebhookNotificationSink,
    WebhookNotifier,
)
from shipwright.reconcile.reconciler import ReconciliationPlan, Reconciler
from shipwright.schemas.action import ActionStatus, BatchResult
from shipwright.schemas.config import OrchestratorConfig
from shipwright.schemas.cutover import CutoverPlan
from shipwright.schemas.descriptor import Environment, parse_descriptor_id
from shipwright.schemas.promotion import EnvironmentPromotion
from shipwright.store.repository import StateStore

logger = structlog.get_logger(__name__)

# Where the built-in provider keeps its state unless configured otherwise
DEFAULT_MEMORY_STATE = Path(".shipwright") / "provider.json"


class Orchestrator:
    """Facade over the reconciler, executor, pipeline and cutover controller.

    Args:
        config: Orchestrator configuration.
        store: Durable state store (closed by :meth:`close`).
        suite: Provider capabilities.
        approvals: Approval gate for cutover steps.
        notification_sinks: Sinks receiving lifecycle notifications.
        clock: Monotonic clock used for polling deadlines.
        sleep: Sleep function used for retries and polling.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        store: StateStore,
        suite: ProviderSuite,
        *,
        approvals: ApprovalGate | None = None,
        notification_sinks: Sequence[NotificationSink] = (),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.store = store
        self.suite = suite
        self.notification_sinks = list(notification_sinks)

        self.reconciler = Reconciler(suite.cloud, store, retry=config.retry, sleep=sleep)
        self.executor = ActionExecutor(
            suite.cloud,
            store,
            retry=config.retry,
            concurrency=config.executor.concurrency,
            sinks=[LogEventSink(), NotificationBridge(self.notification_sinks)],
            sleep=sleep,
        )
        self.pipeline = PromotionPipeline(
            store,
            self.reconciler,
            self.executor,
            suite.cloud,
            suite.builder,
            suite.probe,
            config=config.promotion,
            sinks=self.notification_sinks,
            clock=clock,
            sleep=sleep,
        )
        self.cutover_controller = CutoverController(
            suite.cloud,
            suite.confirmation,
            store,
            approvals=approvals,
            config=config.cutover,
            retry=config.retry,
            sinks=self.notification_sinks,
            clock=clock,
            sleep=sleep,
        )

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        *,
        approvals: ApprovalGate | None = None,
        store: StateStore | None = None,
        suite: ProviderSuite | None = None,
    ) -> Orchestrator:
        """Build an orchestrator, opening the store and loading the provider.

        Raises:
            ProviderNotFoundError: If the configured provider is not installed.
            StoreError: If the store cannot be opened.
        """
        if suite is None:
            options = dict(config.provider.options)
            if config.provider.name == BUILTIN_PROVIDER:
                options.setdefault("state_path", str(DEFAULT_MEMORY_STATE))
            suite = load_provider_suite(config.provider.name, options)
        if store is None:
            store = StateStore(config.store.url, echo=config.store.echo)

        sinks: list[NotificationSink] = [LogNotificationSink()]
        if config.webhooks:
            sinks.append(WebhookNotificationSink(WebhookNotifier(config.webhooks)))
        logger.debug(
            "orchestrator_created",
            provider=config.provider.name,
            webhooks=len(config.webhooks),
        )
        return cls(config, store, suite, approvals=approvals, notification_sinks=sinks)

    def plan(self, graph: PlanGraph, *, prune: bool | None = None) -> ReconciliationPlan:
        """Reconcile ``graph`` against live state without changing anything."""
        prune = self.config.executor.prune if prune is None else prune
        return self.reconciler.plan(graph, prune=prune)

    def apply(
        self,
        graph: PlanGraph,
        *,
        prune: bool | None = None,
    ) -> tuple[ReconciliationPlan, BatchResult]:
        """Reconcile ``graph`` and apply the resulting actions.

        Raises:
            LedgerInconsistency: If the ledger disagrees with live state.
        """
        plan = self.plan(graph, prune=prune)
        batch = self.executor.apply_batch(plan.actions)
        logger.info(
            "apply_completed",
            succeeded=batch.succeeded,
            blocked=len(plan.blocked),
            **{status.value: len(batch.by_status(status)) for status in ActionStatus},
        )
        return plan, batch

    def promote(
        self,
        source_ref: str,
        graph: PlanGraph,
        environments: Sequence[Environment | str] = tuple(Environment),
        *,
        cancel: threading.Event | None = None,
    ) -> list[EnvironmentPromotion]:
        """Promote ``source_ref`` through ``environments`` in order."""
        return self.pipeline.promote_through(source_ref, graph, environments, cancel=cancel)

    def cutover(
        self,
        plan: CutoverPlan,
        *,
        cancel: threading.Event | None = None,
        allow_unpromoted: bool = False,
    ) -> CutoverPlan:
        """Run a cutover plan, resuming the stored record of the same plan id.

        A new plan only starts once every environment its steps touch has a
        known-good artifact, unless ``allow_unpromoted`` is set.

        Raises:
            ValidationError: If an environment has never been promoted.
        """
        stored = self.store.get_cutover(plan.plan_id)
        if stored is None and not allow_unpromoted:
            self._require_promoted(plan)
        if stored is not None:
            logger.info(
                "cutover_resuming",
                plan_id=plan.plan_id,
                status=stored.status.value,
            )
            plan = stored
        return self.cutover_controller.execute(plan, cancel=cancel)

    def _require_promoted(self, plan: CutoverPlan) -> None:
        environments = sorted({parse_descriptor_id(s.target)[1] for s in plan.steps})
        missing = [e.value for e in environments if self.store.get_known_good(e) is None]
        if missing:
            raise ValidationError(
                f"Cutover plan '{plan.plan_id}' targets unpromoted environments",
                errors=[f"{env}: no known-good artifact" for env in missing],
            )

    def close(self) -> None:
        """Flush pending notifications and close the store."""
        for sink in self.notification_sinks:
            if isinstance(sink, WebhookNotificationSink):
                timeouts = [w.timeout_seconds for w in self.config.webhooks]
                sink.flush(timeout=max(timeouts, default=30))
        self.store.close()

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["DEFAULT_MEMORY_STATE", "Orchestrator"]
