"""State reconciler.

Computes the ordered list of actions that moves live cloud state to the
desired state of a plan graph. Live state is described fresh on every call
to :meth:`Reconciler.plan`; nothing is cached between passes.

Failure policy:
    A failed ``describe`` blocks the failing node's whole connected
    component. Other components still get actions, so one flaky resource
    does not stall unrelated parts of the plan.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from shipwright.executor.resilience import RetryPolicy
from shipwright.plan.graph import PlanGraph, topological_order
from shipwright.providers.base import CloudProvider
from shipwright.reconcile.compare import idempotency_key, spec_differences, spec_hash
from shipwright.schemas.action import Action, ActionOperation, LedgerStatus
from shipwright.schemas.config import RetryConfig
from shipwright.schemas.descriptor import (
    Environment,
    ObservedState,
    ResourceDescriptor,
    parse_descriptor_id,
)
from shipwright.store.repository import ManagedResource, StateStore
from shipwright.telemetry.tracing import create_span

logger = structlog.get_logger(__name__)


def _make_action(
    descriptor: ResourceDescriptor,
    operation: ActionOperation,
    reason: str,
) -> Action:
    return Action(
        target=descriptor.id,
        kind=descriptor.kind,
        environment=descriptor.environment,
        operation=operation,
        payload=dict(descriptor.spec),
        descriptor=descriptor,
        idempotency_key=idempotency_key(
            descriptor.id, operation.value, spec_hash(descriptor.kind, descriptor.spec)
        ),
        depends_on=descriptor.depends_on,
        reason=reason,
    )


def diff(descriptor: ResourceDescriptor, observed: ObservedState) -> Action:
    """Compare one descriptor with its observed state.

    Args:
        descriptor: Desired state.
        observed: Live state (``exists=False`` when absent).

    Returns:
        Create when absent, Update when any desired field differs, NoOp
        otherwise. Never Delete.

    Examples:
        >>> from shipwright.schemas.descriptor import ResourceKind
        >>> d = ResourceDescriptor(kind=ResourceKind.REGISTRY, name="app-repo",
        ...                        environment=Environment.STAGING)
        >>> diff(d, ObservedState.absent(d.id)).operation.value
        'create'
    """
    if not observed.exists:
        return _make_action(descriptor, ActionOperation.CREATE, "resource does not exist")
    differences = spec_differences(descriptor.kind, descriptor.spec, observed.spec)
    if differences:
        return _make_action(
            descriptor, ActionOperation.UPDATE, f"fields differ: {', '.join(differences)}"
        )
    return _make_action(descriptor, ActionOperation.NOOP, "in sync")


class ReconciliationPlan(BaseModel):
    """Result of one reconciliation pass.

    Attributes:
        actions: Create/Update/NoOp actions in dependency order, followed by
            prune deletes in reverse dependency order.
        blocked: Descriptor identifiers that received no action, mapped to
            the reason (a describe failure in their component).
        observed: Live state fetched during this pass.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    actions: list[Action] = Field(default_factory=list)
    blocked: dict[str, str] = Field(default_factory=dict)
    observed: dict[str, ObservedState] = Field(default_factory=dict)

    @property
    def mutating(self) -> list[Action]:
        """Actions that will call a mutating provider API."""
        return [a for a in self.actions if a.operation.mutating]

    @property
    def in_sync(self) -> bool:
        """True when nothing needs to change and nothing is blocked."""
        return not self.mutating and not self.blocked

    def counts(self) -> dict[str, int]:
        found = {op.value: 0 for op in ActionOperation}
        for action in self.actions:
            found[action.operation.value] += 1
        return found


class Reconciler:
    """Diffs a plan graph against live provider state.

    Args:
        provider: Provider used for ``describe`` calls only.
        store: State store; required for prune mode (managed inventory).
        retry: Retry configuration for ``describe``.
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        provider: CloudProvider,
        store: StateStore | None = None,
        *,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._store = store
        self._retry = RetryPolicy(retry, sleep=sleep)
        self._log = logger.bind(component="reconciler")

    def _describe(self, descriptor_id: str) -> ObservedState:
        return self._retry.call(
            lambda: self._provider.describe(descriptor_id), operation="describe"
        )

    def plan(
        self,
        graph: PlanGraph,
        *,
        prune: bool = False,
        prune_environments: Iterable[Environment | str] | None = None,
    ) -> ReconciliationPlan:
        """Compute the actions for one reconciliation pass.

        Args:
            graph: Validated plan graph.
            prune: Also delete managed resources no longer in the plan.
            prune_environments: Environments considered for pruning.
                Defaults to the environments present in ``graph``.

        Returns:
            The reconciliation plan.

        Raises:
            CycleError: If ``graph`` has a cycle.
            ValueError: If ``prune`` is requested without a store.
        """
        if prune and self._store is None:
            raise ValueError("prune mode requires a state store")

        with create_span(
            "shipwright.reconcile.plan",
            attributes={"shipwright.plan.nodes": len(graph), "shipwright.plan.prune": prune},
        ) as span:
            order = topological_order(graph)
            position = {node: index for index, node in enumerate(order)}
            observed: dict[str, ObservedState] = {}
            blocked: dict[str, str] = {}

            for component in graph.connected_components():
                for node in sorted(component, key=position.__getitem__):
                    try:
                        observed[node] = self._describe(node)
                    except Exception as e:  # noqa: BLE001
                        # Any exception from a provider counts as a failed describe
                        reason = f"describe failed for {node}: {e}"
                        self._log.warning(
                            "component_blocked",
                            node=node,
                            component_size=len(component),
                            error=str(e),
                        )
                        for member in component:
                            blocked[member] = reason
                            observed.pop(member, None)
                        break

            actions = [
                diff(graph.descriptor(node), observed[node])
                for node in order
                if node not in blocked
            ]

            if prune:
                environments = (
                    {Environment(e) for e in prune_environments}
                    if prune_environments is not None
                    else {graph.descriptor(n).environment for n in graph}
                )
                deletes, prune_blocked, prune_observed = self._prune(graph, environments)
                actions.extend(deletes)
                blocked.update(prune_blocked)
                observed.update(prune_observed)

            if self._store is not None:
                actions = [self._flag_recurring_drift(a) for a in actions]

            result = ReconciliationPlan(actions=actions, blocked=blocked, observed=observed)
            counts = result.counts()
            span.set_attribute("shipwright.plan.mutating", len(result.mutating))
            span.set_attribute("shipwright.plan.blocked", len(blocked))
            self._log.info("reconciliation_planned", blocked=len(blocked), **counts)
            return result

    def _flag_recurring_drift(self, action: Action) -> Action:
        """Mark ``action`` if the ledger says this exact change was already applied.

        Reaching here means the fresh describe no longer matches that apply.
        """
        assert self._store is not None
        if not action.operation.mutating:
            return action
        entry = self._store.get_ledger_entry(action.idempotency_key)
        if entry is None or entry.status != LedgerStatus.APPLIED:
            return action
        self._log.warning(
            "applied_change_drifted",
            target=action.target,
            operation=action.operation.value,
            idempotency_key=action.idempotency_key,
        )
        return action.model_copy(
            update={
                "corrects_drift": True,
                "reason": f"{action.reason} (re-applying after drift)",
            }
        )

    def _prune(
        self,
        graph: PlanGraph,
        environments: set[Environment],
    ) -> tuple[list[Action], dict[str, str], dict[str, ObservedState]]:
        assert self._store is not None
        candidates: dict[str, ManagedResource] = {}
        for environment in sorted(environments, key=lambda e: e.value):
            for resource in self._store.list_managed(environment):
                if resource.descriptor_id not in graph:
                    candidates[resource.descriptor_id] = resource

        blocked: dict[str, str] = {}
        observed: dict[str, ObservedState] = {}
        existing: dict[str, ManagedResource] = {}
        for descriptor_id, resource in sorted(candidates.items()):
            try:
                state = self._describe(descriptor_id)
            except Exception as e:  # noqa: BLE001
                blocked[descriptor_id] = f"describe failed for {descriptor_id}: {e}"
                continue
            observed[descriptor_id] = state
            if state.exists:
                existing[descriptor_id] = resource
            else:
                self._log.info("prune_candidate_already_gone", descriptor_id=descriptor_id)

        # Delete dependents before their dependencies
        stand_ins = []
        for descriptor_id, resource in existing.items():
            kind, environment, name = parse_descriptor_id(descriptor_id)
            stand_ins.append(
                ResourceDescriptor(
                    kind=kind,
                    environment=environment,
                    name=name,
                    depends_on=frozenset(d for d in resource.depends_on if d in existing),
                )
            )
        prune_graph = PlanGraph(stand_ins)
        deletes: list[Action] = []
        for descriptor_id in reversed(topological_order(prune_graph)):
            stand_in = prune_graph.descriptor(descriptor_id)
            deletes.append(
                Action(
                    target=descriptor_id,
                    kind=stand_in.kind,
                    environment=stand_in.environment,
                    operation=ActionOperation.DELETE,
                    idempotency_key=idempotency_key(
                        descriptor_id,
                        ActionOperation.DELETE.value,
                        spec_hash(stand_in.kind, {}),
                    ),
                    depends_on=prune_graph.dependents(descriptor_id),
                    reason="managed resource no longer in plan",
                )
            )
        return deletes, blocked, observed


__all__ = ["ReconciliationPlan", "Reconciler", "diff"]
