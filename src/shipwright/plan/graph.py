"""Dependency graph over resource descriptors.

A PlanGraph is an immutable DAG keyed by descriptor identifier. Edges point
from a dependent to its dependencies (``depends_on``). Construction does not
check for cycles; :func:`topological_order` does, and :func:`load_plan`
calls it before returning a graph.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator, Mapping

from shipwright.errors import CycleError
from shipwright.schemas.descriptor import Environment, ResourceDescriptor


class PlanGraph:
    """Immutable dependency graph of resource descriptors.

    Args:
        descriptors: Descriptors with fully resolved ``depends_on``
            identifiers. Dependencies outside the graph are ignored, which
            lets :meth:`subgraph` drop cross-environment edges.

    Examples:
        >>> from shipwright.schemas.descriptor import ResourceKind
        >>> repo = ResourceDescriptor(kind=ResourceKind.REGISTRY, name="app-repo",
        ...                           environment=Environment.STAGING)
        >>> graph = PlanGraph([repo])
        >>> list(graph)
        ['Registry/staging/app-repo']
    """

    def __init__(self, descriptors: Iterable[ResourceDescriptor]) -> None:
        self._nodes: dict[str, ResourceDescriptor] = {}
        for descriptor in descriptors:
            self._nodes[descriptor.id] = descriptor

        self._dependencies: dict[str, frozenset[str]] = {
            node_id: frozenset(d for d in descriptor.depends_on if d in self._nodes)
            for node_id, descriptor in self._nodes.items()
        }
        dependents: dict[str, set[str]] = {node_id: set() for node_id in self._nodes}
        for node_id, deps in self._dependencies.items():
            for dep in deps:
                dependents[dep].add(node_id)
        self._dependents = {k: frozenset(v) for k, v in dependents.items()}

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._nodes))

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> Mapping[str, ResourceDescriptor]:
        return dict(self._nodes)

    def descriptor(self, node_id: str) -> ResourceDescriptor:
        """Return the descriptor for ``node_id``.

        Raises:
            KeyError: If the node is not in the graph.
        """
        return self._nodes[node_id]

    def dependencies(self, node_id: str) -> frozenset[str]:
        """Direct dependencies of ``node_id``."""
        return self._dependencies[node_id]

    def dependents(self, node_id: str) -> frozenset[str]:
        """Direct dependents of ``node_id``."""
        return self._dependents[node_id]

    def connected_components(self) -> list[frozenset[str]]:
        """Weakly connected components, ordered by their smallest identifier."""
        seen: set[str] = set()
        components: list[frozenset[str]] = []
        for start in sorted(self._nodes):
            if start in seen:
                continue
            stack = [start]
            component: set[str] = set()
            while stack:
                node = stack.pop()
                if node in component:
                    continue
                component.add(node)
                stack.extend(self._dependencies[node] - component)
                stack.extend(self._dependents[node] - component)
            seen |= component
            components.append(frozenset(component))
        return components

    def component_of(self, node_id: str) -> frozenset[str]:
        """The connected component containing ``node_id``."""
        for component in self.connected_components():
            if node_id in component:
                return component
        raise KeyError(node_id)

    def subgraph(self, environment: Environment | str) -> PlanGraph:
        """Descriptors of one environment; edges leaving it are dropped."""
        env = Environment(environment)
        return PlanGraph(d for d in self._nodes.values() if d.environment == env)


def _find_cycle(graph: PlanGraph, candidates: set[str]) -> list[str]:
    """Return one dependency cycle among ``candidates`` (nodes Kahn could not order)."""
    white, grey, black = 0, 1, 2
    color = {node: white for node in candidates}
    stack_path: list[str] = []

    def visit(node: str) -> list[str] | None:
        color[node] = grey
        stack_path.append(node)
        for dep in sorted(graph.dependencies(node)):
            if dep not in color:
                continue
            if color[dep] == grey:
                return stack_path[stack_path.index(dep):] + [dep]
            if color[dep] == white:
                found = visit(dep)
                if found:
                    return found
        stack_path.pop()
        color[node] = black
        return None

    for node in sorted(candidates):
        if color[node] == white:
            found = visit(node)
            if found:
                return found
    return sorted(candidates)


def topological_order(graph: PlanGraph) -> list[str]:
    """Order descriptors so every dependency precedes its dependents.

    Kahn's algorithm with a min-heap: among nodes whose dependencies are all
    placed, the smallest identifier goes first, so the order is
    deterministic for a given graph.

    Args:
        graph: Dependency graph.

    Returns:
        Descriptor identifiers, dependencies first.

    Raises:
        CycleError: If the graph has a cycle. ``nodes`` lists the cycle in
            traversal order, with the first node repeated at the end.

    Examples:
        >>> topological_order(PlanGraph([]))
        []
    """
    remaining = {node: len(graph.dependencies(node)) for node in graph}
    ready = [node for node, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for dependent in graph.dependents(node):
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(graph):
        unordered = {node for node, count in remaining.items() if count > 0}
        raise CycleError(_find_cycle(graph, unordered))
    return order


__all__ = ["PlanGraph", "topological_order"]
