"""Unit tests for the plan dependency graph."""

from __future__ import annotations

import random

import pytest

from shipwright.errors import CycleError
from shipwright.plan.graph import PlanGraph, topological_order
from shipwright.schemas.descriptor import Environment, ResourceDescriptor, ResourceKind


def _descriptor(
    name: str,
    *deps: str,
    kind: ResourceKind = ResourceKind.DATABASE,
    env: Environment = Environment.STAGING,
) -> ResourceDescriptor:
    return ResourceDescriptor(
        kind=kind, name=name, environment=env, depends_on=frozenset(deps)
    )


def _id(name: str) -> str:
    return f"Database/staging/{name}"


class TestTopologicalOrder:
    """Tests for topological_order()."""

    def test_empty_graph(self) -> None:
        assert topological_order(PlanGraph([])) == []

    def test_dependencies_come_first(self) -> None:
        graph = PlanGraph(
            [
                _descriptor("app", _id("db"), _id("cache")),
                _descriptor("db", _id("secrets")),
                _descriptor("cache"),
                _descriptor("secrets"),
            ]
        )
        order = topological_order(graph)
        assert order.index(_id("secrets")) < order.index(_id("db"))
        assert order.index(_id("db")) < order.index(_id("app"))
        assert order.index(_id("cache")) < order.index(_id("app"))

    def test_order_is_deterministic(self) -> None:
        """Independent nodes are ordered by identifier."""
        graph = PlanGraph([_descriptor("c"), _descriptor("a"), _descriptor("b")])
        assert topological_order(graph) == [_id("a"), _id("b"), _id("c")]

    def test_random_dags_respect_every_edge(self) -> None:
        """For random DAGs, every dependency precedes its dependent."""
        rng = random.Random(20240501)
        for _ in range(200):
            size = rng.randint(1, 25)
            names = [f"n{i:02d}" for i in range(size)]
            descriptors = []
            for index, name in enumerate(names):
                # Edges only point at earlier nodes, so the graph is acyclic
                deps = [_id(d) for d in names[:index] if rng.random() < 0.2]
                descriptors.append(_descriptor(name, *deps))
            rng.shuffle(descriptors)
            graph = PlanGraph(descriptors)

            order = topological_order(graph)

            assert sorted(order) == sorted(graph)
            position = {node: i for i, node in enumerate(order)}
            for node in graph:
                for dep in graph.dependencies(node):
                    assert position[dep] < position[node]

    def test_cycle_raises_with_cycle_nodes(self) -> None:
        graph = PlanGraph(
            [
                _descriptor("a", _id("b")),
                _descriptor("b", _id("c")),
                _descriptor("c", _id("a")),
                _descriptor("d"),
            ]
        )
        with pytest.raises(CycleError) as exc_info:
            topological_order(graph)

        nodes = exc_info.value.nodes
        assert nodes[0] == nodes[-1]
        assert set(nodes) == {_id("a"), _id("b"), _id("c")}
        assert "Dependency cycle detected" in str(exc_info.value)

    def test_cycle_reported_without_unrelated_descendants(self) -> None:
        """Nodes that merely depend on a cycle are not part of the reported cycle."""
        graph = PlanGraph(
            [
                _descriptor("a", _id("b")),
                _descriptor("b", _id("a")),
                _descriptor("z", _id("a")),
            ]
        )
        with pytest.raises(CycleError) as exc_info:
            topological_order(graph)
        assert set(exc_info.value.nodes) == {_id("a"), _id("b")}


class TestPlanGraph:
    """Tests for PlanGraph structure queries."""

    def test_dependents(self) -> None:
        graph = PlanGraph([_descriptor("db"), _descriptor("app", _id("db"))])
        assert graph.dependents(_id("db")) == frozenset({_id("app")})
        assert graph.dependents(_id("app")) == frozenset()

    def test_unknown_dependencies_are_ignored(self) -> None:
        """Edges to descriptors outside the graph are dropped."""
        graph = PlanGraph([_descriptor("app", "Registry/production/shared")])
        assert graph.dependencies(_id("app")) == frozenset()

    def test_connected_components(self) -> None:
        graph = PlanGraph(
            [
                _descriptor("a"),
                _descriptor("b", _id("a")),
                _descriptor("c"),
                _descriptor("d", _id("c")),
                _descriptor("e"),
            ]
        )
        assert graph.connected_components() == [
            frozenset({_id("a"), _id("b")}),
            frozenset({_id("c"), _id("d")}),
            frozenset({_id("e")}),
        ]
        assert graph.component_of(_id("d")) == frozenset({_id("c"), _id("d")})

    def test_component_of_unknown_node(self) -> None:
        with pytest.raises(KeyError):
            PlanGraph([]).component_of(_id("nope"))

    def test_subgraph_keeps_one_environment(self) -> None:
        graph = PlanGraph(
            [
                _descriptor("shared", env=Environment.PRODUCTION),
                _descriptor("app", "Database/production/shared"),
            ]
        )
        staging = graph.subgraph(Environment.STAGING)
        assert list(staging) == [_id("app")]
        assert staging.dependencies(_id("app")) == frozenset()

    def test_contains_and_len(self) -> None:
        graph = PlanGraph([_descriptor("a")])
        assert _id("a") in graph
        assert _id("b") not in graph
        assert len(graph) == 1
