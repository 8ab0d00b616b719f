"""Unit tests for the update dependency graph."""

from __future__ import annotations

import networkx as nx
import pytest

from update_engine.graph.dependencies import (
    CyclicDependencyError,
    add_update,
    dependents_of,
    topological_order,
    unmet_dependencies,
)
from update_engine.models.update import UpdateDescriptor, UpdateStatus, UpdateType


def _make_update(update_id: str, deps: list[str] | None = None) -> UpdateDescriptor:
    return UpdateDescriptor(
        id=update_id,
        version="1.0.1",
        type=UpdateType.API,
        title=update_id,
        components=["api"],
        dependencies=deps or [],
    )


def _make_graph(*edges: tuple[str, list[str]]) -> nx.DiGraph:
    graph = nx.DiGraph()
    for update_id, deps in edges:
        add_update(graph, update_id, deps)
    return graph


class TestAddUpdate:
    def test_edges_point_from_dependency(self):
        graph = _make_graph(("a", []), ("b", ["a"]))
        assert list(graph.edges()) == [("a", "b")]

    def test_add_update_incremental(self):
        graph = nx.DiGraph()
        add_update(graph, "a", [])
        add_update(graph, "b", ["a"])
        assert graph.nodes["b"]["seq"] == 1
        assert graph.has_edge("a", "b")


class TestTopologicalOrder:
    def test_creation_order_breaks_ties(self):
        graph = _make_graph(("zeta", []), ("alpha", []), ("mid", []))
        assert topological_order(graph) == ["zeta", "alpha", "mid"]

    def test_dependencies_first(self):
        graph = _make_graph(("a", []), ("c", []), ("b", ["a"]))
        graph.add_edge("b", "c")
        assert topological_order(graph) == ["a", "b", "c"]

    def test_cycle_detected(self):
        graph = nx.DiGraph()
        add_update(graph, "a", [])
        add_update(graph, "b", ["a"])
        graph.add_edge("b", "a")
        with pytest.raises(CyclicDependencyError, match="Cyclic update dependencies"):
            topological_order(graph)


class TestDependentsOf:
    def test_transitive(self):
        graph = _make_graph(("a", []), ("b", ["a"]), ("c", ["b"]), ("d", []))
        assert dependents_of(graph, "a") == {"b", "c"}
        assert dependents_of(graph, "d") == set()

    def test_unknown_node(self):
        assert dependents_of(nx.DiGraph(), "missing") == set()


class TestUnmetDependencies:
    def test_deployed_dependency_met(self):
        update = _make_update("b", ["a"])
        assert unmet_dependencies(update, {"a": UpdateStatus.DEPLOYED}) == []

    def test_queued_ahead_met(self):
        update = _make_update("b", ["a"])
        assert unmet_dependencies(update, {"a": UpdateStatus.QUEUED}, ["a"]) == []

    @pytest.mark.parametrize(
        "status",
        [UpdateStatus.CREATED, UpdateStatus.ROLLED_BACK, UpdateStatus.ROLLBACK_FAILED, UpdateStatus.DEPLOYING],
    )
    def test_other_statuses_unmet(self, status):
        update = _make_update("b", ["a"])
        assert unmet_dependencies(update, {"a": status}) == ["a"]
