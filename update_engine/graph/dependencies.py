"""Update dependency graph using NetworkX.

Each update is a node keyed by its id.  Directed edges point **from** a
dependency **to** the update that depends on it (``dependency -> update``),
encoding the constraint that the dependency must be deployed first.

Because ``create_update`` only accepts dependencies on updates that already
exist, the graph is acyclic by construction; :func:`topological_order` still
detects cycles for graphs assembled by other means.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Mapping

import networkx as nx

from update_engine.models.update import UpdateDescriptor, UpdateStatus

logger = logging.getLogger(__name__)


class CyclicDependencyError(Exception):
    """Raised when the dependency graph contains one or more cycles.

    Attributes
    ----------
    cycles:
        A list of cycles, each a list of update ids forming the loop.
    """

    def __init__(self, cycles: list[list[str]]) -> None:
        self.cycles = cycles
        formatted = "; ".join(" -> ".join(c + [c[0]]) for c in cycles)
        super().__init__(f"Cyclic update dependencies detected: {formatted}")


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def add_update(graph: nx.DiGraph, update_id: str, dependencies: Iterable[str]) -> None:
    """Add a single update node and its inbound edges in place."""
    graph.add_node(update_id, seq=graph.number_of_nodes())
    for dep in dependencies:
        graph.add_edge(dep, update_id)


# ---------------------------------------------------------------------------
# Ordering and traversal
# ---------------------------------------------------------------------------


def topological_order(graph: nx.DiGraph) -> list[str]:
    """Return a deterministic topological ordering of update ids.

    Kahn's algorithm with a min-heap keyed on creation sequence, so that
    unconstrained updates keep the order in which they were created.

    Raises
    ------
    CyclicDependencyError
        If the graph contains one or more cycles.
    """
    in_degree = dict(graph.in_degree())
    heap = [(graph.nodes[n].get("seq", 0), n) for n, d in in_degree.items() if d == 0]
    heapq.heapify(heap)
    result: list[str] = []
    while heap:
        _, node = heapq.heappop(heap)
        result.append(node)
        for successor in graph.successors(node):
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(heap, (graph.nodes[successor].get("seq", 0), successor))
    if len(result) != len(graph):
        cycles = list(nx.simple_cycles(graph))
        raise CyclicDependencyError(cycles)
    return result


def dependents_of(graph: nx.DiGraph, update_id: str) -> set[str]:
    """Return every update transitively depending on *update_id*."""
    if update_id not in graph:
        return set()
    return set(nx.descendants(graph, update_id))


def unmet_dependencies(
    update: UpdateDescriptor,
    statuses: Mapping[str, UpdateStatus],
    queued_ahead: Iterable[str] = (),
) -> list[str]:
    """Return the dependencies of *update* that are neither deployed nor queued ahead.

    Parameters
    ----------
    update:
        The update about to be enqueued.
    statuses:
        Current status of every known update, keyed by id.
    queued_ahead:
        Ids already in the deployment queue, which will be applied first.
    """
    ahead = set(queued_ahead)
    unmet: list[str] = []
    for dep in update.dependencies:
        if statuses.get(dep) == UpdateStatus.DEPLOYED or dep in ahead:
            continue
        unmet.append(dep)
    if unmet:
        logger.debug("Update %s has unmet dependencies: %s", update.id, unmet)
    return unmet
