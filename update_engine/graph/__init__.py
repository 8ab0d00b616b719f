"""Update dependency graph operations."""

from update_engine.graph.dependencies import (
    CyclicDependencyError,
    add_update,
    dependents_of,
    topological_order,
    unmet_dependencies,
)

__all__ = [
    "CyclicDependencyError",
    "add_update",
    "dependents_of",
    "topological_order",
    "unmet_dependencies",
]
