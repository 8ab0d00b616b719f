"""Deployment coordination: the phase state machine and the coordinator."""

from update_engine.coordinator.coordinator import DeploymentCoordinator, find_component_conflicts
from update_engine.coordinator.phases import TERMINAL_PHASES, TRANSITIONS, PhaseTracker, can_transition

__all__ = [
    "DeploymentCoordinator",
    "PhaseTracker",
    "TERMINAL_PHASES",
    "TRANSITIONS",
    "can_transition",
    "find_component_conflicts",
]
