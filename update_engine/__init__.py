"""Update orchestration with approval gating, snapshots and automatic rollback."""

from update_engine.components.registry import ComponentUpdaterRegistry
from update_engine.config import Settings, load_settings
from update_engine.events.bus import EventBus, EventType
from update_engine.service import UpdateService
from update_engine.verification.harness import VerificationSuite

__all__ = [
    "ComponentUpdaterRegistry",
    "EventBus",
    "EventType",
    "Settings",
    "UpdateService",
    "VerificationSuite",
    "load_settings",
]
