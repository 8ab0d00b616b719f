"""Component updater interface and registry."""

from __future__ import annotations

from update_engine.components.base import CallbackUpdater, ComponentUpdater
from update_engine.components.registry import ComponentUpdaterRegistry

__all__ = [
    "CallbackUpdater",
    "ComponentUpdater",
    "ComponentUpdaterRegistry",
]
