"""Lifecycle event publication."""

from update_engine.events.bus import DeploymentEvent, EventBus, EventHandler, EventType
from update_engine.events.sink import JsonLinesEventSink

__all__ = [
    "DeploymentEvent",
    "EventBus",
    "EventHandler",
    "EventType",
    "JsonLinesEventSink",
]
