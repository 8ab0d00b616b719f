"""Synchronous event bus for update lifecycle notifications.

Each published event receives a monotonically increasing sequence number and
is delivered to handlers in registration order before ``publish`` returns.
Handler errors are logged but never propagate to the publisher.  Sequence
numbers are assigned under the bus lock while handlers run outside it, so
events published concurrently from different threads may be delivered
interleaved, each still carrying its publish-order sequence.

Usage::

    bus = EventBus()
    bus.subscribe(my_handler, event_type=EventType.ROLLBACK_FAILED)
    bus.publish(EventType.ROLLBACK_FAILED, run_id=run_id, data={...})
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """Lifecycle events emitted by the update engine."""

    UPDATE_CREATED = "update.created"
    APPROVAL_RECORDED = "update.approval_recorded"
    UPDATE_QUEUED = "update.queued"
    DEPLOYMENT_STARTED = "deployment.started"
    PHASE_CHANGED = "deployment.phase_changed"
    SNAPSHOT_CAPTURED = "snapshot.captured"
    UPDATE_DEPLOYING = "update.deploying"
    UPDATE_DEPLOYED = "update.deployed"
    UPDATE_FAILED = "update.failed"
    VERIFICATION_COMPLETED = "verification.completed"
    ROLLBACK_STARTED = "rollback.started"
    ROLLBACK_COMPLETED = "rollback.completed"
    ROLLBACK_FAILED = "rollback.failed"
    DEPLOYMENT_COMPLETED = "deployment.completed"
    HALT_CLEARED = "deployment.halt_cleared"


# ---------------------------------------------------------------------------
# Event payload
# ---------------------------------------------------------------------------


class DeploymentEvent(BaseModel):
    """Structured event delivered to handlers."""

    sequence: int = Field(..., ge=1, description="Position of the event in publish order.")
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    run_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[DeploymentEvent], None]


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBus:
    """In-process event bus with synchronous, ordered dispatch."""

    def __init__(self) -> None:
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._lock = threading.RLock()
        self._sequence = 0

    def subscribe(self, handler: EventHandler, event_type: EventType | None = None) -> None:
        """Register a handler for a specific event type (or all events).

        Parameters
        ----------
        handler:
            Callable that accepts a :class:`DeploymentEvent`.
        event_type:
            If ``None``, the handler receives *all* events.
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(
            "Registered event handler %s for %s",
            getattr(handler, "__name__", repr(handler)),
            event_type.value if event_type else "ALL",
        )

    def unsubscribe(self, handler: EventHandler, event_type: EventType | None = None) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(
        self,
        event_type: EventType,
        *,
        run_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> DeploymentEvent:
        """Publish an event to every matching handler.

        Handler exceptions are logged, not raised.

        Returns
        -------
        DeploymentEvent
            The event as delivered, including its sequence number.
        """
        with self._lock:
            self._sequence += 1
            event = DeploymentEvent(
                sequence=self._sequence,
                event_type=event_type,
                run_id=run_id,
                data=data or {},
            )
            handlers = list(self._handlers.get(event_type, []))
            handlers.extend(self._handlers.get(None, []))

        # Only sequence assignment is serialized; handlers run unlocked.
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for event %s (seq=%d)",
                    getattr(handler, "__name__", repr(handler)),
                    event_type.value,
                    event.sequence,
                    extra={"run_id": run_id},
                )
        return event

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        with self._lock:
            return sum(len(v) for v in self._handlers.values())

    @property
    def last_sequence(self) -> int:
        with self._lock:
            return self._sequence
