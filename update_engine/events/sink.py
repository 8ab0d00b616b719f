"""Thread-safe JSON-lines sink for lifecycle events.

Events are appended to a file, one JSON object per line.  Writes are
protected by a :class:`threading.Lock` because deployments and operator
rollbacks may publish from different threads.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from update_engine.events.bus import DeploymentEvent, EventBus

logger = logging.getLogger(__name__)


class JsonLinesEventSink:
    """Write :class:`DeploymentEvent` objects to a JSON-lines file and/or stdout.

    Parameters
    ----------
    events_file:
        Optional path to a JSON-lines file.  Parent directories are created
        automatically.  When ``None``, file-based emission is disabled.
    structured:
        When ``True``, events are also printed to stdout as single-line JSON.
    """

    def __init__(self, events_file: Path | None = None, structured: bool = False) -> None:
        self._events_file = events_file
        self._structured = structured
        self._lock = threading.Lock()

        if self._events_file is not None:
            self._events_file.parent.mkdir(parents=True, exist_ok=True)

    @property
    def events_file(self) -> Path | None:
        return self._events_file

    def __call__(self, event: DeploymentEvent) -> None:
        self.write(event)

    def write(self, event: DeploymentEvent) -> None:
        """Append *event* as a single JSON line."""
        json_line = event.model_dump_json()

        if self._events_file is not None:
            with self._lock, self._events_file.open("a", encoding="utf-8") as fh:
                fh.write(json_line + "\n")

        if self._structured:
            sys.stdout.write(json_line + "\n")
            sys.stdout.flush()

        logger.debug("Wrote event %d: %s", event.sequence, event.event_type.value)

    def attach(self, bus: EventBus) -> JsonLinesEventSink:
        """Subscribe this sink to every event on *bus*."""
        bus.subscribe(self)
        return self
