"""Logging setup for processes embedding the update engine.

Two output modes are supported:

* plain text (the default), suitable for local development;
* single-line JSON via :class:`JSONFormatter`, enabled with
  ``UPDATE_ENGINE_STRUCTURED_LOGGING=true``, for log aggregators.

Output schema per JSON line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "update_engine.coordinator.coordinator",
        "message": "deployment committed",
        "run_id": "...",          // present when passed via ``extra``
        "update_id": "...",       // present when passed via ``extra``
        "component": "...",       // present when passed via ``extra``
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

from update_engine.config import Settings

_CONTEXT_FIELDS = ("run_id", "update_id", "component", "phase", "snapshot_id")

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_ROOT_LOGGER = "update_engine"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Deployment context passed via ``extra={...}``.
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(settings: Settings, *, stream: Any = None) -> logging.Logger:
    """Install a single handler on the ``update_engine`` logger.

    Calling this more than once replaces the previously installed handler
    rather than stacking duplicates.

    Parameters
    ----------
    settings:
        Engine settings; ``structured_logging`` picks the formatter and
        ``log_level`` the threshold.
    stream:
        Optional stream for the handler, defaults to ``sys.stderr``.
    """
    engine_logger = logging.getLogger(_ROOT_LOGGER)
    for handler in list(engine_logger.handlers):
        if getattr(handler, "_update_engine_handler", False):
            engine_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    if settings.structured_logging:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    handler._update_engine_handler = True  # type: ignore[attr-defined]

    engine_logger.addHandler(handler)
    engine_logger.setLevel(settings.log_level)
    return engine_logger
