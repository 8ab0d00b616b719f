"""Deployment phase state machine.

Legal transitions::

    IDLE -> SNAPSHOT_CAPTURED -> APPLYING -> VERIFYING -> COMMITTED
                                    |            |
                                    +------------+--> ROLLING_BACK -> ROLLED_BACK
                                                                  \\-> ROLLBACK_FAILED

``IDLE -> ROLLED_BACK`` covers a batch abandoned because its snapshot could
not be captured (nothing was applied).  ``IDLE -> ROLLING_BACK`` is an
operator-requested rollback outside a deployment run.  Every run starts by
resetting to ``IDLE``, which also recovers a phase stranded by an aborted run.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from update_engine.errors import InvalidTransitionError
from update_engine.models.deployment import DeploymentPhase

logger = logging.getLogger(__name__)

TERMINAL_PHASES = frozenset(
    {DeploymentPhase.COMMITTED, DeploymentPhase.ROLLED_BACK, DeploymentPhase.ROLLBACK_FAILED}
)

TRANSITIONS: dict[DeploymentPhase, frozenset[DeploymentPhase]] = {
    DeploymentPhase.IDLE: frozenset(
        {DeploymentPhase.SNAPSHOT_CAPTURED, DeploymentPhase.ROLLING_BACK, DeploymentPhase.ROLLED_BACK}
    ),
    DeploymentPhase.SNAPSHOT_CAPTURED: frozenset({DeploymentPhase.APPLYING}),
    DeploymentPhase.APPLYING: frozenset({DeploymentPhase.VERIFYING, DeploymentPhase.ROLLING_BACK}),
    DeploymentPhase.VERIFYING: frozenset({DeploymentPhase.COMMITTED, DeploymentPhase.ROLLING_BACK}),
    DeploymentPhase.ROLLING_BACK: frozenset({DeploymentPhase.ROLLED_BACK, DeploymentPhase.ROLLBACK_FAILED}),
    DeploymentPhase.COMMITTED: frozenset({DeploymentPhase.IDLE}),
    DeploymentPhase.ROLLED_BACK: frozenset({DeploymentPhase.IDLE}),
    DeploymentPhase.ROLLBACK_FAILED: frozenset({DeploymentPhase.IDLE}),
}

TransitionListener = Callable[[DeploymentPhase, DeploymentPhase, str | None], None]


def can_transition(current: DeploymentPhase, target: DeploymentPhase) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class PhaseTracker:
    """Holds the current phase and validates every transition.

    Parameters
    ----------
    listener:
        Called with ``(previous, new, run_id)`` after each accepted
        transition.
    """

    def __init__(self, listener: TransitionListener | None = None) -> None:
        self._phase = DeploymentPhase.IDLE
        self._lock = threading.Lock()
        self._listener = listener

    @property
    def phase(self) -> DeploymentPhase:
        with self._lock:
            return self._phase

    def transition(self, target: DeploymentPhase, *, run_id: str | None = None) -> None:
        """Move to *target*.

        Raises
        ------
        InvalidTransitionError
            If *target* is not reachable from the current phase.
        """
        with self._lock:
            previous = self._phase
            if not can_transition(previous, target):
                raise InvalidTransitionError(
                    f"Illegal phase transition {previous.value} -> {target.value}",
                    run_id=run_id,
                )
            self._phase = target
        logger.debug("Phase %s -> %s", previous.value, target.value, extra={"run_id": run_id, "phase": target.value})
        if self._listener is not None:
            self._listener(previous, target, run_id)

    def reset(self, *, run_id: str | None = None) -> None:
        """Return to ``IDLE`` before a new run; a no-op when already idle.

        A non-terminal phase here means an earlier run was aborted by an
        unexpected error.  It is logged and the tracker is forced back to
        ``IDLE``.
        """
        with self._lock:
            previous = self._phase
            if previous is DeploymentPhase.IDLE:
                return
            if previous not in TERMINAL_PHASES:
                logger.warning(
                    "Recovering from phase %s left behind by an aborted run",
                    previous.value,
                    extra={"run_id": run_id, "phase": previous.value},
                )
            self._phase = DeploymentPhase.IDLE
        logger.debug("Phase %s -> IDLE", previous.value, extra={"run_id": run_id, "phase": "IDLE"})
        if self._listener is not None:
            self._listener(previous, DeploymentPhase.IDLE, run_id)
