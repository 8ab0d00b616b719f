"""FIFO queue of approved updates awaiting deployment.

Lock order is queue -> registry: the queue takes its own lock first and then
calls into the registry, which never calls back into the queue.
"""

from __future__ import annotations

import logging
import threading
from collections import deque

from update_engine.approval.gate import ApprovalGate
from update_engine.errors import (
    AlreadyQueuedError,
    ApprovalError,
    DependencyError,
    ResubmissionRequiredError,
)
from update_engine.graph.dependencies import unmet_dependencies
from update_engine.models.update import TERMINAL_FAILURE_STATUSES, UpdateStatus
from update_engine.registry.update_registry import UpdateRegistry

logger = logging.getLogger(__name__)

_IN_FLIGHT_STATUSES = frozenset({UpdateStatus.QUEUED, UpdateStatus.DEPLOYING, UpdateStatus.DEPLOYED})


class DeploymentQueue:
    """FIFO of update ids that passed the approval gate.

    Parameters
    ----------
    registry:
        Update registry holding the descriptors and their status.
    gate:
        Approval gate used to check required approvals on enqueue.
    """

    def __init__(self, registry: UpdateRegistry, gate: ApprovalGate | None = None) -> None:
        self._registry = registry
        self._gate = gate or ApprovalGate()
        self._lock = threading.Lock()
        self._queue: deque[str] = deque()

    def enqueue(self, update_id: str) -> None:
        """Append an approved update to the tail of the queue.

        Raises
        ------
        NotFoundError
            If *update_id* is unknown.
        AlreadyQueuedError
            If the update is already queued, deploying, or deployed.
        ResubmissionRequiredError
            If the update was rolled back; create a new update instead.
        ApprovalError
            If required approvals are missing, listing the roles in order.
        DependencyError
            If a dependency is neither deployed nor queued ahead.
        """
        with self._lock:
            update = self._registry.get_update(update_id)

            if update.status in _IN_FLIGHT_STATUSES:
                raise AlreadyQueuedError(
                    f"Update {update_id} is already {update.status.value}",
                    update_id=update_id,
                )
            if update.status in TERMINAL_FAILURE_STATUSES:
                raise ResubmissionRequiredError(
                    f"Update {update_id} ended {update.status.value}; resubmit it as a new update",
                    update_id=update_id,
                )

            missing = self._gate.missing_approvals(update)
            if missing:
                raise ApprovalError(update_id, [role.value for role in missing])

            unmet = unmet_dependencies(update, self._registry.statuses(), self._queue)
            if unmet:
                raise DependencyError(update_id, unmet)

            self._registry.set_status(update_id, UpdateStatus.QUEUED)
            self._queue.append(update_id)
            depth = len(self._queue)

        logger.info(
            "Queued update %s (v%s), queue depth %d",
            update_id,
            update.version,
            depth,
            extra={"update_id": update_id},
        )

    def dequeue_all(self) -> list[str]:
        """Atomically empty the queue, returning ids in FIFO order."""
        with self._lock:
            batch = list(self._queue)
            self._queue.clear()
        if batch:
            logger.debug("Dequeued %d update(s): %s", len(batch), batch)
        return batch

    @property
    def depth(self) -> int:
        with self._lock:
            return len(self._queue)

    def snapshot(self) -> tuple[str, ...]:
        """Return a read-only view of the queued ids in FIFO order."""
        with self._lock:
            return tuple(self._queue)

    def __contains__(self, update_id: object) -> bool:
        with self._lock:
            return update_id in self._queue
