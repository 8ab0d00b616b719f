"""Capture and restore of immutable system-state snapshots.

The store drives the :class:`~update_engine.components.registry.ComponentUpdaterRegistry`:

* ``capture`` asks every registered component to describe its state, in
  name order, and stores the result only if every component answered;
* ``restore`` checks the snapshot against its ``config_hash``, then hands
  a copy of each captured state back to its component in the
  **reverse** of capture order, attempting every component even after a
  failure so the operator learns exactly which components were left behind.

Retention is external: snapshots live until :meth:`SnapshotStore.delete`.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from update_engine.components.registry import ComponentUpdaterRegistry
from update_engine.errors import (
    ComponentError,
    PartialRollbackError,
    SnapshotCaptureError,
    SnapshotNotFoundError,
    UpdateEngineError,
)
from update_engine.models.snapshot import ComponentState, Snapshot
from update_engine.snapshot.serializer import compute_config_hash, sort_states, verify_snapshot

logger = logging.getLogger(__name__)


def _new_snapshot_id() -> str:
    return f"snap-{uuid.uuid4().hex}"


class SnapshotStore:
    """In-memory store of labelled snapshots.

    Parameters
    ----------
    components:
        Registry used to describe and restore component state.
    version_provider:
        Returns the active system version, recorded as
        ``version_at_capture``.
    """

    def __init__(
        self,
        components: ComponentUpdaterRegistry,
        version_provider: Callable[[], str],
    ) -> None:
        self._components = components
        self._version_provider = version_provider
        self._lock = threading.Lock()
        self._snapshots: dict[str, Snapshot] = {}
        self._labels: dict[str, list[str]] = {}

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def capture(self, label: str, *, run_id: str | None = None) -> Snapshot:
        """Capture the state of every registered component under *label*.

        Raises
        ------
        SnapshotCaptureError
            If any component fails to describe its state, or the states
            cannot be hashed.  Nothing is stored.
        """
        if not label or not label.strip():
            raise SnapshotCaptureError("Snapshot label must not be empty", run_id=run_id)

        version = self._version_provider()
        states: list[ComponentState] = []
        for name in self._components.names():
            try:
                states.append(self._components.describe_state(name, run_id=run_id))
            except ComponentError as exc:
                logger.error(
                    "Snapshot %s aborted: %s",
                    label,
                    exc.message,
                    extra={"run_id": run_id, "component": name},
                )
                raise SnapshotCaptureError(
                    f"Failed to capture snapshot {label}: {exc.message}",
                    run_id=run_id,
                    component=name,
                    cause=exc,
                ) from exc

        sorted_states = sort_states(states)
        try:
            config_hash = compute_config_hash(sorted_states)
        except (TypeError, ValueError) as exc:
            raise SnapshotCaptureError(
                f"Failed to capture snapshot {label}: component state is not serializable ({exc})",
                run_id=run_id,
                cause=exc,
            ) from exc

        payload: dict[str, Any] = {"run_id": run_id, "active_version": version}
        snapshot = Snapshot(
            snapshot_id=_new_snapshot_id(),
            label=label,
            version_at_capture=version,
            created_at=datetime.now(UTC),
            component_states=sorted_states,
            config_hash=config_hash,
            rollback_payload=payload,
        )

        with self._lock:
            self._snapshots[snapshot.snapshot_id] = snapshot
            self._labels.setdefault(label, []).append(snapshot.snapshot_id)

        logger.info(
            "Captured snapshot %s (%s) of %d component(s) at version %s",
            snapshot.snapshot_id,
            label,
            len(sorted_states),
            version,
            extra={"run_id": run_id, "snapshot_id": snapshot.snapshot_id},
        )
        return snapshot.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, label: str, *, run_id: str | None = None) -> Snapshot:
        """Restore every component from the most recent snapshot for *label*.

        Returns
        -------
        Snapshot
            The snapshot that was restored.

        Raises
        ------
        SnapshotNotFoundError
            If no snapshot carries *label*.
        PartialRollbackError
            If any component could not be restored.  A snapshot whose states
            no longer match its ``config_hash`` is not restored at all and
            every component is reported as unrestored.
        """
        return self._restore(self._resolve_label(label), run_id=run_id)

    def restore_snapshot(self, snapshot_id: str, *, run_id: str | None = None) -> Snapshot:
        """Restore every component from the snapshot with id *snapshot_id*."""
        return self._restore(self._resolve_id(snapshot_id), run_id=run_id)

    def _restore(self, snapshot: Snapshot, *, run_id: str | None) -> Snapshot:
        restored: list[str] = []
        unrestored: list[str] = []
        failures: dict[str, str] = {}
        first_error: UpdateEngineError | None = None

        problems = verify_snapshot(snapshot)
        if problems:
            names = [s.name for s in reversed(snapshot.component_states)]
            reason = f"snapshot integrity check failed: {'; '.join(problems)}"
            logger.error(
                "Refusing to restore snapshot %s: %s",
                snapshot.snapshot_id,
                reason,
                extra={"run_id": run_id, "snapshot_id": snapshot.snapshot_id},
            )
            raise PartialRollbackError(
                snapshot.snapshot_id,
                [],
                names,
                {name: reason for name in names},
                run_id=run_id,
            )

        for stored in reversed(snapshot.component_states):
            state = stored.model_copy(deep=True)
            try:
                self._components.restore_state(state, run_id=run_id)
            except ComponentError as exc:
                unrestored.append(state.name)
                failures[state.name] = exc.message
                if first_error is None:
                    first_error = exc
                logger.error(
                    "Restore of %s from snapshot %s failed: %s",
                    state.name,
                    snapshot.snapshot_id,
                    exc.message,
                    extra={"run_id": run_id, "component": state.name, "snapshot_id": snapshot.snapshot_id},
                )
            else:
                restored.append(state.name)

        if unrestored:
            raise PartialRollbackError(
                snapshot.snapshot_id,
                restored,
                unrestored,
                failures,
                run_id=run_id,
                cause=first_error,
            )

        logger.info(
            "Restored %d component(s) from snapshot %s (%s)",
            len(restored),
            snapshot.snapshot_id,
            snapshot.label,
            extra={"run_id": run_id, "snapshot_id": snapshot.snapshot_id},
        )
        return snapshot.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Lookup and retention
    # ------------------------------------------------------------------

    def get(self, snapshot_id: str) -> Snapshot:
        """Return the snapshot with id *snapshot_id*."""
        return self._resolve_id(snapshot_id).model_copy(deep=True)

    def latest(self, label: str) -> Snapshot:
        """Return the most recent snapshot captured under *label*."""
        return self._resolve_label(label).model_copy(deep=True)

    def list_snapshots(self, label: str | None = None) -> list[Snapshot]:
        """Return snapshots in capture order, optionally filtered by *label*."""
        with self._lock:
            snapshots = [s for s in self._snapshots.values() if label is None or s.label == label]
        return [s.model_copy(deep=True) for s in snapshots]

    def delete(self, snapshot_id: str) -> None:
        """Remove a snapshot.  Used by external retention policies.

        Raises
        ------
        SnapshotNotFoundError
            If *snapshot_id* is unknown.
        """
        with self._lock:
            snapshot = self._snapshots.pop(snapshot_id, None)
            if snapshot is None:
                raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
            ids = self._labels.get(snapshot.label, [])
            ids.remove(snapshot_id)
            if not ids:
                del self._labels[snapshot.label]
        logger.info("Deleted snapshot %s (%s)", snapshot_id, snapshot.label)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def _resolve_label(self, label: str) -> Snapshot:
        with self._lock:
            ids = self._labels.get(label)
            if not ids:
                raise SnapshotNotFoundError(f"No snapshot with label: {label}")
            return self._snapshots[ids[-1]]

    def _resolve_id(self, snapshot_id: str) -> Snapshot:
        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
        return snapshot
