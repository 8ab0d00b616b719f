"""In-memory authority for update descriptors and the active system version.

The registry is pure data: it never calls components or the deployment
queue.  All public reads return deep copies so callers cannot mutate
registry state behind its lock.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import networkx as nx
from pydantic import ValidationError as PydanticValidationError

from update_engine.errors import NotFoundError, ValidationError
from update_engine.graph.dependencies import add_update, dependents_of, topological_order
from update_engine.models.update import (
    ApprovalEntry,
    ApprovalRole,
    UpdateDescriptor,
    UpdateSpec,
    UpdateStatus,
)
from update_engine.versioning import bump_patch, parse_version

logger = logging.getLogger(__name__)


def format_validation_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a pydantic error into ``"field: message"`` strings."""
    messages: list[str] = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ())) or "spec"
        messages.append(f"{loc}: {error.get('msg', 'invalid value')}")
    return messages


def _new_update_id() -> str:
    return f"update-{uuid.uuid4().hex[:16]}"


class UpdateRegistry:
    """Stores update descriptors, their status, and the active version.

    Parameters
    ----------
    initial_version:
        Active system version before any update is deployed.
    """

    def __init__(self, initial_version: str = "1.0.0") -> None:
        parse_version(initial_version)
        self._lock = threading.RLock()
        self._updates: dict[str, UpdateDescriptor] = {}
        self._graph = nx.DiGraph()
        self._active_version = initial_version

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create_update(self, spec: UpdateSpec | Mapping[str, Any]) -> str:
        """Validate *spec* and store a new update in ``CREATED`` status.

        The version is the patch-bump of the active version at creation
        time.

        Returns
        -------
        str
            The new update id.

        Raises
        ------
        ValidationError
            If *spec* is malformed or names an unknown dependency.  No
            record is stored.
        """
        if not isinstance(spec, UpdateSpec):
            if not isinstance(spec, Mapping):
                raise ValidationError([f"spec: expected a mapping or UpdateSpec, got {type(spec).__name__}"])
            try:
                spec = UpdateSpec.model_validate(dict(spec))
            except PydanticValidationError as exc:
                raise ValidationError(format_validation_errors(exc)) from None

        with self._lock:
            unknown = [dep for dep in spec.dependencies if dep not in self._updates]
            if unknown:
                raise ValidationError([f"dependencies: unknown update id {dep!r}" for dep in unknown])

            update_id = _new_update_id()
            while update_id in self._updates:
                update_id = _new_update_id()

            descriptor = UpdateDescriptor(
                id=update_id,
                version=bump_patch(self._active_version),
                type=spec.type,
                title=spec.title,
                description=spec.description,
                components=list(spec.components),
                dependencies=list(spec.dependencies),
                risk=spec.risk.model_copy(deep=True),
                rollback_supported=spec.rollback_supported,
                author=spec.author,
                created_at=datetime.now(UTC),
            )
            self._updates[update_id] = descriptor
            add_update(self._graph, update_id, descriptor.dependencies)

        if not descriptor.rollback_supported:
            logger.warning(
                "Update %s declares rollback_supported=False; rollback will still restore the pre-run snapshot",
                update_id,
                extra={"update_id": update_id},
            )
        logger.info(
            "Created update %s (%s, v%s): %s",
            update_id,
            descriptor.type.value,
            descriptor.version,
            descriptor.title,
            extra={"update_id": update_id},
        )
        return update_id

    def get_update(self, update_id: str) -> UpdateDescriptor:
        """Return a detached copy of the update.

        Raises
        ------
        NotFoundError
            If *update_id* is unknown.
        """
        with self._lock:
            return self._get(update_id).model_copy(deep=True)

    def list_updates(self) -> list[UpdateDescriptor]:
        """Return detached copies of all updates in creation order."""
        with self._lock:
            return [u.model_copy(deep=True) for u in self._updates.values()]

    def statuses(self) -> dict[str, UpdateStatus]:
        with self._lock:
            return {uid: u.status for uid, u in self._updates.items()}

    def dependents_of(self, update_id: str) -> set[str]:
        """Return the ids of every update transitively depending on *update_id*."""
        with self._lock:
            self._get(update_id)
            return dependents_of(self._graph, update_id)

    def deployment_order(self) -> list[str]:
        """Return all update ids in dependency order, ties broken by creation order."""
        with self._lock:
            return topological_order(self._graph)

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def record_approval(
        self,
        update_id: str,
        role: ApprovalRole | str,
        approver: str,
        approved: bool,
        notes: str = "",
    ) -> ApprovalEntry:
        """Append an approval (or rejection) to the update's approval trail.

        Raises
        ------
        NotFoundError
            If *update_id* is unknown.
        ValidationError
            If *role* is not a known approval role or *approver* is empty.
        """
        try:
            entry = ApprovalEntry(
                role=role,
                approver=approver,
                approved=approved,
                notes=notes,
                timestamp=datetime.now(UTC),
            )
        except PydanticValidationError as exc:
            # Unknown ids take precedence over malformed input.
            with self._lock:
                self._get(update_id)
            raise ValidationError(format_validation_errors(exc)) from None

        with self._lock:
            descriptor = self._get(update_id)
            descriptor.approvals.append(entry)
            status = descriptor.status

        if status != UpdateStatus.CREATED:
            logger.info(
                "Approval by %s (%s) recorded for update %s in status %s; kept for audit only",
                entry.approver,
                entry.role.value,
                update_id,
                status.value,
                extra={"update_id": update_id},
            )
        else:
            logger.info(
                "%s by %s (%s) for update %s",
                "Approval" if approved else "Rejection",
                entry.approver,
                entry.role.value,
                update_id,
                extra={"update_id": update_id},
            )
        return entry.model_copy()

    # ------------------------------------------------------------------
    # Coordinator-only mutations
    # ------------------------------------------------------------------

    def set_status(
        self,
        update_id: str,
        status: UpdateStatus,
        *,
        run_id: str | None = None,
        deployed_at: datetime | None = None,
    ) -> None:
        """Set the status of an update.  Used by the queue and coordinator."""
        with self._lock:
            descriptor = self._get(update_id)
            previous = descriptor.status
            descriptor.status = status
            if run_id is not None:
                descriptor.last_run_id = run_id
            if deployed_at is not None:
                descriptor.deployed_at = deployed_at
        logger.debug(
            "Update %s: %s -> %s",
            update_id,
            previous.value,
            status.value,
            extra={"update_id": update_id, "run_id": run_id},
        )

    @property
    def active_version(self) -> str:
        with self._lock:
            return self._active_version

    def set_active_version(self, version: str) -> None:
        parse_version(version)
        with self._lock:
            previous = self._active_version
            self._active_version = version
        logger.info("Active version %s -> %s", previous, version)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get(self, update_id: str) -> UpdateDescriptor:
        try:
            return self._updates[update_id]
        except KeyError:
            raise NotFoundError(f"Update not found: {update_id}", update_id=update_id) from None
