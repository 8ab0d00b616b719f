"""Exception hierarchy for the update engine.

Every error except :class:`ValidationError` may carry the forensic context
needed to reconstruct what happened from the update and snapshot audit
trail: the deployment run, the update, the component, and the underlying
cause.
"""

from __future__ import annotations

from typing import Any


class UpdateEngineError(Exception):
    """Base exception for all update engine errors.

    Attributes
    ----------
    message:
        Human-readable description of the failure.
    run_id:
        Deployment run the error occurred in, if any.
    update_id:
        Update being processed when the error occurred, if any.
    component:
        Component name involved in the failure, if any.
    cause:
        The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        run_id: str | None = None,
        update_id: str | None = None,
        component: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.run_id = run_id
        self.update_id = update_id
        self.component = component
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error and its context for reports and logs."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "run_id": self.run_id,
            "update_id": self.update_id,
            "component": self.component,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


# ---------------------------------------------------------------------------
# Caller misuse
# ---------------------------------------------------------------------------


class ValidationError(UpdateEngineError):
    """Malformed input to ``create_update`` or ``record_approval``.

    Nothing is recorded when this is raised.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("Invalid update: " + "; ".join(errors))


class NotFoundError(UpdateEngineError):
    """Raised when an update id is not known to the registry."""


class SnapshotNotFoundError(NotFoundError):
    """Raised when a snapshot label or id does not resolve."""


class ApprovalError(UpdateEngineError):
    """Raised when an update is enqueued without its required approvals.

    ``missing_roles`` lists the unsatisfied roles in required order.
    """

    def __init__(self, update_id: str, missing_roles: list[str]) -> None:
        self.missing_roles = missing_roles
        super().__init__(
            f"Update {update_id} is missing approvals from: {', '.join(missing_roles)}",
            update_id=update_id,
        )


class AlreadyQueuedError(UpdateEngineError):
    """Raised when an update is already queued, deploying, or deployed."""


class ResubmissionRequiredError(UpdateEngineError):
    """Raised when a rolled-back update is enqueued again.

    Resubmission is an explicit, human-triggered new update.
    """


class DependencyError(UpdateEngineError):
    """Raised when an update's dependencies are not deployed or queued ahead of it."""

    def __init__(self, update_id: str, unmet: list[str]) -> None:
        self.unmet = unmet
        super().__init__(
            f"Update {update_id} has unmet dependencies: {', '.join(unmet)}",
            update_id=update_id,
        )


class ConcurrentDeploymentError(UpdateEngineError):
    """Raised when a deployment run is already in progress."""


class InvalidTransitionError(UpdateEngineError):
    """Raised when the coordinator attempts an illegal phase transition."""


# ---------------------------------------------------------------------------
# Component failures
# ---------------------------------------------------------------------------


class ComponentTimeoutError(UpdateEngineError):
    """Raised when a component call exceeds its deadline."""


class ComponentError(UpdateEngineError):
    """Base for failures reported by an external component updater."""


class ComponentApplyError(ComponentError):
    """A component failed to apply an update.  Triggers whole-batch rollback."""


class ComponentRestoreError(ComponentError):
    """A component failed to restore its captured state."""


class ComponentDescribeError(ComponentError):
    """A component failed to describe its current state."""


class SnapshotCaptureError(UpdateEngineError):
    """Raised when a snapshot cannot be captured.  Nothing is stored."""


class VerificationFailedError(UpdateEngineError):
    """Raised when the post-deployment verification suite does not pass."""


# ---------------------------------------------------------------------------
# Rollback failures (operator escalation)
# ---------------------------------------------------------------------------


class PartialRollbackError(UpdateEngineError):
    """Raised when one or more components could not be restored.

    The system cannot assert it is in either the pre- or post-update state.
    This must be escalated to an operator and never retried automatically.

    Attributes
    ----------
    snapshot_id:
        Snapshot the restore was attempted from.
    restored:
        Components restored successfully, in restore order.
    unrestored:
        Components that were not restored, in restore order.
    failures:
        Mapping of unrestored component name to failure description.
    """

    def __init__(
        self,
        snapshot_id: str,
        restored: list[str],
        unrestored: list[str],
        failures: dict[str, str],
        *,
        run_id: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.snapshot_id = snapshot_id
        self.restored = restored
        self.unrestored = unrestored
        self.failures = failures
        super().__init__(
            f"Partial rollback from snapshot {snapshot_id}: "
            f"restored [{', '.join(restored)}], not restored [{', '.join(unrestored)}]",
            run_id=run_id,
            component=unrestored[0] if unrestored else None,
            cause=cause,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "snapshot_id": self.snapshot_id,
                "restored": list(self.restored),
                "unrestored": list(self.unrestored),
                "failures": dict(self.failures),
            }
        )
        return data


class RollbackFailedError(UpdateEngineError):
    """Raised when a rollback could not be performed or the engine is halted
    after an earlier rollback failure."""
