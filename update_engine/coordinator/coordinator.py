"""Deployment coordinator -- the update engine state machine.

A single call to :meth:`DeploymentCoordinator.deploy_queued` drains the
deployment queue and treats the drained updates as one all-or-nothing batch:

1. capture a ``<prefix>-<run_id>`` snapshot of every component;
2. apply each update's components in FIFO order, stopping at the first
   failure;
3. run the verification suite;
4. commit (every update ``DEPLOYED``, active version advanced) or restore the
   snapshot exactly once.

A failed restore leaves the system in an unknown state.  The batch is marked
``ROLLBACK_FAILED``, the failure is logged at CRITICAL and the coordinator
halts until an operator calls :meth:`DeploymentCoordinator.clear_halt`.
Nothing is ever retried automatically.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from update_engine.components.registry import ComponentUpdaterRegistry
from update_engine.config import Settings
from update_engine.coordinator.phases import PhaseTracker
from update_engine.deadline import call_with_deadline
from update_engine.deployment_queue import DeploymentQueue
from update_engine.errors import (
    ComponentError,
    ConcurrentDeploymentError,
    PartialRollbackError,
    RollbackFailedError,
    SnapshotCaptureError,
    UpdateEngineError,
    ValidationError,
    VerificationFailedError,
)
from update_engine.events.bus import EventBus, EventType
from update_engine.models.deployment import (
    DeploymentOutcome,
    DeploymentPhase,
    DeploymentReport,
    FailureDetail,
    RollbackRecord,
    UpdateResult,
)
from update_engine.models.snapshot import Snapshot
from update_engine.models.update import UpdateDescriptor, UpdateStatus
from update_engine.registry.update_registry import UpdateRegistry
from update_engine.snapshot.store import SnapshotStore
from update_engine.verification.harness import TestHarness, VerificationSuite
from update_engine.verification.models import SuiteReport

logger = logging.getLogger(__name__)


def find_component_conflicts(updates: list[UpdateDescriptor]) -> dict[str, list[str]]:
    """Map each component touched by more than one update to those update ids."""
    touched: dict[str, list[str]] = {}
    for update in updates:
        for component in update.components:
            touched.setdefault(component, []).append(update.id)
    return {name: ids for name, ids in sorted(touched.items()) if len(ids) > 1}


class DeploymentCoordinator:
    """Drains the queue and deploys it as one batch with automatic rollback.

    Parameters
    ----------
    registry:
        Update registry; statuses and the active version are written here.
    queue:
        Deployment queue drained at the start of each run.
    snapshots:
        Snapshot store used for the pre-run capture and the rollback.
    components:
        Component updater registry whose ``apply`` is invoked per component.
    harness:
        Verification suite runner.  Defaults to an empty
        :class:`VerificationSuite`, which always passes.
    event_bus:
        Receives phase and lifecycle events.  A private bus is created when
        omitted.
    settings:
        Supplies the verification deadline, snapshot label prefix and halt
        policy.
    """

    def __init__(
        self,
        registry: UpdateRegistry,
        queue: DeploymentQueue,
        snapshots: SnapshotStore,
        components: ComponentUpdaterRegistry,
        harness: TestHarness | None = None,
        *,
        event_bus: EventBus | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self._snapshots = snapshots
        self._components = components
        self._harness = harness if harness is not None else VerificationSuite()
        self._events = event_bus if event_bus is not None else EventBus()
        self._settings = settings if settings is not None else Settings()

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._halted = False
        self._halt_reason: str | None = None
        self._last_run_timestamp: datetime | None = None
        self._last_report: DeploymentReport | None = None
        self._rollback_history: list[RollbackRecord] = []
        self._phases = PhaseTracker(listener=self._on_phase_change)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def phase(self) -> DeploymentPhase:
        return self._phases.phase

    @property
    def run_in_progress(self) -> bool:
        return self._run_lock.locked()

    @property
    def halted(self) -> bool:
        with self._state_lock:
            return self._halted

    @property
    def halt_reason(self) -> str | None:
        with self._state_lock:
            return self._halt_reason

    @property
    def last_run_timestamp(self) -> datetime | None:
        with self._state_lock:
            return self._last_run_timestamp

    @property
    def last_report(self) -> DeploymentReport | None:
        with self._state_lock:
            return self._last_report.model_copy(deep=True) if self._last_report else None

    @property
    def rollback_history(self) -> list[RollbackRecord]:
        with self._state_lock:
            return [r.model_copy() for r in self._rollback_history]

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def deploy_queued(self) -> DeploymentReport:
        """Deploy every queued update as a single all-or-nothing batch.

        Returns
        -------
        DeploymentReport
            Outcome ``NOOP`` when the queue was empty, otherwise
            ``DEPLOYED``, ``ROLLED_BACK`` or ``ROLLBACK_FAILED``.

        Raises
        ------
        ConcurrentDeploymentError
            If a run (or operator rollback) is already in progress.
        RollbackFailedError
            If the coordinator is halted after an earlier rollback failure.
        """
        if not self._run_lock.acquire(blocking=False):
            raise ConcurrentDeploymentError("A deployment run is already in progress")
        try:
            with self._state_lock:
                halted, reason = self._halted, self._halt_reason
            if halted:
                raise RollbackFailedError(
                    f"Deployments are halted after a rollback failure: {reason}. "
                    "An operator must call clear_halt() after repairing the system."
                )
            return self._run()
        finally:
            self._run_lock.release()

    def _run(self) -> DeploymentReport:
        run_id = uuid.uuid4().hex
        started_at = datetime.now(UTC)
        ctx = {"run_id": run_id}

        self._phases.reset(run_id=run_id)
        batch = self._queue.dequeue_all()
        if not batch:
            logger.info("Deployment queue is empty; nothing to deploy", extra=ctx)
            return DeploymentReport(
                run_id=run_id,
                outcome=DeploymentOutcome.NOOP,
                active_version=self._registry.active_version,
                started_at=started_at,
                finished_at=datetime.now(UTC),
            )

        label = f"{self._settings.snapshot_label_prefix}-{run_id}"
        updates = [self._registry.get_update(update_id) for update_id in batch]

        logger.info("Deployment %s started for %d update(s): %s", run_id, len(batch), batch, extra=ctx)
        self._publish(EventType.DEPLOYMENT_STARTED, run_id, update_ids=list(batch), snapshot_label=label)

        for update in updates:
            self._registry.set_status(update.id, UpdateStatus.DEPLOYING, run_id=run_id)
            self._publish(EventType.UPDATE_DEPLOYING, run_id, update_id=update.id, version=update.version)

        conflicts = find_component_conflicts(updates)
        for component, ids in conflicts.items():
            logger.warning(
                "Component %s is changed by %d updates in this batch: %s",
                component,
                len(ids),
                ids,
                extra={"run_id": run_id, "component": component},
            )

        results = {u.id: UpdateResult(update_id=u.id, version=u.version, status=UpdateStatus.DEPLOYING) for u in updates}

        # Snapshot
        try:
            snapshot = self._snapshots.capture(label, run_id=run_id)
        except SnapshotCaptureError as exc:
            logger.error("Deployment %s abandoned before apply: %s", run_id, exc.message, extra=ctx)
            self._finish_batch(updates, results, UpdateStatus.ROLLED_BACK, run_id)
            self._phases.transition(DeploymentPhase.ROLLED_BACK, run_id=run_id)
            return self._report(
                run_id,
                batch,
                DeploymentOutcome.ROLLED_BACK,
                results,
                started_at,
                failure=exc,
                snapshot_label=label,
                conflicts=conflicts,
            )

        self._phases.transition(DeploymentPhase.SNAPSHOT_CAPTURED, run_id=run_id)
        self._publish(
            EventType.SNAPSHOT_CAPTURED,
            run_id,
            snapshot_id=snapshot.snapshot_id,
            label=label,
            config_hash=snapshot.config_hash,
        )

        # Apply
        self._phases.transition(DeploymentPhase.APPLYING, run_id=run_id)
        failure: UpdateEngineError | None = self._apply_batch(updates, results, run_id)

        # Verify
        test_results: SuiteReport | None = None
        if failure is None:
            self._phases.transition(DeploymentPhase.VERIFYING, run_id=run_id)
            test_results, failure = self._verify(run_id)

        if failure is None:
            return self._commit(updates, results, run_id, batch, started_at, snapshot, test_results, conflicts)

        return self._roll_back(
            updates, results, run_id, batch, started_at, snapshot, test_results, conflicts, failure
        )

    def _apply_batch(
        self,
        updates: list[UpdateDescriptor],
        results: dict[str, UpdateResult],
        run_id: str,
    ) -> UpdateEngineError | None:
        for update in updates:
            if not update.rollback_supported:
                logger.warning(
                    "Update %s does not declare rollback support; the pre-run snapshot still covers it",
                    update.id,
                    extra={"run_id": run_id, "update_id": update.id},
                )
            result = results[update.id]
            for component in update.components:
                try:
                    self._components.apply(component, update, run_id=run_id)
                except ComponentError as exc:
                    result.error = exc.message
                    logger.error(
                        "Apply failed for update %s on %s: %s",
                        update.id,
                        component,
                        exc.message,
                        extra={"run_id": run_id, "update_id": update.id, "component": component},
                    )
                    self._publish(
                        EventType.UPDATE_FAILED,
                        run_id,
                        update_id=update.id,
                        component=component,
                        error=exc.message,
                    )
                    return exc
                result.components_applied.append(component)
            logger.info(
                "Applied update %s to %s",
                update.id,
                ", ".join(update.components),
                extra={"run_id": run_id, "update_id": update.id},
            )
        return None

    def _verify(self, run_id: str) -> tuple[SuiteReport | None, UpdateEngineError | None]:
        try:
            report = call_with_deadline(
                self._harness.run_suite,
                self._settings.verification_timeout_seconds,
                description="verification suite",
                run_id=run_id,
            )
        except Exception as exc:
            logger.error("Verification suite did not complete: %s", exc, extra={"run_id": run_id})
            self._publish(EventType.VERIFICATION_COMPLETED, run_id, passed=False, error=str(exc))
            return None, VerificationFailedError(
                f"Verification suite did not complete: {exc}",
                run_id=run_id,
                cause=exc,
            )

        if not isinstance(report, SuiteReport):
            self._publish(EventType.VERIFICATION_COMPLETED, run_id, passed=False, error="invalid report")
            return None, VerificationFailedError(
                f"Verification suite returned {type(report).__name__}, expected SuiteReport",
                run_id=run_id,
            )

        self._publish(
            EventType.VERIFICATION_COMPLETED,
            run_id,
            passed=report.passed,
            failed_checks=report.failed_checks,
            duration_ms=report.duration_ms,
        )
        if report.passed:
            return report, None
        return report, VerificationFailedError(
            f"Verification failed: {', '.join(report.failed_checks) or 'suite reported failure'}",
            run_id=run_id,
        )

    def _commit(
        self,
        updates: list[UpdateDescriptor],
        results: dict[str, UpdateResult],
        run_id: str,
        batch: list[str],
        started_at: datetime,
        snapshot: Snapshot,
        test_results: SuiteReport | None,
        conflicts: dict[str, list[str]],
    ) -> DeploymentReport:
        deployed_at = datetime.now(UTC)
        for update in updates:
            self._registry.set_status(update.id, UpdateStatus.DEPLOYED, run_id=run_id, deployed_at=deployed_at)
            results[update.id].status = UpdateStatus.DEPLOYED
            self._publish(EventType.UPDATE_DEPLOYED, run_id, update_id=update.id, version=update.version)
        self._registry.set_active_version(updates[-1].version)
        self._phases.transition(DeploymentPhase.COMMITTED, run_id=run_id)

        logger.info(
            "Deployment %s committed %d update(s); active version %s",
            run_id,
            len(updates),
            updates[-1].version,
            extra={"run_id": run_id},
        )
        return self._report(
            run_id,
            batch,
            DeploymentOutcome.DEPLOYED,
            results,
            started_at,
            snapshot=snapshot,
            test_results=test_results,
            conflicts=conflicts,
        )

    def _roll_back(
        self,
        updates: list[UpdateDescriptor],
        results: dict[str, UpdateResult],
        run_id: str,
        batch: list[str],
        started_at: datetime,
        snapshot: Snapshot,
        test_results: SuiteReport | None,
        conflicts: dict[str, list[str]],
        failure: UpdateEngineError,
    ) -> DeploymentReport:
        self._phases.transition(DeploymentPhase.ROLLING_BACK, run_id=run_id)
        self._publish(
            EventType.ROLLBACK_STARTED,
            run_id,
            snapshot_id=snapshot.snapshot_id,
            reason=failure.message,
            operator_initiated=False,
        )
        active_version = self._registry.active_version

        try:
            self._snapshots.restore(snapshot.label, run_id=run_id)
        except UpdateEngineError as rollback_exc:
            restored, unrestored = self._restore_outcome(rollback_exc, snapshot)
            self._finish_batch(updates, results, UpdateStatus.ROLLBACK_FAILED, run_id)
            self._phases.transition(DeploymentPhase.ROLLBACK_FAILED, run_id=run_id)
            self._record_rollback(run_id, snapshot, active_version, active_version, False, error=rollback_exc.message)
            self._escalate(run_id, rollback_exc, unrestored)
            return self._report(
                run_id,
                batch,
                DeploymentOutcome.ROLLBACK_FAILED,
                results,
                started_at,
                failure=failure,
                snapshot=snapshot,
                test_results=test_results,
                conflicts=conflicts,
                restored=restored,
                unrestored=unrestored,
                rollback_error=rollback_exc.message,
            )

        self._finish_batch(updates, results, UpdateStatus.ROLLED_BACK, run_id)
        self._phases.transition(DeploymentPhase.ROLLED_BACK, run_id=run_id)
        self._record_rollback(run_id, snapshot, active_version, active_version, True)
        self._publish(EventType.ROLLBACK_COMPLETED, run_id, snapshot_id=snapshot.snapshot_id)
        logger.warning(
            "Deployment %s rolled back to snapshot %s: %s",
            run_id,
            snapshot.snapshot_id,
            failure.message,
            extra={"run_id": run_id, "snapshot_id": snapshot.snapshot_id},
        )
        return self._report(
            run_id,
            batch,
            DeploymentOutcome.ROLLED_BACK,
            results,
            started_at,
            failure=failure,
            snapshot=snapshot,
            test_results=test_results,
            conflicts=conflicts,
            restored=list(reversed(snapshot.component_names)),
        )

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def rollback_to(self, label: str, *, operator: str | None = None) -> RollbackRecord:
        """Restore the most recent snapshot carrying *label* outside a run.

        The active version is set back to the snapshot's
        ``version_at_capture``.  Update statuses are left untouched.

        Raises
        ------
        ConcurrentDeploymentError
            If a run is in progress.
        SnapshotNotFoundError
            If *label* does not resolve.  Nothing is touched.  If the
            snapshot disappears after the rollback has started, the
            rollback fails as below.
        PartialRollbackError
            If any component could not be restored; the coordinator halts.
        """
        if not self._run_lock.acquire(blocking=False):
            raise ConcurrentDeploymentError("A deployment run is already in progress")
        try:
            snapshot = self._snapshots.latest(label)
            run_id = uuid.uuid4().hex
            from_version = self._registry.active_version

            self._phases.reset(run_id=run_id)
            self._phases.transition(DeploymentPhase.ROLLING_BACK, run_id=run_id)
            self._publish(
                EventType.ROLLBACK_STARTED,
                run_id,
                snapshot_id=snapshot.snapshot_id,
                reason=f"operator rollback to {label}",
                operator=operator,
                operator_initiated=True,
            )

            try:
                self._snapshots.restore_snapshot(snapshot.snapshot_id, run_id=run_id)
            except UpdateEngineError as exc:
                _, unrestored = self._restore_outcome(exc, snapshot)
                self._phases.transition(DeploymentPhase.ROLLBACK_FAILED, run_id=run_id)
                self._record_rollback(
                    run_id, snapshot, from_version, from_version, False, operator_initiated=True, error=exc.message
                )
                self._escalate(run_id, exc, unrestored)
                raise

            self._registry.set_active_version(snapshot.version_at_capture)
            self._phases.transition(DeploymentPhase.ROLLED_BACK, run_id=run_id)
            record = self._record_rollback(
                run_id, snapshot, from_version, snapshot.version_at_capture, True, operator_initiated=True
            )
            self._publish(
                EventType.ROLLBACK_COMPLETED,
                run_id,
                snapshot_id=snapshot.snapshot_id,
                active_version=snapshot.version_at_capture,
                operator_initiated=True,
            )
            logger.info(
                "Operator %s rolled back to %s (%s); active version %s -> %s",
                operator or "unknown",
                label,
                snapshot.snapshot_id,
                from_version,
                snapshot.version_at_capture,
                extra={"run_id": run_id, "snapshot_id": snapshot.snapshot_id},
            )
            return record
        finally:
            self._run_lock.release()

    def clear_halt(self, operator: str) -> None:
        """Re-enable deployments after an operator has repaired the system.

        Raises
        ------
        ValidationError
            If *operator* is empty.
        """
        if not operator or not operator.strip():
            raise ValidationError(["operator: must not be empty"])
        with self._state_lock:
            was_halted, reason = self._halted, self._halt_reason
            self._halted = False
            self._halt_reason = None
        if not was_halted:
            logger.info("clear_halt called by %s but deployments were not halted", operator)
            return
        logger.warning("Deployment halt cleared by %s (was: %s)", operator, reason)
        self._publish(EventType.HALT_CLEARED, None, operator=operator, reason=reason)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _finish_batch(
        self,
        updates: list[UpdateDescriptor],
        results: dict[str, UpdateResult],
        status: UpdateStatus,
        run_id: str,
    ) -> None:
        for update in updates:
            self._registry.set_status(update.id, status, run_id=run_id)
            results[update.id].status = status

    @staticmethod
    def _restore_outcome(exc: UpdateEngineError, snapshot: Snapshot) -> tuple[list[str], list[str]]:
        if isinstance(exc, PartialRollbackError):
            return list(exc.restored), list(exc.unrestored)
        # The restore never started (e.g. the snapshot was deleted mid-run).
        return [], list(reversed(snapshot.component_names))

    def _escalate(self, run_id: str, exc: UpdateEngineError, unrestored: list[str]) -> None:
        logger.critical(
            "ROLLBACK FAILED for run %s; components not restored: %s. Operator intervention required.",
            run_id,
            ", ".join(unrestored) or "unknown",
            extra={"run_id": run_id, "component": unrestored[0] if unrestored else None},
        )
        if self._settings.halt_on_rollback_failure:
            with self._state_lock:
                self._halted = True
                self._halt_reason = exc.message
        self._publish(
            EventType.ROLLBACK_FAILED,
            run_id,
            unrestored=list(unrestored),
            error=exc.message,
            halted=self._settings.halt_on_rollback_failure,
        )

    def _record_rollback(
        self,
        run_id: str,
        snapshot: Snapshot,
        from_version: str,
        to_version: str,
        success: bool,
        *,
        operator_initiated: bool = False,
        error: str | None = None,
    ) -> RollbackRecord:
        record = RollbackRecord(
            run_id=run_id,
            snapshot_id=snapshot.snapshot_id,
            snapshot_label=snapshot.label,
            from_version=from_version,
            to_version=to_version,
            success=success,
            operator_initiated=operator_initiated,
            timestamp=datetime.now(UTC),
            error=error,
        )
        with self._state_lock:
            self._rollback_history.append(record)
        return record

    def _report(
        self,
        run_id: str,
        batch: list[str],
        outcome: DeploymentOutcome,
        results: dict[str, UpdateResult],
        started_at: datetime,
        *,
        failure: UpdateEngineError | None = None,
        snapshot: Snapshot | None = None,
        snapshot_label: str | None = None,
        test_results: SuiteReport | None = None,
        conflicts: dict[str, list[str]] | None = None,
        restored: list[str] | None = None,
        unrestored: list[str] | None = None,
        rollback_error: str | None = None,
    ) -> DeploymentReport:
        failure_detail = None
        if failure is not None:
            failure_detail = FailureDetail(
                error_type=type(failure).__name__,
                message=failure.message,
                run_id=run_id,
                update_id=failure.update_id,
                component=failure.component,
                restored=restored or [],
                unrestored=unrestored or [],
                rollback_error=rollback_error,
            )

        finished_at = datetime.now(UTC)
        report = DeploymentReport(
            run_id=run_id,
            ran_update_ids=list(batch),
            outcome=outcome,
            results=[results[update_id] for update_id in batch],
            test_results=test_results,
            failure_detail=failure_detail,
            snapshot_id=snapshot.snapshot_id if snapshot else None,
            snapshot_label=snapshot.label if snapshot else snapshot_label,
            active_version=self._registry.active_version,
            component_conflicts=conflicts or {},
            started_at=started_at,
            finished_at=finished_at,
        )
        with self._state_lock:
            self._last_run_timestamp = finished_at
            self._last_report = report
        self._publish(
            EventType.DEPLOYMENT_COMPLETED,
            run_id,
            outcome=outcome.value,
            update_ids=list(batch),
            active_version=report.active_version,
        )
        return report

    def _on_phase_change(self, previous: DeploymentPhase, current: DeploymentPhase, run_id: str | None) -> None:
        self._publish(EventType.PHASE_CHANGED, run_id, previous=previous.value, phase=current.value)

    def _publish(self, event_type: EventType, run_id: str | None, **data: Any) -> None:
        self._events.publish(event_type, run_id=run_id, data=data)
