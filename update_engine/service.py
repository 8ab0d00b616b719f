"""Service facade wiring the update engine together.

:class:`UpdateService` owns one registry, queue, snapshot store and
coordinator.  Collaborators are injected explicitly; nothing is shared
between instances.

Usage::

    components = ComponentUpdaterRegistry()
    components.register("api", ApiUpdater())

    service = UpdateService(load_settings(), components=components, harness=suite)
    update_id = service.create_update({...})
    service.record_approval(update_id, "developer", "alice", True)
    service.enqueue(update_id)
    report = service.deploy_queued()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from update_engine.approval.gate import ApprovalDecision, ApprovalGate
from update_engine.components.registry import ComponentUpdaterRegistry
from update_engine.config import Settings
from update_engine.coordinator.coordinator import DeploymentCoordinator
from update_engine.deployment_queue import DeploymentQueue
from update_engine.events.bus import EventBus, EventType
from update_engine.events.sink import JsonLinesEventSink
from update_engine.models.deployment import DeploymentReport, RollbackRecord, SystemStatus
from update_engine.models.snapshot import Snapshot
from update_engine.models.update import ApprovalEntry, ApprovalRole, UpdateDescriptor, UpdateSpec
from update_engine.registry.update_registry import UpdateRegistry
from update_engine.snapshot.store import SnapshotStore
from update_engine.verification.harness import TestHarness

logger = logging.getLogger(__name__)


class UpdateService:
    """Public entry point of the update engine.

    Parameters
    ----------
    settings:
        Engine settings.  Loaded from the environment when omitted.
    components:
        Component updater registry.  Its call deadline is set from
        ``settings.component_call_timeout_seconds``.
    harness:
        Verification suite runner used after every apply.
    event_bus:
        Event bus for lifecycle notifications.  When ``settings.events_file``
        is set, a :class:`JsonLinesEventSink` is subscribed to it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        components: ComponentUpdaterRegistry | None = None,
        harness: TestHarness | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.components = components if components is not None else ComponentUpdaterRegistry()
        self.components.call_timeout_seconds = self.settings.component_call_timeout_seconds
        self.events = event_bus if event_bus is not None else EventBus()

        self.event_sink: JsonLinesEventSink | None = None
        if self.settings.events_file is not None:
            self.event_sink = JsonLinesEventSink(self.settings.events_file).attach(self.events)

        self.registry = UpdateRegistry(initial_version=self.settings.initial_version)
        self.gate = ApprovalGate()
        self.queue = DeploymentQueue(self.registry, self.gate)
        self.snapshots = SnapshotStore(self.components, lambda: self.registry.active_version)
        self.coordinator = DeploymentCoordinator(
            self.registry,
            self.queue,
            self.snapshots,
            self.components,
            harness,
            event_bus=self.events,
            settings=self.settings,
        )

    # ------------------------------------------------------------------
    # Updates and approvals
    # ------------------------------------------------------------------

    def create_update(self, spec: UpdateSpec | Mapping[str, Any]) -> str:
        update_id = self.registry.create_update(spec)
        update = self.registry.get_update(update_id)
        self.events.publish(
            EventType.UPDATE_CREATED,
            data={
                "update_id": update_id,
                "version": update.version,
                "type": update.type.value,
                "risk": update.risk.level.value,
                "required_approvals": [r.value for r in self.gate.required_approvals(update)],
            },
        )
        return update_id

    def get_update(self, update_id: str) -> UpdateDescriptor:
        return self.registry.get_update(update_id)

    def list_updates(self) -> list[UpdateDescriptor]:
        return self.registry.list_updates()

    def record_approval(
        self,
        update_id: str,
        role: ApprovalRole | str,
        approver: str,
        approved: bool,
        notes: str = "",
    ) -> ApprovalEntry:
        entry = self.registry.record_approval(update_id, role, approver, approved, notes)
        self.events.publish(
            EventType.APPROVAL_RECORDED,
            data={
                "update_id": update_id,
                "role": entry.role.value,
                "approver": entry.approver,
                "approved": entry.approved,
            },
        )
        return entry

    def evaluate_approvals(self, update_id: str) -> ApprovalDecision:
        """Explain which required approvals are present, missing or rejected."""
        return self.gate.evaluate(self.registry.get_update(update_id))

    def enqueue(self, update_id: str) -> None:
        self.queue.enqueue(update_id)
        self.events.publish(
            EventType.UPDATE_QUEUED,
            data={"update_id": update_id, "queue_depth": self.queue.depth},
        )

    # ------------------------------------------------------------------
    # Deployment and rollback
    # ------------------------------------------------------------------

    def deploy_queued(self) -> DeploymentReport:
        return self.coordinator.deploy_queued()

    def rollback_to(self, label: str, *, operator: str | None = None) -> RollbackRecord:
        return self.coordinator.rollback_to(label, operator=operator)

    def clear_halt(self, operator: str) -> None:
        self.coordinator.clear_halt(operator)

    def capture_baseline(self, label: str = "initial") -> Snapshot:
        """Capture a snapshot of the current system outside any deployment run."""
        snapshot = self.snapshots.capture(label)
        self.events.publish(
            EventType.SNAPSHOT_CAPTURED,
            data={"snapshot_id": snapshot.snapshot_id, "label": label, "config_hash": snapshot.config_hash},
        )
        return snapshot

    def list_snapshots(self, label: str | None = None) -> list[Snapshot]:
        return self.snapshots.list_snapshots(label)

    def rollback_history(self) -> list[RollbackRecord]:
        return self.coordinator.rollback_history

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> SystemStatus:
        return SystemStatus(
            active_version=self.registry.active_version,
            queue_depth=self.queue.depth,
            run_in_progress=self.coordinator.run_in_progress,
            last_run_timestamp=self.coordinator.last_run_timestamp,
            snapshot_count=self.snapshots.count,
            halted=self.coordinator.halted,
        )
