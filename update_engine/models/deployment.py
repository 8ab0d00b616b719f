"""Deployment run models: phases, outcomes, reports and system status."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from update_engine.models.update import UpdateStatus
from update_engine.verification.models import SuiteReport


class DeploymentPhase(str, Enum):
    """Phases of the deployment coordinator state machine."""

    IDLE = "IDLE"
    SNAPSHOT_CAPTURED = "SNAPSHOT_CAPTURED"
    APPLYING = "APPLYING"
    VERIFYING = "VERIFYING"
    COMMITTED = "COMMITTED"
    ROLLING_BACK = "ROLLING_BACK"
    ROLLED_BACK = "ROLLED_BACK"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"


class DeploymentOutcome(str, Enum):
    """Final outcome of a ``deploy_queued`` call."""

    DEPLOYED = "DEPLOYED"
    ROLLED_BACK = "ROLLED_BACK"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    NOOP = "NOOP"


class UpdateResult(BaseModel):
    """What happened to one update in a batch."""

    update_id: str
    version: str
    status: UpdateStatus
    components_applied: list[str] = Field(
        default_factory=list,
        description="Components whose apply call returned successfully, in call order.",
    )
    error: str | None = Field(default=None, description="Failure message when this update failed to apply.")


class FailureDetail(BaseModel):
    """Forensic context for a failed run."""

    error_type: str = Field(..., description="Exception class name.")
    message: str
    run_id: str | None = None
    update_id: str | None = None
    component: str | None = None
    restored: list[str] = Field(default_factory=list, description="Components restored during rollback.")
    unrestored: list[str] = Field(default_factory=list, description="Components left unrestored.")
    rollback_error: str | None = Field(default=None, description="Rollback failure message, if any.")


class DeploymentReport(BaseModel):
    """Result of a single ``deploy_queued`` call."""

    run_id: str
    ran_update_ids: list[str] = Field(default_factory=list)
    outcome: DeploymentOutcome
    results: list[UpdateResult] = Field(default_factory=list)
    test_results: SuiteReport | None = None
    failure_detail: FailureDetail | None = None
    snapshot_id: str | None = None
    snapshot_label: str | None = None
    active_version: str
    component_conflicts: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Components touched by more than one update in the batch, mapped to those update ids.",
    )
    started_at: datetime
    finished_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        """Serialize to deterministic JSON (sorted keys, 2-space indent)."""
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)


class RollbackRecord(BaseModel):
    """An entry in the rollback history."""

    run_id: str
    snapshot_id: str
    snapshot_label: str
    from_version: str
    to_version: str
    success: bool
    operator_initiated: bool = False
    timestamp: datetime
    error: str | None = None


class SystemStatus(BaseModel):
    """Point-in-time view of the engine."""

    active_version: str
    queue_depth: int
    run_in_progress: bool
    last_run_timestamp: datetime | None = None
    snapshot_count: int
    halted: bool = False
