"""Pydantic models shared across the update engine."""

from update_engine.models.deployment import (
    DeploymentOutcome,
    DeploymentPhase,
    DeploymentReport,
    FailureDetail,
    RollbackRecord,
    SystemStatus,
    UpdateResult,
)
from update_engine.models.snapshot import ComponentState, Snapshot
from update_engine.models.update import (
    ApprovalEntry,
    ApprovalRole,
    RiskAssessment,
    RiskLevel,
    UpdateDescriptor,
    UpdateSpec,
    UpdateStatus,
    UpdateType,
)

__all__ = [
    "ApprovalEntry",
    "ApprovalRole",
    "ComponentState",
    "DeploymentOutcome",
    "DeploymentPhase",
    "DeploymentReport",
    "FailureDetail",
    "RiskAssessment",
    "RiskLevel",
    "RollbackRecord",
    "Snapshot",
    "SystemStatus",
    "UpdateDescriptor",
    "UpdateResult",
    "UpdateSpec",
    "UpdateStatus",
    "UpdateType",
]
