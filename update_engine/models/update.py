"""Update descriptor models.

An *update* is a versioned change to one or more components of the running
system.  Callers describe it with an :class:`UpdateSpec`; the registry turns
that into an :class:`UpdateDescriptor` carrying the derived version, the
append-only approval trail and the deployment status.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class UpdateType(str, Enum):
    """Area of the system an update changes."""

    CORE = "core"
    CONTRACT = "contract"
    API = "api"
    UI = "ui"
    CONSENSUS = "consensus"
    SECURITY = "security"


class RiskLevel(str, Enum):
    """Declared risk of an update, used to derive required approvals."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ApprovalRole(str, Enum):
    """Roles whose sign-off can be required before an update is queued."""

    DEVELOPER = "developer"
    SECURITY = "security"
    SUPERADMIN = "superadmin"
    DEVOPS = "devops"


class UpdateStatus(str, Enum):
    """Lifecycle status of an update.

    ``CREATED -> QUEUED -> DEPLOYING -> DEPLOYED | ROLLED_BACK | ROLLBACK_FAILED``
    """

    CREATED = "CREATED"
    QUEUED = "QUEUED"
    DEPLOYING = "DEPLOYING"
    DEPLOYED = "DEPLOYED"
    ROLLED_BACK = "ROLLED_BACK"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"


TERMINAL_FAILURE_STATUSES = frozenset({UpdateStatus.ROLLED_BACK, UpdateStatus.ROLLBACK_FAILED})


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class RiskAssessment(BaseModel):
    """Risk level plus the author's description of it."""

    level: RiskLevel = Field(default=RiskLevel.LOW, description="Declared risk level.")
    description: str = Field(default="", description="What could go wrong.")
    mitigations: list[str] = Field(default_factory=list, description="Planned mitigations.")


class ApprovalEntry(BaseModel):
    """A single approval or rejection recorded against an update."""

    role: ApprovalRole = Field(..., description="Role the approver acted as.")
    approver: str = Field(..., min_length=1, description="Identity of the approver.")
    approved: bool = Field(..., description="True to approve, False to reject.")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the decision was recorded (UTC).",
    )
    notes: str = Field(default="", description="Free-form notes from the approver.")

    @field_validator("approver")
    @classmethod
    def strip_approver(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("approver must not be empty")
        return v


def _dedupe(names: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result


# ---------------------------------------------------------------------------
# Update input and record
# ---------------------------------------------------------------------------


class UpdateSpec(BaseModel):
    """Caller-supplied description of a new update."""

    type: UpdateType = Field(..., description="Area of the system the update changes.")
    title: str = Field(..., min_length=1, description="Short human-readable title.")
    description: str = Field(default="", description="Longer description of the change.")
    components: list[str] = Field(
        ...,
        min_length=1,
        description="Component names touched, in apply order. Duplicates are dropped.",
    )
    dependencies: list[str] = Field(
        default_factory=list,
        description="Update ids that must be deployed (or queued ahead) first.",
    )
    risk: RiskAssessment = Field(default_factory=RiskAssessment)
    rollback_supported: bool = Field(default=True)
    author: str = Field(default="", description="Who created the update.")

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("components")
    @classmethod
    def normalise_components(cls, v: list[str]) -> list[str]:
        names = [name.strip() for name in v]
        if any(not name for name in names):
            raise ValueError("component names must not be empty")
        return _dedupe(names)

    @field_validator("dependencies")
    @classmethod
    def normalise_dependencies(cls, v: list[str]) -> list[str]:
        return _dedupe([dep.strip() for dep in v if dep.strip()])


class UpdateDescriptor(BaseModel):
    """The registry's record of an update.

    ``approvals`` is append-only; for a given role the most recent entry is
    authoritative.  Only the registry, the approval path and the deployment
    coordinator mutate a descriptor; callers always receive detached copies.
    """

    id: str = Field(..., min_length=1, description="Unique, immutable update id.")
    version: str = Field(..., description="Semantic version derived at creation time.")
    type: UpdateType
    title: str
    description: str = ""
    components: list[str] = Field(..., min_length=1)
    dependencies: list[str] = Field(default_factory=list)
    risk: RiskAssessment = Field(default_factory=RiskAssessment)
    rollback_supported: bool = True
    author: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    approvals: list[ApprovalEntry] = Field(default_factory=list)
    status: UpdateStatus = UpdateStatus.CREATED
    deployed_at: datetime | None = Field(default=None, description="Set when the update is committed.")
    last_run_id: str | None = Field(default=None, description="Most recent deployment run that touched it.")

    def latest_approval(self, role: ApprovalRole) -> ApprovalEntry | None:
        """Return the most recent approval entry for *role*, if any."""
        for entry in reversed(self.approvals):
            if entry.role == role:
                return entry
        return None

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "type": self.type.value,
            "title": self.title,
            "status": self.status.value,
        }
