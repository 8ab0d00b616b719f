"""Approval gating for updates.

**Required roles** (in this order, duplicates never repeated):

1. ``developer`` for every update.
2. ``security`` and ``superadmin`` when risk is ``high`` or ``critical``.
3. ``devops`` when the update type is ``core`` or ``consensus``.

A role is satisfied when the *most recent* approval entry for that role has
``approved=True``.  A later rejection revokes an earlier approval and vice
versa.  All functions here are pure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from update_engine.models.update import ApprovalRole, RiskLevel, UpdateDescriptor, UpdateType

logger = logging.getLogger(__name__)

_ELEVATED_RISK = frozenset({RiskLevel.HIGH, RiskLevel.CRITICAL})
_OPERATIONS_TYPES = frozenset({UpdateType.CORE, UpdateType.CONSENSUS})


def required_approvals(update: UpdateDescriptor) -> list[ApprovalRole]:
    """Return the roles that must approve *update*, in deterministic order."""
    roles = [ApprovalRole.DEVELOPER]
    if update.risk.level in _ELEVATED_RISK:
        roles.extend([ApprovalRole.SECURITY, ApprovalRole.SUPERADMIN])
    if update.type in _OPERATIONS_TYPES:
        roles.append(ApprovalRole.DEVOPS)
    return roles


def missing_approvals(update: UpdateDescriptor) -> list[ApprovalRole]:
    """Return required roles whose latest entry is absent or a rejection."""
    missing: list[ApprovalRole] = []
    for role in required_approvals(update):
        latest = update.latest_approval(role)
        if latest is None or not latest.approved:
            missing.append(role)
    return missing


def is_satisfied(update: UpdateDescriptor) -> bool:
    """Return True iff every required role's latest approval is positive."""
    return not missing_approvals(update)


# ---------------------------------------------------------------------------
# Decision with audit trail
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleCheck:
    """Evaluation of a single required role."""

    role: ApprovalRole
    satisfied: bool
    reason: str
    approver: str | None = None


@dataclass(frozen=True)
class ApprovalDecision:
    """Complete approval evaluation for one update."""

    update_id: str
    satisfied: bool
    checks: list[RoleCheck]
    decision_reason: str
    decided_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def missing_roles(self) -> list[ApprovalRole]:
        return [c.role for c in self.checks if not c.satisfied]

    @property
    def rejected_roles(self) -> list[ApprovalRole]:
        return [c.role for c in self.checks if not c.satisfied and c.approver is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "update_id": self.update_id,
            "satisfied": self.satisfied,
            "checks": [
                {
                    "role": c.role.value,
                    "satisfied": c.satisfied,
                    "reason": c.reason,
                    "approver": c.approver,
                }
                for c in self.checks
            ],
            "decision_reason": self.decision_reason,
            "decided_at": self.decided_at.isoformat(),
        }


class ApprovalGate:
    """Evaluates updates against the required-approval rules."""

    def required_approvals(self, update: UpdateDescriptor) -> list[ApprovalRole]:
        return required_approvals(update)

    def is_satisfied(self, update: UpdateDescriptor) -> bool:
        return is_satisfied(update)

    def missing_approvals(self, update: UpdateDescriptor) -> list[ApprovalRole]:
        return missing_approvals(update)

    def evaluate(self, update: UpdateDescriptor) -> ApprovalDecision:
        """Evaluate every required role and explain the outcome.

        Returns
        -------
        ApprovalDecision
            Per-role results; ``rejected_roles`` distinguishes explicit
            rejections from approvals that were never given.
        """
        checks: list[RoleCheck] = []
        for role in required_approvals(update):
            latest = update.latest_approval(role)
            if latest is None:
                checks.append(RoleCheck(role=role, satisfied=False, reason="No approval recorded"))
            elif latest.approved:
                checks.append(
                    RoleCheck(role=role, satisfied=True, reason="Approved", approver=latest.approver)
                )
            else:
                reason = f"Rejected by {latest.approver}"
                if latest.notes:
                    reason = f"{reason}: {latest.notes}"
                checks.append(RoleCheck(role=role, satisfied=False, reason=reason, approver=latest.approver))

        satisfied = all(c.satisfied for c in checks)
        if satisfied:
            reason = "All required approvals present"
        else:
            reason = "Approval required: " + "; ".join(
                f"{c.role.value}: {c.reason}" for c in checks if not c.satisfied
            )

        decision = ApprovalDecision(
            update_id=update.id,
            satisfied=satisfied,
            checks=checks,
            decision_reason=reason,
        )
        logger.debug("Approval decision for %s: %s", update.id, reason)
        return decision
