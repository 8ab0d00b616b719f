"""Approval gating: required roles and satisfaction checks."""

from update_engine.approval.gate import (
    ApprovalDecision,
    ApprovalGate,
    RoleCheck,
    is_satisfied,
    missing_approvals,
    required_approvals,
)

__all__ = [
    "ApprovalDecision",
    "ApprovalGate",
    "RoleCheck",
    "is_satisfied",
    "missing_approvals",
    "required_approvals",
]
