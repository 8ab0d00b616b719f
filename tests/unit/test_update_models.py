"""Unit tests for update descriptor and spec models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from update_engine.models.update import (
    ApprovalEntry,
    ApprovalRole,
    RiskLevel,
    UpdateDescriptor,
    UpdateSpec,
    UpdateStatus,
    UpdateType,
)


def _make_descriptor(**overrides) -> UpdateDescriptor:
    data = {
        "id": "update-1",
        "version": "1.0.1",
        "type": UpdateType.API,
        "title": "t",
        "components": ["api"],
    }
    data.update(overrides)
    return UpdateDescriptor(**data)


class TestUpdateSpec:
    def test_components_deduplicated_first_wins(self):
        spec = UpdateSpec(type="api", title="t", components=["b", "a", "b", "c", "a"])
        assert spec.components == ["b", "a", "c"]

    def test_components_required(self):
        with pytest.raises(ValidationError):
            UpdateSpec(type="api", title="t", components=[])

    def test_blank_component_rejected(self):
        with pytest.raises(ValidationError, match="component names must not be empty"):
            UpdateSpec(type="api", title="t", components=["api", " "])

    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError):
            UpdateSpec(type="api", title="   ", components=["api"])

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            UpdateSpec(type="firmware", title="t", components=["api"])

    def test_defaults(self):
        spec = UpdateSpec(type="ui", title="t", components=["ui"])
        assert spec.risk.level == RiskLevel.LOW
        assert spec.rollback_supported is True
        assert spec.dependencies == []

    def test_dependencies_deduplicated(self):
        spec = UpdateSpec(type="ui", title="t", components=["ui"], dependencies=["u1", "u1", " "])
        assert spec.dependencies == ["u1"]


class TestUpdateDescriptor:
    def test_initial_status_created(self):
        assert _make_descriptor().status == UpdateStatus.CREATED

    def test_latest_approval_is_most_recent(self):
        d = _make_descriptor()
        d.approvals.append(ApprovalEntry(role=ApprovalRole.DEVELOPER, approver="a", approved=True))
        d.approvals.append(ApprovalEntry(role=ApprovalRole.SECURITY, approver="s", approved=True))
        d.approvals.append(ApprovalEntry(role=ApprovalRole.DEVELOPER, approver="b", approved=False))
        latest = d.latest_approval(ApprovalRole.DEVELOPER)
        assert latest is not None
        assert latest.approver == "b"
        assert latest.approved is False

    def test_latest_approval_missing(self):
        assert _make_descriptor().latest_approval(ApprovalRole.DEVOPS) is None

    def test_summary(self):
        summary = _make_descriptor().summary()
        assert summary == {
            "id": "update-1",
            "version": "1.0.1",
            "type": "api",
            "title": "t",
            "status": "CREATED",
        }


class TestApprovalEntry:
    def test_approver_stripped(self):
        entry = ApprovalEntry(role="devops", approver="  ops  ", approved=True)
        assert entry.approver == "ops"

    def test_empty_approver_rejected(self):
        with pytest.raises(ValidationError):
            ApprovalEntry(role="devops", approver="", approved=True)

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            ApprovalEntry(role="intern", approver="x", approved=True)
