"""Unit tests for the update registry."""

from __future__ import annotations

import pytest

from update_engine.errors import NotFoundError, ValidationError
from update_engine.models.update import ApprovalRole, RiskLevel, UpdateSpec, UpdateStatus, UpdateType
from update_engine.registry.update_registry import UpdateRegistry


def _spec(**overrides) -> dict:
    spec = {
        "type": "contract",
        "title": "Deploy escrow contract",
        "components": ["ledger"],
        "risk": {"level": "medium", "description": "new contract", "mitigations": ["audit"]},
        "author": "dev",
    }
    spec.update(overrides)
    return spec


class TestCreateUpdate:
    def test_returns_unique_ids(self):
        registry = UpdateRegistry()
        first = registry.create_update(_spec())
        second = registry.create_update(_spec())
        assert first != second
        assert first.startswith("update-")

    def test_initial_status_and_version(self):
        registry = UpdateRegistry(initial_version="2.3.4")
        update = registry.get_update(registry.create_update(_spec()))
        assert update.status == UpdateStatus.CREATED
        assert update.version == "2.3.5"
        assert update.type == UpdateType.CONTRACT
        assert update.risk.level == RiskLevel.MEDIUM
        assert update.approvals == []
        assert update.deployed_at is None

    def test_version_tracks_active_version(self):
        registry = UpdateRegistry()
        registry.set_active_version("1.0.7")
        update = registry.get_update(registry.create_update(_spec()))
        assert update.version == "1.0.8"

    def test_accepts_update_spec_model(self):
        registry = UpdateRegistry()
        spec = UpdateSpec(type="ui", title="Dark mode", components=["ui", "ui"])
        update = registry.get_update(registry.create_update(spec))
        assert update.components == ["ui"]

    def test_missing_title_rejected_with_field_message(self):
        registry = UpdateRegistry()
        spec = _spec()
        del spec["title"]
        with pytest.raises(ValidationError) as exc_info:
            registry.create_update(spec)
        assert any(msg.startswith("title:") for msg in exc_info.value.errors)
        assert registry.list_updates() == []

    def test_empty_components_rejected(self):
        registry = UpdateRegistry()
        with pytest.raises(ValidationError, match="components"):
            registry.create_update(_spec(components=[]))
        assert registry.list_updates() == []

    def test_unknown_type_rejected(self):
        registry = UpdateRegistry()
        with pytest.raises(ValidationError, match="type"):
            registry.create_update(_spec(type="kernel"))

    def test_unknown_dependency_rejected(self):
        registry = UpdateRegistry()
        with pytest.raises(ValidationError, match="unknown update id"):
            registry.create_update(_spec(dependencies=["update-missing"]))
        assert registry.list_updates() == []

    def test_non_mapping_rejected(self):
        registry = UpdateRegistry()
        with pytest.raises(ValidationError, match="expected a mapping"):
            registry.create_update(["not", "a", "spec"])  # type: ignore[arg-type]

    def test_known_dependency_accepted(self):
        registry = UpdateRegistry()
        base = registry.create_update(_spec())
        child = registry.get_update(registry.create_update(_spec(dependencies=[base])))
        assert child.dependencies == [base]

    def test_invalid_initial_version(self):
        with pytest.raises(ValueError):
            UpdateRegistry(initial_version="one")


class TestReads:
    def test_get_unknown_raises(self):
        with pytest.raises(NotFoundError):
            UpdateRegistry().get_update("update-nope")

    def test_get_returns_detached_copy(self):
        registry = UpdateRegistry()
        update_id = registry.create_update(_spec())
        copy = registry.get_update(update_id)
        copy.components.append("tampered")
        copy.status = UpdateStatus.DEPLOYED
        fresh = registry.get_update(update_id)
        assert fresh.components == ["ledger"]
        assert fresh.status == UpdateStatus.CREATED

    def test_list_in_creation_order(self):
        registry = UpdateRegistry()
        ids = [registry.create_update(_spec(title=f"u{i}")) for i in range(3)]
        assert [u.id for u in registry.list_updates()] == ids


class TestRecordApproval:
    def test_appends_entries(self):
        registry = UpdateRegistry()
        update_id = registry.create_update(_spec())
        registry.record_approval(update_id, "developer", "alice", True, "lgtm")
        registry.record_approval(update_id, ApprovalRole.DEVELOPER, "bob", False)
        approvals = registry.get_update(update_id).approvals
        assert [(a.approver, a.approved) for a in approvals] == [("alice", True), ("bob", False)]
        assert approvals[0].notes == "lgtm"

    def test_unknown_update(self):
        with pytest.raises(NotFoundError):
            UpdateRegistry().record_approval("update-nope", "developer", "alice", True)

    def test_unknown_update_precedes_bad_role(self):
        with pytest.raises(NotFoundError):
            UpdateRegistry().record_approval("update-nope", "intern", "alice", True)

    def test_unknown_role(self):
        registry = UpdateRegistry()
        update_id = registry.create_update(_spec())
        with pytest.raises(ValidationError, match="role"):
            registry.record_approval(update_id, "intern", "alice", True)
        assert registry.get_update(update_id).approvals == []

    def test_empty_approver(self):
        registry = UpdateRegistry()
        update_id = registry.create_update(_spec())
        with pytest.raises(ValidationError, match="approver"):
            registry.record_approval(update_id, "developer", "  ", True)

    def test_approval_after_queue_kept_for_audit(self):
        registry = UpdateRegistry()
        update_id = registry.create_update(_spec())
        registry.set_status(update_id, UpdateStatus.QUEUED)
        registry.record_approval(update_id, "security", "sec", True)
        assert len(registry.get_update(update_id).approvals) == 1


class TestStatusAndVersion:
    def test_set_status_records_run(self):
        registry = UpdateRegistry()
        update_id = registry.create_update(_spec())
        registry.set_status(update_id, UpdateStatus.DEPLOYING, run_id="run-1")
        update = registry.get_update(update_id)
        assert update.status == UpdateStatus.DEPLOYING
        assert update.last_run_id == "run-1"

    def test_statuses_mapping(self):
        registry = UpdateRegistry()
        update_id = registry.create_update(_spec())
        assert registry.statuses() == {update_id: UpdateStatus.CREATED}

    def test_set_active_version_validates(self):
        registry = UpdateRegistry()
        with pytest.raises(ValueError):
            registry.set_active_version("nope")
        assert registry.active_version == "1.0.0"


class TestDependencyQueries:
    def test_dependents_of(self):
        registry = UpdateRegistry()
        a = registry.create_update(_spec(title="a"))
        b = registry.create_update(_spec(title="b", dependencies=[a]))
        c = registry.create_update(_spec(title="c", dependencies=[b]))
        registry.create_update(_spec(title="d"))
        assert registry.dependents_of(a) == {b, c}

    def test_deployment_order_respects_dependencies(self):
        registry = UpdateRegistry()
        a = registry.create_update(_spec(title="a"))
        b = registry.create_update(_spec(title="b"))
        c = registry.create_update(_spec(title="c", dependencies=[b, a]))
        assert registry.deployment_order() == [a, b, c]
