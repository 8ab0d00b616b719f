"""End-to-end deployment behaviour.

Exercises the full service wiring with in-memory components: approval
gating, all-or-nothing batches, verification-triggered rollback, deadlines,
partial rollback escalation, and single-flight deployment.
"""

from __future__ import annotations

import threading

import pytest

from update_engine.config import load_settings
from update_engine.errors import (
    ApprovalError,
    ConcurrentDeploymentError,
    ResubmissionRequiredError,
    RollbackFailedError,
)
from update_engine.events.bus import EventType
from update_engine.models.deployment import DeploymentOutcome
from update_engine.models.update import UpdateStatus
from update_engine.service import UpdateService


def _states(svc: UpdateService) -> dict:
    return {name: svc.components.describe_state(name) for name in svc.components.names()}


# ---------------------------------------------------------------------------
# Batch outcomes
# ---------------------------------------------------------------------------


class TestHighRiskCoreApproval:
    """A high-risk core update needs developer, security, superadmin and devops."""

    def test_gated_until_all_roles_approve(self, service, make_spec):
        update_id = service.create_update(make_spec("Raise block size", type="core", risk="high", components=["consensus"]))

        service.record_approval(update_id, "developer", "dev", True)
        service.record_approval(update_id, "security", "sec", True)
        with pytest.raises(ApprovalError) as exc_info:
            service.enqueue(update_id)
        assert exc_info.value.missing_roles == ["superadmin", "devops"]

        service.record_approval(update_id, "superadmin", "root", True)
        service.record_approval(update_id, "devops", "ops", True)
        service.enqueue(update_id)

        report = service.deploy_queued()
        assert report.outcome == DeploymentOutcome.DEPLOYED
        assert service.get_status().active_version == "1.0.1"


class TestBatchApplyFailure:
    """The second of three updates fails to apply; the whole batch rolls back."""

    def test_all_or_nothing(self, service, make_spec, approve_all, fakes):
        before = _states(service)
        ids = []
        for title, comps in (("one", ["api"]), ("two", ["ledger"]), ("three", ["consensus"])):
            update_id = service.create_update(make_spec(title, components=comps))
            approve_all(service, update_id)
            service.enqueue(update_id)
            ids.append(update_id)
        fakes["ledger"].fail_apply = True

        report = service.deploy_queued()

        assert report.outcome == DeploymentOutcome.ROLLED_BACK
        assert report.ran_update_ids == ids
        assert [service.get_update(i).status for i in ids] == [UpdateStatus.ROLLED_BACK] * 3
        assert fakes["consensus"].apply_calls == []
        assert _states(service) == before
        assert service.get_status().active_version == "1.0.0"
        for name, fake in fakes.items():
            assert fake.restore_calls == [name]


class TestLiveComponentState:
    """A component that reports its own mutable dict is still restored to its pre-run state."""

    def test_rollback_restores_pre_apply_settings(self, service, make_spec, approve_all, fakes):
        settings = {"limit": 10}

        def _apply(update):
            settings["limit"] = 99

        def _restore(state):
            settings.clear()
            settings.update(state.config_state["settings"])

        service.components.register_callbacks(
            "cache",
            describe_state=lambda: {"version": "1.0.0", "config_state": {"settings": settings}},
            apply=_apply,
            restore_state=_restore,
        )
        update_id = service.create_update(make_spec(components=["cache", "ledger"]))
        approve_all(service, update_id)
        service.enqueue(update_id)
        fakes["ledger"].fail_apply = True

        report = service.deploy_queued()

        assert report.outcome == DeploymentOutcome.ROLLED_BACK
        assert settings == {"limit": 10}
        snapshot = service.snapshots.get(report.snapshot_id)
        cache = next(s for s in snapshot.component_states if s.name == "cache")
        assert cache.config_state == {"settings": {"limit": 10}}


class TestVerificationFailureRollback:
    """Every apply succeeds but verification fails, so the batch rolls back."""

    def test_suite_failure_restores(self, service, make_spec, approve_all, suite, fakes):
        before = _states(service)
        suite.register("smoke", lambda: True)
        suite.register("consensus_liveness", lambda: False)
        update_id = service.create_update(make_spec(components=["api", "consensus"]))
        approve_all(service, update_id)
        service.enqueue(update_id)

        report = service.deploy_queued()

        assert report.outcome == DeploymentOutcome.ROLLED_BACK
        assert [r.name for r in report.test_results.results] == ["smoke", "consensus_liveness"]
        assert _states(service) == before
        assert service.get_update(update_id).status == UpdateStatus.ROLLED_BACK
        for name, fake in fakes.items():
            assert fake.restore_calls == [name]


class TestPartialRollbackEscalation:
    """Apply fails and one component cannot be restored; operators are paged."""

    def test_escalation(self, service, make_spec, approve_all, fakes, event_log):
        update_id = service.create_update(make_spec(components=["api", "ledger"]))
        approve_all(service, update_id)
        service.enqueue(update_id)
        fakes["ledger"].fail_apply = True
        fakes["api"].fail_restore = True

        report = service.deploy_queued()

        assert report.outcome == DeploymentOutcome.ROLLBACK_FAILED
        assert report.failure_detail.unrestored == ["api"]
        assert report.failure_detail.restored == ["ledger", "consensus"]
        assert service.get_update(update_id).status == UpdateStatus.ROLLBACK_FAILED
        assert service.get_status().halted is True
        with pytest.raises(RollbackFailedError):
            service.deploy_queued()

        failed = [e for e in event_log if e.event_type == EventType.ROLLBACK_FAILED]
        assert len(failed) == 1
        assert failed[0].data["unrestored"] == ["api"]


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------


class TestDeadlines:
    def test_apply_timeout_rolls_back(self, components, suite, event_bus, make_spec, approve_all, fakes):
        svc = UpdateService(
            load_settings(component_call_timeout_seconds=0.1),
            components=components,
            harness=suite,
            event_bus=event_bus,
        )
        fakes["api"].apply_delay = 0.5
        update_id = svc.create_update(make_spec(components=["api"]))
        approve_all(svc, update_id)
        svc.enqueue(update_id)

        report = svc.deploy_queued()

        assert report.outcome == DeploymentOutcome.ROLLED_BACK
        assert report.failure_detail.error_type == "ComponentApplyError"
        assert "timed out" in report.failure_detail.message

    def test_verification_timeout_rolls_back(self, components, event_bus, make_spec, approve_all):
        release = threading.Event()

        class _HangingHarness:
            def run_suite(self):
                release.wait(5)

        svc = UpdateService(
            load_settings(verification_timeout_seconds=0.1),
            components=components,
            harness=_HangingHarness(),
            event_bus=event_bus,
        )
        update_id = svc.create_update(make_spec())
        approve_all(svc, update_id)
        svc.enqueue(update_id)
        try:
            report = svc.deploy_queued()
        finally:
            release.set()

        assert report.outcome == DeploymentOutcome.ROLLED_BACK
        assert report.failure_detail.error_type == "VerificationFailedError"
        assert "timed out" in report.failure_detail.message


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestSingleFlight:
    def test_concurrent_deploys(self, service, make_spec, approve_all, fakes):
        entered = threading.Event()
        release = threading.Event()
        original_apply = fakes["api"].apply

        def _blocking_apply(update):
            entered.set()
            release.wait(5)
            original_apply(update)

        fakes["api"].apply = _blocking_apply
        update_id = service.create_update(make_spec(components=["api"]))
        approve_all(service, update_id)
        service.enqueue(update_id)

        reports = []
        worker = threading.Thread(target=lambda: reports.append(service.deploy_queued()))
        worker.start()
        try:
            assert entered.wait(5)
            assert service.get_status().run_in_progress is True
            with pytest.raises(ConcurrentDeploymentError):
                service.deploy_queued()
        finally:
            release.set()
            worker.join(5)

        assert len(reports) == 1
        assert reports[0].outcome == DeploymentOutcome.DEPLOYED
        assert reports[0].ran_update_ids == [update_id]
        assert service.get_status().run_in_progress is False

    def test_concurrent_enqueue_unique(self, service, make_spec, approve_all):
        ids = []
        for i in range(20):
            update_id = service.create_update(make_spec(f"u{i}"))
            approve_all(service, update_id)
            ids.append(update_id)

        threads = [threading.Thread(target=service.enqueue, args=(update_id,)) for update_id in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert sorted(service.queue.snapshot()) == sorted(ids)


# ---------------------------------------------------------------------------
# Successive runs
# ---------------------------------------------------------------------------


class TestSuccessiveRuns:
    def test_versions_advance_and_dependencies_chain(self, service, make_spec, approve_all, fakes):
        first = service.create_update(make_spec("first"))
        approve_all(service, first)
        service.enqueue(first)
        assert service.deploy_queued().active_version == "1.0.1"

        second = service.create_update(make_spec("second", dependencies=[first], components=["ledger"]))
        approve_all(service, second)
        service.enqueue(second)
        report = service.deploy_queued()

        assert report.active_version == "1.0.2"
        assert fakes["ledger"].version == "1.0.2"
        assert service.snapshots.count == 2
        assert service.registry.deployment_order() == [first, second]

    def test_rolled_back_update_cannot_be_requeued(self, service, make_spec, approve_all, fakes):
        fakes["api"].fail_apply = True
        update_id = service.create_update(make_spec())
        approve_all(service, update_id)
        service.enqueue(update_id)
        service.deploy_queued()

        with pytest.raises(ResubmissionRequiredError):
            service.enqueue(update_id)
