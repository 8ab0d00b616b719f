"""Shared fixtures for update engine tests.

Provides in-memory fake components, a pre-wired :class:`UpdateService`,
and helpers to build update specs and approve them.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import pytest

from update_engine.approval.gate import required_approvals
from update_engine.components.registry import ComponentUpdaterRegistry
from update_engine.config import Settings, load_settings
from update_engine.events.bus import DeploymentEvent, EventBus
from update_engine.models.snapshot import ComponentState
from update_engine.models.update import UpdateDescriptor
from update_engine.service import UpdateService
from update_engine.verification.harness import VerificationSuite

# ---------------------------------------------------------------------------
# Fake component
# ---------------------------------------------------------------------------


class FakeComponent:
    """In-memory component whose state is a version plus a config dict.

    Failure switches let tests make any of the three calls raise or hang.
    """

    def __init__(self, name: str, version: str = "1.0.0") -> None:
        self.name = name
        self.version = version
        self.config: dict[str, Any] = {"applied": []}
        self.apply_calls: list[str] = []
        self.restore_calls: list[str] = []
        self.fail_apply = False
        self.fail_restore = False
        self.fail_describe = False
        self.apply_delay = 0.0
        self._lock = threading.Lock()

    def describe_state(self) -> ComponentState:
        if self.fail_describe:
            raise RuntimeError(f"{self.name} cannot describe state")
        with self._lock:
            return ComponentState(
                name=self.name,
                version=self.version,
                hash=f"{self.name}:{self.version}:{len(self.config['applied'])}",
                config_state={"version": self.version, "applied": list(self.config["applied"])},
            )

    def apply(self, update: UpdateDescriptor) -> None:
        if self.apply_delay:
            time.sleep(self.apply_delay)
        if self.fail_apply:
            raise RuntimeError(f"{self.name} rejected {update.id}")
        with self._lock:
            self.apply_calls.append(update.id)
            self.version = update.version
            self.config["applied"].append(update.id)

    def restore_state(self, state: ComponentState) -> None:
        if self.fail_restore:
            raise RuntimeError(f"{self.name} cannot restore")
        with self._lock:
            self.restore_calls.append(state.name)
            self.version = state.config_state["version"]
            self.config["applied"] = list(state.config_state["applied"])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    """Settings with short deadlines for tests."""
    return load_settings(
        component_call_timeout_seconds=2.0,
        verification_timeout_seconds=2.0,
        events_file=None,
        structured_logging=False,
    )


@pytest.fixture()
def make_component() -> Callable[..., FakeComponent]:
    return FakeComponent


@pytest.fixture()
def fakes() -> dict[str, FakeComponent]:
    return {name: FakeComponent(name) for name in ("api", "consensus", "ledger")}


@pytest.fixture()
def components(fakes: dict[str, FakeComponent]) -> ComponentUpdaterRegistry:
    registry = ComponentUpdaterRegistry(call_timeout_seconds=2.0)
    for name, fake in fakes.items():
        registry.register(name, fake)
    return registry


@pytest.fixture()
def suite() -> VerificationSuite:
    return VerificationSuite()


@pytest.fixture()
def event_log() -> list[DeploymentEvent]:
    return []


@pytest.fixture()
def event_bus(event_log: list[DeploymentEvent]) -> EventBus:
    bus = EventBus()
    bus.subscribe(event_log.append)
    return bus


@pytest.fixture()
def service(
    settings: Settings,
    components: ComponentUpdaterRegistry,
    suite: VerificationSuite,
    event_bus: EventBus,
) -> UpdateService:
    return UpdateService(settings, components=components, harness=suite, event_bus=event_bus)


@pytest.fixture()
def make_spec() -> Callable[..., dict[str, Any]]:
    """Return a builder for update spec dicts with sensible defaults."""

    def _make_spec(
        title: str = "Tune API limits",
        *,
        type: str = "api",
        components: list[str] | None = None,
        risk: str = "low",
        dependencies: list[str] | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "type": type,
            "title": title,
            "description": f"{title} (test)",
            "components": components if components is not None else ["api"],
            "dependencies": dependencies or [],
            "risk": {"level": risk, "description": "", "mitigations": []},
            "rollback_supported": True,
            "author": "tester",
        }
        spec.update(extra)
        return spec

    return _make_spec


@pytest.fixture()
def approve_all() -> Callable[[UpdateService, str], None]:
    """Return a helper recording a positive approval for every required role."""

    def _approve_all(svc: UpdateService, update_id: str) -> None:
        update = svc.get_update(update_id)
        for role in required_approvals(update):
            svc.record_approval(update_id, role, f"{role.value}-approver", True)

    return _approve_all
