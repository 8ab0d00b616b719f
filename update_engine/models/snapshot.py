"""Snapshot models.

A snapshot is the captured state of every registered component immediately
before a deployment run (or on operator request).  Snapshots are immutable
once stored; ``config_hash`` lets two captures be compared without walking
their component states.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ComponentState(BaseModel):
    """Opaque description of one component's state, as reported by its updater."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Component name.")
    version: str = Field(default="", description="Component version at capture.")
    hash: str = Field(default="", description="Component-supplied content hash.")
    dependencies: tuple[str, ...] = Field(default=(), description="Names of components it depends on.")
    config_state: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque configuration needed to restore the component.",
    )


class Snapshot(BaseModel):
    """An immutable, labelled capture of system state."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str = Field(..., min_length=1, description="Unique snapshot id.")
    label: str = Field(..., min_length=1, description="Label the snapshot was captured under.")
    version_at_capture: str = Field(..., description="Active system version when captured.")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    component_states: tuple[ComponentState, ...] = Field(
        default=(),
        description="Component states sorted by name.",
    )
    config_hash: str = Field(..., description="SHA-256 over the canonical JSON of component_states.")
    rollback_payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque context recorded at capture (run id, active version).",
    )

    @property
    def component_names(self) -> list[str]:
        return [state.name for state in self.component_states]
