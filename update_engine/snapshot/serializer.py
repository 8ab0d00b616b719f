"""Deterministic serialization and hashing for snapshots.

The snapshot ``config_hash`` is a SHA-256 over the canonical JSON of the
name-sorted component states, so two captures of identical state always
produce the same digest regardless of registration order or dict ordering.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable

from update_engine.models.snapshot import ComponentState, Snapshot


def sort_states(states: Iterable[ComponentState]) -> tuple[ComponentState, ...]:
    """Return *states* sorted by component name."""
    return tuple(sorted(states, key=lambda s: s.name))


def canonical_states_json(states: Iterable[ComponentState]) -> str:
    """Serialize component states to compact JSON with sorted keys."""
    raw = [state.model_dump(mode="json") for state in sort_states(states)]
    return json.dumps(raw, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_config_hash(states: Iterable[ComponentState]) -> str:
    """Return the SHA-256 hex digest of the canonical component state JSON."""
    return hashlib.sha256(canonical_states_json(states).encode("utf-8")).hexdigest()


def verify_snapshot(snapshot: Snapshot) -> list[str]:
    """Check a snapshot's internal consistency without raising.

    Returns
    -------
    list[str]
        Human-readable problems.  Empty when the snapshot is consistent.
    """
    problems: list[str] = []
    names = [s.name for s in snapshot.component_states]
    if names != sorted(names):
        problems.append("component_states are not sorted by name")
    if len(set(names)) != len(names):
        problems.append("component_states contain duplicate names")
    try:
        expected = compute_config_hash(snapshot.component_states)
    except (TypeError, ValueError) as exc:
        problems.append(f"component_states are not serializable: {exc}")
    else:
        if expected != snapshot.config_hash:
            problems.append("config_hash does not match component_states")
    return problems
