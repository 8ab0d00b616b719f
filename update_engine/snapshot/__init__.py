"""Snapshot capture, restore and deterministic hashing."""

from update_engine.snapshot.serializer import (
    canonical_states_json,
    compute_config_hash,
    verify_snapshot,
)
from update_engine.snapshot.store import SnapshotStore

__all__ = [
    "SnapshotStore",
    "canonical_states_json",
    "compute_config_hash",
    "verify_snapshot",
]
