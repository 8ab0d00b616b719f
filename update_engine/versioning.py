"""Semantic version helpers.

The engine only ever increments the patch component; major and minor
bumps are an external release decision.
"""

from __future__ import annotations

import re

_SEMVER_RE = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse ``MAJOR.MINOR.PATCH`` into an integer triple.

    Raises
    ------
    ValueError
        If *version* is not a plain three-part semantic version.
    """
    match = _SEMVER_RE.match(version.strip()) if isinstance(version, str) else None
    if match is None:
        raise ValueError(f"Invalid semantic version: {version!r}")
    major, minor, patch = (int(part) for part in match.groups())
    return major, minor, patch


def bump_patch(version: str) -> str:
    """Return *version* with its patch component incremented by one."""
    major, minor, patch = parse_version(version)
    return f"{major}.{minor}.{patch + 1}"
