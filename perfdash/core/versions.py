"""
SDK version ordering.

SDK versions are mostly semver ("3.4.4", "3.4.0-20221020.123751-26"), with
two kinds of outliers: snapshot builds stamped as "1.0.3-20241025.022106+960bdda"
or "1.0.020241025...", and Gerrit change refs ("refs/changes/19/183619/30").
"""

from __future__ import annotations

import re
from typing import Iterable, List, Tuple

# "1.0.020241025" is not legal semver; the timestamp becomes a prerelease.
_TIMESTAMP_PATCH = re.compile(r"\.0(\d{5})")
_CORE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?$")


def is_gerrit(version: str) -> bool:
    return version.startswith("refs/")


def is_snapshot(version: str) -> bool:
    return "-" in version


def normalize_version(version: str) -> str:
    normalized = version.strip().split("+", 1)[0]
    if "-" not in normalized:
        normalized = _TIMESTAMP_PATCH.sub(r".0-\1", normalized, count=1)
    return normalized


def _prerelease_key(prerelease: str) -> Tuple[Tuple[int, int, str], ...]:
    key = []
    for ident in prerelease.split("."):
        if ident.isdigit():
            key.append((0, int(ident), ""))
        else:
            key.append((1, 0, ident))
    return tuple(key)


def sort_key(version: str) -> tuple:
    """Sort key giving semver precedence.

    Versions that cannot be parsed (Gerrit refs, free text) sort before every
    parseable version, in plain string order among themselves.
    """
    normalized = normalize_version(version or "")
    core, _, prerelease = normalized.partition("-")
    match = _CORE.match(core)
    if match is None:
        return (0, (), 0, (), normalized)

    numbers = tuple(int(part or 0) for part in match.groups())
    if prerelease:
        # A prerelease has lower precedence than its release.
        return (1, numbers, 0, _prerelease_key(prerelease), normalized)
    return (1, numbers, 1, (), normalized)


def version_compare(left: str, right: str) -> int:
    """Return -1, 0 or 1 as ``left`` sorts before, equal to or after ``right``."""
    a, b = sort_key(left), sort_key(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def sort_versions(versions: Iterable[str]) -> List[str]:
    return sorted(versions, key=sort_key)
