"""
Chart color assignment.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

SHADES: List[str] = [
    "#E2F0CB",
    "#B5EAD7",
    "#C7CEEA",
    "#FF9AA2",
    "#FFB7B2",
    "#FFDAC1",
]

ERROR_COLOR = "#e88873"

CLUSTER_VERSION_COLORS: List[str] = [
    "#3b82f6",  # blue
    "#ef4444",  # red
    "#10b981",  # emerald
    "#f59e0b",  # amber
    "#8b5cf6",  # violet
    "#06b6d4",  # cyan
    "#84cc16",  # lime
    "#f97316",  # orange
    "#ec4899",  # pink
    "#6b7280",  # gray
]


class ShadeProvider:
    """Hands out chart shades in a fixed rotation. One instance per response."""

    def __init__(self, shades: Optional[Sequence[str]] = None):
        self._shades = list(shades or SHADES)
        self._idx = 0

    def next_shade(self) -> str:
        shade = self._shades[self._idx % len(self._shades)]
        self._idx += 1
        return shade


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def cluster_version_color(version: str) -> str:
    """Stable color for a cluster version; equal versions always share a color."""
    h = 0
    for ch in version:
        h = _to_int32((h << 5) - h + ord(ch))
    return CLUSTER_VERSION_COLORS[abs(h) % len(CLUSTER_VERSION_COLORS)]
