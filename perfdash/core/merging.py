"""
Merge-algorithm resolution.

Maps a MergingAlgorithm selector, which callers deliver either as the enum
member or as its bare string label, onto the SQL aggregate that implements it.
"""

from __future__ import annotations

from typing import Any, Literal

from perfdash.models.dashboard import MergingAlgorithm

AggregateFunction = Literal["avg", "max", "min", "sum"]

DEFAULT_AGGREGATE: AggregateFunction = "avg"

_AGGREGATES: dict[str, AggregateFunction] = {
    MergingAlgorithm.AVERAGE.value.lower(): "avg",
    MergingAlgorithm.MAXIMUM.value.lower(): "max",
    MergingAlgorithm.MINIMUM.value.lower(): "min",
    MergingAlgorithm.SUM.value.lower(): "sum",
    "avg": "avg",
    "max": "max",
    "min": "min",
    "sum": "sum",
}


def resolve_merge_algorithm(selector: Any) -> AggregateFunction:
    """Return the aggregate function for a merge selector.

    Unknown or missing selectors fall back to ``avg`` silently.
    """
    if isinstance(selector, MergingAlgorithm):
        label = selector.value
    elif isinstance(selector, str):
        label = selector
    else:
        return DEFAULT_AGGREGATE
    return _AGGREGATES.get(label.strip().lower(), DEFAULT_AGGREGATE)
