"""
Result Normalizer

Turns the row shapes produced by the synthesized queries (grouped bars,
per-run bucket/metric series, error counts) into ChartSeriesPoint, and
applies unit inference and baseline cluster-version flags.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from perfdash.core.versions import sort_key
from perfdash.models.dashboard import ResultType
from perfdash.models.results import (
    ChartSeriesPoint,
    GroupedResult,
    Run,
    RunBucketRow,
    RunMetricRow,
)


def infer_unit(column: Optional[str]) -> str:
    """Display unit for a bucket column or metric key."""
    if not column:
        return ""
    if column == "errors":
        return "errors"
    if column.endswith("_us"):
        return "μs"
    if column == "operations_total":
        return "ops/sec"
    # Per-bucket counts, not rates.
    if column.startswith("operations_"):
        return "ops"
    if "cpu" in column.lower() or column.endswith("_pct") or column.endswith("Percent"):
        return "%"
    if column.endswith("MB"):
        return "MB"
    return ""


# ----------------------------------------------------------------------------
# Params-document helpers
# ----------------------------------------------------------------------------


def parse_from(params: Mapping[str, Any], path: Sequence[str]) -> str:
    """Value at ``path`` rendered as a string, or "" when any segment is missing."""
    node: Any = params
    for segment in path:
        if not isinstance(node, Mapping) or segment not in node:
            return ""
        node = node[segment]
    if node is None or isinstance(node, (dict, list)):
        return ""
    return str(node)


def remove_path(params: Dict[str, Any], path: Sequence[str]) -> None:
    """Delete the leaf at ``path`` in place; missing paths are ignored."""
    node: Any = params
    for segment in path[:-1]:
        if not isinstance(node, dict) or segment not in node:
            return
        node = node[segment]
    if path and isinstance(node, dict):
        node.pop(path[-1], None)


def leaf_paths(params: Mapping[str, Any], prefix: str = "") -> List[str]:
    """Dotted paths of every scalar leaf. Null leaves are skipped."""
    out: List[str] = []
    for key, value in params.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            out.extend(leaf_paths(value, dotted))
        elif not isinstance(value, list):
            out.append(dotted)
    return out


# ----------------------------------------------------------------------------
# Ordering
# ----------------------------------------------------------------------------


def _integer_key(value: str):
    try:
        return (0, int(value), "")
    except (TypeError, ValueError):
        return (1, 0, value or "")


def sort_grouped(results: List[GroupedResult], result_type: ResultType) -> List[GroupedResult]:
    """Order Simplified results by the horizontal axis value type."""
    if result_type == ResultType.INTEGER:
        return sorted(results, key=lambda r: _integer_key(r.grouping))
    if result_type == ResultType.STRING:
        return sorted(results, key=lambda r: r.grouping or "")
    return sorted(results, key=lambda r: sort_key(r.grouping or ""))


# ----------------------------------------------------------------------------
# Baseline
# ----------------------------------------------------------------------------


def apply_baseline(point: ChartSeriesPoint, baseline: Optional[str]) -> ChartSeriesPoint:
    """
    Flag a point against the baseline cluster version.

    Equal versions are the baseline and never "different"; points with an
    unknown cluster version get neither flag.
    """
    if not point.cluster_version or not baseline:
        return point
    if point.cluster_version == baseline:
        point.is_baseline = True
        point.has_different_cluster_version = False
    else:
        point.is_baseline = False
        point.has_different_cluster_version = True
    return point


# ----------------------------------------------------------------------------
# Row shapes -> points
# ----------------------------------------------------------------------------


def normalize_grouped(
    results: Iterable[GroupedResult],
    unit: str,
    runs_by_id: Mapping[str, Run],
    baseline: Optional[str],
) -> List[ChartSeriesPoint]:
    """One point per bar. Cluster version is taken from the first contributing run."""
    points = []
    for result in results:
        cluster_version = None
        for run_id in result.run_ids:
            run = runs_by_id.get(run_id)
            if run is not None:
                cluster_version = run.cluster_version
                break
        point = ChartSeriesPoint(
            group_key=result.grouping,
            value=result.value,
            run_ids=list(result.run_ids),
            unit=unit,
            cluster_version=cluster_version,
        )
        points.append(apply_baseline(point, baseline))
    return points


def normalize_series_rows(
    rows: Iterable[Union[RunBucketRow, RunMetricRow]],
    group_key: str,
    unit: str,
    cluster_version: Optional[str] = None,
    baseline: Optional[str] = None,
) -> List[ChartSeriesPoint]:
    """Line-chart points for one run, bucket or metric sourced."""
    points = []
    for row in rows:
        aligned = row.metrics if isinstance(row, RunBucketRow) else None
        point = ChartSeriesPoint(
            group_key=group_key,
            value=row.value,
            run_ids=[row.run_id],
            unit=unit,
            cluster_version=cluster_version,
            time_offset_secs=row.time_offset_secs,
            datetime=row.datetime,
            metrics=dict(aligned) if aligned else None,
        )
        points.append(apply_baseline(point, baseline))
    return points


def normalize_error_rows(
    rows: Iterable[RunBucketRow],
    group_key: str,
    cluster_version: Optional[str] = None,
    baseline: Optional[str] = None,
) -> List[ChartSeriesPoint]:
    points = []
    for row in rows:
        point = ChartSeriesPoint(
            group_key=group_key,
            value=float(row.error_count),
            run_ids=[row.run_id],
            unit="errors",
            cluster_version=cluster_version,
            time_offset_secs=row.time_offset_secs,
            datetime=row.datetime,
            errors=dict(row.errors),
        )
        points.append(apply_baseline(point, baseline))
    return points
