"""
Run Store

The database boundary of the dashboard. Runs synthesized queries through a
QueryExecutor and projects the untyped rows into result models exactly once,
so the rest of the core never reaches into raw JSON.

Projection defaults:
- run params sections (cluster/impl/workload/vars) -> {}
- numeric values that are NULL or non-numeric -> None for chart values,
  0 for counters
- error maps that are not objects -> {}
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from perfdash.core import query_builder as qb
from perfdash.core.query_builder import AggregationSpec, MetricAlertRule, SqlQuery
from perfdash.models.results import (
    GroupedResult,
    MetricsAlert,
    Run,
    RunAndSituationalScore,
    RunBucketRow,
    RunDisplayInfo,
    RunEvent,
    RunMetricRow,
    SituationalRun,
)

logger = logging.getLogger(__name__)

# Keys of the metrics document that are bookkeeping, not metrics.
NON_METRIC_KEYS = frozenset({"timeOffset", "timestamp", "time_offset_secs", "initiated"})

COMPARE_SECTIONS = ("cluster", "impl", "workload", "vars")


class QueryExecutor(Protocol):
    """The one capability the core needs from the database."""

    async def execute(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        ...


# ============================================================================
# Projection helpers
# ============================================================================


def _json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return default
    return value


def _dict(value: Any) -> Dict[str, Any]:
    value = _json(value, {})
    return dict(value) if isinstance(value, Mapping) else {}


def _float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def project_run(row: Mapping[str, Any]) -> Run:
    params = _dict(row.get("params"))
    return Run(
        id=_text(row.get("id") or row.get("run_id")),
        datetime=row.get("datetime"),
        params=params,
        cluster=_dict(params.get("cluster")),
        impl=_dict(params.get("impl")),
        workload=_dict(params.get("workload")),
        vars=_dict(params.get("vars")),
        other=params.get("other"),
    )


def display_info(run_params: Mapping[str, Any]) -> RunDisplayInfo:
    """Display metadata for a run params document, with "-" for anything unknown."""
    impl = _dict(run_params.get("impl"))
    vars_ = _dict(run_params.get("vars"))
    debug = _dict(run_params.get("debug"))
    workload = _dict(run_params.get("workload"))
    cluster = _dict(run_params.get("cluster"))

    cluster_version = (
        cluster.get("version")
        or run_params.get("clusterVersion")
        or vars_.get("clusterVersion")
        or "-"
    )
    description = workload.get("situational") or workload.get("name")
    return RunDisplayInfo(
        sdk=_text(impl.get("language")) or "-",
        version=_text(impl.get("version")) or "-",
        csp=_text(vars_.get("csp") or debug.get("csp")) or "-",
        pl=bool(vars_.get("pl") or run_params.get("privateLink") or run_params.get("pl")),
        environment=_text(vars_.get("environment") or debug.get("environment")) or "-",
        cluster_version=_text(cluster_version),
        description=_text(description) if description else None,
        ci_url=_text(debug.get("ciUrl")) if debug.get("ciUrl") else None,
    )


def split_excluded(
    compare: Mapping[str, Any],
) -> Tuple[Dict[str, Any], Dict[str, List[str]]]:
    """
    Separate "must not be defined" keys from a compare document.

    A ``None`` value in a section means runs defining that key are excluded;
    such keys cannot be expressed with ``@>`` so they are dropped from the
    document and returned per section.
    """
    document: Dict[str, Any] = {}
    excluded: Dict[str, List[str]] = {}
    for section, value in compare.items():
        if section in COMPARE_SECTIONS and isinstance(value, Mapping):
            kept = {k: v for k, v in value.items() if v is not None}
            nulls = [k for k, v in value.items() if v is None]
            document[section] = kept
            if nulls:
                excluded[section] = nulls
        elif value is not None:
            document[section] = value
    return document, excluded


def _defines_excluded(run: Run, excluded: Mapping[str, List[str]]) -> bool:
    for section, keys in excluded.items():
        present = getattr(run, section, None) or {}
        if any(key in present for key in keys):
            return True
    return False


# ============================================================================
# Store
# ============================================================================


class RunStore:
    """Typed reads over runs, buckets, metrics, events and situational runs."""

    def __init__(self, executor: QueryExecutor):
        self._executor = executor

    async def _fetch(self, name: str, query: SqlQuery) -> List[Dict[str, Any]]:
        start = time.perf_counter()
        rows = await self._executor.execute(query.text, query.params)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug("%s: %d rows in %.1fms", name, len(rows), elapsed_ms)
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def fetch_runs(
        self, compare: Mapping[str, Any], exclude_path: Sequence[str] = ()
    ) -> List[Run]:
        """Runs matching a databaseCompare document, in datetime order."""
        document, excluded = split_excluded(compare)
        rows = await self._fetch(
            "fetch_runs", qb.build_runs_by_compare_query(document, exclude_path)
        )
        runs = [project_run(row) for row in rows]
        if excluded:
            runs = [run for run in runs if not _defines_excluded(run, excluded)]
        logger.debug("fetch_runs matched %d runs (excluded keys: %s)", len(runs), excluded)
        return runs

    async def fetch_runs_by_ids(self, run_ids: Sequence[str]) -> List[Run]:
        if not run_ids:
            return []
        rows = await self._fetch("fetch_runs_by_ids", qb.build_runs_by_ids_query(run_ids))
        return [project_run(row) for row in rows]

    async def fetch_raw_params(self) -> List[Dict[str, Any]]:
        rows = await self._fetch("fetch_raw_params", qb.build_raw_params_query())
        return [_dict(row.get("params")) for row in rows]

    async def fetch_runs_for_language(self, language: Optional[str] = None) -> List[Run]:
        """Runs newest first, all languages when ``language`` is empty."""
        rows = await self._fetch(
            "fetch_runs_for_language", qb.build_runs_for_language_query(language)
        )
        return [project_run(row) for row in rows]

    async def fetch_distinct_versions(
        self, section: str, *, exclude_snapshots: bool = False, exclude_gerrit: bool = False
    ) -> List[str]:
        rows = await self._fetch(
            "fetch_distinct_versions",
            qb.build_distinct_versions_query(section, exclude_snapshots, exclude_gerrit),
        )
        return [_text(row.get("version")) for row in rows if row.get("version")]

    # ------------------------------------------------------------------
    # Aggregations
    # ------------------------------------------------------------------

    async def fetch_grouped_buckets(
        self,
        run_ids: Sequence[str],
        group_path: Sequence[str],
        column: str,
        spec: AggregationSpec,
    ) -> List[GroupedResult]:
        query = qb.build_grouped_bucket_query(run_ids, group_path, column, spec)
        rows = await self._fetch("fetch_grouped_buckets", query)
        return [self._grouped(row) for row in rows]

    async def fetch_grouped_metric(
        self, run_ids: Sequence[str], metric: str, spec: AggregationSpec
    ) -> List[GroupedResult]:
        query = qb.build_grouped_metric_query(run_ids, metric, spec)
        rows = await self._fetch("fetch_grouped_metric", query)
        return [self._grouped(row) for row in rows]

    @staticmethod
    def _grouped(row: Mapping[str, Any]) -> GroupedResult:
        return GroupedResult(
            grouping=_text(row.get("grouping")),
            value=_float(row.get("value")),
            run_ids=[_text(r) for r in (_json(row.get("run_ids"), []) or [])],
        )

    async def fetch_bucket_series(
        self,
        run_ids: Sequence[str],
        spec: AggregationSpec,
        *,
        column: Optional[str] = None,
        include_errors: bool = False,
        include_metrics: bool = False,
        metric_tolerance_secs: int = 1,
    ) -> List[RunBucketRow]:
        query = qb.build_bucket_series_query(
            run_ids,
            spec,
            column=column,
            include_errors=include_errors,
            include_metrics=include_metrics,
            metric_tolerance_secs=metric_tolerance_secs,
        )
        rows = await self._fetch("fetch_bucket_series", query)
        return [
            RunBucketRow(
                run_id=_text(row.get("run_id")),
                datetime=row.get("datetime"),
                time_offset_secs=_int(row.get("time_offset_secs")),
                value=_float(row.get("value")),
                errors=_dict(row.get("errors")),
                error_count=_int(row.get("error_count")),
                metrics=_dict(row.get("metrics")),
            )
            for row in rows
        ]

    async def fetch_metric_series(
        self, run_ids: Sequence[str], metric: str, spec: AggregationSpec
    ) -> List[RunMetricRow]:
        query = qb.build_metric_series_query(run_ids, metric, spec)
        rows = await self._fetch("fetch_metric_series", query)
        return [
            RunMetricRow(
                run_id=_text(row.get("run_id")),
                datetime=row.get("datetime"),
                time_offset_secs=_int(row.get("time_offset_secs")),
                value=_float(row.get("value")) or 0.0,
                metrics=_json(row.get("metrics"), {}),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Events and metrics catalogue
    # ------------------------------------------------------------------

    async def fetch_events(
        self,
        run_id: str,
        *,
        display_on_graph_only: bool = False,
        first_bucket_time: Optional[dt.datetime] = None,
    ) -> List[RunEvent]:
        """
        Events of one run.

        ``time_offset_secs`` is seconds from ``first_bucket_time``, rounded and
        possibly negative; 0 when there is no first bucket.
        """
        rows = await self._fetch(
            "fetch_events", qb.build_events_query(run_id, display_on_graph_only)
        )
        events = []
        for row in rows:
            when = row.get("datetime")
            offset = 0
            if isinstance(when, dt.datetime) and isinstance(first_bucket_time, dt.datetime):
                try:
                    offset = round((when - first_bucket_time).total_seconds())
                except TypeError:
                    # naive vs aware timestamps
                    offset = 0
            events.append(
                RunEvent(datetime=when, time_offset_secs=offset, params=_dict(row.get("params")))
            )
        return events

    async def fetch_metric_names(self) -> List[str]:
        rows = await self._fetch("fetch_metric_names", qb.build_metric_names_query())
        names = [_text(row.get("metric_name")) for row in rows]
        return [name for name in names if name and name not in NON_METRIC_KEYS]

    async def fetch_metric_alerts(
        self, rule: MetricAlertRule, language: str
    ) -> List[MetricsAlert]:
        rows = await self._fetch(
            f"fetch_metric_alerts[{rule.name}]", qb.build_metric_alert_query(rule, language)
        )
        return [
            MetricsAlert(
                run_id=_text(row.get("run_id")),
                datetime=row.get("datetime"),
                message=_text(row.get("message")),
                version=row.get("version"),
                language=language,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Situational runs
    # ------------------------------------------------------------------

    async def fetch_situational_runs(self) -> List[SituationalRun]:
        rows = await self._fetch("fetch_situational_runs", qb.build_situational_runs_query())
        out = []
        for row in rows:
            details = _dict(row.get("details_of_any_run"))
            out.append(
                SituationalRun(
                    situational_run_id=_text(row.get("situational_run_id")),
                    started=row.get("started"),
                    score=_int(row.get("score")),
                    num_runs=_int(row.get("num_runs")),
                    details_of_any_run=details,
                    display=display_info(details),
                )
            )
        return out

    async def fetch_situational_run(
        self, situational_run_id: str, run_id: Optional[str] = None
    ) -> List[RunAndSituationalScore]:
        rows = await self._fetch(
            "fetch_situational_run",
            qb.build_situational_run_query(situational_run_id, run_id),
        )
        out = []
        for row in rows:
            run_params = _dict(row.get("run_params"))
            srj_params = _dict(row.get("srj_params"))
            out.append(
                RunAndSituationalScore(
                    run_id=_text(row.get("id")),
                    started=row.get("datetime"),
                    run_params=run_params,
                    srj_params=srj_params,
                    score=_int(srj_params.get("score")),
                    display=display_info(run_params),
                )
            )
        return out

    # ------------------------------------------------------------------
    # Run detail
    # ------------------------------------------------------------------

    async def fetch_run_buckets(self, run_id: str) -> List[Dict[str, Any]]:
        rows = await self._fetch("fetch_run_buckets", qb.build_run_buckets_query(run_id))
        for row in rows:
            row["errors"] = _dict(row.get("errors"))
            for key, value in list(row.items()):
                if isinstance(value, Decimal):
                    row[key] = float(value)
        return rows

    async def fetch_run_metrics(self, run_id: str) -> List[Dict[str, Any]]:
        """Metrics samples of one run, flattened to one dict per sample."""
        rows = await self._fetch("fetch_run_metrics", qb.build_run_metrics_query(run_id))
        out = []
        for row in rows:
            flat: Dict[str, Any] = {"time_offset_secs": _int(row.get("time_offset_secs"))}
            flat.update(_dict(row.get("metrics")))
            out.append(flat)
        return out

    async def fetch_run_summary(
        self, run_ids: Sequence[str], trimming_seconds: float
    ) -> Dict[str, Dict[str, Any]]:
        if not run_ids:
            return {}
        rows = await self._fetch(
            "fetch_run_summary", qb.build_run_summary_query(run_ids, trimming_seconds)
        )
        summary: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            summary[_text(row.get("run_id"))] = {
                "latency": {
                    "avg": _float(row.get("duration_avg")) or 0.0,
                    "min": _float(row.get("duration_min")) or 0.0,
                    "max": _float(row.get("duration_max")) or 0.0,
                    "p50": _float(row.get("duration_p50")) or 0.0,
                    "p95": _float(row.get("duration_p95")) or 0.0,
                    "p99": _float(row.get("duration_p99")) or 0.0,
                },
                "operations": {
                    "total": _int(row.get("operations_total")),
                    "success": _int(row.get("operations_success")),
                    "failed": _int(row.get("operations_failed")),
                },
                "throughput": _float(row.get("throughput")) or 0.0,
            }
        return summary
