"""
Query Synthesizer

Builds the parameterized SQL behind every dashboard chart and lookup.

All values reach Postgres as bound parameters: run ids as arrays
(``= ANY($n)``), JSON paths as ``text[]``, metric keys as text. The only
things formatted into SQL text are bucket column names from BUCKET_COLUMNS,
aggregate functions from the merge resolver and the fixed alert catalogue.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from perfdash.core.errors import UnsupportedOperationError, ValidationError
from perfdash.core.merging import DEFAULT_AGGREGATE, AggregateFunction
from perfdash.models.dashboard import MultipleResultsHandling

BUCKET_COLUMNS = frozenset(
    {
        "duration_average_us",
        "duration_min_us",
        "duration_max_us",
        "duration_p50_us",
        "duration_p95_us",
        "duration_p99_us",
        "operations_total",
        "operations_success",
        "operations_failed",
    }
)

AGGREGATE_FUNCTIONS = frozenset({"avg", "max", "min", "sum"})

SDK_VERSION_PATH: Tuple[str, ...] = ("impl", "version")

# Runs before this date were affected by a driver bug that leaked connections.
ALERTS_SINCE = "2022-07-30 00:00:00"

# Sum of the integer-valued entries of one bucket's error map.
_BUCKET_ERROR_COUNT = """(
            SELECT COALESCE(SUM(e.value::bigint), 0)
            FROM jsonb_each_text(
                CASE WHEN jsonb_typeof(buckets.errors::jsonb) = 'object'
                     THEN buckets.errors::jsonb ELSE '{}'::jsonb END
            ) AS e
            WHERE e.value ~ '^-?[0-9]+$'
        )"""

_NUMERIC_TEXT = r"'^\s*-?[0-9]*\.?[0-9]+([eE][-+]?[0-9]+)?\s*$'"


@dataclass(frozen=True)
class SqlQuery:
    """SQL text plus its positional parameters."""

    text: str
    params: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class AggregationSpec:
    """The request knobs that shape an aggregation."""

    merge: AggregateFunction = DEFAULT_AGGREGATE
    trimming_seconds: float = 0
    bucketise_seconds: Optional[int] = None
    multiple_results_handling: MultipleResultsHandling = MultipleResultsHandling.MERGED

    @property
    def bucketised(self) -> bool:
        return bool(self.bucketise_seconds and self.bucketise_seconds > 1)


@dataclass(frozen=True)
class MetricAlertRule:
    """One entry of the alert catalogue. Expressions are fixed SQL, never user input."""

    name: str
    table: str
    where: str
    message: str


METRIC_ALERT_RULES: Tuple[MetricAlertRule, ...] = (
    MetricAlertRule(
        name="excessiveThreads",
        table="metrics",
        where="(metrics::jsonb ->> 'threadCount')::float8 > 200",
        message="'Excessive thread count, max=' || max((metrics::jsonb ->> 'threadCount')::float8)::bigint",
    ),
    MetricAlertRule(
        name="excessiveHeap",
        table="metrics",
        where="(metrics::jsonb ->> 'memHeapUsedMB')::float8 > 500",
        message="'Excessive heap usage, max=' || max((metrics::jsonb ->> 'memHeapUsedMB')::float8)",
    ),
    MetricAlertRule(
        name="excessiveProcessCpu",
        table="metrics",
        where="(metrics::jsonb ->> 'processCpu')::float8 > 90",
        message="'Excessive process CPU usage, max=' || max((metrics::jsonb ->> 'processCpu')::float8)",
    ),
    MetricAlertRule(
        name="operationsFailed",
        table="buckets",
        where="operations_failed > 0",
        message="'Operations failed, sum=' || sum(operations_failed)",
    ),
)

_ALERT_TABLES = frozenset({"metrics", "buckets"})


class _Params:
    """Accumulates bound parameters and hands out ``$n`` placeholders."""

    def __init__(self) -> None:
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def _column(column: str) -> str:
    if column not in BUCKET_COLUMNS:
        raise ValidationError([f"Unknown bucket column '{column}'"])
    return column


def _aggregate(merge: str) -> str:
    if merge not in AGGREGATE_FUNCTIONS:
        raise ValidationError([f"Unknown merge function '{merge}'"])
    return merge


def _metric_value(doc: str, key: str) -> str:
    """Numeric value of ``key`` in a metrics document, NULL when absent or non-numeric."""
    return (
        f"CASE WHEN ({doc} ->> {key}) ~ {_NUMERIC_TEXT} "
        f"THEN ({doc} ->> {key})::float8 END"
    )


# ============================================================================
# Simplified (bar) charts
# ============================================================================


def build_grouped_bucket_query(
    run_ids: Sequence[str],
    group_path: Sequence[str],
    column: str,
    spec: AggregationSpec,
) -> SqlQuery:
    """
    Aggregate one bucket column per group of runs.

    Each run is first reduced with the merge function. In Merged mode the
    per-run values are then averaged per group, so two runs at 10 and 20
    give 15 whatever their bucket counts. Side-by-Side keeps one row per run,
    ordered by group then run datetime.
    """
    p = _Params()
    ids = p.add(list(run_ids))
    path = p.add(list(group_path))
    trim = p.add(spec.trimming_seconds)
    col = _column(column)
    merge = _aggregate(spec.merge)

    per_run = f"""
        SELECT buckets.run_id,
               {merge}(buckets.{col})::float8 AS value
        FROM buckets
        WHERE buckets.run_id = ANY({ids})
          AND buckets.time_offset_secs >= {trim}::float8
        GROUP BY buckets.run_id"""

    if spec.multiple_results_handling == MultipleResultsHandling.SIDE_BY_SIDE:
        text = f"""
    SELECT ARRAY[sub.run_id::text] AS run_ids,
           sub.value,
           runs.params::jsonb #>> {path}::text[] AS grouping
    FROM ({per_run}
    ) AS sub
    JOIN runs ON sub.run_id = runs.id
    ORDER BY grouping, runs.datetime ASC
    """
    else:
        text = f"""
    SELECT array_agg(sub.run_id::text ORDER BY runs.datetime) AS run_ids,
           avg(sub.value)::float8 AS value,
           runs.params::jsonb #>> {path}::text[] AS grouping
    FROM ({per_run}
    ) AS sub
    JOIN runs ON sub.run_id = runs.id
    GROUP BY grouping
    ORDER BY grouping
    """
    return SqlQuery(text, p.values)


def build_grouped_metric_query(
    run_ids: Sequence[str],
    metric: str,
    spec: AggregationSpec,
) -> SqlQuery:
    """
    Aggregate one metrics-document key per SDK version.

    Side-by-Side is not supported for metrics and raises before any SQL is built.
    """
    if spec.multiple_results_handling == MultipleResultsHandling.SIDE_BY_SIDE:
        raise UnsupportedOperationError(
            "Side-by-Side results are not supported for metric y-axes"
        )

    p = _Params()
    ids = p.add(list(run_ids))
    path = p.add(list(SDK_VERSION_PATH))
    key = p.add(metric) + "::text"
    trim = p.add(spec.trimming_seconds)
    merge = _aggregate(spec.merge)

    text = f"""
    SELECT runs.params::jsonb #>> {path}::text[] AS grouping,
           {merge}({_metric_value("metrics.metrics::jsonb", key)})::float8 AS value,
           array_agg(DISTINCT metrics.run_id::text) AS run_ids
    FROM metrics
    JOIN runs ON metrics.run_id = runs.id
    WHERE metrics.run_id = ANY({ids})
      AND metrics.time_offset_secs >= {trim}::float8
      AND metrics.metrics::jsonb ? {key}
    GROUP BY grouping
    ORDER BY grouping
    """
    return SqlQuery(text, p.values)


# ============================================================================
# Full (line) charts
# ============================================================================


def build_bucket_series_query(
    run_ids: Sequence[str],
    spec: AggregationSpec,
    *,
    column: Optional[str] = None,
    include_errors: bool = False,
    include_metrics: bool = False,
    metric_tolerance_secs: int = 1,
) -> SqlQuery:
    """
    Bucket time series for a set of runs.

    Unbucketised, one row per bucket; ``include_metrics`` attaches the first
    metrics sample taken between the bucket offset and
    ``metric_tolerance_secs`` after it. Bucketised, rows are grouped into
    windows of ``floor(time_offset_secs / bucketise_seconds)`` represented by
    their smallest offset, the column is merged and error counts summed.
    """
    p = _Params()
    ids = p.add(list(run_ids))
    trim = p.add(spec.trimming_seconds)
    col = _column(column) if column else None

    if spec.bucketised:
        width = p.add(int(spec.bucketise_seconds))
        merge = _aggregate(spec.merge)
        value_inner = f",\n               buckets.{col}::float8 AS value" if col else ""
        value_outer = f",\n           {merge}(w.value)::float8 AS value" if col else ""
        text = f"""
    SELECT w.run_id,
           min(w.datetime) AS datetime,
           min(w.time_offset_secs) AS time_offset_secs{value_outer},
           SUM(w.error_count)::bigint AS error_count
    FROM (
        SELECT buckets.run_id::text AS run_id,
               buckets.time AS datetime,
               buckets.time_offset_secs,
               FLOOR(buckets.time_offset_secs / {width}::int) AS window_idx{value_inner},
               {_BUCKET_ERROR_COUNT} AS error_count
        FROM buckets
        WHERE buckets.run_id = ANY({ids})
          AND buckets.time_offset_secs >= {trim}::float8
    ) AS w
    GROUP BY w.run_id, w.window_idx
    ORDER BY w.run_id, time_offset_secs ASC
    """
        return SqlQuery(text, p.values)

    select = [
        "buckets.run_id::text AS run_id",
        "buckets.time AS datetime",
        "buckets.time_offset_secs",
    ]
    joins = ""
    if col:
        select.append(f"buckets.{col}::float8 AS value")
    if include_errors:
        select.append("buckets.errors::jsonb AS errors")
        select.append(f"{_BUCKET_ERROR_COUNT} AS error_count")
    if include_metrics:
        tolerance = p.add(int(metric_tolerance_secs))
        select.append("m.metrics")
        joins = f"""
    LEFT JOIN LATERAL (
        SELECT metrics.metrics::jsonb AS metrics
        FROM metrics
        WHERE metrics.run_id = buckets.run_id
          AND metrics.time_offset_secs >= buckets.time_offset_secs
          AND metrics.time_offset_secs <= buckets.time_offset_secs + {tolerance}::int
        ORDER BY metrics.time_offset_secs ASC
        LIMIT 1
    ) AS m ON TRUE"""

    columns = ",\n           ".join(select)
    text = f"""
    SELECT {columns}
    FROM buckets{joins}
    WHERE buckets.run_id = ANY({ids})
      AND buckets.time_offset_secs >= {trim}::float8
    ORDER BY buckets.run_id, buckets.time_offset_secs ASC
    """
    return SqlQuery(text, p.values)


def build_metric_series_query(
    run_ids: Sequence[str],
    metric: str,
    spec: AggregationSpec,
) -> SqlQuery:
    """Metric time series for one key; same windowing rules as the bucket series."""
    p = _Params()
    ids = p.add(list(run_ids))
    key = p.add(metric) + "::text"
    trim = p.add(spec.trimming_seconds)
    value = _metric_value("metrics.metrics::jsonb", key)

    if spec.bucketised:
        width = p.add(int(spec.bucketise_seconds))
        merge = _aggregate(spec.merge)
        text = f"""
    SELECT w.run_id,
           min(w.datetime) AS datetime,
           min(w.time_offset_secs) AS time_offset_secs,
           {merge}(w.value)::float8 AS value,
           jsonb_agg(w.metrics) AS metrics
    FROM (
        SELECT metrics.run_id::text AS run_id,
               metrics.initiated AS datetime,
               metrics.time_offset_secs,
               FLOOR(metrics.time_offset_secs / {width}::int) AS window_idx,
               {value} AS value,
               metrics.metrics::jsonb AS metrics
        FROM metrics
        WHERE metrics.run_id = ANY({ids})
          AND metrics.time_offset_secs >= {trim}::float8
          AND metrics.metrics::jsonb ? {key}
    ) AS w
    GROUP BY w.run_id, w.window_idx
    ORDER BY w.run_id, time_offset_secs ASC
    """
        return SqlQuery(text, p.values)

    text = f"""
    SELECT metrics.run_id::text AS run_id,
           metrics.initiated AS datetime,
           metrics.time_offset_secs,
           {value} AS value,
           metrics.metrics::jsonb AS metrics
    FROM metrics
    WHERE metrics.run_id = ANY({ids})
      AND metrics.time_offset_secs >= {trim}::float8
      AND metrics.metrics::jsonb ? {key}
    ORDER BY metrics.run_id, metrics.time_offset_secs ASC
    """
    return SqlQuery(text, p.values)


# ============================================================================
# Runs
# ============================================================================

_RUN_COLUMNS = """runs.id::text AS id,
           runs.datetime,
           runs.params::jsonb AS params"""


def build_runs_by_compare_query(
    compare: Dict[str, Any], exclude_path: Sequence[str] = ()
) -> SqlQuery:
    """
    Runs whose params contain ``compare``.

    ``exclude_path`` is removed from the compare document first, so the
    horizontal-axis field never restricts the match.
    """
    p = _Params()
    doc = p.add(compare)
    path = p.add(list(exclude_path))
    text = f"""
    SELECT {_RUN_COLUMNS}
    FROM runs
    WHERE runs.params::jsonb @> ({doc}::jsonb #- {path}::text[])
    ORDER BY runs.datetime ASC
    """
    return SqlQuery(text, p.values)


def build_runs_by_ids_query(run_ids: Sequence[str]) -> SqlQuery:
    p = _Params()
    ids = p.add(list(run_ids))
    text = f"""
    SELECT {_RUN_COLUMNS}
    FROM runs
    WHERE runs.id = ANY({ids})
    ORDER BY runs.datetime ASC
    """
    return SqlQuery(text, p.values)


def build_raw_params_query() -> SqlQuery:
    return SqlQuery("SELECT runs.params::jsonb AS params FROM runs")


def build_runs_for_language_query(language: Optional[str] = None) -> SqlQuery:
    """All runs, newest first, optionally only those of one SDK language."""
    p = _Params()
    where = ""
    if language:
        where = f"\n    WHERE runs.params::jsonb #>> '{{impl,language}}' = {p.add(language)}::text"
    text = f"""
    SELECT {_RUN_COLUMNS}
    FROM runs{where}
    ORDER BY runs.datetime DESC
    """
    return SqlQuery(text, p.values)


# Params sections carrying a ``version`` field.
VERSION_SECTIONS = ("impl", "cluster")


def build_distinct_versions_query(
    section: str, exclude_snapshots: bool = False, exclude_gerrit: bool = False
) -> SqlQuery:
    """
    Distinct ``<section>.version`` values across all runs.

    Snapshots carry a ``-`` suffix and Gerrit builds a ``refs/`` prefix.
    """
    if section not in VERSION_SECTIONS:
        raise ValidationError([f"Unknown version section '{section}'"])
    p = _Params()
    version = f"runs.params::jsonb #>> {p.add([section, 'version'])}::text[]"
    conditions = [f"{version} IS NOT NULL"]
    if exclude_snapshots:
        conditions.append(f"{version} NOT LIKE '%-%'")
    if exclude_gerrit:
        conditions.append(f"{version} NOT LIKE 'refs/%'")
    where = "\n      AND ".join(conditions)
    text = f"""
    SELECT DISTINCT {version} AS version
    FROM runs
    WHERE {where}
    """
    return SqlQuery(text, p.values)


def build_events_query(run_id: str, display_on_graph_only: bool = False) -> SqlQuery:
    p = _Params()
    rid = p.add(run_id)
    display = (
        "\n      AND run_events.params::jsonb -> 'displayOnGraph' = 'true'::jsonb"
        if display_on_graph_only
        else ""
    )
    text = f"""
    SELECT run_events.datetime,
           run_events.params::jsonb AS params
    FROM run_events
    WHERE run_events.run_id = {rid}{display}
    ORDER BY run_events.datetime ASC
    """
    return SqlQuery(text, p.values)


def build_metric_names_query() -> SqlQuery:
    return SqlQuery(
        """
    SELECT DISTINCT jsonb_object_keys(metrics.metrics::jsonb) AS metric_name
    FROM metrics
    WHERE metrics.metrics IS NOT NULL
      AND jsonb_typeof(metrics.metrics::jsonb) = 'object'
    ORDER BY metric_name
    """
    )


def build_metric_alert_query(rule: MetricAlertRule, language: str) -> SqlQuery:
    if rule.table not in _ALERT_TABLES:
        raise ValueError(f"Unknown alert table: {rule.table}")
    p = _Params()
    lang = p.add(language)
    text = f"""
    SELECT sub.run_id::text AS run_id,
           runs.datetime,
           sub.message,
           runs.params::jsonb -> 'impl' ->> 'version' AS version
    FROM (
        SELECT run_id, ({rule.message}) AS message
        FROM {rule.table}
        WHERE {rule.where}
        GROUP BY run_id
    ) AS sub
    JOIN runs ON runs.id = sub.run_id
    WHERE runs.params::jsonb -> 'impl' ->> 'language' = {lang}
      AND runs.datetime >= '{ALERTS_SINCE}'
    ORDER BY string_to_array(runs.params::jsonb -> 'impl' ->> 'version', '.') DESC
    """
    return SqlQuery(text, p.values)


# ============================================================================
# Situational runs
# ============================================================================


def build_situational_runs_query() -> SqlQuery:
    """One row per situational run: start, run count, summed score, one run's params."""
    return SqlQuery(
        """
    WITH joined AS (
        SELECT srj.situational_run_id::text AS situational_run_id,
               srj.params::jsonb AS situational_run_params,
               r.id AS run_id,
               r.datetime,
               r.params::jsonb AS run_params
        FROM runs AS r
        JOIN situational_run_join AS srj ON srj.run_id = r.id
    )
    SELECT j.situational_run_id,
           min(j.datetime) AS started,
           count(*) AS num_runs,
           min(j.run_params::text)::jsonb AS details_of_any_run,
           SUM(
               CASE WHEN (j.situational_run_params ->> 'score') ~ '^-?[0-9]+$'
                    THEN (j.situational_run_params ->> 'score')::int ELSE 0 END
           ) AS score
    FROM joined AS j
    GROUP BY j.situational_run_id
    ORDER BY started DESC
    """
    )


def build_situational_run_query(
    situational_run_id: str, run_id: Optional[str] = None
) -> SqlQuery:
    """Runs of one situational run, optionally narrowed to a single run."""
    p = _Params()
    srid = p.add(situational_run_id)
    run_filter = ""
    if run_id is not None:
        run_filter = f"\n      AND r.id = {p.add(run_id)}"
    text = f"""
    SELECT r.id::text AS id,
           r.datetime,
           r.params::jsonb AS run_params,
           srj.params::jsonb AS srj_params
    FROM runs AS r
    JOIN situational_run_join AS srj ON srj.run_id = r.id
    WHERE srj.situational_run_id = {srid}{run_filter}
    ORDER BY r.datetime ASC
    """
    return SqlQuery(text, p.values)


# ============================================================================
# Run detail
# ============================================================================


def build_run_buckets_query(run_id: str) -> SqlQuery:
    p = _Params()
    rid = p.add(run_id)
    text = f"""
    SELECT buckets.time AS datetime,
           buckets.time_offset_secs::int AS time_offset_secs,
           CONCAT(FLOOR(buckets.time_offset_secs / 60), 'm ',
                  buckets.time_offset_secs::int % 60, 's') AS time_label,
           buckets.duration_average_us,
           buckets.duration_min_us,
           buckets.duration_max_us,
           buckets.duration_p50_us,
           buckets.duration_p95_us,
           buckets.duration_p99_us,
           buckets.operations_total,
           buckets.operations_success,
           buckets.operations_failed,
           buckets.errors::jsonb AS errors
    FROM buckets
    WHERE buckets.run_id = {rid}
    ORDER BY buckets.time_offset_secs ASC
    """
    return SqlQuery(text, p.values)


def build_run_metrics_query(run_id: str) -> SqlQuery:
    p = _Params()
    rid = p.add(run_id)
    text = f"""
    SELECT metrics.time_offset_secs,
           metrics.metrics::jsonb AS metrics
    FROM metrics
    WHERE metrics.run_id = {rid}
    ORDER BY metrics.time_offset_secs ASC
    """
    return SqlQuery(text, p.values)


def build_run_summary_query(run_ids: Sequence[str], trimming_seconds: float) -> SqlQuery:
    """Per-run latency percentiles, operation totals and throughput after trimming."""
    p = _Params()
    ids = p.add(list(run_ids))
    trim = p.add(trimming_seconds)
    text = f"""
    SELECT buckets.run_id::text AS run_id,
           AVG(buckets.duration_average_us)::float8 AS duration_avg,
           MIN(buckets.duration_average_us)::float8 AS duration_min,
           MAX(buckets.duration_average_us)::float8 AS duration_max,
           PERCENTILE_CONT(0.5) WITHIN GROUP (ORDER BY buckets.duration_average_us) AS duration_p50,
           PERCENTILE_CONT(0.95) WITHIN GROUP (ORDER BY buckets.duration_average_us) AS duration_p95,
           PERCENTILE_CONT(0.99) WITHIN GROUP (ORDER BY buckets.duration_average_us) AS duration_p99,
           SUM(buckets.operations_total)::bigint AS operations_total,
           SUM(buckets.operations_success)::bigint AS operations_success,
           SUM(buckets.operations_failed)::bigint AS operations_failed,
           AVG(buckets.operations_total / NULLIF(buckets.time_offset_secs, 0))::float8 AS throughput
    FROM buckets
    WHERE buckets.run_id = ANY({ids})
      AND buckets.time_offset_secs >= {trim}::float8
    GROUP BY buckets.run_id
    """
    return SqlQuery(text, p.values)


def describe(query: SqlQuery) -> str:
    """Single-line rendering for logs."""
    return " ".join(query.text.split()) + " -- params=" + json.dumps(query.params, default=str)
