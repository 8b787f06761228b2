from __future__ import annotations

import pytest

from perfdash.core import query_builder as qb
from perfdash.core.errors import UnsupportedOperationError, ValidationError
from perfdash.core.query_builder import AggregationSpec
from perfdash.models.dashboard import MultipleResultsHandling

RUN_IDS = ["r1", "r2"]


def _sql(query: qb.SqlQuery) -> str:
    return " ".join(query.text.split())


def test_grouped_bucket_merged_binds_every_value():
    spec = AggregationSpec(merge="max", trimming_seconds=20)
    query = qb.build_grouped_bucket_query(RUN_IDS, ["impl", "version"], "duration_average_us", spec)
    sql = _sql(query)

    assert query.params == [RUN_IDS, ["impl", "version"], 20]
    assert "buckets.run_id = ANY($1)" in sql
    assert "#>> $2::text[]" in sql
    assert "buckets.time_offset_secs >= $3::float8" in sql
    # per-run merge, then mean across runs
    assert "max(buckets.duration_average_us)::float8 AS value" in sql
    assert "avg(sub.value)::float8 AS value" in sql
    assert "array_agg(sub.run_id::text ORDER BY runs.datetime) AS run_ids" in sql
    assert "GROUP BY grouping" in sql
    assert "r1" not in query.text


def test_grouped_bucket_side_by_side_keeps_one_row_per_run():
    spec = AggregationSpec(multiple_results_handling=MultipleResultsHandling.SIDE_BY_SIDE)
    sql = _sql(qb.build_grouped_bucket_query(RUN_IDS, ["vars", "horizontalScaling"], "operations_total", spec))

    assert "ARRAY[sub.run_id::text] AS run_ids" in sql
    assert "ORDER BY grouping, runs.datetime ASC" in sql
    assert "avg(sub.value)" not in sql


def test_hostile_path_stays_a_parameter():
    path = ["impl", "version'); DROP TABLE runs; --"]
    query = qb.build_grouped_bucket_query(RUN_IDS, path, "duration_p99_us", AggregationSpec())
    assert "DROP TABLE" not in query.text
    assert query.params[1] == path


def test_unknown_column_is_rejected():
    with pytest.raises(ValidationError) as exc:
        qb.build_grouped_bucket_query(RUN_IDS, ["impl", "version"], "1; DROP TABLE runs", AggregationSpec())
    assert "Unknown bucket column" in exc.value.details[0]


def test_unknown_merge_is_rejected():
    with pytest.raises(ValidationError):
        qb.build_bucket_series_query(
            RUN_IDS, AggregationSpec(merge="median", bucketise_seconds=10), column="operations_total"  # type: ignore[arg-type]
        )


def test_grouped_metric_groups_by_version_with_bound_key():
    spec = AggregationSpec(merge="max", trimming_seconds=5)
    query = qb.build_grouped_metric_query(RUN_IDS, "memHeapUsedMB", spec)
    sql = _sql(query)

    assert query.params == [RUN_IDS, ["impl", "version"], "memHeapUsedMB", 5]
    assert "metrics.metrics::jsonb ? $3::text" in sql
    assert "metrics.time_offset_secs >= $4::float8" in sql
    assert "array_agg(DISTINCT metrics.run_id::text) AS run_ids" in sql
    assert "memHeapUsedMB" not in query.text


def test_grouped_metric_side_by_side_raises_before_building():
    spec = AggregationSpec(multiple_results_handling=MultipleResultsHandling.SIDE_BY_SIDE)
    with pytest.raises(UnsupportedOperationError):
        qb.build_grouped_metric_query(RUN_IDS, "processCpu", spec)


def test_bucket_series_plain_with_errors():
    query = qb.build_bucket_series_query(
        RUN_IDS, AggregationSpec(trimming_seconds=20), include_errors=True
    )
    sql = _sql(query)

    assert query.params == [RUN_IDS, 20]
    assert "buckets.errors::jsonb AS errors" in sql
    assert "jsonb_each_text" in sql
    assert "'^-?[0-9]+$'" in sql
    assert "LATERAL" not in sql


def test_bucket_series_metric_alignment_uses_tolerance_window():
    query = qb.build_bucket_series_query(
        RUN_IDS,
        AggregationSpec(),
        column="duration_average_us",
        include_metrics=True,
        metric_tolerance_secs=2,
    )
    sql = _sql(query)

    assert query.params == [RUN_IDS, 0, 2]
    assert "LEFT JOIN LATERAL" in sql
    assert "metrics.time_offset_secs >= buckets.time_offset_secs" in sql
    assert "metrics.time_offset_secs <= buckets.time_offset_secs + $3::int" in sql
    assert "LIMIT 1" in sql


def test_bucket_series_windowed():
    spec = AggregationSpec(merge="sum", trimming_seconds=10, bucketise_seconds=30)
    query = qb.build_bucket_series_query(RUN_IDS, spec, column="operations_total")
    sql = _sql(query)

    assert query.params == [RUN_IDS, 10, 30]
    assert "FLOOR(buckets.time_offset_secs / $3::int) AS window_idx" in sql
    assert "min(w.time_offset_secs) AS time_offset_secs" in sql
    assert "sum(w.value)::float8 AS value" in sql
    assert "SUM(w.error_count)::bigint AS error_count" in sql
    assert "GROUP BY w.run_id, w.window_idx" in sql


def test_bucketise_of_one_is_not_windowed():
    spec = AggregationSpec(bucketise_seconds=1)
    assert not spec.bucketised
    sql = _sql(qb.build_bucket_series_query(RUN_IDS, spec, column="operations_total"))
    assert "window_idx" not in sql


def test_metric_series_plain_and_windowed():
    plain = qb.build_metric_series_query(RUN_IDS, "processCpu", AggregationSpec())
    assert plain.params == [RUN_IDS, "processCpu", 0]
    assert "metrics.metrics::jsonb ? $2::text" in _sql(plain)

    windowed = qb.build_metric_series_query(
        RUN_IDS, "processCpu", AggregationSpec(merge="max", bucketise_seconds=5)
    )
    sql = _sql(windowed)
    assert windowed.params == [RUN_IDS, "processCpu", 0, 5]
    assert "FLOOR(metrics.time_offset_secs / $4::int)" in sql
    assert "max(w.value)::float8 AS value" in sql


def test_runs_by_compare_removes_axis_path():
    compare = {"impl": {"language": "Java", "version": "3.4.0"}}
    query = qb.build_runs_by_compare_query(compare, ["impl", "version"])
    sql = _sql(query)

    assert query.params == [compare, ["impl", "version"]]
    assert "runs.params::jsonb @> ($1::jsonb #- $2::text[])" in sql
    assert "ORDER BY runs.datetime ASC" in sql


def test_events_query_display_filter():
    assert "displayOnGraph" not in qb.build_events_query("r1").text
    query = qb.build_events_query("r1", display_on_graph_only=True)
    assert "'displayOnGraph' = 'true'::jsonb" in query.text
    assert query.params == ["r1"]


def test_situational_run_query_optional_run_filter():
    assert qb.build_situational_run_query("s1").params == ["s1"]
    query = qb.build_situational_run_query("s1", "r9")
    assert query.params == ["s1", "r9"]
    assert "AND r.id = $2" in _sql(query)


def test_alert_catalogue_binds_language():
    for rule in qb.METRIC_ALERT_RULES:
        query = qb.build_metric_alert_query(rule, "Java")
        assert query.params == ["Java"]
        assert f"FROM {rule.table}" in query.text


def test_alert_rule_table_must_be_known():
    rule = qb.MetricAlertRule(name="x", table="runs; --", where="true", message="'x'")
    with pytest.raises(ValueError):
        qb.build_metric_alert_query(rule, "Java")


def test_run_summary_trims():
    query = qb.build_run_summary_query(["r1"], 20)
    assert query.params == [["r1"], 20]
    assert "buckets.time_offset_secs >= $2::float8" in _sql(query)


def test_describe_is_single_line():
    text = qb.describe(qb.build_events_query("r1"))
    assert "\n" not in text
    assert text.endswith('-- params=["r1"]')


def test_distinct_versions_binds_section_path():
    query = qb.build_distinct_versions_query("cluster", exclude_snapshots=True)
    sql = _sql(query)

    assert query.params == [["cluster", "version"]]
    assert "SELECT DISTINCT runs.params::jsonb #>> $1::text[] AS version" in sql
    assert "NOT LIKE '%-%'" in sql
    assert "refs/" not in sql


def test_distinct_versions_section_must_be_known():
    with pytest.raises(ValidationError):
        qb.build_distinct_versions_query("workload")


def test_runs_for_language_is_unfiltered_without_language():
    query = qb.build_runs_for_language_query()
    assert query.params == []
    assert "WHERE" not in _sql(query)
