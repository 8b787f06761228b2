from __future__ import annotations

import datetime as dt
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from perfdash.config import settings
from perfdash.core.colors import ERROR_COLOR, SHADES, cluster_version_color
from perfdash.core.dashboard_service import (
    DashboardService,
    filter_runs,
    summarize_errors,
    summary_metric_value,
)
from perfdash.core.errors import NotFoundError, QueryExecutionError, UnsupportedOperationError
from perfdash.core.input_builders import DEFAULT_TRIMMING_SECONDS
from perfdash.core.query_builder import METRIC_ALERT_RULES
from perfdash.core.query_intent import KvOperation, SystemMetric
from perfdash.core.run_store import RunStore, project_run
from perfdash.models.dashboard import (
    DashboardInput,
    FilterRuns,
    MetricsQuery,
    SingleRunInput,
    SituationalRunAndRunQuery,
    SituationalRunQuery,
)
from perfdash.models.results import (
    GroupedResult,
    MetricsAlert,
    RunAndSituationalScore,
    RunBucketRow,
    RunEvent,
)

BASELINE = "7.1.1-3175-enterprise"
T0 = dt.datetime(2024, 5, 1, 9, 0, 0)


def _run(run_id, language="Java", version="3.4.0", cluster_version=BASELINE, **vars):
    return project_run(
        {
            "id": run_id,
            "datetime": T0,
            "params": {
                "impl": {"language": language, "version": version},
                "cluster": {"version": cluster_version},
                "vars": vars,
            },
        }
    )


def _store(**methods):
    store = MagicMock(spec=RunStore)
    for name in (
        "fetch_runs",
        "fetch_runs_by_ids",
        "fetch_raw_params",
        "fetch_grouped_buckets",
        "fetch_grouped_metric",
        "fetch_bucket_series",
        "fetch_metric_series",
        "fetch_events",
        "fetch_metric_names",
        "fetch_metric_alerts",
        "fetch_situational_runs",
        "fetch_situational_run",
        "fetch_run_buckets",
        "fetch_run_metrics",
        "fetch_run_summary",
        "fetch_runs_for_language",
        "fetch_distinct_versions",
    ):
        setattr(store, name, AsyncMock(return_value=[]))
    for name, mock in methods.items():
        setattr(store, name, mock)
    return store


def _service(store):
    return DashboardService(
        store,
        default_baseline_cluster_version=BASELINE,
        max_parallel_queries=2,
        metric_tolerance_secs=1,
    )


def _input(**overrides):
    body = {
        "hAxis": {"type": "dynamic", "databaseField": "impl.version"},
        "yAxes": [{"type": "buckets", "column": "duration_average_us"}],
        "databaseCompare": {"impl": {"language": "Java"}},
        "graphType": "Simplified",
        "trimmingSeconds": 20,
    }
    body.update(overrides)
    return DashboardInput.model_validate(body)


# ----------------------------------------------------------------------------
# Run filtering
# ----------------------------------------------------------------------------


def _versions(runs):
    return [(run.language, run.version) for run in runs]


def test_latest_keeps_highest_version_per_language():
    runs = [
        _run("a", version="3.4.0"),
        _run("b", version="3.4.10"),
        _run("c", version="refs/changes/1/2/3"),
        _run("d", version="3.5.0-20240101.101010-1"),
        _run("e", language="Node", version="4.0.0"),
    ]
    assert _versions(filter_runs(runs, mode=FilterRuns.LATEST)) == [
        ("Java", "3.5.0-20240101.101010-1"),
        ("Node", "4.0.0"),
    ]
    assert _versions(filter_runs(runs, mode=FilterRuns.LATEST_NON_SNAPSHOT)) == [
        ("Java", "3.4.10"),
        ("Node", "4.0.0"),
    ]


def test_exclusions():
    runs = [_run("a", version="3.4.0"), _run("b", version="refs/changes/1/2/3"), _run("c", version="3.5.0-1")]
    assert [r.id for r in filter_runs(runs, exclude_gerrit=True)] == ["a", "c"]
    assert [r.id for r in filter_runs(runs, exclude_snapshots=True)] == ["a", "b"]
    assert [r.id for r in filter_runs(runs)] == ["a", "b", "c"]


# ----------------------------------------------------------------------------
# Request helpers
# ----------------------------------------------------------------------------


def test_baseline_resolution_order():
    service = _service(_store())
    assert service.resolve_baseline(_input(baselineClusterVersion="7.6.0")) == "7.6.0"
    compared = _input(databaseCompare={"cluster": {"version": "7.2.0"}})
    assert service.resolve_baseline(compared) == "7.2.0"
    assert service.resolve_baseline(_input()) == BASELINE


def test_default_merge_depends_on_metric():
    assert DashboardService.resolve_merge(None, KvOperation()) == "avg"
    assert DashboardService.resolve_merge(None, SystemMetric(metric="memHeapUsedMB")) == "max"
    assert DashboardService.resolve_merge(None, SystemMetric(metric="processCpu")) == "avg"
    assert DashboardService.resolve_merge("Sum", SystemMetric(metric="threadCount")) == "sum"


# ----------------------------------------------------------------------------
# Simplified graphs
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bar_graph_orders_flags_and_colors():
    runs = [_run("r1", version="3.10.0"), _run("r2", version="3.9.0", cluster_version="7.2.0")]
    grouped = AsyncMock(
        return_value=[
            GroupedResult(grouping="3.10.0", value=10.0, run_ids=["r1"]),
            GroupedResult(grouping="3.9.0", value=20.0, run_ids=["r2"]),
        ]
    )
    store = _store(fetch_runs=AsyncMock(return_value=runs), fetch_grouped_buckets=grouped)

    graph = await _service(store).gen_graph(_input(mergingType="Maximum"))

    store.fetch_runs.assert_awaited_once_with({"impl": {"language": "Java"}}, ["impl", "version"])
    run_ids, path, column, spec = grouped.await_args.args
    assert (run_ids, path, column) == (["r1", "r2"], ["impl", "version"], "duration_average_us")
    assert spec.merge == "max"
    assert spec.trimming_seconds == 20

    assert graph.type == "bar"
    assert graph.baseline_cluster_version == BASELINE
    (series,) = graph.series
    assert series.color == SHADES[0]
    assert series.unit == "μs"
    assert [p.group_key for p in series.points] == ["3.9.0", "3.10.0"]
    assert series.points[0].has_different_cluster_version is True
    assert series.points[1].is_baseline is True
    assert [r.color for r in graph.runs] == [
        cluster_version_color(BASELINE),
        cluster_version_color("7.2.0"),
    ]
    assert graph.runs[0].grouped_by == "3.10.0"


@pytest.mark.asyncio
async def test_bar_graph_routes_metric_axes_to_metrics():
    metric = AsyncMock(return_value=[GroupedResult(grouping="3.4.0", value=55.0, run_ids=["r1"])])
    store = _store(fetch_runs=AsyncMock(return_value=[_run("r1")]), fetch_grouped_metric=metric)

    graph = await _service(store).gen_graph(
        _input(yAxes=[{"type": "metric", "metric": "memHeapUsedMB"}])
    )

    _, key, spec = metric.await_args.args
    assert key == "memHeapUsedMB"
    assert spec.merge == "max"
    assert graph.intent == {"type": "systemMetric", "metric": "memHeapUsedMB"}
    store.fetch_grouped_buckets.assert_not_awaited()


@pytest.mark.asyncio
async def test_side_by_side_metric_raises_before_querying():
    store = _store()
    input = _input(
        yAxes=[{"type": "metric", "metric": "processCpu"}],
        multipleResultsHandling="Side-by-Side",
    )
    with pytest.raises(UnsupportedOperationError):
        await _service(store).gen_graph(input)
    store.fetch_runs.assert_not_awaited()


@pytest.mark.asyncio
async def test_errors_axis_is_not_a_bar():
    store = _store()
    with pytest.raises(UnsupportedOperationError):
        await _service(store).gen_graph(_input(yAxes=[{"type": "errors"}]))
    store.fetch_runs.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_matching_runs_gives_empty_series():
    store = _store()
    graph = await _service(store).gen_graph(_input())
    assert graph.series[0].points == []
    store.fetch_grouped_buckets.assert_not_awaited()


# ----------------------------------------------------------------------------
# Full graphs
# ----------------------------------------------------------------------------


async def _bucket_series(run_ids, spec, *, column=None, include_errors=False,
                         include_metrics=False, metric_tolerance_secs=1):
    if include_errors:
        return [RunBucketRow(run_id="r1", datetime=T0, time_offset_secs=0, errors={"timeout (14)": 2}, error_count=2)]
    return [
        RunBucketRow(run_id=run_id, datetime=T0 + dt.timedelta(seconds=5), time_offset_secs=offset, value=100.0)
        for run_id in run_ids
        for offset in (20, 21)
    ]


@pytest.mark.asyncio
async def test_line_graph_series_errors_and_annotations():
    runs = [_run("r1", version="3.4.0"), _run("r2", version="3.5.0")]
    events = AsyncMock(
        return_value=[RunEvent(datetime=T0, time_offset_secs=12, params={"type": "failover", "description": "Failover"})]
    )
    store = _store(
        fetch_runs=AsyncMock(return_value=runs),
        fetch_bucket_series=AsyncMock(side_effect=_bucket_series),
        fetch_metric_series=AsyncMock(side_effect=QueryExecutionError("no metrics")),
        fetch_events=events,
    )
    input = _input(
        graphType="Full",
        yAxes=[
            {"type": "buckets", "column": "duration_average_us"},
            {"type": "errors", "yAxisID": "y2"},
            {"type": "metric", "metric": "processCpu"},
        ],
        annotations=[{"type": "run-events"}],
    )

    graph = await _service(store).gen_graph(input)

    assert graph.type == "line"
    assert [s.name for s in graph.series] == [
        "3.4.0 duration_average_us",
        "3.5.0 duration_average_us",
        "3.4.0 errors",
        "3.5.0 errors",
    ]
    # run summaries take the first shades
    assert [r.color for r in graph.runs] == SHADES[:2]
    assert [s.color for s in graph.series[:2]] == SHADES[2:4]
    assert {s.color for s in graph.series[2:]} == {ERROR_COLOR}
    assert graph.series[2].y_axis_id == "y2"
    assert graph.series[2].points[0].value == 2.0
    assert graph.series[3].points == []

    assert events.await_count == 2
    assert events.await_args_list[0].kwargs == {
        "display_on_graph_only": True,
        "first_bucket_time": T0 + dt.timedelta(seconds=5),
    }
    assert len(graph.annotations) == 2
    annotation = next(iter(graph.annotations.values()))
    assert annotation["xMin"] == annotation["xMax"] == 12
    assert annotation["label"]["content"] == "Failover"
    assert annotation["label"]["yAdjust"] == 0


@pytest.mark.asyncio
async def test_single_run_not_found():
    single = SingleRunInput.model_validate(
        {"runId": "missing", "yAxes": [{"type": "buckets", "column": "operations_total"}], "trimmingSeconds": 0}
    )
    with pytest.raises(NotFoundError, match="Run with ID missing not found."):
        await _service(_store()).gen_single(single)


@pytest.mark.asyncio
async def test_single_run_aligns_metrics():
    series = AsyncMock(side_effect=_bucket_series)
    store = _store(fetch_runs_by_ids=AsyncMock(return_value=[_run("r1")]), fetch_bucket_series=series)
    single = SingleRunInput.model_validate(
        {"runId": "r1", "yAxes": [{"type": "buckets", "column": "operations_total"}], "trimmingSeconds": 0}
    )

    graph = await _service(store).gen_single(single)

    assert series.await_args.kwargs["include_metrics"] is True
    assert series.await_args.kwargs["metric_tolerance_secs"] == 1
    assert graph.intent == {"type": "transaction", "threads": 1}
    assert graph.series[0].name == "3.4.0 operations_total"
    assert graph.annotations == {}


# ----------------------------------------------------------------------------
# Lookups and alerts
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_filtered_dedupes_sections_and_sorts_values():
    params = [
        {"impl": {"language": "Java", "version": "3.4.0"}, "cluster": {"version": "7"}},
        {"impl": {"language": "Java", "version": "3.10.0"}, "cluster": {"version": "7"}},
        {"impl": {"language": "Java", "version": "3.4.0"}, "cluster": {"version": "7"}},
    ]
    store = _store(fetch_raw_params=AsyncMock(return_value=params))

    filtered = await _service(store).get_filtered("impl.version")

    assert filtered.values == ["3.4.0", "3.10.0"]
    assert filtered.impls == [json.dumps({"language": "Java"})]
    assert filtered.clusters == [json.dumps({"version": "7"})]
    assert filtered.vars_by_workload == {"null": ["null"]}


@pytest.mark.asyncio
async def test_group_by_lists_leaf_paths_once():
    params = [{"impl": {"language": "Java"}}, {"impl": {"language": "Go"}, "vars": {"docNum": 1}}]
    store = _store(fetch_raw_params=AsyncMock(return_value=params))
    assert await _service(store).get_group_by() == ["impl.language", "vars.docNum"]


@pytest.mark.asyncio
async def test_metrics_alerts_follow_catalogue_order():
    async def alerts(rule, language):
        return [MetricsAlert(run_id=rule.name, message=rule.name, language=language)]

    store = _store(fetch_metric_alerts=AsyncMock(side_effect=alerts))
    out = await _service(store).gen_metrics(MetricsQuery(language="Java"))
    assert [a.run_id for a in out] == [rule.name for rule in METRIC_ALERT_RULES]
    assert {a.language for a in out} == {"Java"}


# ----------------------------------------------------------------------------
# Situational runs
# ----------------------------------------------------------------------------


def _error_event(name, exception):
    return RunEvent(params={"type": "situation-sdk-error", "name": name, "exception": exception})


def test_summarize_errors_keeps_first_exception():
    events = [
        _error_event("TimeoutException", "first"),
        RunEvent(params={"type": "failover"}),
        _error_event("DocumentNotFound", "dnf"),
        _error_event("TimeoutException", "second"),
    ]
    summary = summarize_errors(events)
    assert [(s.name, s.first, s.count) for s in summary] == [
        ("TimeoutException", "first", 2),
        ("DocumentNotFound", "dnf", 1),
    ]


@pytest.mark.asyncio
async def test_situational_run_not_found():
    with pytest.raises(NotFoundError):
        await _service(_store()).gen_situational_run(SituationalRunQuery(situational_run_id="s1"))


@pytest.mark.asyncio
async def test_situational_events_need_membership():
    store = _store()
    query = SituationalRunAndRunQuery(situational_run_id="s1", run_id="r1")
    with pytest.raises(NotFoundError):
        await _service(store).gen_situational_run_run_events(query)
    store.fetch_events.assert_not_awaited()


@pytest.mark.asyncio
async def test_situational_errors_summary_uses_first_bucket_time():
    member = RunAndSituationalScore(run_id="r1", score=90)
    events = AsyncMock(return_value=[_error_event("TimeoutException", "boom")])
    store = _store(
        fetch_situational_run=AsyncMock(return_value=[member]),
        fetch_run_buckets=AsyncMock(return_value=[{"datetime": T0}]),
        fetch_events=events,
    )
    query = SituationalRunAndRunQuery(situational_run_id="s1", run_id="r1")

    summary = await _service(store).gen_situational_run_run_errors_summary(query)

    assert [(s.name, s.count) for s in summary] == [("TimeoutException", 1)]
    events.assert_awaited_once_with("r1", first_bucket_time=T0)


# ----------------------------------------------------------------------------
# Run detail
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_detail_combines_run_and_summary():
    summary = {"r1": {"latency": {"avg": 5.0}}}
    store = _store(
        fetch_runs_by_ids=AsyncMock(return_value=[_run("r1")]),
        fetch_run_summary=AsyncMock(return_value=summary),
    )
    service = DashboardService(store, default_baseline_cluster_version=BASELINE)

    run, stats = await service.get_run_detail("r1")

    assert run.id == "r1"
    assert stats == {"latency": {"avg": 5.0}}
    store.fetch_run_summary.assert_awaited_once()
    assert store.fetch_run_summary.await_args.args[0] == ["r1"]


@pytest.mark.asyncio
async def test_multiple_runs_fetch_runs_and_summaries():
    summary = {"r1": {"latency": {"avg": 5.0}}}
    store = _store(
        fetch_runs_by_ids=AsyncMock(return_value=[_run("r1"), _run("r2")]),
        fetch_run_summary=AsyncMock(return_value=summary),
    )

    runs, stats = await _service(store).get_multiple_runs(["r1", "r2"])

    assert [run.id for run in runs] == ["r1", "r2"]
    assert stats == summary
    store.fetch_runs_by_ids.assert_awaited_once_with(["r1", "r2"])
    assert store.fetch_run_summary.await_args.args == (["r1", "r2"], settings.DEFAULT_TRIMMING_SECONDS)


# ----------------------------------------------------------------------------
# Version drill-down
# ----------------------------------------------------------------------------


def _summary(avg, total=0):
    return {
        "latency": {"avg": avg, "min": 0.0, "max": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0},
        "operations": {"total": total, "success": total, "failed": 0},
        "throughput": 0.0,
    }


@pytest.mark.asyncio
async def test_version_runs_agree_with_the_chart_bar():
    runs = [_run("r1", version="3.4.0"), _run("r2", version="3.4.0"), _run("r3", version="3.5.0")]
    grouped = AsyncMock(
        return_value=[
            GroupedResult(grouping="3.4.0", value=12.0, run_ids=["r1", "r2"]),
            GroupedResult(grouping="3.5.0", value=9.0, run_ids=["r3"]),
        ]
    )
    store = _store(
        fetch_runs=AsyncMock(return_value=runs),
        fetch_grouped_buckets=grouped,
        fetch_run_summary=AsyncMock(return_value={"r1": _summary(10.0), "r2": _summary(14.0)}),
    )

    result = await _service(store).get_version_runs("3.4.0", sdk="Java")

    compare, _ = store.fetch_runs.await_args.args
    assert compare["impl"] == {"language": "Java", "version": "3.4.0"}
    assert result.aggregated_value == 12.0
    assert [row.id for row in result.runs] == ["r1", "r2"]
    assert [row.metric_value for row in result.runs] == [10.0, 14.0]
    assert result.count == 2
    assert result.runs[0].cluster_version == BASELINE
    assert result.runs[0].workload == ""
    assert store.fetch_run_summary.await_args.args == (["r1", "r2"], DEFAULT_TRIMMING_SECONDS)


@pytest.mark.asyncio
async def test_version_runs_with_explicit_ids_keep_the_sdk_wide_chart():
    store = _store(
        fetch_runs=AsyncMock(return_value=[_run("r1", version="3.4.0")]),
        fetch_runs_by_ids=AsyncMock(return_value=[_run("r9", version="3.4.0")]),
        fetch_grouped_buckets=AsyncMock(
            return_value=[GroupedResult(grouping="3.4.0", value=7.0, run_ids=["r1"])]
        ),
        fetch_run_summary=AsyncMock(return_value={}),
    )

    result = await _service(store).get_version_runs(
        "3.4.0", sdk="Java", metric="operations_total", run_ids=["r9"]
    )

    compare, _ = store.fetch_runs.await_args.args
    assert "version" not in compare["impl"]
    store.fetch_runs_by_ids.assert_awaited_once_with(["r9"])
    assert result.aggregated_value == 7.0
    assert [(row.id, row.metric_value) for row in result.runs] == [("r9", None)]
    assert result.metric == "operations_total"


def test_summary_metric_value_maps_columns():
    summary = _summary(3.5, total=40)
    assert summary_metric_value(summary, "operations_total") == 40.0
    assert summary_metric_value(summary, "duration_average_us") == 3.5
    assert summary_metric_value(summary, "processCpu") == 3.5
    assert summary_metric_value(None, "duration_average_us") is None


# ----------------------------------------------------------------------------
# Version and run selectors
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_distinct_versions_sort_semantically():
    store = _store(fetch_distinct_versions=AsyncMock(return_value=["3.10.0", "3.9.0", "3.9.1"]))
    service = _service(store)

    assert await service.get_distinct_sdk_versions(exclude_snapshots=True) == [
        "3.9.0",
        "3.9.1",
        "3.10.0",
    ]
    store.fetch_distinct_versions.assert_awaited_once_with(
        "impl", exclude_snapshots=True, exclude_gerrit=False
    )

    await service.get_distinct_cluster_versions()
    assert store.fetch_distinct_versions.await_args.args == ("cluster",)


@pytest.mark.asyncio
async def test_runs_filtered_applies_exclusions_then_limit():
    runs = [
        _run("a", version="3.5.0"),
        _run("b", version="refs/changes/1/2/3"),
        _run("c", version="3.5.1-SNAPSHOT"),
        _run("d", version="3.4.0"),
    ]
    store = _store(fetch_runs_for_language=AsyncMock(return_value=runs))

    out = await _service(store).get_runs_filtered(
        "Java", exclude_snapshots=True, exclude_gerrit=True, limit=1
    )

    store.fetch_runs_for_language.assert_awaited_once_with("Java")
    assert [run.id for run in out] == ["a"]
