"""
Dashboard Query Façade

Orchestrates every dashboard read:
resolve the matching runs -> classify the request -> synthesize and run one
aggregation per y-axis -> shape rows into named, colored, ordered series ->
attach baseline cluster-version flags.

Independent sub-queries fan out under a semaphore and are joined with
asyncio.gather; series are assembled afterwards in request order so colors
do not depend on query completion order.
"""

from __future__ import annotations

import asyncio
import copy
import datetime as dt
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from perfdash.config import settings
from perfdash.core.colors import ERROR_COLOR, ShadeProvider, cluster_version_color
from perfdash.core.errors import DashboardError, NotFoundError, UnsupportedOperationError
from perfdash.core.input_builders import DEFAULT_COLUMN, build_input_for_version
from perfdash.core.merging import AggregateFunction, resolve_merge_algorithm
from perfdash.core.normalizer import (
    infer_unit,
    leaf_paths,
    normalize_error_rows,
    normalize_grouped,
    normalize_series_rows,
    parse_from,
    remove_path,
    sort_grouped,
)
from perfdash.core.query_builder import METRIC_ALERT_RULES, AggregationSpec
from perfdash.core.query_intent import (
    SYSTEM_METRICS,
    QueryIntent,
    SystemMetric,
    classify,
    to_dict,
)
from perfdash.core.run_store import RunStore, project_run
from perfdash.core.validation import validate_axis_field
from perfdash.core.versions import is_gerrit, is_snapshot, sort_key, version_compare
from perfdash.models.dashboard import (
    DashboardInput,
    FilterRuns,
    GraphType,
    MetricsQuery,
    MultipleResultsHandling,
    RunEventsAnnotation,
    SingleRunInput,
    SituationalRunAndRunQuery,
    SituationalRunQuery,
    VerticalAxisBuckets,
    VerticalAxisErrors,
    VerticalAxisMetric,
)
from perfdash.models.results import (
    ChartSeries,
    ErrorSummary,
    Filtered,
    GraphResponse,
    GroupedResult,
    MetricsAlert,
    Run,
    RunBucketRow,
    RunEvent,
    RunMetricRow,
    RunSummary,
    SituationalRun,
    SituationalRunResults,
    VersionRun,
    VersionRuns,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

YAxisModel = Union[VerticalAxisBuckets, VerticalAxisMetric, VerticalAxisErrors]

SITUATIONAL_ERROR_EVENT = "situation-sdk-error"

# System metrics whose peaks matter more than their mean.
_PEAK_METRICS = frozenset({"memHeapUsedMB", "threadCount"})

# Bucket column -> (section, key) of a post-trimming run summary.
_SUMMARY_FIELDS: Dict[str, Tuple[str, str]] = {
    "duration_average_us": ("latency", "avg"),
    "duration_min_us": ("latency", "min"),
    "duration_max_us": ("latency", "max"),
    "duration_p50_us": ("latency", "p50"),
    "duration_p95_us": ("latency", "p95"),
    "duration_p99_us": ("latency", "p99"),
    "operations_total": ("operations", "total"),
    "operations_success": ("operations", "success"),
    "operations_failed": ("operations", "failed"),
}


def summary_metric_value(summary: Optional[Dict[str, Any]], metric: str) -> Optional[float]:
    """The run-summary figure for a bucket column; mean latency for anything else."""
    if not summary:
        return None
    section, key = _SUMMARY_FIELDS.get(metric, ("latency", "avg"))
    value = summary.get(section, {}).get(key)
    return None if value is None else float(value)


def _bar_value(graph: GraphResponse, group_key: str) -> Optional[float]:
    if not graph.series:
        return None
    for point in graph.series[0].points:
        if point.group_key == group_key:
            return point.value
    return None


def filter_runs(
    runs: Sequence[Run],
    *,
    exclude_gerrit: bool = False,
    exclude_snapshots: bool = False,
    mode: FilterRuns = FilterRuns.ALL,
) -> List[Run]:
    """
    Apply the Gerrit/snapshot exclusions and the Latest filters.

    Latest keeps, per SDK language, only runs of the highest version. Gerrit
    versions never count as latest; LatestNonSnapshot skips snapshots too.
    """
    wants_latest = mode in (FilterRuns.LATEST, FilterRuns.LATEST_NON_SNAPSHOT)
    latest: Dict[str, str] = {}

    if wants_latest:
        for run in runs:
            version = run.version
            if is_gerrit(version):
                continue
            if mode == FilterRuns.LATEST_NON_SNAPSHOT and is_snapshot(version):
                continue
            current = latest.get(run.language)
            if current is None or version_compare(version, current) > 0:
                latest[run.language] = version
        for sdk, version in latest.items():
            logger.info("Latest for %s = %s", sdk, version)

    out = []
    for run in runs:
        version = run.version
        if exclude_gerrit and is_gerrit(version):
            continue
        if exclude_snapshots and is_snapshot(version):
            continue
        if wants_latest and latest.get(run.language) != version:
            continue
        out.append(run)
    return out


def _axis_key(axis: YAxisModel) -> str:
    if isinstance(axis, VerticalAxisBuckets):
        return axis.column
    if isinstance(axis, VerticalAxisMetric):
        return axis.metric
    if isinstance(axis, VerticalAxisErrors):
        return "errors"
    raise TypeError(f"Unsupported yAxis: {axis!r}")


def _is_metric_axis(axis: YAxisModel) -> bool:
    """Metric axes, including bucket axes that name a system metric."""
    if isinstance(axis, VerticalAxisMetric):
        return True
    return isinstance(axis, VerticalAxisBuckets) and axis.column in SYSTEM_METRICS


def _rows_by_run(rows: Sequence[Union[RunBucketRow, RunMetricRow]]) -> Dict[str, list]:
    grouped: Dict[str, list] = {}
    for row in rows:
        grouped.setdefault(row.run_id, []).append(row)
    return grouped


@dataclass
class _LineRequest:
    """What a Full chart needs, for both the multi-run and single-run paths."""

    y_axes: List[YAxisModel]
    group_path: List[str]
    spec: AggregationSpec
    annotations: List[RunEventsAnnotation] = field(default_factory=list)
    baseline: Optional[str] = None
    include_metrics: bool = False


class DashboardService:
    """Read-only chart and lookup operations over the run store."""

    def __init__(
        self,
        store: RunStore,
        *,
        default_baseline_cluster_version: Optional[str] = None,
        max_parallel_queries: Optional[int] = None,
        metric_tolerance_secs: Optional[int] = None,
    ):
        self._store = store
        self._default_baseline = (
            default_baseline_cluster_version or settings.DEFAULT_BASELINE_CLUSTER_VERSION
        )
        self._semaphore = asyncio.Semaphore(
            max_parallel_queries or settings.DASHBOARD_MAX_PARALLEL_QUERIES
        )
        self._metric_tolerance_secs = (
            metric_tolerance_secs
            if metric_tolerance_secs is not None
            else settings.METRIC_ALIGNMENT_TOLERANCE_SECS
        )

    @property
    def store(self) -> RunStore:
        return self._store

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        async with self._semaphore:
            return await awaitable

    # ========================================================================
    # Request helpers
    # ========================================================================

    def resolve_baseline(self, input: DashboardInput) -> str:
        """Explicit baseline, else the compared cluster version, else the configured default."""
        if input.baseline_cluster_version:
            return input.baseline_cluster_version
        cluster = input.database_compare.cluster or {}
        if cluster.get("version"):
            return str(cluster["version"])
        return self._default_baseline

    @staticmethod
    def resolve_merge(merging_type: Optional[str], intent: QueryIntent) -> AggregateFunction:
        if merging_type:
            return resolve_merge_algorithm(merging_type)
        if isinstance(intent, SystemMetric) and intent.metric in _PEAK_METRICS:
            return "max"
        return "avg"

    async def _matching_runs(self, input: DashboardInput) -> List[Run]:
        initial = await self._bounded(
            self._store.fetch_runs(input.database_compare.sections(), input.h_axis.path)
        )
        runs = filter_runs(
            initial,
            exclude_gerrit=input.exclude_gerrit,
            exclude_snapshots=input.exclude_snapshots,
            mode=input.filter_runs,
        )
        logger.info("Matched %d runs, filtered to %d", len(initial), len(runs))
        return runs

    # ========================================================================
    # Graphs
    # ========================================================================

    async def gen_graph(self, input: DashboardInput) -> GraphResponse:
        intent = classify(input, input.title)
        logger.debug("gen_graph intent=%s graph_type=%s", intent, input.graph_type.value)
        if input.graph_type == GraphType.SIMPLIFIED:
            return await self._graph_bar(input, intent)
        return await self._graph_line(input, intent)

    @staticmethod
    def _check_bar_axes(input: DashboardInput) -> None:
        for axis in input.y_axes:
            if isinstance(axis, VerticalAxisErrors):
                raise UnsupportedOperationError(
                    "The errors y-axis is only supported on Full graphs"
                )
            if (
                _is_metric_axis(axis)
                and input.multiple_results_handling == MultipleResultsHandling.SIDE_BY_SIDE
            ):
                raise UnsupportedOperationError(
                    "Side-by-Side results are not supported for metric y-axes"
                )

    async def _graph_bar(self, input: DashboardInput, intent: QueryIntent) -> GraphResponse:
        self._check_bar_axes(input)

        runs = await self._matching_runs(input)
        runs_by_id = {run.id: run for run in runs}
        run_ids = [run.id for run in runs]
        baseline = self.resolve_baseline(input)
        spec = AggregationSpec(
            merge=self.resolve_merge(input.merging_type, intent),
            trimming_seconds=input.trimming_seconds,
            bucketise_seconds=input.bucketise_seconds,
            multiple_results_handling=input.multiple_results_handling,
        )

        grouped = await asyncio.gather(
            *(
                self._bounded(self._bar_results(axis, run_ids, input.h_axis.path, spec))
                for axis in input.y_axes
            )
        )

        sp = ShadeProvider()
        series = []
        for axis, results in zip(input.y_axes, grouped):
            key = _axis_key(axis)
            unit = infer_unit(key)
            ordered = sort_grouped(results, input.h_axis.result_type)
            series.append(
                ChartSeries(
                    name=axis.title or key,
                    color=sp.next_shade(),
                    y_axis_id=axis.y_axis_id,
                    unit=unit,
                    points=normalize_grouped(ordered, unit, runs_by_id, baseline),
                )
            )

        return GraphResponse(
            type="bar",
            intent=to_dict(intent),
            baseline_cluster_version=baseline,
            series=series,
            runs=[
                RunSummary(
                    id=run.id,
                    datetime=run.datetime,
                    grouped_by=parse_from(run.params, input.h_axis.path),
                    color=cluster_version_color(run.cluster_version) if run.cluster_version else None,
                    cluster_version=run.cluster_version,
                    params=run.params,
                )
                for run in runs
            ],
        )

    async def _bar_results(
        self,
        axis: YAxisModel,
        run_ids: List[str],
        group_path: List[str],
        spec: AggregationSpec,
    ) -> List[GroupedResult]:
        if not run_ids:
            return []
        if _is_metric_axis(axis):
            return await self._store.fetch_grouped_metric(run_ids, _axis_key(axis), spec)
        if isinstance(axis, VerticalAxisBuckets):
            return await self._store.fetch_grouped_buckets(run_ids, group_path, axis.column, spec)
        raise UnsupportedOperationError(f"Unsupported yAxis type on Simplified graphs: {axis.type}")

    async def _graph_line(self, input: DashboardInput, intent: QueryIntent) -> GraphResponse:
        runs = await self._matching_runs(input)
        request = _LineRequest(
            y_axes=list(input.y_axes),
            group_path=input.h_axis.path,
            spec=AggregationSpec(
                merge=self.resolve_merge(input.merging_type, intent),
                trimming_seconds=input.trimming_seconds,
                bucketise_seconds=input.bucketise_seconds,
            ),
            annotations=list(input.annotations),
            baseline=self.resolve_baseline(input),
        )
        return await self._line_shared(runs, request, intent)

    async def gen_single(self, single: SingleRunInput) -> GraphResponse:
        """Full chart for one run, buckets carrying their aligned metrics sample."""
        runs = await self._bounded(self._store.fetch_runs_by_ids([single.run_id]))
        if not runs:
            raise NotFoundError(f"Run with ID {single.run_id} not found.")
        run = runs[0]
        intent = classify({"workload": run.workload, "vars": run.vars, "yAxes": single.y_axes})
        request = _LineRequest(
            y_axes=list(single.y_axes),
            group_path=["impl", "version"],
            spec=AggregationSpec(
                merge=self.resolve_merge(single.merging_type, intent),
                trimming_seconds=single.trimming_seconds,
                bucketise_seconds=single.bucketise_seconds,
            ),
            annotations=list(single.annotations),
            baseline=self._default_baseline,
            include_metrics=True,
        )
        return await self._line_shared(runs, request, intent)

    async def _line_rows(
        self, axis: YAxisModel, run_ids: List[str], request: _LineRequest
    ) -> List[Union[RunBucketRow, RunMetricRow]]:
        if not run_ids:
            return []
        if _is_metric_axis(axis):
            try:
                return await self._store.fetch_metric_series(run_ids, _axis_key(axis), request.spec)
            except DashboardError as e:
                # Missing metrics must not take the bucket series down with them.
                logger.warning("Metric series %s failed, omitting it: %s", _axis_key(axis), e)
                return []
        if isinstance(axis, VerticalAxisErrors):
            return await self._store.fetch_bucket_series(run_ids, request.spec, include_errors=True)
        if isinstance(axis, VerticalAxisBuckets):
            return await self._store.fetch_bucket_series(
                run_ids,
                request.spec,
                column=axis.column,
                include_metrics=request.include_metrics,
                metric_tolerance_secs=self._metric_tolerance_secs,
            )
        raise UnsupportedOperationError(f"Unsupported yAxis type: {axis!r}")

    async def _line_shared(
        self, runs: List[Run], request: _LineRequest, intent: QueryIntent
    ) -> GraphResponse:
        sp = ShadeProvider()
        run_ids = [run.id for run in runs]
        grouped_by = {run.id: parse_from(run.params, request.group_path) for run in runs}
        summaries = [
            RunSummary(
                id=run.id,
                datetime=run.datetime,
                grouped_by=grouped_by[run.id],
                color=sp.next_shade(),
                cluster_version=run.cluster_version,
                params=run.params,
            )
            for run in runs
        ]

        per_axis = await asyncio.gather(
            *(self._bounded(self._line_rows(axis, run_ids, request)) for axis in request.y_axes)
        )

        series: List[ChartSeries] = []
        first_bucket_time: Dict[str, dt.datetime] = {}
        for axis, rows in zip(request.y_axes, per_axis):
            by_run = _rows_by_run(rows)
            key = _axis_key(axis)
            unit = infer_unit(key)
            metric_axis = _is_metric_axis(axis)

            for run in runs:
                run_rows = by_run.get(run.id, [])
                if not metric_axis:
                    for row in run_rows:
                        if row.datetime is not None:
                            first_bucket_time.setdefault(run.id, row.datetime)
                            break
                label = grouped_by[run.id]

                if isinstance(axis, VerticalAxisErrors):
                    series.append(
                        ChartSeries(
                            name=f"{label} errors",
                            color=ERROR_COLOR,
                            y_axis_id=axis.y_axis_id,
                            unit=unit,
                            run_id=run.id,
                            points=normalize_error_rows(
                                run_rows, label, run.cluster_version, request.baseline
                            ),
                        )
                    )
                    continue

                if metric_axis and not run_rows:
                    continue
                series.append(
                    ChartSeries(
                        name=f"{label} {key}",
                        color=sp.next_shade(),
                        y_axis_id=axis.y_axis_id,
                        unit=unit,
                        run_id=run.id,
                        points=normalize_series_rows(
                            run_rows, label, unit, run.cluster_version, request.baseline
                        ),
                    )
                )

        annotations = await self._annotations(runs, request.annotations, first_bucket_time)

        return GraphResponse(
            type="line",
            intent=to_dict(intent),
            baseline_cluster_version=request.baseline,
            series=series,
            runs=summaries,
            annotations=annotations,
        )

    async def _annotations(
        self,
        runs: List[Run],
        requested: List[RunEventsAnnotation],
        first_bucket_time: Dict[str, dt.datetime],
    ) -> Dict[str, Any]:
        annotations: Dict[str, Any] = {}
        for ann in requested:
            if ann.type != "run-events":
                raise UnsupportedOperationError(f"Unsupported annotation type {ann.type}")
            per_run = await asyncio.gather(
                *(
                    self._bounded(
                        self._store.fetch_events(
                            run.id,
                            display_on_graph_only=True,
                            first_bucket_time=first_bucket_time.get(run.id),
                        )
                    )
                    for run in runs
                )
            )
            for events in per_run:
                for i, event in enumerate(events):
                    x = event.time_offset_secs
                    annotations[str(uuid.uuid4())] = {
                        "type": "line",
                        "label": {
                            "display": True,
                            "content": event.params.get("description") or event.params.get("type"),
                            "yAdjust": i * 40,
                        },
                        "xMin": x,
                        "xMax": x,
                    }
        return annotations

    # ========================================================================
    # Selection helpers
    # ========================================================================

    async def get_filtered(self, axis_field: str) -> Filtered:
        """Options still available once ``axis_field`` is chosen as the horizontal axis."""
        axis_field = validate_axis_field(axis_field)
        path = axis_field.split(".")
        params_list = await self._bounded(self._store.fetch_raw_params())

        values: Dict[str, None] = {}
        sections: Dict[str, Dict[str, None]] = {
            "cluster": {},
            "impl": {},
            "workload": {},
            "vars": {},
        }
        vars_by_workload: Dict[str, Dict[str, None]] = {}

        for params in params_list:
            value = parse_from(params, path)
            if value:
                values[value] = None

            doc = copy.deepcopy(params)
            remove_path(doc, path)
            rendered = {
                name: json.dumps(doc.get(name), sort_keys=True) for name in sections
            }
            for name, text in rendered.items():
                sections[name][text] = None
            vars_by_workload.setdefault(rendered["workload"], {})[rendered["vars"]] = None

        return Filtered(
            axis_field=axis_field,
            values=sorted(values, key=sort_key),
            clusters=list(sections["cluster"]),
            workloads=list(sections["workload"]),
            impls=list(sections["impl"]),
            vars=list(sections["vars"]),
            vars_by_workload={k: list(v) for k, v in vars_by_workload.items()},
        )

    async def get_group_by(self) -> List[str]:
        params_list = await self._bounded(self._store.fetch_raw_params())
        keys: Dict[str, None] = {}
        for params in params_list:
            for path in leaf_paths(params):
                keys[path] = None
        return list(keys)

    async def get_available_metrics(self) -> List[str]:
        return await self._bounded(self._store.fetch_metric_names())

    # ========================================================================
    # Alerts
    # ========================================================================

    async def gen_metrics(self, query: MetricsQuery) -> List[MetricsAlert]:
        """Alerts from the fixed catalogue for one SDK language, in catalogue order."""
        per_rule = await asyncio.gather(
            *(
                self._bounded(self._store.fetch_metric_alerts(rule, query.language))
                for rule in METRIC_ALERT_RULES
            )
        )
        out = [alert for alerts in per_rule for alert in alerts]
        logger.info("%d total alerts for %s", len(out), query.language)
        return out

    # ========================================================================
    # Situational runs
    # ========================================================================

    async def gen_situational_runs(self) -> List[SituationalRun]:
        return await self._bounded(self._store.fetch_situational_runs())

    async def gen_situational_run(self, query: SituationalRunQuery) -> SituationalRunResults:
        runs = await self._bounded(self._store.fetch_situational_run(query.situational_run_id))
        if not runs:
            raise NotFoundError(f"Situational run {query.situational_run_id} not found")
        return SituationalRunResults(situational_run_id=query.situational_run_id, runs=runs)

    async def gen_situational_run_run(
        self, query: SituationalRunAndRunQuery
    ) -> SituationalRunResults:
        runs = await self._bounded(
            self._store.fetch_situational_run(query.situational_run_id, query.run_id)
        )
        if not runs:
            raise NotFoundError(
                f"Run {query.run_id} not found in situational run {query.situational_run_id}"
            )
        return SituationalRunResults(situational_run_id=query.situational_run_id, runs=runs)

    async def _situational_events(self, query: SituationalRunAndRunQuery) -> List[RunEvent]:
        membership, buckets = await asyncio.gather(
            self._bounded(
                self._store.fetch_situational_run(query.situational_run_id, query.run_id)
            ),
            self._bounded(self._store.fetch_run_buckets(query.run_id)),
        )
        if not membership:
            raise NotFoundError(
                f"Run {query.run_id} not found in situational run {query.situational_run_id}"
            )
        first_bucket_time = buckets[0].get("datetime") if buckets else None
        return await self._bounded(
            self._store.fetch_events(query.run_id, first_bucket_time=first_bucket_time)
        )

    async def gen_situational_run_run_events(
        self, query: SituationalRunAndRunQuery
    ) -> List[RunEvent]:
        return await self._situational_events(query)

    async def gen_situational_run_run_errors_summary(
        self, query: SituationalRunAndRunQuery
    ) -> List[ErrorSummary]:
        """SDK errors of one run, grouped by name with the first exception seen."""
        return summarize_errors(await self._situational_events(query))

    async def gen_situational_run_detail(
        self, query: SituationalRunAndRunQuery
    ) -> Tuple[SituationalRunResults, List[RunEvent], List[ErrorSummary]]:
        """One run of a situational run with its event timeline and error summary."""
        details, events = await asyncio.gather(
            self.gen_situational_run_run(query), self._situational_events(query)
        )
        return details, events, summarize_errors(events)

    # ========================================================================
    # Run detail
    # ========================================================================

    async def get_run(self, run_id: str) -> Run:
        runs = await self._bounded(self._store.fetch_runs_by_ids([run_id]))
        if not runs:
            raise NotFoundError(f"Run with ID {run_id} not found.")
        return runs[0]

    async def get_run_buckets(self, run_id: str) -> List[Dict[str, Any]]:
        return await self._bounded(self._store.fetch_run_buckets(run_id))

    async def get_run_metrics(self, run_id: str) -> List[Dict[str, Any]]:
        return await self._bounded(self._store.fetch_run_metrics(run_id))

    async def get_run_summary(
        self, run_ids: Sequence[str], trimming_seconds: Optional[float] = None
    ) -> Dict[str, Dict[str, Any]]:
        trim = settings.DEFAULT_TRIMMING_SECONDS if trimming_seconds is None else trimming_seconds
        return await self._bounded(self._store.fetch_run_summary(list(run_ids), trim))

    async def get_run_detail(self, run_id: str) -> Tuple[Run, Dict[str, Any]]:
        """A run with its post-trimming summary statistics."""
        run, summary = await asyncio.gather(
            self.get_run(run_id), self.get_run_summary([run_id])
        )
        return run, summary.get(run_id, {})

    async def get_multiple_runs(
        self, run_ids: Sequence[str]
    ) -> Tuple[List[Run], Dict[str, Dict[str, Any]]]:
        """Runs by id together with their post-trimming summaries."""
        runs, summary = await asyncio.gather(
            self._bounded(self._store.fetch_runs_by_ids(list(run_ids))),
            self.get_run_summary(run_ids),
        )
        return runs, summary

    async def get_version_runs(
        self,
        version: str,
        *,
        sdk: str = "Java",
        metric: str = DEFAULT_COLUMN,
        run_ids: Optional[Sequence[str]] = None,
        horizontal_scaling: Optional[str] = None,
        system_metric: Optional[str] = None,
        transaction_threads: Optional[str] = None,
        reactive_api: Optional[str] = None,
    ) -> VersionRuns:
        """
        The runs behind one bar of a drill-down chart.

        The chart is rebuilt from the drill-down parameters so the table and
        the bar agree: ``aggregated_value`` is the bar for ``version`` and each
        run's ``metric_value`` is taken from a summary trimmed the same way.
        Explicit ``run_ids`` replace the version lookup for the table only.
        """
        base = build_input_for_version(
            sdk,
            metric,
            horizontal_scaling=horizontal_scaling,
            system_metric=system_metric,
            transaction_threads=transaction_threads,
            reactive_api=reactive_api,
        )

        if run_ids:
            graph, runs = await asyncio.gather(
                self.gen_graph(base),
                self._bounded(self._store.fetch_runs_by_ids(list(run_ids))),
            )
        else:
            impl = dict(base.database_compare.impl or {})
            impl["version"] = version
            scoped = base.model_copy(
                update={"database_compare": base.database_compare.model_copy(update={"impl": impl})}
            )
            graph = await self.gen_graph(scoped)
            # The horizontal-axis field is dropped from the match, so version
            # charts still return every version.
            runs = [
                project_run({"id": r.id, "datetime": r.datetime, "params": r.params})
                for r in graph.runs
            ]
            runs = [run for run in runs if run.version == version]

        aggregated = _bar_value(graph, version)
        summary = await self.get_run_summary([run.id for run in runs], base.trimming_seconds)

        rows = [
            VersionRun(
                id=run.id,
                datetime=run.datetime,
                params=run.params,
                language=run.language or sdk,
                version=run.version or version,
                sdk=run.language or sdk,
                cluster_version=run.cluster_version or "",
                workload=run.first_operation,
                metric_value=summary_metric_value(summary.get(run.id), metric),
            )
            for run in runs
        ]

        values = [row.metric_value for row in rows if row.metric_value is not None]
        logger.debug(
            "Version %s %s: chart=%s mean of %d runs=%s",
            version,
            metric,
            aggregated,
            len(values),
            sum(values) / len(values) if values else None,
        )
        return VersionRuns(
            version=version,
            metric=metric,
            aggregated_value=aggregated,
            trimming_seconds=base.trimming_seconds,
            count=len(rows),
            runs=rows,
        )

    # ========================================================================
    # Version and run selectors
    # ========================================================================

    async def get_distinct_sdk_versions(
        self, exclude_snapshots: bool = False, exclude_gerrit: bool = False
    ) -> List[str]:
        versions = await self._bounded(
            self._store.fetch_distinct_versions(
                "impl", exclude_snapshots=exclude_snapshots, exclude_gerrit=exclude_gerrit
            )
        )
        return sorted(versions, key=sort_key)

    async def get_distinct_cluster_versions(self) -> List[str]:
        versions = await self._bounded(self._store.fetch_distinct_versions("cluster"))
        return sorted(versions, key=sort_key)

    async def get_runs_filtered(
        self,
        sdk: Optional[str] = None,
        *,
        exclude_snapshots: bool = False,
        exclude_gerrit: bool = False,
        limit: Optional[int] = None,
    ) -> List[Run]:
        """Runs of one SDK, newest first, after the snapshot/Gerrit exclusions."""
        runs = await self._bounded(self._store.fetch_runs_for_language(sdk))
        runs = filter_runs(runs, exclude_gerrit=exclude_gerrit, exclude_snapshots=exclude_snapshots)
        if limit is not None and limit >= 0:
            runs = runs[:limit]
        return runs


def summarize_errors(events: Sequence[RunEvent]) -> List[ErrorSummary]:
    """Situational SDK errors grouped by name, keeping the first exception seen."""
    summary: Dict[str, ErrorSummary] = {}
    for event in events:
        if event.params.get("type") != SITUATIONAL_ERROR_EVENT:
            continue
        name = str(event.params.get("name"))
        if name in summary:
            summary[name].count += 1
        else:
            summary[name] = ErrorSummary(name=name, first=event.params.get("exception"), count=1)
    return list(summary.values())
