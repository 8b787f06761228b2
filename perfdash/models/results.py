"""
Result Models

Typed projections of database rows and the chart-ready response shapes.
Rows are projected into these once, at the store boundary; defaults for
missing params fields are documented on each model.
"""

import datetime as dt
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from perfdash.models.dashboard import CamelModel


class Run(CamelModel):
    """
    One benchmark run.

    Missing params sections default to empty documents.
    """

    id: str
    datetime: Optional[dt.datetime] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    cluster: Dict[str, Any] = Field(default_factory=dict)
    impl: Dict[str, Any] = Field(default_factory=dict)
    workload: Dict[str, Any] = Field(default_factory=dict)
    vars: Dict[str, Any] = Field(default_factory=dict)
    other: Optional[Any] = None

    @property
    def language(self) -> str:
        return str(self.impl.get("language") or "")

    @property
    def version(self) -> str:
        return str(self.impl.get("version") or "")

    @property
    def cluster_version(self) -> Optional[str]:
        value = self.cluster.get("version")
        return str(value) if value else None

    @property
    def first_operation(self) -> str:
        """The ``op`` of the first workload operation, or ``""``."""
        operations = self.workload.get("operations")
        if isinstance(operations, list) and operations and isinstance(operations[0], dict):
            return str(operations[0].get("op") or "")
        return ""


class RunBucketRow(CamelModel):
    """One bucket (or one bucketised window) of a run."""

    run_id: str
    datetime: Optional[dt.datetime] = None
    time_offset_secs: int = 0
    value: Optional[float] = None
    # {"document_exists (105)": 4, "unambiguous_timeout (14)": 19}
    errors: Dict[str, Any] = Field(default_factory=dict)
    # Window total when bucketised; otherwise summed from ``errors``
    error_count: int = 0
    metrics: Dict[str, Any] = Field(default_factory=dict)


class RunMetricRow(CamelModel):
    """One metrics sample (or bucketised window) of a run."""

    run_id: str
    datetime: Optional[dt.datetime] = None
    time_offset_secs: int = 0
    value: float = 0.0
    metrics: Any = Field(default_factory=dict)


class GroupedResult(CamelModel):
    """One bar of a Simplified chart, before normalization."""

    grouping: str
    value: Optional[float] = None
    run_ids: List[str] = Field(default_factory=list)


class RunEvent(CamelModel):
    datetime: Optional[dt.datetime] = None
    time_offset_secs: int = 0
    params: Dict[str, Any] = Field(default_factory=dict)


class RunDisplayInfo(CamelModel):
    """
    Display metadata derived from a run params document.

    Defaults: ``"-"`` for sdk/version/csp/environment/cluster_version,
    ``False`` for pl, ``None`` for description and ci_url.
    """

    sdk: str = "-"
    version: str = "-"
    csp: str = "-"
    pl: bool = False
    environment: str = "-"
    cluster_version: str = "-"
    description: Optional[str] = None
    ci_url: Optional[str] = None


class SituationalRun(CamelModel):
    situational_run_id: str
    started: Optional[dt.datetime] = None
    score: int = 0
    num_runs: int = 0
    details_of_any_run: Dict[str, Any] = Field(default_factory=dict)
    display: RunDisplayInfo = Field(default_factory=RunDisplayInfo)


class RunAndSituationalScore(CamelModel):
    run_id: str
    started: Optional[dt.datetime] = None
    # e.g. {"impl": {"version": "3.4.4", "language": "Java"}}
    run_params: Dict[str, Any] = Field(default_factory=dict)
    # e.g. {"score": 100}
    srj_params: Dict[str, Any] = Field(default_factory=dict)
    score: int = 0
    display: RunDisplayInfo = Field(default_factory=RunDisplayInfo)


class SituationalRunResults(CamelModel):
    situational_run_id: str
    runs: List[RunAndSituationalScore] = Field(default_factory=list)


class ErrorSummary(CamelModel):
    """First exception seen for an error name, and how often the name occurred."""

    name: str
    first: Any = None
    count: int = 0


class MetricsAlert(CamelModel):
    run_id: str
    datetime: Optional[dt.datetime] = None
    message: str
    version: Optional[str] = None
    language: str


class Filtered(CamelModel):
    """What is available for selection once a horizontal axis is chosen."""

    axis_field: str
    values: List[str] = Field(default_factory=list)
    clusters: List[str] = Field(default_factory=list)
    workloads: List[str] = Field(default_factory=list)
    impls: List[str] = Field(default_factory=list)
    vars: List[str] = Field(default_factory=list)
    vars_by_workload: Dict[str, List[str]] = Field(default_factory=dict)


class ChartSeriesPoint(CamelModel):
    """One point of a chart series; created per response, never persisted."""

    group_key: str
    value: Optional[float] = None
    run_ids: List[str] = Field(default_factory=list)
    unit: str = ""
    cluster_version: Optional[str] = None
    is_baseline: Optional[bool] = None
    has_different_cluster_version: Optional[bool] = None
    # Line charts only
    time_offset_secs: Optional[int] = None
    datetime: Optional[dt.datetime] = None
    errors: Optional[Dict[str, Any]] = None
    # Metrics sample aligned to the bucket, single-run charts only
    metrics: Optional[Dict[str, Any]] = None


class ChartSeries(CamelModel):
    name: str
    color: str
    y_axis_id: str = Field("y", alias="yAxisID")
    unit: str = ""
    run_id: Optional[str] = None
    points: List[ChartSeriesPoint] = Field(default_factory=list)


class RunSummary(CamelModel):
    """Run metadata echoed back with a chart."""

    id: str
    datetime: Optional[dt.datetime] = None
    grouped_by: str = ""
    color: Optional[str] = None
    cluster_version: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)


class GraphResponse(CamelModel):
    type: Literal["bar", "line"]
    intent: Dict[str, Any] = Field(default_factory=dict)
    baseline_cluster_version: Optional[str] = None
    series: List[ChartSeries] = Field(default_factory=list)
    runs: List[RunSummary] = Field(default_factory=list)
    annotations: Dict[str, Any] = Field(default_factory=dict)


class VersionRun(CamelModel):
    """One row of the version drill-down table."""

    id: str
    datetime: Optional[dt.datetime] = None
    status: Literal["completed"] = "completed"
    params: Dict[str, Any] = Field(default_factory=dict)
    language: str = ""
    version: str = ""
    sdk: str = ""
    cluster_version: str = ""
    workload: str = ""
    # Trimmed like the chart; None when the run has no buckets
    metric_value: Optional[float] = None


class VersionRuns(CamelModel):
    version: str
    metric: str
    # The chart's bar for this version
    aggregated_value: Optional[float] = None
    trimming_seconds: float = 0
    count: int = 0
    runs: List[VersionRun] = Field(default_factory=list)
