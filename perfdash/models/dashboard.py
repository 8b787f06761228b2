"""
Dashboard Request Models

Defines Pydantic models for the chart requests accepted by the dashboard:
- Horizontal/vertical axis specifications
- Run selection (databaseCompare) and filtering options
- Single-run and situational-run queries

Field names are snake_case in Python and camelCase on the wire.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GraphType(str, Enum):
    """Chart shape."""

    # Bar chart over an aggregated view of the bucket data
    SIMPLIFIED = "Simplified"
    # Line chart over the raw (optionally re-bucketised) data
    FULL = "Full"


class MultipleResultsHandling(str, Enum):
    """How a Simplified chart shows several runs that land on the same bar."""

    SIDE_BY_SIDE = "Side-by-Side"
    MERGED = "Merged"


class MergingAlgorithm(str, Enum):
    """Statistical reducer used when collapsing samples or runs."""

    AVERAGE = "Average"
    SUM = "Sum"
    MAXIMUM = "Maximum"
    MINIMUM = "Minimum"


class FilterRuns(str, Enum):
    """Post-match filtering of runs."""

    ALL = "All"
    # Keep only the highest version per SDK language (Gerrit versions skipped)
    LATEST = "Latest"
    # As LATEST, also skipping snapshot versions
    LATEST_NON_SNAPSHOT = "LatestNonSnapshot"


class ResultType(str, Enum):
    """Type of the horizontal-axis values, used for ordering."""

    VERSION_SEMVER = "VersionSemver"
    INTEGER = "Integer"
    STRING = "String"


class HorizontalAxisDynamic(CamelModel):
    """X-axis drawn from any field of the run params document, e.g. ``impl.version``."""

    type: Literal["dynamic"] = "dynamic"
    database_field: str = Field(..., description="Dotted path into run params")
    result_type: ResultType = Field(
        ResultType.VERSION_SEMVER, description="Value type, controls ordering"
    )
    title: Optional[str] = None

    @property
    def path(self) -> List[str]:
        return [part for part in self.database_field.split(".") if part]


class VerticalAxisBuckets(CamelModel):
    """A column of the buckets table."""

    type: Literal["buckets"] = "buckets"
    column: str = Field(
        ...,
        validation_alias=AliasChoices("column", "databaseField", "database_field"),
        description="Bucket column, e.g. duration_average_us",
    )
    y_axis_id: str = Field("y", alias="yAxisID")
    title: Optional[str] = None


class VerticalAxisMetric(CamelModel):
    """One key of the metrics document."""

    type: Literal["metric"] = "metric"
    metric: str = Field(..., description="Metric key, e.g. processCpu")
    y_axis_id: str = Field("y", alias="yAxisID")
    title: Optional[str] = None


class VerticalAxisErrors(CamelModel):
    """Per-bucket error counts."""

    type: Literal["errors"] = "errors"
    y_axis_id: str = Field("y", alias="yAxisID")
    title: Optional[str] = None


YAxis = Annotated[
    Union[VerticalAxisBuckets, VerticalAxisMetric, VerticalAxisErrors],
    Field(discriminator="type"),
]


class DatabaseCompare(CamelModel):
    """
    Run selection criteria.

    Each section is compared against the matching section of the run params
    document; a run matches when its params are a superset. A key whose value
    is ``None`` excludes runs that define that key at all.
    """

    cluster: Optional[Dict[str, Any]] = None
    impl: Optional[Dict[str, Any]] = None
    workload: Optional[Dict[str, Any]] = None
    vars: Optional[Dict[str, Any]] = None

    def sections(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name in ("cluster", "impl", "workload", "vars"):
            value = getattr(self, name)
            if value is not None:
                out[name] = dict(value)
        return out


class RunEventsAnnotation(CamelModel):
    """Overlay run_events entries on a Full chart."""

    type: Literal["run-events"] = "run-events"


class DashboardInput(CamelModel):
    """
    The main chart request.

    Every graph on the dashboard is described by one of these.
    """

    h_axis: HorizontalAxisDynamic
    y_axes: List[YAxis] = Field(..., min_length=1)
    database_compare: DatabaseCompare
    graph_type: GraphType

    # Only apply when graph_type == SIMPLIFIED
    multiple_results_handling: MultipleResultsHandling = MultipleResultsHandling.MERGED
    # Kept as a free string: upstream sends enum labels inconsistently.
    merging_type: Optional[str] = None

    # Seconds trimmed from the start of each run (warm-up exclusion)
    trimming_seconds: float
    # Re-bucketise Full charts into windows of this many seconds
    bucketise_seconds: Optional[int] = None

    exclude_snapshots: bool = False
    exclude_gerrit: bool = False
    filter_runs: FilterRuns = FilterRuns.ALL

    # Only supported on Full charts
    annotations: List[RunEventsAnnotation] = Field(default_factory=list)

    baseline_cluster_version: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


class SingleRunInput(CamelModel):
    """Full chart for one run."""

    run_id: str
    y_axes: List[YAxis] = Field(..., min_length=1)
    trimming_seconds: float
    merging_type: Optional[str] = None
    bucketise_seconds: Optional[int] = None
    annotations: List[RunEventsAnnotation] = Field(default_factory=list)


class MetricsQuery(CamelModel):
    language: str


class SituationalRunQuery(CamelModel):
    situational_run_id: str


class SituationalRunAndRunQuery(CamelModel):
    situational_run_id: str
    run_id: str
