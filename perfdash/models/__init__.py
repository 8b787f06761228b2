"""
Data models for the performance dashboard.

Exports request models (chart specifications) and result models
(typed row projections and chart-ready responses).
"""

from perfdash.models.dashboard import (
    CamelModel,
    DashboardInput,
    DatabaseCompare,
    FilterRuns,
    GraphType,
    HorizontalAxisDynamic,
    MergingAlgorithm,
    MetricsQuery,
    MultipleResultsHandling,
    ResultType,
    RunEventsAnnotation,
    SingleRunInput,
    SituationalRunAndRunQuery,
    SituationalRunQuery,
    VerticalAxisBuckets,
    VerticalAxisErrors,
    VerticalAxisMetric,
    YAxis,
)
from perfdash.models.results import (
    ChartSeries,
    ChartSeriesPoint,
    ErrorSummary,
    Filtered,
    GraphResponse,
    GroupedResult,
    MetricsAlert,
    Run,
    RunAndSituationalScore,
    RunBucketRow,
    RunDisplayInfo,
    RunEvent,
    RunMetricRow,
    RunSummary,
    SituationalRun,
    SituationalRunResults,
)

__all__ = [
    # Requests
    "CamelModel",
    "DashboardInput",
    "DatabaseCompare",
    "FilterRuns",
    "GraphType",
    "HorizontalAxisDynamic",
    "MergingAlgorithm",
    "MetricsQuery",
    "MultipleResultsHandling",
    "ResultType",
    "RunEventsAnnotation",
    "SingleRunInput",
    "SituationalRunAndRunQuery",
    "SituationalRunQuery",
    "VerticalAxisBuckets",
    "VerticalAxisErrors",
    "VerticalAxisMetric",
    "YAxis",
    # Results
    "ChartSeries",
    "ChartSeriesPoint",
    "ErrorSummary",
    "Filtered",
    "GraphResponse",
    "GroupedResult",
    "MetricsAlert",
    "Run",
    "RunAndSituationalScore",
    "RunBucketRow",
    "RunDisplayInfo",
    "RunEvent",
    "RunMetricRow",
    "RunSummary",
    "SituationalRun",
    "SituationalRunResults",
]
