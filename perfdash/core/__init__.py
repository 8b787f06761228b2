"""
Dashboard Core

Query synthesis, intent classification, result normalization and the
DashboardService façade that orchestrates them.

Usage:
    from perfdash.core import DashboardService, RunStore

    service = DashboardService(RunStore(executor))
    response = await service.gen_graph(input)
"""

from perfdash.core.dashboard_service import DashboardService, filter_runs
from perfdash.core.errors import (
    DashboardError,
    NotFoundError,
    QueryExecutionError,
    UnsupportedOperationError,
    ValidationError,
)
from perfdash.core.run_store import QueryExecutor, RunStore

__all__ = [
    "DashboardService",
    "filter_runs",
    "DashboardError",
    "NotFoundError",
    "QueryExecutionError",
    "UnsupportedOperationError",
    "ValidationError",
    "QueryExecutor",
    "RunStore",
]
