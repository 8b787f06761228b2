"""
API routes for dashboard charts and selection helpers.

Bodies are validated before the dashboard service (and with it the pool) is
touched, so malformed requests never reach the database.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Query

from perfdash.core import validation
from perfdash.core.input_builders import DEFAULT_COLUMN, build_input_for_version
from perfdash.core.service_provider import get_dashboard_service
from perfdash.models.dashboard import DashboardInput
from perfdash.models.results import (
    ErrorSummary,
    Filtered,
    GraphResponse,
    MetricsAlert,
    RunEvent,
    SituationalRun,
    SituationalRunResults,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# ============================================================================
# GET
# ============================================================================


@router.get("/filtered", response_model=Filtered)
async def filtered(h_axis: Optional[str] = Query(None, alias="hAxis")) -> Filtered:
    """Selectable options once ``hAxis`` is chosen as the horizontal axis."""
    axis_field = validation.validate_axis_field(h_axis)
    service = await get_dashboard_service()
    return await service.get_filtered(axis_field)


@router.get("/groupByOptions")
async def group_by_options() -> List[str]:
    service = await get_dashboard_service()
    return await service.get_group_by()


@router.get("/metrics")
async def available_metrics() -> List[str]:
    service = await get_dashboard_service()
    return await service.get_available_metrics()


@router.get("/situationalRuns", response_model=List[SituationalRun])
async def situational_runs() -> List[SituationalRun]:
    service = await get_dashboard_service()
    return await service.gen_situational_runs()


@router.get("/versionInput", response_model=DashboardInput)
async def version_input(
    sdk: str = Query("Java"),
    metric: str = Query(DEFAULT_COLUMN),
    horizontal_scaling: Optional[str] = Query(None, alias="horizontalScaling"),
    system_metric: Optional[str] = Query(None, alias="systemMetric"),
    transaction_threads: Optional[str] = Query(None, alias="transactionThreads"),
    reactive_api: Optional[str] = Query(None, alias="reactiveAPI"),
) -> DashboardInput:
    """The chart request behind a drill-down link, for one SDK."""
    return build_input_for_version(
        sdk,
        metric,
        horizontal_scaling=horizontal_scaling,
        system_metric=system_metric,
        transaction_threads=transaction_threads,
        reactive_api=reactive_api,
    )


# ============================================================================
# POST
# ============================================================================


@router.post("/query", response_model=GraphResponse)
async def query(body: Any = Body(None)) -> GraphResponse:
    input = validation.validate_dashboard_input(body)
    service = await get_dashboard_service()
    return await service.gen_graph(input)


@router.post("/single", response_model=GraphResponse)
async def single(body: Any = Body(None)) -> GraphResponse:
    single_input = validation.validate_single_input(body)
    service = await get_dashboard_service()
    return await service.gen_single(single_input)


@router.post("/situationalRun", response_model=SituationalRunResults)
async def situational_run(body: Any = Body(None)) -> SituationalRunResults:
    q = validation.validate_situational_run_query(body)
    service = await get_dashboard_service()
    return await service.gen_situational_run(q)


@router.post("/situationalRunRun", response_model=SituationalRunResults)
async def situational_run_run(body: Any = Body(None)) -> SituationalRunResults:
    q = validation.validate_situational_run_and_run_query(body)
    service = await get_dashboard_service()
    return await service.gen_situational_run_run(q)


@router.post("/situationalRunRunErrorsSummary", response_model=List[ErrorSummary])
async def situational_run_run_errors_summary(body: Any = Body(None)) -> List[ErrorSummary]:
    q = validation.validate_situational_run_and_run_query(body)
    service = await get_dashboard_service()
    return await service.gen_situational_run_run_errors_summary(q)


@router.post("/situationalRunRunEvents", response_model=List[RunEvent])
async def situational_run_run_events(body: Any = Body(None)) -> List[RunEvent]:
    q = validation.validate_situational_run_and_run_query(body)
    service = await get_dashboard_service()
    return await service.gen_situational_run_run_events(q)


@router.post("/metrics", response_model=List[MetricsAlert])
async def metrics_alerts(body: Any = Body(None)) -> List[MetricsAlert]:
    q = validation.validate_metrics_query(body)
    service = await get_dashboard_service()
    alerts = await service.gen_metrics(q)
    logger.debug("Returning %d alerts for %s", len(alerts), q.language)
    return alerts
