"""
API routes for situational runs: grouped executions scored as one.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from perfdash.core.service_provider import get_dashboard_service
from perfdash.models.dashboard import SituationalRunAndRunQuery, SituationalRunQuery

router = APIRouter()
logger = logging.getLogger(__name__)


def _dump(model: Any) -> Any:
    return model.model_dump(by_alias=True, mode="json")


@router.get("/runs")
async def list_situational_runs(limit: Optional[int] = Query(None, ge=0)) -> Dict[str, Any]:
    service = await get_dashboard_service()
    runs = await service.gen_situational_runs()
    if limit is not None:
        runs = runs[:limit]
    return {"success": True, "data": [_dump(run) for run in runs]}


@router.get("/{situational_run_id}/runs")
async def situational_run_runs(situational_run_id: str) -> Dict[str, Any]:
    service = await get_dashboard_service()
    results = await service.gen_situational_run(
        SituationalRunQuery(situational_run_id=situational_run_id)
    )
    return {"success": True, "data": [_dump(run) for run in results.runs]}


@router.get("/{situational_run_id}/run/{run_id}")
async def situational_run_run_details(situational_run_id: str, run_id: str) -> Dict[str, Any]:
    """Run details, events timeline and error summary for one run."""
    query = SituationalRunAndRunQuery(situational_run_id=situational_run_id, run_id=run_id)
    logger.info("Getting situational run-run details: %s/%s", situational_run_id, run_id)

    service = await get_dashboard_service()
    details, events, errors_summary = await service.gen_situational_run_detail(query)
    return {
        "success": True,
        "data": {
            "runDetails": _dump(details),
            "events": [_dump(event) for event in events],
            "errorsSummary": [_dump(summary) for summary in errors_summary],
        },
    }
