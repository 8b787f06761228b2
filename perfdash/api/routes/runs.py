"""
API routes for the run detail page and the version drill-down table.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Query

from perfdash.core.errors import NotFoundError, ValidationError
from perfdash.core.input_builders import DEFAULT_COLUMN
from perfdash.core.service_provider import get_dashboard_service
from perfdash.models.results import Run, VersionRuns

router = APIRouter()
logger = logging.getLogger(__name__)

_EMPTY_SUMMARY: Dict[str, Any] = {
    "throughput": 0.0,
    "latency": {"avg": 0.0, "min": 0.0, "max": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0},
    "operations": {"total": 0, "success": 0, "failed": 0},
}


def _run_summary(run: Run, summary: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    summary = summary or _EMPTY_SUMMARY
    return {
        "id": run.id,
        "datetime": run.datetime.isoformat() if run.datetime else None,
        "status": "completed",
        "params": run.params,
        "language": run.language,
        "version": run.version,
        "sdk": run.language,
        "clusterVersion": run.cluster_version or "",
        "workload": run.first_operation,
        "duration": summary["latency"]["avg"],
        "metrics": summary,
    }


def _split_ids(raw: Optional[str]) -> List[str]:
    """Comma-separated ids, trimmed and de-duplicated in order."""
    if not raw:
        return []
    return list(dict.fromkeys(part.strip() for part in raw.split(",") if part.strip()))


@router.post("/multiple")
async def get_multiple_runs(body: Any = Body(None)) -> List[Dict[str, Any]]:
    """Several runs by id, each with its post-trimming summary."""
    run_ids = body.get("runIds") if isinstance(body, dict) else None
    if not isinstance(run_ids, list) or not all(isinstance(i, str) for i in run_ids):
        raise ValidationError(["runIds array is required"])
    if not run_ids:
        raise ValidationError(["runIds array cannot be empty"])

    logger.info("Getting %d runs by ID", len(run_ids))
    service = await get_dashboard_service()
    runs, summaries = await service.get_multiple_runs(run_ids)
    return [_run_summary(run, summaries.get(run.id)) for run in runs]


@router.get("/version/{version:path}", response_model=VersionRuns)
async def get_version_runs(
    version: str,
    sdk: str = Query("Java"),
    metric: str = Query(DEFAULT_COLUMN),
    run_ids: Optional[str] = Query(None, alias="runIds"),
    horizontal_scaling: Optional[str] = Query(None, alias="horizontalScaling"),
    system_metric: Optional[str] = Query(None, alias="systemMetric"),
    transaction_threads: Optional[str] = Query(None, alias="transactionThreads"),
    reactive_api: Optional[str] = Query(None, alias="reactiveAPI"),
) -> VersionRuns:
    """Runs behind one version bar, with the bar value they add up to."""
    ids = _split_ids(run_ids)
    logger.info(
        "Getting runs for version %s (sdk=%s, metric=%s, runIds=%s)",
        version,
        sdk,
        metric,
        len(ids) or "all",
    )
    service = await get_dashboard_service()
    return await service.get_version_runs(
        version,
        sdk=sdk,
        metric=metric,
        run_ids=ids,
        horizontal_scaling=horizontal_scaling,
        system_metric=system_metric,
        transaction_threads=transaction_threads,
        reactive_api=reactive_api,
    )


@router.get("/{run_id}")
async def get_run(run_id: str) -> Dict[str, Any]:
    """One run with its post-trimming latency and throughput summary."""
    logger.info("Getting run by ID %s", run_id)
    service = await get_dashboard_service()
    run, summary = await service.get_run_detail(run_id)
    return {"run": _run_summary(run, summary)}


@router.get("/{run_id}/buckets")
async def get_run_buckets(run_id: str) -> Dict[str, Any]:
    service = await get_dashboard_service()
    buckets = await service.get_run_buckets(run_id)
    if not buckets:
        raise NotFoundError("No bucket data found for this run")
    for bucket in buckets:
        when = bucket.get("datetime")
        if when is not None and hasattr(when, "isoformat"):
            bucket["datetime"] = when.isoformat()
    return {"success": True, "data": buckets}


@router.get("/{run_id}/metrics")
async def get_run_metrics(run_id: str) -> Dict[str, Any]:
    service = await get_dashboard_service()
    return {"success": True, "data": await service.get_run_metrics(run_id)}
