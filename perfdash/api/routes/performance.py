"""
API routes feeding the SDK version, cluster version and run selectors.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Query

from perfdash.core.errors import ValidationError
from perfdash.core.service_provider import get_dashboard_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/runs")
async def performance_runs(
    action: Optional[str] = Query(None),
    sdk: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=0),
    exclude_snapshots: bool = Query(False, alias="excludeSnapshots"),
    exclude_gerrit: bool = Query(False, alias="excludeGerrit"),
) -> Union[List[str], List[Dict[str, Any]]]:
    """
    ``action=clusters`` lists cluster versions, ``action=versions`` lists SDK
    versions; otherwise ``sdk`` is required and that SDK's runs are listed
    newest first.
    """
    if action not in ("clusters", "versions") and not sdk:
        raise ValidationError(["Missing required parameters"])

    service = await get_dashboard_service()
    if action == "clusters":
        return await service.get_distinct_cluster_versions()
    if action == "versions":
        return await service.get_distinct_sdk_versions(exclude_snapshots, exclude_gerrit)

    runs = await service.get_runs_filtered(
        sdk,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
        limit=limit,
    )
    logger.debug("performance_runs sdk=%s matched %d runs", sdk, len(runs))
    return [
        {
            "id": run.id,
            "datetime": run.datetime.isoformat() if run.datetime else None,
            "status": "completed",
            "impl": run.impl,
            "cluster": run.cluster,
            "workload": run.workload,
            "vars": run.vars,
            "params": run.params,
        }
        for run in runs
    ]
