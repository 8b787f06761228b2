"""
Canned dashboard requests.

The home page charts are all variations on a handful of shapes: a KV
operation per SDK version, a system metric, horizontal scaling, transactions
and the reactive API. ``build_input_for_version`` maps drill-down query
parameters (see ``query_intent.to_query_params``) back onto one of them.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Literal, Optional

from perfdash.config import settings
from perfdash.models.dashboard import DashboardInput

logger = logging.getLogger(__name__)

KvOp = Literal["get", "replace", "insert"]
ApiType = Literal["DEFAULT", "ASYNC"]

DEFAULT_COLUMN = "duration_average_us"
DEFAULT_TRIMMING_SECONDS = 20

DEFAULT_CLUSTER: Dict[str, Any] = {
    "type": "unmanaged",
    "memory": 28000,
    "storage": "couchstore",
    "version": "7.1.1-3175-enterprise",
    "cpuCount": 16,
    "replicas": 0,
    "nodeCount": 1,
    "connectionString": "couchbase://localhost",
}

DEFAULT_VARS_WITHOUT_HORIZONTAL_SCALING: Dict[str, Any] = {
    # Bumped whenever driver logic changes enough to move results.
    "driverVer": 6,
    "forSeconds": 300,
    "performerVer": 1,
    "api": "DEFAULT",
    # None excludes runs that define experimentName at all.
    "experimentName": None,
}

DEFAULT_QUERY_VARS: Dict[str, Any] = {
    **DEFAULT_VARS_WITHOUT_HORIZONTAL_SCALING,
    "horizontalScaling": 20,
}

_POOL_DOC_LOCATION = {
    "method": "pool",
    "poolSize": "$poolSize",
    "poolSelectionStrategy": "randomUniform",
}
_BOUNDS = {"forSeconds": "$forSeconds"}

DEFAULT_WORKLOADS: Dict[str, Dict[str, Any]] = {
    "get": {
        "operations": [
            {"op": "get", "bounds": _BOUNDS, "docLocation": _POOL_DOC_LOCATION}
        ]
    },
    "replace": {
        "operations": [
            {
                "op": "replace",
                "bounds": _BOUNDS,
                "docLocation": {
                    "method": "pool",
                    "poolSize": "$poolSize",
                    "poolSelectionStrategy": "counter",
                },
            }
        ]
    },
    "insert": {
        "operations": [
            {"op": "insert", "bounds": _BOUNDS, "docLocation": {"method": "uuid"}}
        ]
    },
}

TRANSACTION_WORKLOAD: Dict[str, Any] = {
    "operations": [
        {
            "transaction": {
                "ops": [
                    {"op": "replace", "docLocation": _POOL_DOC_LOCATION},
                    {"op": "insert", "docLocation": {"method": "uuid"}},
                ],
                "bounds": _BOUNDS,
            }
        }
    ]
}

READ_ONLY_TRANSACTION_WORKLOAD: Dict[str, Any] = {
    "operations": [
        {
            "transaction": {
                "ops": [{"op": "get", "docLocation": _POOL_DOC_LOCATION}],
                "bounds": _BOUNDS,
            }
        }
    ]
}

# Display names that differ from impl.language in the database.
LANGUAGE_MAP = {"Node.js": "Node"}


def _language(sdk: str) -> str:
    return LANGUAGE_MAP.get(sdk, sdk)


def _cluster(cluster_version: Optional[str]) -> Dict[str, Any]:
    cluster = dict(DEFAULT_CLUSTER)
    version = (cluster_version or "").strip()
    cluster["version"] = version or settings.DEFAULT_BASELINE_CLUSTER_VERSION
    return cluster


def _vars_without_experiment() -> Dict[str, Any]:
    return {k: v for k, v in DEFAULT_VARS_WITHOUT_HORIZONTAL_SCALING.items() if k != "experimentName"}


def _input(
    *,
    sdk: str,
    y_axis: Dict[str, Any],
    workload: Dict[str, Any],
    vars: Dict[str, Any],
    cluster_version: Optional[str],
    exclude_snapshots: bool,
    exclude_gerrit: bool,
    database_field: str = "impl.version",
    result_type: str = "VersionSemver",
    merging_type: str = "Average",
    filter_runs: str = "All",
) -> DashboardInput:
    return DashboardInput.model_validate(
        {
            "hAxis": {"type": "dynamic", "databaseField": database_field, "resultType": result_type},
            "yAxes": [{**y_axis, "yAxisID": "y"}],
            "databaseCompare": {
                "cluster": _cluster(cluster_version),
                "impl": {"language": _language(sdk)},
                "workload": copy.deepcopy(workload),
                "vars": vars,
            },
            "graphType": "Simplified",
            "multipleResultsHandling": "Merged",
            "mergingType": merging_type,
            "trimmingSeconds": DEFAULT_TRIMMING_SECONDS,
            "excludeSnapshots": exclude_snapshots,
            "excludeGerrit": exclude_gerrit,
            "filterRuns": filter_runs,
            "annotations": [],
        }
    )


def create_kv_op_input(
    sdk: str,
    op: KvOp,
    *,
    exclude_snapshots: bool = False,
    exclude_gerrit: bool = True,
    column: str = DEFAULT_COLUMN,
    cluster_version: Optional[str] = None,
) -> DashboardInput:
    """One KV operation across SDK versions."""
    vars = dict(DEFAULT_QUERY_VARS)
    if op == "insert":
        vars = {"docNum": 10000000, **vars}
    return _input(
        sdk=sdk,
        y_axis={"type": "buckets", "column": column},
        workload=DEFAULT_WORKLOADS[op],
        vars=vars,
        cluster_version=cluster_version,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
    )


def create_system_metric_input(
    sdk: str,
    metric: str,
    *,
    exclude_snapshots: bool = False,
    exclude_gerrit: bool = True,
    cluster_version: Optional[str] = None,
) -> DashboardInput:
    """
    A system metric across SDK versions, sampled during the KV get workload.

    CPU is averaged; memory and thread counts use their peak.
    """
    return _input(
        sdk=sdk,
        y_axis={"type": "metric", "metric": metric},
        workload=DEFAULT_WORKLOADS["get"],
        vars=dict(DEFAULT_QUERY_VARS),
        cluster_version=cluster_version,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
        merging_type="Average" if metric == "processCpu" else "Maximum",
    )


def create_horizontal_scaling_input(
    sdk: str,
    *,
    exclude_snapshots: bool = False,
    exclude_gerrit: bool = True,
    column: str = DEFAULT_COLUMN,
    cluster_version: Optional[str] = None,
) -> DashboardInput:
    """KV gets grouped by concurrency level, latest SDK version only."""
    return _input(
        sdk=sdk,
        y_axis={"type": "buckets", "column": column},
        workload=DEFAULT_WORKLOADS["get"],
        vars={"poolSize": 10000, **_vars_without_experiment(), "experimentName": "horizontalScaling"},
        cluster_version=cluster_version,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
        database_field="vars.horizontalScaling",
        result_type="Integer",
        filter_runs="Latest",
    )


def create_transaction_input(
    sdk: str,
    threads: int,
    *,
    exclude_snapshots: bool = False,
    exclude_gerrit: bool = True,
    cluster_version: Optional[str] = None,
) -> DashboardInput:
    """Replace+insert transaction throughput at ``threads`` concurrency."""
    return _input(
        sdk=sdk,
        y_axis={"type": "buckets", "column": "operations_total"},
        workload=TRANSACTION_WORKLOAD,
        vars={"horizontalScaling": threads},
        cluster_version=cluster_version,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
    )


def create_read_only_transaction_input(
    sdk: str,
    threads: int,
    *,
    exclude_snapshots: bool = False,
    exclude_gerrit: bool = True,
    cluster_version: Optional[str] = None,
) -> DashboardInput:
    return _input(
        sdk=sdk,
        y_axis={"type": "buckets", "column": DEFAULT_COLUMN},
        workload=READ_ONLY_TRANSACTION_WORKLOAD,
        vars={"horizontalScaling": threads},
        cluster_version=cluster_version,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
    )


def create_reactive_api_input(
    sdk: str,
    api_type: ApiType = "DEFAULT",
    *,
    exclude_snapshots: bool = False,
    exclude_gerrit: bool = True,
    cluster_version: Optional[str] = None,
) -> DashboardInput:
    return _input(
        sdk=sdk,
        y_axis={"type": "buckets", "column": DEFAULT_COLUMN},
        workload=DEFAULT_WORKLOADS["get"],
        vars={"poolSize": 10000, **DEFAULT_QUERY_VARS, "api": api_type},
        cluster_version=cluster_version,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
    )


def create_reactive_horizontal_scaling_input(
    sdk: str,
    *,
    exclude_snapshots: bool = False,
    exclude_gerrit: bool = True,
    cluster_version: Optional[str] = None,
) -> DashboardInput:
    return _input(
        sdk=sdk,
        y_axis={"type": "buckets", "column": DEFAULT_COLUMN},
        workload=DEFAULT_WORKLOADS["get"],
        vars={
            "poolSize": 10000,
            **_vars_without_experiment(),
            "experimentName": "horizontalScaling",
            "api": "ASYNC",
        },
        cluster_version=cluster_version,
        exclude_snapshots=exclude_snapshots,
        exclude_gerrit=exclude_gerrit,
        database_field="vars.horizontalScaling",
        result_type="Integer",
        filter_runs="Latest",
    )


def _threads(value: Any) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        return 1


def build_input_for_version(
    sdk: str,
    metric: str = DEFAULT_COLUMN,
    *,
    horizontal_scaling: Optional[str] = None,
    system_metric: Optional[str] = None,
    transaction_threads: Optional[str] = None,
    reactive_api: Optional[str] = None,
) -> DashboardInput:
    """Rebuild the chart request behind a drill-down link."""
    logger.debug(
        "build_input_for_version sdk=%s metric=%s hs=%s sm=%s tx=%s reactive=%s",
        sdk,
        metric,
        horizontal_scaling,
        system_metric,
        transaction_threads,
        reactive_api,
    )
    if horizontal_scaling:
        return create_horizontal_scaling_input(sdk)

    if system_metric:
        if "duration_" in metric or "operations_" in metric:
            return create_kv_op_input(sdk, "get", column=metric)
        return create_system_metric_input(sdk, system_metric)

    if transaction_threads:
        if "duration_" in metric:
            return create_kv_op_input(sdk, "get", column=metric)
        threads = _threads(transaction_threads)
        if "operations" in metric:
            return create_read_only_transaction_input(sdk, threads)
        return create_transaction_input(sdk, threads)

    if reactive_api:
        return create_reactive_api_input(sdk, "DEFAULT")

    return create_kv_op_input(sdk, "get", column=metric)
