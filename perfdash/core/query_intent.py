"""
Query-Intent Classifier

Works out what kind of question a chart request is asking, so the dashboard
can pick the matching query shape and build drill-down links:

- KvOperation: plain key-value latency/throughput by SDK version (default)
- HorizontalScaling: the horizontalScaling experiment
- ReactiveApi: runs against the async API
- SystemMetric(metric): process CPU, heap or thread count
- Transaction(threads): transaction workloads

Tie-break order, first match wins:
horizontalScaling -> systemMetric -> transaction -> reactiveAPI -> kvOperation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

SYSTEM_METRICS = ("processCpu", "memHeapUsedMB", "threadCount")
DEFAULT_SYSTEM_METRIC = "processCpu"

_THREADS_IN_TITLE = re.compile(r"(\d+)\s*thread", re.IGNORECASE)


@dataclass(frozen=True)
class KvOperation:
    kind: str = "kvOperation"


@dataclass(frozen=True)
class HorizontalScaling:
    kind: str = "horizontalScaling"


@dataclass(frozen=True)
class ReactiveApi:
    kind: str = "reactiveAPI"


@dataclass(frozen=True)
class SystemMetric:
    metric: str = DEFAULT_SYSTEM_METRIC
    kind: str = "systemMetric"


@dataclass(frozen=True)
class Transaction:
    threads: int = 1
    kind: str = "transaction"


QueryIntent = Union[KvOperation, HorizontalScaling, ReactiveApi, SystemMetric, Transaction]


def _get(source: Any, *names: str) -> Any:
    """Read the first present attribute or key of ``source``."""
    if source is None:
        return None
    for name in names:
        if isinstance(source, Mapping):
            if name in source:
                return source[name]
        elif hasattr(source, name):
            return getattr(source, name)
    return None


def _axis_column(axis: Any) -> Optional[str]:
    value = _get(axis, "column", "metric", "databaseField", "database_field")
    return value if isinstance(value, str) else None


def _as_int(value: Any, default: int = 1) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _has_transaction_ops(workload: Any) -> bool:
    operations = _get(workload, "operations")
    if not isinstance(operations, list):
        return False
    for op in operations:
        transaction = _get(op, "transaction")
        if transaction and _get(transaction, "ops"):
            return True
    return False


def classify(request: Any, title: Optional[str] = None) -> QueryIntent:
    """
    Classify a chart request.

    ``request`` may be a DashboardInput, or a plain dict in either the request
    shape or a flattened ``{workload, vars, yAxes}`` shape. ``workload`` and
    ``vars`` are read from the top level first, then from databaseCompare.
    When the structured request carries no cue, ``title`` is consulted.
    """
    if request is None:
        return classify_title(title)

    compare = _get(request, "databaseCompare", "database_compare")
    workload = _get(request, "workload") or _get(compare, "workload")
    vars_ = _get(request, "vars") or _get(compare, "vars") or {}
    y_axes = _get(request, "yAxes", "y_axes") or []
    columns = [c for c in (_axis_column(axis) for axis in y_axes) if c]

    if _get(vars_, "horizontalScaling") and _get(vars_, "experimentName") == "horizontalScaling":
        return HorizontalScaling()

    for column in columns:
        if column in SYSTEM_METRICS:
            return SystemMetric(metric=column)

    if _has_transaction_ops(workload) or "operations_total" in columns:
        return Transaction(threads=_as_int(_get(vars_, "horizontalScaling") or 1))

    if _get(vars_, "api") == "ASYNC":
        return ReactiveApi()

    return classify_title(title)


def classify_title(title: Optional[str]) -> QueryIntent:
    """Substring heuristics over a free-text chart title."""
    t = (title or "").lower()
    if "transaction" in t:
        match = _THREADS_IN_TITLE.search(title or "")
        return Transaction(threads=int(match.group(1)) if match else 1)
    if "horizontal" in t or "scaling" in t:
        return HorizontalScaling()
    if "cpu" in t:
        return SystemMetric(metric="processCpu")
    if "memory" in t:
        return SystemMetric(metric="memHeapUsedMB")
    if "thread" in t:
        return SystemMetric(metric="threadCount")
    return KvOperation()


def to_query_params(intent: QueryIntent) -> Dict[str, str]:
    """Drill-down query parameters understood by ``build_input_for_version``."""
    if isinstance(intent, HorizontalScaling):
        return {"horizontalScaling": "true"}
    if isinstance(intent, SystemMetric):
        return {"systemMetric": intent.metric}
    if isinstance(intent, Transaction):
        return {"transactionThreads": str(intent.threads)}
    if isinstance(intent, ReactiveApi):
        return {"reactiveAPI": "true"}
    if isinstance(intent, KvOperation):
        return {}
    raise TypeError(f"Unknown query intent: {intent!r}")


def to_dict(intent: QueryIntent) -> Dict[str, Any]:
    """JSON-friendly form echoed back in graph responses."""
    if isinstance(intent, SystemMetric):
        return {"type": intent.kind, "metric": intent.metric}
    if isinstance(intent, Transaction):
        return {"type": intent.kind, "threads": intent.threads}
    if isinstance(intent, (KvOperation, HorizontalScaling, ReactiveApi)):
        return {"type": intent.kind}
    raise TypeError(f"Unknown query intent: {intent!r}")
