"""
Request validation.

Every check runs before any query is built and all violations are reported
together in one ValidationError.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from perfdash.core.errors import ValidationError
from perfdash.models.dashboard import (
    DashboardInput,
    MetricsQuery,
    SingleRunInput,
    SituationalRunAndRunQuery,
    SituationalRunQuery,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

BODY_NOT_OBJECT = "Request body must be a valid Input object"


def _missing(value: Any) -> bool:
    """Absent, null, false, zero or empty string."""
    if value is None or value is False:
        return True
    if isinstance(value, (int, float, str)) and not value:
        return True
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def _pydantic_details(exc: PydanticValidationError) -> List[str]:
    details = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        details.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return details


def _parse(model: Type[ModelT], body: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError(_pydantic_details(exc)) from exc


def _validate(
    body: Any,
    model: Type[ModelT],
    checks: List[tuple[str, Callable[[Dict[str, Any]], bool]]],
) -> ModelT:
    if not isinstance(body, dict):
        raise ValidationError([BODY_NOT_OBJECT])
    errors = [message for message, ok in checks if not ok(body)]
    if errors:
        raise ValidationError(errors)
    return _parse(model, body)


def validate_dashboard_input(body: Any) -> DashboardInput:
    return _validate(
        body,
        DashboardInput,
        [
            ("hAxis is required", lambda b: not _missing(b.get("hAxis"))),
            ("yAxes must be a non-empty array", lambda b: _non_empty_list(b.get("yAxes"))),
            ("databaseCompare is required", lambda b: not _missing(b.get("databaseCompare"))),
            ("graphType is required", lambda b: not _missing(b.get("graphType"))),
            ("trimmingSeconds must be a number", lambda b: _is_number(b.get("trimmingSeconds"))),
        ],
    )


def validate_single_input(body: Any) -> SingleRunInput:
    return _validate(
        body,
        SingleRunInput,
        [
            ("runId is required", lambda b: not _missing(b.get("runId"))),
            ("yAxes must be a non-empty array", lambda b: _non_empty_list(b.get("yAxes"))),
            ("trimmingSeconds must be a number", lambda b: _is_number(b.get("trimmingSeconds"))),
        ],
    )


def validate_situational_run_query(body: Any) -> SituationalRunQuery:
    return _validate(
        body,
        SituationalRunQuery,
        [("situationalRunId is required", lambda b: not _missing(b.get("situationalRunId")))],
    )


def validate_situational_run_and_run_query(body: Any) -> SituationalRunAndRunQuery:
    return _validate(
        body,
        SituationalRunAndRunQuery,
        [
            ("situationalRunId is required", lambda b: not _missing(b.get("situationalRunId"))),
            ("runId is required", lambda b: not _missing(b.get("runId"))),
        ],
    )


def validate_metrics_query(body: Any) -> MetricsQuery:
    return _validate(
        body,
        MetricsQuery,
        [("language is required", lambda b: not _missing(b.get("language")))],
    )


def validate_axis_field(axis_field: Any) -> str:
    if not isinstance(axis_field, str) or not axis_field.strip():
        raise ValidationError(["hAxis parameter is required and must be a non-empty string"])
    return axis_field.strip()
