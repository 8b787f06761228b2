import pytest

from perfdash.core.errors import ValidationError
from perfdash.core.validation import (
    BODY_NOT_OBJECT,
    validate_axis_field,
    validate_dashboard_input,
    validate_metrics_query,
    validate_single_input,
    validate_situational_run_and_run_query,
    validate_situational_run_query,
)
from perfdash.models.dashboard import GraphType, VerticalAxisBuckets


def _valid_body(**overrides):
    body = {
        "hAxis": {"type": "dynamic", "databaseField": "impl.version"},
        "yAxes": [{"type": "buckets", "column": "duration_average_us"}],
        "databaseCompare": {"impl": {"language": "Java"}},
        "graphType": "Simplified",
        "trimmingSeconds": 20,
    }
    body.update(overrides)
    return body


def test_valid_dashboard_input_parses():
    input = validate_dashboard_input(_valid_body())
    assert input.graph_type == GraphType.SIMPLIFIED
    assert input.h_axis.path == ["impl", "version"]
    assert isinstance(input.y_axes[0], VerticalAxisBuckets)
    assert input.trimming_seconds == 20


def test_every_violation_is_reported_together():
    with pytest.raises(ValidationError) as exc:
        validate_dashboard_input({"yAxes": [], "trimmingSeconds": "20"})
    assert exc.value.details == [
        "hAxis is required",
        "yAxes must be a non-empty array",
        "databaseCompare is required",
        "graphType is required",
        "trimmingSeconds must be a number",
    ]


def test_boolean_is_not_a_number():
    with pytest.raises(ValidationError) as exc:
        validate_dashboard_input(_valid_body(trimmingSeconds=True))
    assert exc.value.details == ["trimmingSeconds must be a number"]


@pytest.mark.parametrize("body", [None, [], "text", 42])
def test_non_object_body(body):
    with pytest.raises(ValidationError) as exc:
        validate_dashboard_input(body)
    assert exc.value.details == [BODY_NOT_OBJECT]


def test_schema_errors_are_translated():
    body = _valid_body(yAxes=[{"type": "buckets"}])
    with pytest.raises(ValidationError) as exc:
        validate_dashboard_input(body)
    assert any("yAxes" in detail for detail in exc.value.details)


def test_error_body_shape():
    err = ValidationError(["runId is required"])
    assert err.to_body() == {
        "message": "Validation failed",
        "error": "Bad Request",
        "statusCode": 400,
        "details": ["runId is required"],
    }


def test_single_input():
    with pytest.raises(ValidationError) as exc:
        validate_single_input({"yAxes": [{"type": "errors"}]})
    assert exc.value.details == ["runId is required", "trimmingSeconds must be a number"]

    parsed = validate_single_input(
        {"runId": "r1", "yAxes": [{"type": "metric", "metric": "processCpu"}], "trimmingSeconds": 0}
    )
    assert parsed.run_id == "r1"


def test_situational_queries():
    with pytest.raises(ValidationError) as exc:
        validate_situational_run_query({})
    assert exc.value.details == ["situationalRunId is required"]

    with pytest.raises(ValidationError) as exc:
        validate_situational_run_and_run_query({"situationalRunId": "s1"})
    assert exc.value.details == ["runId is required"]

    query = validate_situational_run_and_run_query({"situationalRunId": "s1", "runId": "r1"})
    assert (query.situational_run_id, query.run_id) == ("s1", "r1")


def test_metrics_query():
    with pytest.raises(ValidationError) as exc:
        validate_metrics_query({"language": ""})
    assert exc.value.details == ["language is required"]
    assert validate_metrics_query({"language": "Java"}).language == "Java"


def test_axis_field():
    assert validate_axis_field(" impl.version ") == "impl.version"
    for value in (None, "", "   ", 3):
        with pytest.raises(ValidationError):
            validate_axis_field(value)
