"""
Dashboard error taxonomy.

Route handlers let these propagate; the app-level handlers in
perfdash.api.error_handling translate them into HTTP responses.
"""

from __future__ import annotations

from typing import Iterable


class DashboardError(Exception):
    """Base class for every error raised by the dashboard core."""


class ValidationError(DashboardError):
    """A request is missing required fields or carries malformed ones.

    Carries every violated constraint, not just the first one found.
    """

    def __init__(self, details: Iterable[str]) -> None:
        self.details = list(details)
        super().__init__("Validation failed: " + "; ".join(self.details))

    def to_body(self) -> dict:
        return {
            "message": "Validation failed",
            "error": "Bad Request",
            "statusCode": 400,
            "details": list(self.details),
        }


class UnsupportedOperationError(DashboardError):
    """The request asks for a chart shape that cannot be synthesized."""


class QueryExecutionError(DashboardError):
    """The database rejected the query or it timed out."""

    def __init__(self, message: str, *, sql: str | None = None) -> None:
        self.sql = sql
        super().__init__(message)


class NotFoundError(DashboardError):
    """The requested run or situational run has no matching rows."""
