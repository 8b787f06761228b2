"""
HTTP translation of dashboard errors.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from perfdash.core.errors import (
    DashboardError,
    NotFoundError,
    QueryExecutionError,
    UnsupportedOperationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.details)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=exc.to_body())


async def unsupported_operation_handler(
    request: Request, exc: UnsupportedOperationError
) -> JSONResponse:
    logger.info("Unsupported operation on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Unsupported Operation", "message": str(exc)},
    )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "Not Found", "message": str(exc)},
    )


async def query_execution_handler(request: Request, exc: QueryExecutionError) -> JSONResponse:
    logger.error(
        "Query failed on %s: %s\nSQL: %s", request.url.path, exc, exc.sql or "(unavailable)"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


async def dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
    logger.error("Dashboard error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(UnsupportedOperationError, unsupported_operation_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(QueryExecutionError, query_execution_handler)
    app.add_exception_handler(DashboardError, dashboard_error_handler)
