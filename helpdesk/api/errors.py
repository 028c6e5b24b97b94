"""Uniform error bodies: ``{"error": {"code", "field", "message"}}``."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import asyncpg
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from helpdesk.tickets.errors import (
    IdempotentConflictError,
    InvalidTicketOperationError,
    TicketForbiddenError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[TicketServiceError], int], ...] = (
    (TicketValidationError, 400),
    (InvalidTicketOperationError, 400),
    (TicketForbiddenError, 403),
    (TicketNotFoundError, 404),
    (VersionConflictError, 409),
    (IdempotentConflictError, 409),
)

STORE_ERRORS: tuple[type[BaseException], ...] = (asyncpg.PostgresError, OSError, asyncio.TimeoutError)


def error_body(code: str, message: str, field: str | None = None, **extra: Any) -> dict[str, Any]:
    return {"error": {"code": code, "field": field, "message": message, **extra}}


def status_for(exc: TicketServiceError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def ticket_error_handler(request: Request, exc: TicketServiceError) -> JSONResponse:
    extra: dict[str, Any] = {}
    if isinstance(exc, VersionConflictError) and exc.current_version is not None:
        extra["current_version"] = exc.current_version
    return JSONResponse(status_code=status_for(exc), content=error_body(exc.code, exc.message, exc.field, **extra))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = first.get("loc", ())
    field = str(location[-1]) if location else None
    code = "FIELD_REQUIRED" if first.get("type") == "missing" else "INVALID_VALUE"
    message = str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content=error_body(code, message, field))


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    codes = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 503: "SERVICE_UNAVAILABLE"}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(codes.get(exc.status_code, "HTTP_ERROR"), str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Conditional writes are atomic, so nothing partial was committed; retrying is safe.
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=503, content=error_body("STORE_UNAVAILABLE", "Ticket store unavailable, retry later"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TicketServiceError, ticket_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    for error_type in STORE_ERRORS:
        app.add_exception_handler(error_type, store_error_handler)
