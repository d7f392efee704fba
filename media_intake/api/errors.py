"""JSON error bodies for the upload API."""

import logging
from typing import Any

import asyncpg
from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from media_intake.chunks.errors import StorageFailure
from media_intake.result import Err
from media_intake.result import ErrorKind


logger = logging.getLogger(__name__)

# headline shown in "error" for kinds that clients match on
ERROR_TITLES: dict[ErrorKind, str] = {
    ErrorKind.MISSING_FIELD: "Missing required fields",
    ErrorKind.SESSION_NOT_FOUND: "Session not found",
    ErrorKind.UPLOAD_NOT_FOUND: "Upload not found",
    ErrorKind.AUTH_FAILURE: "Authentication failed",
    ErrorKind.INIT_FAILURE: "Failed to start resumable upload",
    ErrorKind.MANIFEST_WRITE_FAILURE: "Failed to create manifest file",
    ErrorKind.DATABASE_NOT_CONFIGURED: "Database not configured",
    ErrorKind.STORAGE_NOT_CONFIGURED: "Storage not configured",
}


def error_body(kind: ErrorKind, message: str, context: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "error": ERROR_TITLES.get(kind, message),
        "details": message,
        "code": kind.value,
        "retryable": kind.retryable,
        "context": context or {},
    }


def error_response(err: Err) -> JSONResponse:
    return JSONResponse(status_code=err.kind.status_code, content=error_body(err.kind, err.message, err.details))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorKind.MISSING_FIELD, "Malformed request", {"fields": fields}),
    )


async def storage_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Storage backend failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body(ErrorKind.STORAGE_FAILURE, f"Storage backend unavailable: {type(exc).__name__}"),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    for exc_type in (StorageFailure, RedisError, asyncpg.PostgresError, SQLAlchemyError):
        app.add_exception_handler(exc_type, storage_exception_handler)
