from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from fieldops.apps.api.response import error_response
from fieldops.core.config import get_settings
from fieldops.core.errors import QueryValidationError, RlsEnforcementError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Normalize FastAPI and Starlette HTTP errors into the shared error envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Surface validation errors with structured details for client parsing.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def query_validation_exception_handler(request: Request, exc: QueryValidationError) -> JSONResponse:
    payload = error_response(request=request, code="BAD_REQUEST", message=str(exc))
    return JSONResponse(content=payload, status_code=400)


async def integrity_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    # Unique/foreign-key violations are client conflicts, not server faults.
    logger.warning("db_integrity_error path=%s", request.url.path)
    payload = error_response(
        request=request,
        code="CONFLICT",
        message="Record conflicts with existing data",
    )
    return JSONResponse(content=payload, status_code=409)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Shield clients from raw database errors.
    logger.exception("db_error path=%s", request.url.path)
    payload = error_response(request=request, code="DATABASE_ERROR", message="Database error")
    return JSONResponse(content=payload, status_code=500)


async def rls_enforcement_exception_handler(request: Request, exc: RlsEnforcementError) -> JSONResponse:
    # Never return rows that skipped their row filter.
    logger.critical("rls_enforcement_failed path=%s error=%s", request.url.path, exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces outside development.
    logger.exception("Unhandled exception: %s", exc)
    message = "Internal server error" if get_settings().is_production else str(exc) or "Internal server error"
    payload = error_response(request=request, code="INTERNAL_ERROR", message=message)
    return JSONResponse(content=payload, status_code=500)
