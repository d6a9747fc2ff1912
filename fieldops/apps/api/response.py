from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field


API_PREFIX = "/api"

T = TypeVar("T")


def utc_timestamp() -> str:
    # ISO-8601 UTC with millisecond precision, e.g. 2026-01-01T00:00:00.000Z.
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ResponseMeta(BaseModel):
    # Include request metadata for consistent client tracing.
    request_id: str


class ErrorDetail(BaseModel):
    # Standardize error codes/messages with optional structured details.
    code: str
    message: str
    details: dict[str, Any] | None = None


class ListEnvelope(BaseModel, Generic[T]):
    success: bool = True
    data: list[T]
    count: int
    pagination: dict[str, Any] | None = None
    appliedFilters: dict[str, Any] | None = None
    rlsApplied: bool
    timestamp: str


class RecordEnvelope(BaseModel, Generic[T]):
    success: bool = True
    data: T
    rlsApplied: bool = False
    timestamp: str


class WriteEnvelope(BaseModel, Generic[T]):
    success: bool = True
    data: T | None = None
    message: str
    timestamp: str


class ErrorEnvelope(BaseModel):
    success: bool = Field(default=False)
    error: ErrorDetail
    message: str
    meta: ResponseMeta
    timestamp: str


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def list_response(
    *,
    data: list[Any],
    rls_applied: bool,
    pagination: dict[str, Any] | None = None,
    applied_filters: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Reads always share one shape, including RLS-emptied results.
    return {
        "success": True,
        "data": jsonable_encoder(data),
        "count": len(data),
        "pagination": pagination,
        "appliedFilters": jsonable_encoder(applied_filters or {}),
        "rlsApplied": rls_applied,
        "timestamp": utc_timestamp(),
    }


def record_response(*, data: Any, rls_applied: bool) -> dict[str, Any]:
    return {
        "success": True,
        "data": jsonable_encoder(data),
        "rlsApplied": rls_applied,
        "timestamp": utc_timestamp(),
    }


def write_response(*, message: str, data: Any | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": True, "message": message, "timestamp": utc_timestamp()}
    if data is not None:
        payload["data"] = jsonable_encoder(data)
    return payload


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Return the standard error envelope with request metadata.
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {
        "success": False,
        "error": error.model_dump(exclude_none=True),
        "message": message,
        "meta": meta.model_dump(),
        "timestamp": utc_timestamp(),
    }
