from __future__ import annotations

from typing import Any

from fieldops.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    return {
        "success": False,
        "error": {"code": code, "message": message},
        "message": message,
        "meta": {"request_id": "req_example"},
        "timestamp": "2026-01-01T00:00:00.000Z",
    }


def _response(description: str, *, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", code="BAD_REQUEST", message="Field 'foo' is not filterable on invoices"),
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="X-User-Id header is required"),
    403: _response("Forbidden", code="AUTH_FORBIDDEN", message="Insufficient permissions: invoices:create"),
    404: _response("Not found", code="NOT_FOUND", message="Invoice not found"),
    409: _response("Conflict", code="CONFLICT", message="Record conflicts with existing data"),
    422: _response("Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    500: _response("Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
}
