from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from fieldops.apps.api.errors import (
    database_exception_handler,
    http_exception_handler,
    integrity_exception_handler,
    query_validation_exception_handler,
    rls_enforcement_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fieldops.apps.api.response import API_PREFIX
from fieldops.apps.api.routes.entities import build_entity_routers
from fieldops.apps.api.routes.health import router as health_router
from fieldops.apps.api.routes.rls_admin import router as rls_admin_router
from fieldops.core.config import get_settings
from fieldops.core.errors import QueryValidationError, RlsEnforcementError
from fieldops.core.logging import configure_logging
from fieldops.services.rls.registry import PolicyRegistry, RegistryHolder, build_registry


logger = logging.getLogger(__name__)


def create_app(registry: PolicyRegistry | None = None) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="FieldOps API")

    # Build the policy registry eagerly so a broken table aborts startup.
    holder = RegistryHolder(registry or build_registry(settings))
    app.state.rls_registry = holder

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(QueryValidationError, query_validation_exception_handler)
    app.add_exception_handler(RlsEnforcementError, rls_enforcement_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    # Admin routes first so /rls/* never matches a resource path.
    app.include_router(rls_admin_router, prefix=API_PREFIX)
    for router in build_entity_routers(holder.current().catalog):
        app.include_router(router, prefix=API_PREFIX)

    logger.info("app_started name=%s environment=%s", settings.app_name, settings.environment)
    return app


app = create_app()
