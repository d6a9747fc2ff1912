from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops.apps.api.deps import get_db, get_registry_holder
from fieldops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from fieldops.apps.api.response import utc_timestamp
from fieldops.services.rls.registry import RegistryHolder


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    database: str
    rls_generation: int
    timestamp: str


@router.get("/health", response_model=HealthResponse)
async def health(
    db: AsyncSession = Depends(get_db),
    holder: RegistryHolder = Depends(get_registry_holder),
) -> HealthResponse:
    # Report degraded rather than failing so load balancers can still read the body.
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        logger.warning("health_db_unavailable error=%s", exc)
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        database=database,
        rls_generation=holder.generation,
        timestamp=utc_timestamp(),
    )
