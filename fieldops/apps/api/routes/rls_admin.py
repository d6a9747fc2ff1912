from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from fieldops.apps.api.deps import Principal, get_registry_holder, require_role
from fieldops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from fieldops.apps.api.response import utc_timestamp
from fieldops.core.config import get_settings
from fieldops.core.errors import ConfigurationError
from fieldops.services.rls.registry import RegistryHolder


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rls", tags=["rls"], responses=DEFAULT_ERROR_RESPONSES)


class PolicyRow(BaseModel):
    role: str
    resource: str
    operation_class: str
    policy: str
    kind: str
    filter: str
    default: bool


class PolicyListEnvelope(BaseModel):
    success: bool = True
    data: list[PolicyRow]
    count: int
    generation: int
    timestamp: str


class ReloadEnvelope(BaseModel):
    success: bool = True
    message: str
    generation: int
    policies: int
    timestamp: str


@router.get("/policies", response_model=PolicyListEnvelope)
async def list_policies(
    principal: Principal = Depends(require_role("admin")),
    holder: RegistryHolder = Depends(get_registry_holder),
) -> dict[str, Any]:
    # Flattened view of the active table for ops and audits.
    registry = holder.current()
    rows = registry.describe()
    return {
        "success": True,
        "data": rows,
        "count": len(rows),
        "generation": holder.generation,
        "timestamp": utc_timestamp(),
    }


@router.post("/reload", response_model=ReloadEnvelope)
async def reload_policies(
    principal: Principal = Depends(require_role("admin")),
    holder: RegistryHolder = Depends(get_registry_holder),
) -> dict[str, Any]:
    # A table that fails validation leaves the active registry untouched.
    # Reading and validating the file is blocking work, so it runs off the event loop.
    try:
        registry = await asyncio.to_thread(holder.reload, get_settings())
    except ConfigurationError as exc:
        logger.error("rls_reload_failed requester=%s error=%s", principal.subject_id, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "RLS_POLICY_INVALID", "message": str(exc)},
        ) from exc
    logger.info("rls_reload requester=%s generation=%s", principal.subject_id, holder.generation)
    return {
        "success": True,
        "message": "RLS policies reloaded",
        "generation": holder.generation,
        "policies": len(registry),
        "timestamp": utc_timestamp(),
    }
