from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops.apps.api.deps import Principal, get_db, get_mediator, require_permission
from fieldops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from fieldops.apps.api.response import (
    ListEnvelope,
    RecordEnvelope,
    WriteEnvelope,
    list_response,
    record_response,
    write_response,
)
from fieldops.core.config import get_settings
from fieldops.domain.policies import Operation
from fieldops.domain.queries import ListQuery
from fieldops.domain.resources import ResourceCatalog, ResourceSpec, build_default_catalog
from fieldops.services.rls.mediator import MediatorResult, RequestMediator, ResultStatus


# Query parameters that shape the list; everything else is an equality filter.
_RESERVED_PARAMS = frozenset({"page", "limit", "search", "sortBy", "sortOrder"})


def _not_found(resource: ResourceSpec) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "NOT_FOUND", "message": f"{resource.display_name} not found"},
    )


def _rls_denied(resource: ResourceSpec, result: MediatorResult) -> HTTPException:
    # Policy name is safe to expose; record contents and reasons are not.
    policy_name = result.decision.policy_name if result.decision else None
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "code": "RLS_DENIED",
            "message": f"Access denied to {resource.name} by row-level security",
            "policy": policy_name,
        },
    )


def _raise_for_status(resource: ResourceSpec, result: MediatorResult) -> None:
    if result.status is ResultStatus.NOT_FOUND:
        raise _not_found(resource)
    if result.status is ResultStatus.DENIED:
        raise _rls_denied(resource, result)


def _list_query(request: Request, page: int, limit: int | None, search: str | None,
                sort_by: str | None, sort_order: str | None) -> ListQuery:
    settings = get_settings()
    resolved_limit = min(limit or settings.default_page_size, settings.max_page_size)
    filters = {
        key: value for key, value in request.query_params.items() if key not in _RESERVED_PARAMS
    }
    return ListQuery(
        page=page,
        limit=resolved_limit,
        search=search,
        filters=filters,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def build_resource_router(resource: ResourceSpec) -> APIRouter:
    """CRUD routes for one catalog resource, all mediated by row-level security."""
    router = APIRouter(prefix=f"/{resource.name}", tags=[resource.name], responses=DEFAULT_ERROR_RESPONSES)
    name = resource.name

    @router.get("", response_model=ListEnvelope[dict[str, Any]], name=f"list_{name}")
    async def list_records(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int | None = Query(default=None, ge=1),
        search: str | None = Query(default=None),
        sort_by: str | None = Query(default=None, alias="sortBy"),
        sort_order: str | None = Query(default=None, alias="sortOrder"),
        principal: Principal = Depends(require_permission(name, Operation.LIST)),
        mediator: RequestMediator = Depends(get_mediator),
    ) -> dict[str, Any]:
        query = _list_query(request, page, limit, search, sort_by, sort_order)
        result = await mediator.list(principal.context(name, Operation.LIST), query)
        # list never hides existence, so a hard denial is a 403 rather than a 404.
        _raise_for_status(resource, result)
        return list_response(
            data=[resource.filter_output(row) for row in result.data],
            rls_applied=result.rls_applied,
            pagination=result.pagination,
            applied_filters=result.applied_filters,
        )

    @router.get("/{record_id}", response_model=RecordEnvelope[dict[str, Any]], name=f"get_{name}")
    async def get_record(
        record_id: int,
        principal: Principal = Depends(require_permission(name, Operation.GET)),
        mediator: RequestMediator = Depends(get_mediator),
    ) -> dict[str, Any]:
        result = await mediator.get(principal.context(name, Operation.GET), record_id)
        if not result.ok:
            # Denied and absent records are reported identically.
            raise _not_found(resource)
        return record_response(data=resource.filter_output(result.data), rls_applied=result.rls_applied)

    @router.post(
        "",
        status_code=status.HTTP_201_CREATED,
        response_model=WriteEnvelope[dict[str, Any]],
        name=f"create_{name}",
    )
    async def create_record(
        payload: dict[str, Any] = Body(...),
        principal: Principal = Depends(require_permission(name, Operation.CREATE)),
        mediator: RequestMediator = Depends(get_mediator),
        db: AsyncSession = Depends(get_db),
    ) -> dict[str, Any]:
        result = await mediator.create(principal.context(name, Operation.CREATE), payload)
        _raise_for_status(resource, result)
        await db.commit()
        return write_response(
            message=f"{resource.display_name} created successfully",
            data=resource.filter_output(result.data),
        )

    @router.patch("/{record_id}", response_model=WriteEnvelope[dict[str, Any]], name=f"update_{name}")
    async def update_record(
        record_id: int,
        changes: dict[str, Any] = Body(...),
        principal: Principal = Depends(require_permission(name, Operation.UPDATE)),
        mediator: RequestMediator = Depends(get_mediator),
        db: AsyncSession = Depends(get_db),
    ) -> dict[str, Any]:
        if not changes:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "BAD_REQUEST", "message": "No fields to update"},
            )
        result = await mediator.update(principal.context(name, Operation.UPDATE), record_id, changes)
        _raise_for_status(resource, result)
        await db.commit()
        return write_response(
            message=f"{resource.display_name} updated successfully",
            data=resource.filter_output(result.data),
        )

    @router.delete("/{record_id}", response_model=WriteEnvelope[dict[str, Any]], name=f"delete_{name}")
    async def delete_record(
        record_id: int,
        principal: Principal = Depends(require_permission(name, Operation.DELETE)),
        mediator: RequestMediator = Depends(get_mediator),
        db: AsyncSession = Depends(get_db),
    ) -> dict[str, Any]:
        result = await mediator.delete(principal.context(name, Operation.DELETE), record_id)
        _raise_for_status(resource, result)
        await db.commit()
        return write_response(message=f"{resource.display_name} deleted successfully")

    return router


def build_entity_routers(catalog: ResourceCatalog | None = None) -> list[APIRouter]:
    return [build_resource_router(resource) for resource in catalog or build_default_catalog()]
