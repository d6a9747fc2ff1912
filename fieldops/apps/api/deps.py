from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Callable

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops.apps.api.response import get_request_id
from fieldops.core.config import get_settings
from fieldops.domain.models import User
from fieldops.domain.policies import Operation, RequestContext
from fieldops.persistence.db import get_session
from fieldops.persistence.repos.entities import SqlEntityRepository
from fieldops.services.audit import LoggingDecisionAudit
from fieldops.services.rls.mediator import RequestMediator
from fieldops.services.rls.registry import RegistryHolder
from fieldops.services.rls.roles import normalize_role, role_allows


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Requester identity resolved from the users table; profile links never come from the client.
    subject_id: int
    role: str
    customer_profile_id: int | None = None
    technician_profile_id: int | None = None

    def attributes(self) -> dict[str, Any]:
        # Profile identifiers consumed by owner-scoped policies.
        return {
            "customer_profile_id": self.customer_profile_id,
            "technician_profile_id": self.technician_profile_id,
        }

    def context(self, resource_type: str, operation: Operation) -> RequestContext:
        return RequestContext(
            requester_id=self.subject_id,
            requester_role=self.role,
            resource_type=resource_type,
            operation=operation,
            attributes=self.attributes(),
        )


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def _forbidden_error(message: str) -> HTTPException:
    # Use 403 for authenticated principals lacking permissions.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _header(request: Request, name: str) -> str | None:
    value = request.headers.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    # The proxy asserts who the caller is; role and profile links are read from the users row.
    settings = get_settings()
    raw_subject = _header(request, settings.auth_user_header)
    if not raw_subject:
        raise _auth_error(f"{settings.auth_user_header} header is required")
    try:
        user_id = int(raw_subject)
    except ValueError:
        raise _auth_error("Unknown user") from None
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _auth_error("Unknown user")

    role = normalize_role(user.role)
    asserted_role = _header(request, settings.auth_role_header)
    if asserted_role is not None and normalize_role(asserted_role) != role:
        logger.warning("auth_role_mismatch user_id=%s asserted=%s stored=%s", user.id, asserted_role, role)
        raise _auth_error("Role does not match the user record")
    return Principal(
        subject_id=user.id,
        role=role,
        customer_profile_id=user.customer_profile_id,
        technician_profile_id=user.technician_profile_id,
    )


def get_registry_holder(request: Request) -> RegistryHolder:
    # The holder is built by create_app so a broken policy table fails startup.
    return request.app.state.rls_registry


def require_permission(resource_type: str, operation: Operation) -> Callable[..., Any]:
    # Resource-level gate; row filtering happens later in the mediator.
    async def dependency(
        principal: Principal = Depends(get_current_principal),
        holder: RegistryHolder = Depends(get_registry_holder),
    ) -> Principal:
        allowed = holder.current().allows(
            role=principal.role,
            resource_type=resource_type,
            operation=operation,
        )
        if not allowed:
            permission = "read" if operation.is_read else operation.value
            raise _forbidden_error(f"Insufficient permissions: {resource_type}:{permission}")
        return principal

    return dependency


def require_role(minimum_role: str) -> Callable[..., Any]:
    # Enforce role hierarchy before route logic executes.
    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return dependency


def get_mediator(
    request: Request,
    db: AsyncSession = Depends(get_db),
    holder: RegistryHolder = Depends(get_registry_holder),
) -> RequestMediator:
    return RequestMediator(
        holder,
        SqlEntityRepository(db),
        audit=LoggingDecisionAudit(request_id=get_request_id(request)),
    )
