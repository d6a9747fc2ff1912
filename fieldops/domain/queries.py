from __future__ import annotations

from dataclasses import dataclass, field
from math import ceil
from typing import Any, Mapping, Protocol

from sqlalchemy.sql.elements import ColumnElement

from fieldops.domain.resources import ResourceSpec


@dataclass(frozen=True)
class ListQuery:
    # Caller-supplied list options; RLS constraints are added separately.
    page: int = 1
    limit: int = 50
    search: str | None = None
    filters: Mapping[str, Any] = field(default_factory=dict)
    sort_by: str | None = None
    sort_order: str | None = None

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


@dataclass(frozen=True)
class Page:
    rows: list[dict[str, Any]]
    total: int
    page: int
    limit: int
    applied_filters: dict[str, Any] = field(default_factory=dict)
    # Reported by the data layer so the mediator can verify RLS was honored.
    constrained: bool = False

    def pagination(self) -> dict[str, Any]:
        total_pages = ceil(self.total / self.limit) if self.limit else 0
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": total_pages,
            "hasNext": self.page * self.limit < self.total,
            "hasPrev": self.page > 1,
        }


class DataAccess(Protocol):
    """Persistence collaborator consumed by the request mediator."""

    async def list(
        self,
        resource: ResourceSpec,
        *,
        query: ListQuery,
        constraint: ColumnElement[bool] | None,
    ) -> Page: ...

    async def get(self, resource: ResourceSpec, record_id: Any) -> dict[str, Any] | None: ...

    async def create(self, resource: ResourceSpec, values: Mapping[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, resource: ResourceSpec, record_id: Any, values: Mapping[str, Any]
    ) -> dict[str, Any] | None: ...

    async def delete(self, resource: ResourceSpec, record_id: Any) -> bool: ...
