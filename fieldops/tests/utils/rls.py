from __future__ import annotations

from copy import deepcopy
from typing import Any, Mapping

from sqlalchemy.sql.elements import BinaryExpression, ColumnElement, False_

from fieldops.domain.policies import Operation, RequestContext
from fieldops.domain.queries import ListQuery, Page
from fieldops.domain.resources import ResourceSpec, build_default_catalog
from fieldops.services.rls.registry import PolicyRegistry
from fieldops.services.rls.table import parse_policy_table


def make_registry(
    assignments: dict[str, dict[str, Any]],
    *,
    policies: dict[str, dict[str, Any]] | None = None,
    permissions: dict[str, dict[str, str]] | None = None,
) -> PolicyRegistry:
    # Build a registry from an ad hoc table so tests do not depend on the defaults.
    table = parse_policy_table(
        {"policies": policies or {}, "assignments": assignments, "permissions": permissions or {}}
    )
    return PolicyRegistry.from_table(table, build_default_catalog())


def make_context(
    role: str,
    resource_type: str,
    operation: Operation,
    *,
    requester_id: Any = 42,
    target: Mapping[str, Any] | None = None,
    **attributes: Any,
) -> RequestContext:
    return RequestContext(
        requester_id=requester_id,
        requester_role=role,
        resource_type=resource_type,
        operation=operation,
        target_record=target,
        attributes=attributes,
    )


class InMemoryRepository:
    """DataAccess fake that understands the clauses the constraint builder emits."""

    def __init__(self, rows: dict[str, list[dict[str, Any]]] | None = None, *, honor_constraints: bool = True) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = deepcopy(rows or {})
        self.honor_constraints = honor_constraints
        self.constraints: list[ColumnElement[bool] | None] = []
        self.writes: list[tuple[str, str, Any]] = []

    def _table(self, resource: ResourceSpec) -> list[dict[str, Any]]:
        return self.rows.setdefault(resource.name, [])

    @staticmethod
    def _matches(constraint: ColumnElement[bool] | None, row: Mapping[str, Any]) -> bool:
        if constraint is None:
            return True
        if isinstance(constraint, False_):
            return False
        if isinstance(constraint, BinaryExpression):
            return row.get(constraint.left.key) == constraint.right.value
        raise AssertionError(f"Unexpected constraint: {constraint!r}")

    async def list(
        self,
        resource: ResourceSpec,
        *,
        query: ListQuery,
        constraint: ColumnElement[bool] | None,
    ) -> Page:
        self.constraints.append(constraint)
        active = constraint if self.honor_constraints else None
        matched = [dict(row) for row in self._table(resource) if self._matches(active, row)]
        window = matched[query.offset : query.offset + query.limit]
        return Page(
            rows=window,
            total=len(matched),
            page=query.page,
            limit=query.limit,
            applied_filters=dict(query.filters),
            constrained=self.honor_constraints and constraint is not None,
        )

    async def get(self, resource: ResourceSpec, record_id: Any) -> dict[str, Any] | None:
        for row in self._table(resource):
            if row.get("id") == record_id:
                return dict(row)
        return None

    async def create(self, resource: ResourceSpec, values: Mapping[str, Any]) -> dict[str, Any]:
        table = self._table(resource)
        record = {"id": max((row["id"] for row in table), default=0) + 1, **dict(values)}
        table.append(record)
        self.writes.append(("create", resource.name, record["id"]))
        return dict(record)

    async def update(
        self, resource: ResourceSpec, record_id: Any, values: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        for row in self._table(resource):
            if row.get("id") == record_id:
                row.update(values)
                self.writes.append(("update", resource.name, record_id))
                return dict(row)
        return None

    async def delete(self, resource: ResourceSpec, record_id: Any) -> bool:
        table = self._table(resource)
        for index, row in enumerate(table):
            if row.get("id") == record_id:
                del table[index]
                self.writes.append(("delete", resource.name, record_id))
                return True
        return False
