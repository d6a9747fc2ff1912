from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from fieldops.core.errors import QueryValidationError
from fieldops.domain.queries import ListQuery, Page
from fieldops.domain.resources import ResourceSpec
from fieldops.services.rls.constraints import combine


_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


def row_to_dict(resource: ResourceSpec, row: Any) -> dict[str, Any]:
    # Map ORM rows onto the resource's typed field set.
    return {column.key: getattr(row, column.key) for column in resource.model.__table__.columns}


def coerce_value(resource: ResourceSpec, field: str, raw: Any) -> Any:
    # Convert query-string values to the column's Python type before binding.
    column = resource.model.__table__.columns.get(field)
    if column is None:
        raise QueryValidationError(f"Unknown field '{field}' for {resource.name}")
    if raw is None or not isinstance(raw, str):
        return raw
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return raw
    try:
        if python_type is bool:
            lowered = raw.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(raw)
        if python_type is int:
            return int(raw)
        if python_type is Decimal:
            return Decimal(raw)
        if python_type is datetime:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if python_type is date:
            return date.fromisoformat(raw)
    except (ValueError, InvalidOperation) as exc:
        raise QueryValidationError(f"Invalid value for {resource.name}.{field}: {raw!r}") from exc
    return raw


class SqlEntityRepository:
    """SQLAlchemy data-access collaborator for every catalog resource.

    Writes flush but do not commit; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _filter_clauses(self, resource: ResourceSpec, query: ListQuery) -> tuple[list[ColumnElement[bool]], dict[str, Any]]:
        model = resource.model
        clauses: list[ColumnElement[bool]] = []
        applied: dict[str, Any] = {}
        for field, raw in query.filters.items():
            if field not in resource.filterable_fields:
                raise QueryValidationError(f"Field '{field}' is not filterable on {resource.name}")
            value = coerce_value(resource, field, raw)
            clauses.append(getattr(model, field) == value)
            applied[field] = value
        search = (query.search or "").strip()
        if search and resource.searchable_fields:
            pattern = f"%{search}%"
            clauses.append(or_(*(getattr(model, name).ilike(pattern) for name in resource.searchable_fields)))
            applied["search"] = search
        return clauses, applied

    def _order_by(self, resource: ResourceSpec, query: ListQuery) -> list[Any]:
        model = resource.model
        default_field, default_order = resource.default_sort
        sort_by = query.sort_by or default_field
        if sort_by not in resource.sortable_fields and sort_by != default_field:
            raise QueryValidationError(f"Field '{sort_by}' is not sortable on {resource.name}")
        order = (query.sort_order or default_order).lower()
        if order not in {"asc", "desc"}:
            raise QueryValidationError(f"Invalid sort order: {query.sort_order}")
        column = getattr(model, sort_by)
        ordering = [column.desc() if order == "desc" else column.asc()]
        # Tie-break on id so pages stay stable across identical sort keys.
        if sort_by != "id":
            ordering.append(model.id.asc())
        return ordering

    async def list(
        self,
        resource: ResourceSpec,
        *,
        query: ListQuery,
        constraint: ColumnElement[bool] | None,
    ) -> Page:
        model = resource.model
        clauses, applied = self._filter_clauses(resource, query)
        where = combine(*clauses, constraint)
        count_stmt = select(func.count()).select_from(model)
        stmt = select(model)
        if where is not None:
            count_stmt = count_stmt.where(where)
            stmt = stmt.where(where)
        total = int((await self._session.execute(count_stmt)).scalar_one())
        stmt = stmt.order_by(*self._order_by(resource, query)).offset(query.offset).limit(query.limit)
        rows = (await self._session.execute(stmt)).scalars().all()
        return Page(
            rows=[row_to_dict(resource, row) for row in rows],
            total=total,
            page=query.page,
            limit=query.limit,
            applied_filters=applied,
            constrained=constraint is not None,
        )

    async def get(self, resource: ResourceSpec, record_id: Any) -> dict[str, Any] | None:
        row = await self._session.get(resource.model, record_id)
        if row is None:
            return None
        return row_to_dict(resource, row)

    def _writable_values(self, resource: ResourceSpec, values: Mapping[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(values) - resource.writable_fields)
        if unknown:
            raise QueryValidationError(f"Unknown or read-only fields for {resource.name}: {', '.join(unknown)}")
        return {field: coerce_value(resource, field, value) for field, value in values.items()}

    async def create(self, resource: ResourceSpec, values: Mapping[str, Any]) -> dict[str, Any]:
        row = resource.model(**self._writable_values(resource, values))
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row_to_dict(resource, row)

    async def update(
        self, resource: ResourceSpec, record_id: Any, values: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        immutable = sorted(set(values) & set(resource.immutable_fields))
        if immutable:
            raise QueryValidationError(f"Immutable fields for {resource.name}: {', '.join(immutable)}")
        row = await self._session.get(resource.model, record_id)
        if row is None:
            return None
        for field, value in self._writable_values(resource, values).items():
            setattr(row, field, value)
        await self._session.flush()
        await self._session.refresh(row)
        return row_to_dict(resource, row)

    async def delete(self, resource: ResourceSpec, record_id: Any) -> bool:
        row = await self._session.get(resource.model, record_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True
