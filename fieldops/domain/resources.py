from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from fieldops.core.errors import UnknownResourceError
from fieldops.domain.models import (
    Base,
    Contract,
    Customer,
    InventoryItem,
    Invoice,
    Role,
    Technician,
    User,
    WorkOrder,
)


# Stripped from every record regardless of resource configuration.
ALWAYS_SENSITIVE: frozenset[str] = frozenset(
    {"auth0_id", "refresh_token", "api_key", "api_secret", "secret_key", "private_key"}
)

_READONLY_FIELDS = frozenset({"id", "created_at", "updated_at"})


@dataclass(frozen=True)
class ResourceSpec:
    """Typed record shape and query capabilities for one resource type."""

    name: str
    model: type[Base]
    searchable_fields: tuple[str, ...] = ()
    filterable_fields: tuple[str, ...] = ()
    sortable_fields: tuple[str, ...] = ("id", "created_at")
    default_sort: tuple[str, str] = ("created_at", "desc")
    sensitive_fields: tuple[str, ...] = ()
    immutable_fields: tuple[str, ...] = ()
    label: str = ""
    _fields: frozenset[str] = field(default=frozenset(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        columns = frozenset(column.key for column in self.model.__table__.columns)
        object.__setattr__(self, "_fields", columns)

    @property
    def fields(self) -> frozenset[str]:
        return self._fields

    @property
    def writable_fields(self) -> frozenset[str]:
        return self._fields - _READONLY_FIELDS

    @property
    def display_name(self) -> str:
        return self.label or self.name.rstrip("s").replace("_", " ").capitalize()

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def filter_output(self, record: Mapping[str, Any]) -> dict[str, Any]:
        # Return a copy without sensitive fields; never mutate the source record.
        excluded = ALWAYS_SENSITIVE | set(self.sensitive_fields)
        return {key: value for key, value in record.items() if key not in excluded}


class ResourceCatalog:
    """Immutable lookup of resource specs by resource type."""

    def __init__(self, resources: list[ResourceSpec]) -> None:
        self._resources = MappingProxyType({spec.name: spec for spec in resources})

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    def __iter__(self):
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def names(self) -> list[str]:
        return list(self._resources)

    def get(self, name: str) -> ResourceSpec:
        spec = self._resources.get(name)
        if spec is None:
            raise UnknownResourceError(f"Unknown resource type: {name}")
        return spec


def build_default_catalog() -> ResourceCatalog:
    return ResourceCatalog(
        [
            ResourceSpec(
                name="customers",
                model=Customer,
                searchable_fields=("email", "company_name"),
                filterable_fields=("id", "email", "status", "is_active"),
                sortable_fields=("id", "email", "company_name", "created_at", "updated_at"),
            ),
            ResourceSpec(
                name="technicians",
                model=Technician,
                searchable_fields=("license_number",),
                filterable_fields=("id", "license_number", "status", "is_active"),
                sortable_fields=("id", "license_number", "hourly_rate", "created_at"),
            ),
            ResourceSpec(
                name="work_orders",
                model=WorkOrder,
                searchable_fields=("title", "description"),
                filterable_fields=(
                    "id",
                    "status",
                    "priority",
                    "customer_id",
                    "assigned_technician_id",
                    "is_active",
                ),
                sortable_fields=("id", "title", "priority", "status", "scheduled_start", "created_at"),
                label="Work order",
            ),
            ResourceSpec(
                name="invoices",
                model=Invoice,
                searchable_fields=("invoice_number",),
                filterable_fields=("id", "invoice_number", "customer_id", "work_order_id", "status", "is_active"),
                sortable_fields=("id", "invoice_number", "status", "total", "due_date", "created_at"),
                immutable_fields=("invoice_number",),
            ),
            ResourceSpec(
                name="contracts",
                model=Contract,
                searchable_fields=("contract_number",),
                filterable_fields=("id", "contract_number", "customer_id", "status", "is_active"),
                sortable_fields=("id", "contract_number", "start_date", "end_date", "value", "created_at"),
                immutable_fields=("contract_number",),
            ),
            ResourceSpec(
                name="inventory",
                model=InventoryItem,
                searchable_fields=("name", "sku", "description"),
                filterable_fields=("id", "sku", "status", "location", "is_active"),
                sortable_fields=("id", "name", "sku", "quantity", "created_at"),
                label="Inventory item",
            ),
            ResourceSpec(
                name="users",
                model=User,
                searchable_fields=("email", "first_name", "last_name"),
                filterable_fields=("id", "email", "role", "is_active"),
                sortable_fields=("id", "email", "last_name", "created_at"),
                immutable_fields=("auth0_id",),
            ),
            ResourceSpec(
                name="roles",
                model=Role,
                searchable_fields=("name",),
                filterable_fields=("id", "name", "priority", "is_active"),
                sortable_fields=("id", "name", "priority", "created_at"),
                default_sort=("priority", "desc"),
            ),
        ]
    )
