from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Any, Mapping

from fieldops.core.config import Settings, get_settings
from fieldops.core.errors import PolicyTableError
from fieldops.domain.policies import (
    REQUESTER_ID,
    Operation,
    OperationClass,
    Policy,
    PolicyKind,
)
from fieldops.domain.resources import ResourceCatalog, ResourceSpec, build_default_catalog
from fieldops.services.rls.defaults import default_policy_table
from fieldops.services.rls.roles import ROLE_ORDER, has_permission, normalize_role
from fieldops.services.rls.table import PolicyTable, load_policy_table


logger = logging.getLogger(__name__)

PolicyKey = tuple[str, str, OperationClass]


class PolicyRegistry:
    """Immutable (role, resource, operation class) -> Policy table.

    Built once from a validated ``PolicyTable``; lookups never perform I/O.
    """

    def __init__(
        self,
        *,
        policies: Mapping[PolicyKey, Policy],
        catalog: ResourceCatalog,
        permissions: Mapping[str, Mapping[str, str]],
    ) -> None:
        self._policies = MappingProxyType(dict(policies))
        self._catalog = catalog
        self._permissions = MappingProxyType(
            {resource: MappingProxyType(dict(grants)) for resource, grants in permissions.items()}
        )

    @classmethod
    def from_table(cls, table: PolicyTable, catalog: ResourceCatalog) -> "PolicyRegistry":
        # Validate every assignment against the catalog so wiring defects fail at startup.
        for resource in table.permissions:
            if resource not in catalog:
                raise PolicyTableError(f"Permissions reference unknown resource: {resource}")
        policies: dict[PolicyKey, Policy] = {}
        for role, resources in table.assignments.items():
            for resource_type in resources:
                if resource_type not in catalog:
                    raise PolicyTableError(f"Assignment for {role} references unknown resource: {resource_type}")
                spec = catalog.get(resource_type)
                for operation_class in OperationClass:
                    name = table.assigned_name(role, resource_type, operation_class)
                    if name is None:
                        continue
                    definition = table.definition(name)
                    if definition.owner_field and not spec.has_field(definition.owner_field):
                        raise PolicyTableError(
                            f"Policy '{name}' owner_field '{definition.owner_field}' "
                            f"is not a field of {resource_type}"
                        )
                    policies[(role, resource_type, operation_class)] = Policy(
                        name=name,
                        role=role,
                        resource_type=resource_type,
                        kind=definition.kind,
                        owner_field=definition.owner_field,
                        identity_key=definition.identity_key,
                        minimum_role=definition.minimum_role,
                    )
        return cls(policies=policies, catalog=catalog, permissions=table.permissions)

    @property
    def catalog(self) -> ResourceCatalog:
        return self._catalog

    @property
    def permissions(self) -> Mapping[str, Mapping[str, str]]:
        return self._permissions

    def resource(self, resource_type: str) -> ResourceSpec:
        return self._catalog.get(resource_type)

    def resolve(self, role: str, resource_type: str, operation: Operation = Operation.LIST) -> Policy:
        # Unknown resources are wiring defects; unknown roles fail closed.
        self._catalog.get(resource_type)
        normalized = normalize_role(role)
        policy = self._policies.get((normalized, resource_type, operation.operation_class))
        if policy is not None:
            return policy
        return Policy(
            name=PolicyKind.DENY_ALL.value,
            role=normalized,
            resource_type=resource_type,
            kind=PolicyKind.DENY_ALL,
            is_default=True,
        )

    def allows(self, *, role: str, resource_type: str, operation: Operation) -> bool:
        # Resource-level permission gate applied upstream of row filtering.
        return has_permission(
            self._permissions,
            role=role,
            resource_type=resource_type,
            operation=operation,
        )

    def describe(self) -> list[dict[str, Any]]:
        # Flatten the table into stable rows for admin and ops views.
        rows: list[dict[str, Any]] = []
        for role in sorted(ROLE_ORDER, key=ROLE_ORDER.__getitem__, reverse=True):
            for resource_type in self._catalog.names():
                for operation_class in OperationClass:
                    operation = Operation.LIST if operation_class is OperationClass.READ else Operation.UPDATE
                    policy = self.resolve(role, resource_type, operation)
                    rows.append(
                        {
                            "role": role,
                            "resource": resource_type,
                            "operation_class": operation_class.value,
                            "policy": policy.name,
                            "kind": policy.kind.value,
                            "filter": describe_policy(policy),
                            "default": policy.is_default,
                        }
                    )
        return rows

    def __len__(self) -> int:
        return len(self._policies)


def describe_policy(policy: Policy) -> str:
    if policy.kind is PolicyKind.OWN_RECORDS_ONLY:
        if policy.identity_key == REQUESTER_ID:
            return f"filter_by_{policy.owner_field}"
        return f"filter_by_{policy.owner_field}_via_{policy.identity_key}"
    if policy.kind is PolicyKind.MINIMUM_ROLE:
        return f"minimum_role_{policy.minimum_role}"
    return policy.kind.value


class RegistryHolder:
    """Holds the active registry; reloads swap the whole reference at once."""

    def __init__(self, registry: PolicyRegistry) -> None:
        self._registry = registry
        self._write_lock = threading.Lock()
        self._generation = 1

    def current(self) -> PolicyRegistry:
        # Reference reads are atomic; callers keep this snapshot for the whole request.
        return self._registry

    @property
    def generation(self) -> int:
        return self._generation

    def swap(self, registry: PolicyRegistry) -> PolicyRegistry:
        with self._write_lock:
            previous = self._registry
            self._registry = registry
            self._generation += 1
        logger.info("rls_registry_swapped generation=%s policies=%s", self._generation, len(registry))
        return previous

    def reload(self, settings: Settings | None = None) -> PolicyRegistry:
        # Build fully before swapping so a bad table never replaces a good one.
        registry = build_registry(settings, catalog=self._registry.catalog)
        self.swap(registry)
        return registry


def build_registry(
    settings: Settings | None = None,
    *,
    catalog: ResourceCatalog | None = None,
) -> PolicyRegistry:
    resolved = settings or get_settings()
    if resolved.rls_policy_path:
        table = load_policy_table(resolved.rls_policy_path)
        source = resolved.rls_policy_path
    else:
        table = default_policy_table()
        source = "builtin"
    registry = PolicyRegistry.from_table(table, catalog or build_default_catalog())
    logger.info("rls_registry_loaded source=%s policies=%s", source, len(registry))
    return registry
