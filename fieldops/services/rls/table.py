from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from fieldops.core.errors import PolicyTableError
from fieldops.domain.policies import REQUESTER_ID, OperationClass, PolicyKind
from fieldops.services.rls.roles import ROLE_ORDER


# Parameterless kinds are always available under their own name.
BUILTIN_POLICY_NAMES: tuple[str, ...] = (
    PolicyKind.DENY_ALL.value,
    PolicyKind.ALL_RECORDS.value,
    PolicyKind.PUBLIC_RESOURCE.value,
)

_PERMISSION_NAMES = {"read", "create", "update", "delete"}


class PolicyDefinition(BaseModel):
    # A named, parameterized policy kind that assignments refer to.
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: PolicyKind
    owner_field: str | None = None
    identity_key: str = REQUESTER_ID
    minimum_role: str | None = None

    @model_validator(mode="after")
    def _check_parameters(self) -> "PolicyDefinition":
        if self.kind is PolicyKind.OWN_RECORDS_ONLY and not self.owner_field:
            raise ValueError("own_records_only policies require owner_field")
        if self.kind is PolicyKind.MINIMUM_ROLE:
            if not self.minimum_role:
                raise ValueError("minimum_role policies require minimum_role")
            if self.minimum_role not in ROLE_ORDER:
                raise ValueError(f"Unknown minimum_role: {self.minimum_role}")
        return self


class OperationAssignment(BaseModel):
    # Split assignment when reads and writes use different policies.
    model_config = ConfigDict(extra="forbid", frozen=True)

    read: str | None = None
    write: str | None = None

    def for_class(self, operation_class: OperationClass) -> str | None:
        return self.read if operation_class is OperationClass.READ else self.write


Assignment = Union[str, OperationAssignment]


class PolicyTable(BaseModel):
    """Full RLS configuration: named policies, role assignments, permissions.

    ``assignments`` maps role -> resource -> policy name (or a read/write
    split). ``permissions`` maps resource -> permission -> minimum role and is
    the resource-level gate applied before row-level security.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    policies: dict[str, PolicyDefinition] = Field(default_factory=dict)
    assignments: dict[str, dict[str, Assignment]] = Field(default_factory=dict)
    permissions: dict[str, dict[str, str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_references(self) -> "PolicyTable":
        known = set(self.policies) | set(BUILTIN_POLICY_NAMES)
        for role, resources in self.assignments.items():
            if role not in ROLE_ORDER:
                raise ValueError(f"Unknown role in assignments: {role}")
            for resource, assignment in resources.items():
                names = (
                    [assignment]
                    if isinstance(assignment, str)
                    else [name for name in (assignment.read, assignment.write) if name]
                )
                for name in names:
                    if name not in known:
                        raise ValueError(f"Unknown policy '{name}' assigned to {role}/{resource}")
        for resource, grants in self.permissions.items():
            for permission, minimum_role in grants.items():
                if permission not in _PERMISSION_NAMES:
                    raise ValueError(f"Unknown permission '{permission}' on {resource}")
                if minimum_role not in ROLE_ORDER:
                    raise ValueError(f"Unknown role '{minimum_role}' for {resource}:{permission}")
        return self

    def definition(self, name: str) -> PolicyDefinition:
        if name in self.policies:
            return self.policies[name]
        return PolicyDefinition(kind=PolicyKind(name))

    def assigned_name(self, role: str, resource: str, operation_class: OperationClass) -> str | None:
        assignment = self.assignments.get(role, {}).get(resource)
        if assignment is None:
            return None
        if isinstance(assignment, str):
            return assignment
        return assignment.for_class(operation_class)


def parse_policy_table(payload: dict[str, Any]) -> PolicyTable:
    # Surface pydantic validation failures as configuration defects.
    try:
        return PolicyTable.model_validate(payload)
    except ValidationError as exc:
        raise PolicyTableError(f"Invalid policy table: {exc}") from exc


def load_policy_table(path: str | Path) -> PolicyTable:
    source = Path(path)
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise PolicyTableError(f"Policy table not found: {source}") from exc
    except ValueError as exc:
        raise PolicyTableError(f"Policy table is not valid JSON: {source}") from exc
    if not isinstance(payload, dict):
        raise PolicyTableError("Policy table must be a JSON object")
    return parse_policy_table(payload)
