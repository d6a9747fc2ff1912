from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union


class Operation(str, Enum):
    LIST = "list"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def operation_class(self) -> "OperationClass":
        if self in (Operation.LIST, Operation.GET):
            return OperationClass.READ
        return OperationClass.WRITE

    @property
    def is_read(self) -> bool:
        return self.operation_class is OperationClass.READ


class OperationClass(str, Enum):
    READ = "read"
    WRITE = "write"


class PolicyKind(str, Enum):
    # Closed set; every role/resource behavior is one of these.
    DENY_ALL = "deny_all"
    ALL_RECORDS = "all_records"
    OWN_RECORDS_ONLY = "own_records_only"
    PUBLIC_RESOURCE = "public_resource"
    MINIMUM_ROLE = "minimum_role"


class Outcome(str, Enum):
    ALLOW_ALL = "ALLOW_ALL"
    ALLOW_FILTERED = "ALLOW_FILTERED"
    DENY = "DENY"


# Identity key that resolves to RequestContext.requester_id.
REQUESTER_ID = "requester_id"


@dataclass(frozen=True)
class MatchNothing:
    """Predicate that excludes every row."""

    def matches(self, record: Mapping[str, Any] | None) -> bool:
        return False

    def describe(self) -> str:
        return "match_nothing"


@dataclass(frozen=True)
class FieldEquals:
    """Predicate ``record[field] == value``; absent or null fields never match."""

    field: str
    value: Any

    def matches(self, record: Mapping[str, Any] | None) -> bool:
        if record is None or self.value is None:
            return False
        current = record.get(self.field)
        if current is None:
            return False
        return identity_equals(current, self.value)

    def describe(self) -> str:
        return f"{self.field} = {self.value!r}"


FilterPredicate = Union[MatchNothing, FieldEquals]


def identity_equals(left: Any, right: Any) -> bool:
    # Must agree with the SQL bind coercion: a string facing an integer is parsed as one.
    if left is None or right is None:
        return False
    if isinstance(left, str) and isinstance(right, int) and not isinstance(right, bool):
        left, right = right, left
    if isinstance(left, int) and not isinstance(left, bool) and isinstance(right, str):
        try:
            return left == int(right)
        except ValueError:
            return False
    return left == right


@dataclass(frozen=True)
class Policy:
    # Access rules for one (role, resource_type, operation class) triple.
    name: str
    role: str
    resource_type: str
    kind: PolicyKind
    owner_field: str | None = None
    identity_key: str = REQUESTER_ID
    minimum_role: str | None = None
    # Synthesized fail-closed fallback when nothing is registered.
    is_default: bool = False


@dataclass(frozen=True)
class AccessDecision:
    outcome: Outcome
    policy_applied: bool
    filter_predicate: FilterPredicate | None = None
    policy_name: str | None = None
    reason: str = ""


@dataclass(frozen=True)
class RequestContext:
    # Per-request input to evaluation; discarded once the response is built.
    requester_id: Any
    requester_role: str
    resource_type: str
    operation: Operation
    target_record: Mapping[str, Any] | None = None
    # Additional identity attributes (e.g. customer_profile_id).
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def identity(self, key: str) -> Any:
        if key == REQUESTER_ID:
            return self.requester_id
        return self.attributes.get(key)

    def with_target(self, record: Mapping[str, Any] | None) -> "RequestContext":
        return RequestContext(
            requester_id=self.requester_id,
            requester_role=self.requester_role,
            resource_type=self.resource_type,
            operation=self.operation,
            target_record=record,
            attributes=self.attributes,
        )
