from __future__ import annotations

from typing import Mapping

from fieldops.domain.policies import Operation


ROLE_ORDER: dict[str, int] = {
    "customer": 1,
    "technician": 2,
    "dispatcher": 3,
    "manager": 4,
    "admin": 5,
}


def normalize_role(role: str | None) -> str:
    # Lowercase role names; unknown roles pass through and resolve to deny_all.
    if role is None:
        return ""
    return role.strip().lower()


def role_rank(role: str | None) -> int:
    return ROLE_ORDER.get(normalize_role(role), 0)


def is_known_role(role: str | None) -> bool:
    return normalize_role(role) in ROLE_ORDER


def role_allows(*, role: str | None, minimum_role: str) -> bool:
    # Compare roles using numeric ordering; unknown roles rank below everyone.
    rank = role_rank(role)
    return rank > 0 and rank >= ROLE_ORDER.get(minimum_role, len(ROLE_ORDER) + 1)


def has_permission(
    matrix: Mapping[str, Mapping[str, str]],
    *,
    role: str | None,
    resource_type: str,
    operation: Operation,
) -> bool:
    """Resource-level gate evaluated before row-level security.

    ``matrix`` maps resource -> permission (read/create/update/delete) -> the
    minimum role holding it. Missing entries deny.
    """
    permission = "read" if operation.is_read else operation.value
    minimum_role = matrix.get(resource_type, {}).get(permission)
    if minimum_role is None:
        return False
    return role_allows(role=role, minimum_role=minimum_role)
