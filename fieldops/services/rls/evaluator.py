from __future__ import annotations

from typing import Any, Mapping

from fieldops.domain.policies import (
    AccessDecision,
    FieldEquals,
    MatchNothing,
    Operation,
    Outcome,
    Policy,
    PolicyKind,
    RequestContext,
    identity_equals,
)
from fieldops.services.rls.roles import role_rank


# Reason codes are stable; audit consumers key on them.
REASON_DEFAULT_DENY = "default_deny"
REASON_DENY_ALL = "deny_all"
REASON_ALL_RECORDS = "all_records"
REASON_PUBLIC_RESOURCE = "public_resource"
REASON_OWNER_FILTER = "owner_filter"
REASON_OWNER_MATCH = "owner_match"
REASON_OWNER_MISMATCH = "owner_mismatch"
REASON_OWNER_FIELD_MISSING = "owner_field_missing"
REASON_IDENTITY_MISSING = "identity_missing"
REASON_TARGET_MISSING = "target_missing"
REASON_ROLE_SUFFICIENT = "role_rank_sufficient"
REASON_ROLE_INSUFFICIENT = "role_rank_insufficient"

_MATCH_NOTHING = MatchNothing()


def evaluate(policy: Policy, context: RequestContext) -> AccessDecision:
    """Decide access for one request under one policy.

    Pure function of its inputs: no I/O, no shared state, so the same
    (policy, context) always yields an equal decision. Denials are returned
    as ``Outcome.DENY`` values, never raised.
    """
    if policy.kind is PolicyKind.DENY_ALL:
        return _deny_all(policy, context)
    if policy.kind is PolicyKind.ALL_RECORDS:
        return _decision(policy, Outcome.ALLOW_ALL, REASON_ALL_RECORDS)
    if policy.kind is PolicyKind.PUBLIC_RESOURCE:
        # Open to anyone holding the base permission; no restriction engaged.
        return AccessDecision(
            outcome=Outcome.ALLOW_ALL,
            policy_applied=False,
            policy_name=policy.name,
            reason=REASON_PUBLIC_RESOURCE,
        )
    if policy.kind is PolicyKind.MINIMUM_ROLE:
        return _minimum_role(policy, context)
    if policy.kind is PolicyKind.OWN_RECORDS_ONLY:
        return _own_records(policy, context)
    # Unreachable for the closed enum; fail closed if it ever grows.
    return _decision(policy, Outcome.DENY, REASON_DEFAULT_DENY)


def _decision(
    policy: Policy,
    outcome: Outcome,
    reason: str,
    predicate: MatchNothing | FieldEquals | None = None,
) -> AccessDecision:
    return AccessDecision(
        outcome=outcome,
        policy_applied=True,
        filter_predicate=predicate if outcome is Outcome.ALLOW_FILTERED else None,
        policy_name=policy.name,
        reason=reason,
    )


def _deny_all(policy: Policy, context: RequestContext) -> AccessDecision:
    # Reads degrade to an empty result set; writes are denied outright.
    reason = REASON_DEFAULT_DENY if policy.is_default else REASON_DENY_ALL
    if context.operation.is_read:
        return _decision(policy, Outcome.ALLOW_FILTERED, reason, _MATCH_NOTHING)
    return _decision(policy, Outcome.DENY, reason)


def _minimum_role(policy: Policy, context: RequestContext) -> AccessDecision:
    required = role_rank(policy.minimum_role)
    if required > 0 and role_rank(context.requester_role) >= required:
        return _decision(policy, Outcome.ALLOW_ALL, REASON_ROLE_SUFFICIENT)
    return _decision(policy, Outcome.DENY, REASON_ROLE_INSUFFICIENT)


def _own_records(policy: Policy, context: RequestContext) -> AccessDecision:
    owner_field = policy.owner_field or ""
    identity = context.identity(policy.identity_key)
    if context.operation is Operation.LIST or (
        context.operation is Operation.GET and context.target_record is None
    ):
        if identity is None:
            # No identity to compare against (e.g. technician without a profile).
            return _decision(policy, Outcome.ALLOW_FILTERED, REASON_IDENTITY_MISSING, _MATCH_NOTHING)
        return _decision(
            policy,
            Outcome.ALLOW_FILTERED,
            REASON_OWNER_FILTER,
            FieldEquals(field=owner_field, value=identity),
        )
    return _check_ownership(policy, context.target_record, owner_field, identity)


def _check_ownership(
    policy: Policy,
    record: Mapping[str, Any] | None,
    owner_field: str,
    identity: Any,
) -> AccessDecision:
    # Single-record checks: malformed or foreign records are denied, never raised.
    if record is None:
        return _decision(policy, Outcome.DENY, REASON_TARGET_MISSING)
    if identity is None:
        return _decision(policy, Outcome.DENY, REASON_IDENTITY_MISSING)
    owner = record.get(owner_field) if hasattr(record, "get") else None
    if owner is None:
        return _decision(policy, Outcome.DENY, REASON_OWNER_FIELD_MISSING)
    if identity_equals(owner, identity):
        return _decision(policy, Outcome.ALLOW_ALL, REASON_OWNER_MATCH)
    return _decision(policy, Outcome.DENY, REASON_OWNER_MISMATCH)
