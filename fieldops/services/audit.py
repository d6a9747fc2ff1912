from __future__ import annotations

import logging
from typing import Any, Protocol

from fieldops.core.config import get_settings
from fieldops.domain.policies import AccessDecision, Outcome, Policy, RequestContext
from fieldops.services.rls.evaluator import REASON_OWNER_FIELD_MISSING


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "auth0"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


class DecisionAudit(Protocol):
    def record_decision(
        self,
        *,
        context: RequestContext,
        policy: Policy,
        decision: AccessDecision,
    ) -> None: ...


class LoggingDecisionAudit:
    """Emit RLS decisions as log lines; storage of audit events lives elsewhere."""

    def __init__(self, *, request_id: str | None = None, verbose: bool | None = None) -> None:
        self._request_id = request_id
        self._verbose = get_settings().rls_audit_decisions if verbose is None else verbose

    def record_decision(
        self,
        *,
        context: RequestContext,
        policy: Policy,
        decision: AccessDecision,
    ) -> None:
        if decision.reason == REASON_OWNER_FIELD_MISSING:
            # Data-quality problem: the record carries no owner for an owner-scoped policy.
            target = sanitize_metadata(dict(context.target_record or {}))
            logger.warning(
                "rls_malformed_ownership resource=%s policy=%s owner_field=%s record_id=%s request_id=%s",
                context.resource_type,
                policy.name,
                policy.owner_field,
                target.get("id"),
                self._request_id,
            )
        level = logging.INFO if self._verbose or decision.outcome is Outcome.DENY else logging.DEBUG
        logger.log(
            level,
            "rls_decision resource=%s operation=%s role=%s requester=%s policy=%s outcome=%s "
            "applied=%s reason=%s request_id=%s",
            context.resource_type,
            context.operation.value,
            context.requester_role,
            context.requester_id,
            policy.name,
            decision.outcome.value,
            decision.policy_applied,
            decision.reason,
            self._request_id,
        )
