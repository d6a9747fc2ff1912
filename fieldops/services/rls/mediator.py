from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from fieldops.core.errors import RlsEnforcementError
from fieldops.domain.policies import (
    AccessDecision,
    Operation,
    Outcome,
    Policy,
    RequestContext,
)
from fieldops.domain.queries import DataAccess, ListQuery
from fieldops.services.audit import DecisionAudit, LoggingDecisionAudit
from fieldops.services.rls.constraints import constraint_for_decision
from fieldops.services.rls.evaluator import evaluate
from fieldops.services.rls.registry import PolicyRegistry, RegistryHolder


class ResultStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    DENIED = "denied"


@dataclass(frozen=True)
class MediatorResult:
    # Typed outcome of a mediated operation; denials are values, not exceptions.
    status: ResultStatus
    data: Any = None
    rls_applied: bool = False
    decision: AccessDecision | None = None
    pagination: dict[str, Any] | None = None
    applied_filters: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.OK


class RequestMediator:
    """Decision and delegation point between routes and the data layer.

    Resolves the policy for each operation, evaluates it, narrows or rejects
    the request, and delegates the actual read/write. Persists nothing itself.
    """

    def __init__(
        self,
        registry: RegistryHolder | PolicyRegistry,
        repository: DataAccess,
        *,
        audit: DecisionAudit | None = None,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._audit = audit or LoggingDecisionAudit()

    def _snapshot(self) -> PolicyRegistry:
        # One registry snapshot per operation so a concurrent reload is never observed halfway.
        if isinstance(self._registry, RegistryHolder):
            return self._registry.current()
        return self._registry

    def _decide(self, registry: PolicyRegistry, context: RequestContext) -> tuple[Policy, AccessDecision]:
        policy = registry.resolve(context.requester_role, context.resource_type, context.operation)
        decision = evaluate(policy, context)
        self._audit.record_decision(context=context, policy=policy, decision=decision)
        return policy, decision

    async def list(self, context: RequestContext, query: ListQuery | None = None) -> MediatorResult:
        context = _with_operation(context, Operation.LIST)
        registry = self._snapshot()
        resource = registry.resource(context.resource_type)
        _policy, decision = self._decide(registry, context)
        if decision.outcome is Outcome.DENY:
            return MediatorResult(
                status=ResultStatus.DENIED,
                rls_applied=decision.policy_applied,
                decision=decision,
            )
        constraint = constraint_for_decision(decision, resource.model)
        page = await self._repository.list(resource, query=query or ListQuery(), constraint=constraint)
        if constraint is not None and not page.constrained:
            raise RlsEnforcementError(
                f"RLS validation failed for {context.resource_type}: data layer did not apply the row filter"
            )
        return MediatorResult(
            status=ResultStatus.OK,
            data=page.rows,
            rls_applied=decision.policy_applied,
            decision=decision,
            pagination=page.pagination(),
            applied_filters=page.applied_filters,
        )

    async def get(self, context: RequestContext, record_id: Any) -> MediatorResult:
        context = _with_operation(context, Operation.GET)
        registry = self._snapshot()
        resource = registry.resource(context.resource_type)
        record = await self._repository.get(resource, record_id)
        if record is None:
            return MediatorResult(status=ResultStatus.NOT_FOUND)
        _policy, decision = self._decide(registry, context.with_target(record))
        # Denied and filtered-out records are indistinguishable from absent ones.
        if decision.outcome is Outcome.DENY:
            return MediatorResult(status=ResultStatus.NOT_FOUND, rls_applied=decision.policy_applied, decision=decision)
        if decision.outcome is Outcome.ALLOW_FILTERED and (
            decision.filter_predicate is None or not decision.filter_predicate.matches(record)
        ):
            return MediatorResult(status=ResultStatus.NOT_FOUND, rls_applied=decision.policy_applied, decision=decision)
        return MediatorResult(
            status=ResultStatus.OK,
            data=record,
            rls_applied=decision.policy_applied,
            decision=decision,
        )

    async def create(self, context: RequestContext, payload: Mapping[str, Any]) -> MediatorResult:
        context = _with_operation(context, Operation.CREATE).with_target(dict(payload))
        registry = self._snapshot()
        resource = registry.resource(context.resource_type)
        _policy, decision = self._decide(registry, context)
        if not _write_allowed(decision):
            return MediatorResult(status=ResultStatus.DENIED, rls_applied=decision.policy_applied, decision=decision)
        created = await self._repository.create(resource, payload)
        return MediatorResult(
            status=ResultStatus.OK,
            data=created,
            rls_applied=decision.policy_applied,
            decision=decision,
        )

    async def update(self, context: RequestContext, record_id: Any, changes: Mapping[str, Any]) -> MediatorResult:
        context = _with_operation(context, Operation.UPDATE)
        registry = self._snapshot()
        resource = registry.resource(context.resource_type)
        current = await self._repository.get(resource, record_id)
        if current is None:
            return MediatorResult(status=ResultStatus.NOT_FOUND)
        policy, decision = self._decide(registry, context.with_target(current))
        if not _write_allowed(decision):
            return MediatorResult(status=ResultStatus.DENIED, rls_applied=decision.policy_applied, decision=decision)
        if policy.owner_field and policy.owner_field in changes:
            # The record must still be owned by the requester after the change.
            merged = {**current, **dict(changes)}
            _policy, decision = self._decide(registry, context.with_target(merged))
            if not _write_allowed(decision):
                return MediatorResult(
                    status=ResultStatus.DENIED, rls_applied=decision.policy_applied, decision=decision
                )
        updated = await self._repository.update(resource, record_id, changes)
        if updated is None:
            return MediatorResult(status=ResultStatus.NOT_FOUND, rls_applied=decision.policy_applied, decision=decision)
        return MediatorResult(
            status=ResultStatus.OK,
            data=updated,
            rls_applied=decision.policy_applied,
            decision=decision,
        )

    async def delete(self, context: RequestContext, record_id: Any) -> MediatorResult:
        context = _with_operation(context, Operation.DELETE)
        registry = self._snapshot()
        resource = registry.resource(context.resource_type)
        current = await self._repository.get(resource, record_id)
        if current is None:
            return MediatorResult(status=ResultStatus.NOT_FOUND)
        _policy, decision = self._decide(registry, context.with_target(current))
        if not _write_allowed(decision):
            return MediatorResult(status=ResultStatus.DENIED, rls_applied=decision.policy_applied, decision=decision)
        deleted = await self._repository.delete(resource, record_id)
        if not deleted:
            return MediatorResult(status=ResultStatus.NOT_FOUND, rls_applied=decision.policy_applied, decision=decision)
        return MediatorResult(
            status=ResultStatus.OK,
            data=current,
            rls_applied=decision.policy_applied,
            decision=decision,
        )


def _write_allowed(decision: AccessDecision) -> bool:
    # A filter has no meaning for a single-record write; only ALLOW_ALL proceeds.
    return decision.outcome is Outcome.ALLOW_ALL


def _with_operation(context: RequestContext, operation: Operation) -> RequestContext:
    if context.operation is operation:
        return context
    return RequestContext(
        requester_id=context.requester_id,
        requester_role=context.requester_role,
        resource_type=context.resource_type,
        operation=operation,
        target_record=context.target_record,
        attributes=context.attributes,
    )
