from __future__ import annotations

import logging

import pytest

from fieldops.core.errors import RlsEnforcementError
from fieldops.domain.policies import Operation, Outcome
from fieldops.domain.queries import ListQuery
from fieldops.services.audit import LoggingDecisionAudit
from fieldops.services.rls.mediator import RequestMediator, ResultStatus
from fieldops.services.rls.registry import RegistryHolder
from fieldops.tests.utils.rls import InMemoryRepository, make_context, make_registry


ROWS = {
    "contracts": [
        {"id": 1, "contract_number": "C-1", "customer_id": 42},
        {"id": 2, "contract_number": "C-2", "customer_id": 99},
    ],
    "invoices": [
        {"id": 10, "invoice_number": "INV-10", "customer_id": 42},
        {"id": 11, "invoice_number": "INV-11", "customer_id": 99},
        {"id": 12, "invoice_number": "INV-12", "customer_id": None},
    ],
    "inventory": [{"id": 1, "name": "Filter", "sku": "F-1"}],
    "users": [{"id": 5, "email": "ops@example.com", "role": "dispatcher"}],
}

POLICIES = {
    "own_invoices_only": {"kind": "own_records_only", "owner_field": "customer_id"},
    "manager_or_above": {"kind": "minimum_role", "minimum_role": "manager"},
}

ASSIGNMENTS = {
    "admin": {"contracts": "all_records", "invoices": "all_records"},
    "customer": {"invoices": "own_invoices_only"},
    "dispatcher": {"inventory": "public_resource", "users": {"read": "all_records", "write": "manager_or_above"}},
}


def _mediator(repository: InMemoryRepository | None = None) -> tuple[RequestMediator, InMemoryRepository]:
    repository = repository or InMemoryRepository(ROWS)
    registry = make_registry(ASSIGNMENTS, policies=POLICIES)
    return RequestMediator(registry, repository, audit=LoggingDecisionAudit(verbose=True)), repository


@pytest.mark.asyncio
async def test_admin_lists_all_contracts_with_rls_applied() -> None:
    mediator, _repo = _mediator()
    result = await mediator.list(make_context("admin", "contracts", Operation.LIST))
    assert result.status is ResultStatus.OK
    assert [row["id"] for row in result.data] == [1, 2]
    assert result.rls_applied is True
    assert result.decision.outcome is Outcome.ALLOW_ALL


@pytest.mark.asyncio
async def test_technician_without_policy_gets_empty_contracts() -> None:
    mediator, repo = _mediator()
    result = await mediator.list(make_context("technician", "contracts", Operation.LIST))
    assert result.status is ResultStatus.OK
    assert result.data == []
    assert result.rls_applied is True
    assert result.pagination["total"] == 0
    assert repo.constraints[-1] is not None


@pytest.mark.asyncio
async def test_customer_list_only_returns_owned_rows() -> None:
    mediator, _repo = _mediator()
    result = await mediator.list(make_context("customer", "invoices", Operation.LIST, requester_id=42))
    assert [row["id"] for row in result.data] == [10]
    assert result.rls_applied is True


@pytest.mark.asyncio
async def test_list_passes_caller_query_through() -> None:
    mediator, _repo = _mediator()
    result = await mediator.list(
        make_context("admin", "invoices", Operation.LIST), ListQuery(page=2, limit=2, filters={"status": "paid"})
    )
    assert [row["id"] for row in result.data] == [12]
    assert result.pagination == {
        "page": 2,
        "limit": 2,
        "total": 3,
        "totalPages": 2,
        "hasNext": False,
        "hasPrev": True,
    }
    assert result.applied_filters == {"status": "paid"}


@pytest.mark.asyncio
async def test_unconstrained_data_layer_raises() -> None:
    mediator, _repo = _mediator(InMemoryRepository(ROWS, honor_constraints=False))
    with pytest.raises(RlsEnforcementError):
        await mediator.list(make_context("customer", "invoices", Operation.LIST, requester_id=42))


@pytest.mark.asyncio
async def test_customer_get_owned_invoice() -> None:
    mediator, _repo = _mediator()
    result = await mediator.get(make_context("customer", "invoices", Operation.GET, requester_id=42), 10)
    assert result.status is ResultStatus.OK
    assert result.data["customer_id"] == 42


@pytest.mark.asyncio
async def test_customer_get_foreign_invoice_is_not_found() -> None:
    mediator, _repo = _mediator()
    result = await mediator.get(make_context("customer", "invoices", Operation.GET, requester_id=42), 11)
    assert result.status is ResultStatus.NOT_FOUND
    assert result.data is None


@pytest.mark.asyncio
async def test_get_absent_record_is_not_found() -> None:
    mediator, _repo = _mediator()
    result = await mediator.get(make_context("admin", "invoices", Operation.GET), 404)
    assert result.status is ResultStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_get_under_default_deny_is_not_found() -> None:
    mediator, _repo = _mediator()
    result = await mediator.get(make_context("technician", "contracts", Operation.GET), 1)
    assert result.status is ResultStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_dispatcher_creates_inventory_under_public_resource() -> None:
    mediator, repo = _mediator()
    result = await mediator.create(
        make_context("dispatcher", "inventory", Operation.CREATE), {"name": "Valve", "sku": "V-1"}
    )
    assert result.status is ResultStatus.OK
    assert result.rls_applied is False
    assert result.data["id"] == 2
    assert repo.writes == [("create", "inventory", 2)]


@pytest.mark.asyncio
async def test_create_under_deny_all_never_reaches_data_layer() -> None:
    mediator, repo = _mediator()
    result = await mediator.create(make_context("technician", "contracts", Operation.CREATE), {"customer_id": 1})
    assert result.status is ResultStatus.DENIED
    assert repo.writes == []


@pytest.mark.asyncio
async def test_customer_create_for_someone_else_denied() -> None:
    mediator, repo = _mediator()
    context = make_context("customer", "invoices", Operation.CREATE, requester_id=42)
    denied = await mediator.create(context, {"invoice_number": "INV-X", "customer_id": 99})
    allowed = await mediator.create(context, {"invoice_number": "INV-Y", "customer_id": 42})
    assert denied.status is ResultStatus.DENIED
    assert allowed.status is ResultStatus.OK
    assert repo.writes == [("create", "invoices", 13)]


@pytest.mark.asyncio
async def test_update_foreign_record_denied() -> None:
    mediator, repo = _mediator()
    result = await mediator.update(
        make_context("customer", "invoices", Operation.UPDATE, requester_id=42), 11, {"status": "paid"}
    )
    assert result.status is ResultStatus.DENIED
    assert repo.writes == []


@pytest.mark.asyncio
async def test_update_cannot_reassign_ownership_away() -> None:
    mediator, repo = _mediator()
    result = await mediator.update(
        make_context("customer", "invoices", Operation.UPDATE, requester_id=42), 10, {"customer_id": 99}
    )
    assert result.status is ResultStatus.DENIED
    assert repo.writes == []


@pytest.mark.asyncio
async def test_update_owned_record() -> None:
    mediator, _repo = _mediator()
    result = await mediator.update(
        make_context("customer", "invoices", Operation.UPDATE, requester_id=42), 10, {"status": "paid"}
    )
    assert result.status is ResultStatus.OK
    assert result.data["status"] == "paid"


@pytest.mark.asyncio
async def test_update_missing_record_is_not_found() -> None:
    mediator, _repo = _mediator()
    result = await mediator.update(make_context("admin", "invoices", Operation.UPDATE), 404, {"status": "paid"})
    assert result.status is ResultStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_minimum_role_blocks_dispatcher_user_writes() -> None:
    mediator, repo = _mediator()
    result = await mediator.delete(make_context("dispatcher", "users", Operation.DELETE), 5)
    assert result.status is ResultStatus.DENIED
    assert repo.writes == []


@pytest.mark.asyncio
async def test_delete_owned_record_returns_it() -> None:
    mediator, repo = _mediator()
    result = await mediator.delete(make_context("customer", "invoices", Operation.DELETE, requester_id=42), 10)
    assert result.status is ResultStatus.OK
    assert result.data["invoice_number"] == "INV-10"
    assert repo.writes == [("delete", "invoices", 10)]


@pytest.mark.asyncio
async def test_malformed_ownership_logged_and_denied(caplog: pytest.LogCaptureFixture) -> None:
    mediator, _repo = _mediator()
    with caplog.at_level(logging.WARNING, logger="fieldops.services.audit"):
        result = await mediator.delete(make_context("customer", "invoices", Operation.DELETE, requester_id=42), 12)
    assert result.status is ResultStatus.DENIED
    assert any("rls_malformed_ownership" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_mediator_reads_current_registry_from_holder() -> None:
    holder = RegistryHolder(make_registry({}))
    mediator = RequestMediator(holder, InMemoryRepository(ROWS))
    empty = await mediator.list(make_context("admin", "contracts", Operation.LIST))
    holder.swap(make_registry({"admin": {"contracts": "all_records"}}))
    full = await mediator.list(make_context("admin", "contracts", Operation.LIST))
    assert empty.data == []
    assert len(full.data) == 2


@pytest.mark.asyncio
async def test_repeated_requests_yield_equal_decisions() -> None:
    mediator, _repo = _mediator()
    context = make_context("customer", "invoices", Operation.GET, requester_id=42)
    first = await mediator.get(context, 10)
    second = await mediator.get(context, 10)
    assert first.decision == second.decision
    assert first.data == second.data
