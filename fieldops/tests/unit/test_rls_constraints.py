from __future__ import annotations

import pytest
from sqlalchemy import select

from fieldops.core.errors import ConfigurationError
from fieldops.domain.models import Invoice, WorkOrder
from fieldops.domain.policies import AccessDecision, FieldEquals, MatchNothing, Outcome
from fieldops.services.rls.constraints import combine, constraint_for_decision, to_query_constraint


def _sql(clause) -> str:
    # Render with literals so assertions read like the emitted WHERE clause.
    return str(select(Invoice.id).where(clause).compile(compile_kwargs={"literal_binds": True}))


def test_no_predicate_is_unconstrained() -> None:
    assert to_query_constraint(None, Invoice) is None


def test_match_nothing_compiles_to_false() -> None:
    sql = _sql(to_query_constraint(MatchNothing(), Invoice))
    assert "false" in sql.lower() or "0 = 1" in sql


def test_field_equals_compiles_to_column_equality() -> None:
    sql = _sql(to_query_constraint(FieldEquals(field="customer_id", value=42), Invoice))
    assert "invoices.customer_id = 42" in sql


def test_string_identity_bound_as_integer() -> None:
    clause = to_query_constraint(FieldEquals(field="customer_id", value="42"), Invoice)
    assert clause.right.value == 42


def test_non_numeric_identity_for_integer_owner_matches_nothing() -> None:
    sql = _sql(to_query_constraint(FieldEquals(field="customer_id", value="abc"), Invoice))
    assert "customer_id" not in sql.split("WHERE", 1)[1]


def test_unknown_column_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        to_query_constraint(FieldEquals(field="owner_uuid", value=1), Invoice)


def test_allow_all_decision_adds_no_constraint() -> None:
    decision = AccessDecision(outcome=Outcome.ALLOW_ALL, policy_applied=True)
    assert constraint_for_decision(decision, Invoice) is None


def test_filtered_decision_compiles_predicate() -> None:
    decision = AccessDecision(
        outcome=Outcome.ALLOW_FILTERED,
        policy_applied=True,
        filter_predicate=FieldEquals(field="assigned_technician_id", value=7),
    )
    clause = constraint_for_decision(decision, WorkOrder)
    assert "work_orders.assigned_technician_id = 7" in str(
        select(WorkOrder.id).where(clause).compile(compile_kwargs={"literal_binds": True})
    )


def test_combine_ands_caller_filters_with_rls_clause() -> None:
    clause = combine(Invoice.status == "paid", None, to_query_constraint(FieldEquals("customer_id", 42), Invoice))
    sql = _sql(clause)
    assert "invoices.status = 'paid' AND invoices.customer_id = 42" in sql


def test_combine_empty_is_none() -> None:
    assert combine(None, None) is None
