from __future__ import annotations

from typing import Any

from sqlalchemy import and_, false
from sqlalchemy.sql.elements import ColumnElement

from fieldops.core.errors import ConfigurationError
from fieldops.domain.policies import AccessDecision, FieldEquals, MatchNothing, Outcome


def to_query_constraint(predicate: MatchNothing | FieldEquals | None, model: Any) -> ColumnElement[bool] | None:
    """Compile a filter predicate into a SQLAlchemy clause for ``model``.

    ``None`` means unconstrained. The result is one more AND-ed clause; the
    policy engine never sees the caller's search, filter or sort clauses.
    """
    if predicate is None:
        return None
    if isinstance(predicate, MatchNothing):
        return false()
    if isinstance(predicate, FieldEquals):
        column = getattr(model, predicate.field, None)
        if column is None or not hasattr(column, "property"):
            raise ConfigurationError(
                f"RLS field '{predicate.field}' is not a column of {getattr(model, '__tablename__', model)}"
            )
        value = _bind_value(column, predicate.value)
        if value is None:
            # An identity that cannot be a value of the owner column owns nothing.
            return false()
        return column == value
    raise ConfigurationError(f"Unsupported RLS predicate: {type(predicate).__name__}")


def constraint_for_decision(decision: AccessDecision, model: Any) -> ColumnElement[bool] | None:
    # Only filtered decisions narrow the query; ALLOW_ALL passes through.
    if decision.outcome is not Outcome.ALLOW_FILTERED:
        return None
    return to_query_constraint(decision.filter_predicate, model)


def combine(*clauses: ColumnElement[bool] | None) -> ColumnElement[bool] | None:
    # AND together the non-empty clauses, preserving caller order.
    present = [clause for clause in clauses if clause is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return and_(*present)


def _bind_value(column: Any, value: Any) -> Any:
    # Header identities arrive as strings; strict drivers such as asyncpg reject str for integer columns.
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is int:
        try:
            return int(value)
        except ValueError:
            return None
    return value
