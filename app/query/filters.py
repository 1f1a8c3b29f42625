"""Filter Translator — declarative filter mappings to backend predicates.

Filter mapping semantics:
  - literal value           → equality
  - list of values          → membership (field IN list)
  - {"operator", "value"}   → operator predicate (gte, lte, like, ilike, ...)
  - "_or": [{field: v}, ...] → one OR-combined group, AND-ed with the rest

None and empty-string values are skipped so unset optional filters never
over-constrain a query.
"""

import logging
from typing import Any

from app.integrations.supabase_rest import TableQuery, condition
from app.query.schemas import OR_KEY, FilterOperator

logger = logging.getLogger(__name__)


def _is_unset(value: Any) -> bool:
    return value is None or value == ""


def resolve_operator(field: str, entry: dict[str, Any]) -> tuple[FilterOperator, Any] | None:
    """Resolve an {"operator", "value"} object into (operator, value).

    Unknown operators degrade to equality with a warning. A missing value
    drops the predicate entirely.
    """
    raw_op = entry.get("operator")
    value = entry.get("value")
    if _is_unset(value):
        logger.warning("Filter skipped — operator without value | field=%s | operator=%s", field, raw_op)
        return None

    try:
        op = FilterOperator(str(raw_op).lower())
    except ValueError:
        logger.warning("Unknown filter operator, using equality | field=%s | operator=%s", field, raw_op)
        op = FilterOperator.EQ
    if op is FilterOperator.IN and not isinstance(value, (list, tuple, set)):
        value = [value]
    return op, value


def _classify(field: str, value: Any) -> tuple[FilterOperator, Any] | None:
    if _is_unset(value):
        return None
    if isinstance(value, (list, tuple)):
        return (FilterOperator.IN, list(value)) if value else None
    if isinstance(value, dict) and "operator" in value:
        return resolve_operator(field, value)
    return FilterOperator.EQ, value


def _apply(query: TableQuery, field: str, op: FilterOperator, value: Any) -> TableQuery:
    if op is FilterOperator.IN:
        return query.in_(field, value)
    if op is FilterOperator.EQ:
        return query.eq(field, value)
    if op is FilterOperator.NEQ:
        return query.neq(field, value)
    if op is FilterOperator.GTE:
        return query.gte(field, value)
    if op is FilterOperator.LTE:
        return query.lte(field, value)
    if op is FilterOperator.LIKE:
        return query.like(field, str(value))
    if op is FilterOperator.ILIKE:
        return query.ilike(field, str(value))
    if op is FilterOperator.CONTAINS:
        return query.contains(field, value)
    raise AssertionError(f"Unhandled filter operator: {op}")


def _or_terms(conditions: Any) -> list[str]:
    """Render each single-field condition of a disjunction group."""
    if not isinstance(conditions, (list, tuple)):
        logger.warning("Ignoring %s group that is not a list | type=%s", OR_KEY, type(conditions).__name__)
        return []

    terms = []
    for cond in conditions:
        if not isinstance(cond, dict):
            continue
        for field, value in cond.items():
            resolved = _classify(field, value)
            if resolved is None:
                continue
            op, val = resolved
            terms.append(condition(field, op.value, val))
    return terms


def translate_filters(query: TableQuery, filters: dict[str, Any] | None) -> TableQuery:
    """Apply every entry of a filter mapping to the query, in mapping order."""
    for field, value in (filters or {}).items():
        if field == OR_KEY:
            terms = _or_terms(value)
            if terms:
                query.or_(terms)
            continue

        resolved = _classify(field, value)
        if resolved is None:
            continue
        op, val = resolved
        _apply(query, field, op, val)
    return query
