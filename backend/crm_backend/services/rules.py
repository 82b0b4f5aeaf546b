"""Compile one segment rule into a SQLAlchemy predicate over customers.

Each rule field is bound to a customer column and a value kind; each operator
to a comparison. Values are coerced per kind before comparison:

* ``number`` values become floats.
* ``days_ago`` values (``last_purchase``) are read as "N days ago" and turned
  into an absolute cutoff instant at compile time.
* ``boolean`` values are true only for ``True`` or ``"true"``.
* ``list`` values (``tags``) match against the JSON text of the tag list.

A value that cannot be coerced compiles to an always-false predicate so a
single bad rule never breaks the rest of the query. Operators with no
semantics for a field raise :class:`UnsupportedOperatorError`.
"""

from __future__ import annotations

import json
import operator as op
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import String, cast, false, func, not_
from sqlalchemy.sql.elements import ColumnElement

from crm_backend.core.errors import UnsupportedOperatorError
from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.schemas.segment import Rule, RuleField, RuleOperator

NUMBER = "number"
STRING = "string"
BOOLEAN = "boolean"
DAYS_AGO = "days_ago"
LIST = "list"
JSON_LIST_PUNCTUATION = "[], "

# field -> (customer column attribute, value kind)
FIELD_COLUMNS: dict[RuleField, tuple[str, str]] = {
    RuleField.TOTAL_SPENT: ("total_spent", NUMBER),
    RuleField.ORDER_COUNT: ("order_count", NUMBER),
    RuleField.LAST_PURCHASE: ("last_purchase", DAYS_AGO),
    RuleField.TAGS: ("tags", LIST),
    RuleField.CITY: ("city", STRING),
    RuleField.IS_ACTIVE: ("is_active", BOOLEAN),
    RuleField.STATE: ("state", STRING),
    RuleField.COUNTRY: ("country", STRING),
    RuleField.GENDER: ("gender", STRING),
    RuleField.AGE: ("age", NUMBER),
    RuleField.AVERAGE_ORDER_VALUE: ("average_order_value", NUMBER),
}

COMPARISONS: dict[RuleOperator, Callable[[Any, Any], Any]] = {
    RuleOperator.GT: op.gt,
    RuleOperator.LT: op.lt,
    RuleOperator.GTE: op.ge,
    RuleOperator.LTE: op.le,
    RuleOperator.EQ: op.eq,
    RuleOperator.NE: op.ne,
}


class _Uncoercible(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.utcnow()


def _coerce(kind: str, value: Any) -> Any:
    if kind == NUMBER:
        if isinstance(value, bool) or value is None:
            raise _Uncoercible
        try:
            return float(value)
        except (TypeError, ValueError):
            raise _Uncoercible from None
    if kind == DAYS_AGO:
        try:
            days = int(str(value).strip())
        except (TypeError, ValueError):
            raise _Uncoercible from None
        try:
            return _utcnow() - timedelta(days=days)
        except OverflowError:
            # cutoff falls outside the datetime range
            raise _Uncoercible from None
    if kind == BOOLEAN:
        return value is True or value == "true"
    if value is None:
        raise _Uncoercible
    return str(value)


def _contains(column: Any, kind: str, value: Any) -> ColumnElement[bool]:
    text = column if kind == STRING else cast(column, String)
    return func.lower(text).contains(str(value).lower(), autoescape=True)


def _tag_predicate(column: Any, operator: RuleOperator, tag: str) -> ColumnElement[bool]:
    # Tags are stored as a JSON array of strings and matched against its text.
    # Needles are JSON-encoded, so a quote in the value can only match a quote
    # inside an element, never the delimiters around one.
    encoded = json.dumps(tag, ensure_ascii=False)
    if operator is RuleOperator.CONTAINS:
        inner = encoded[1:-1]
        if not inner.strip(JSON_LIST_PUNCTUATION):
            # would only ever match the separators between elements
            return false()
        return func.lower(cast(column, String)).contains(inner.lower(), autoescape=True)
    has_tag = cast(column, String).contains(encoded, autoescape=True)
    if operator is RuleOperator.EQ:
        return has_tag
    if operator is RuleOperator.NE:
        return not_(has_tag)
    raise UnsupportedOperatorError(operator.value, RuleField.TAGS.value)


def compile_rule(rule: Rule) -> ColumnElement[bool]:
    """Translate a single rule into a predicate on ``CrmCustomer``."""

    field_name = getattr(rule.field, "value", rule.field)
    operator = RuleOperator(rule.operator)
    if operator not in COMPARISONS and operator is not RuleOperator.CONTAINS:
        raise UnsupportedOperatorError(operator.value, str(field_name))

    try:
        column_name, kind = FIELD_COLUMNS[RuleField(field_name)]
    except (KeyError, ValueError):
        return false()
    column = getattr(CrmCustomer, column_name)

    try:
        value = _coerce(STRING if kind == LIST else kind, rule.value)
    except _Uncoercible:
        return false()

    if kind == LIST:
        return _tag_predicate(column, operator, value)
    if operator is RuleOperator.CONTAINS:
        return _contains(column, kind, rule.value)
    return COMPARISONS[operator](column, value)
