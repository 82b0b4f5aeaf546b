"""Compose compiled rule predicates into one customer query and count it."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from crm_backend.core.errors import InvalidRuleSetError
from crm_backend.schemas.segment import Combinator, RuleSet
from crm_backend.services.rules import compile_rule

if TYPE_CHECKING:
    from crm_backend.services.stores import CustomerStore


def build_segment_query(rule_set: RuleSet | None) -> ColumnElement[bool]:
    """Join every rule's predicate under the rule set's single combinator."""

    if rule_set is None or not rule_set.rules:
        raise InvalidRuleSetError("At least one rule is required")
    conditions = [compile_rule(rule) for rule in rule_set.rules]
    if Combinator(rule_set.combinator) is Combinator.AND:
        return and_(*conditions)
    return or_(*conditions)


async def estimate_segment(customers: "CustomerStore", rule_set: RuleSet | None) -> int:
    """Count the customers a rule set matches right now, without loading them.

    Segment previews and the persisted ``estimated_count`` both go through
    here, so the two numbers cannot drift apart.
    """

    query = build_segment_query(rule_set)
    return await customers.count(query)
