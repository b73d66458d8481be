"""
Rule condition evaluation.

A rule's conditions form a conjunction: every condition must hold for the
rule to apply. Each condition compares one attribute of the pricing
context with a literal value. There is no OR-grouping and no negation
beyond the `ne` operator.

Supported fields:
    branch_id, customer_id, customer_tier, item_id, category, brand,
    quantity, cart_total, date, cart_item_ids

Unknown fields never match, so a rule with a misspelled condition is
inert rather than globally applied.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Optional

from poscore.logging import get_logger, LogStream
from poscore.pricing.models import ConditionOperator, PricingCondition, PricingContext

logger = get_logger(LogStream.PRICING)

_FIELD_RESOLVERS: Dict[str, Callable[[PricingContext], Any]] = {
    "branch_id": lambda ctx: ctx.branch_id,
    "customer_id": lambda ctx: ctx.customer_id,
    "customer_tier": lambda ctx: ctx.customer_tier,
    "item_id": lambda ctx: ctx.item.item_id,
    "category": lambda ctx: ctx.item.category,
    "brand": lambda ctx: ctx.item.brand,
    "quantity": lambda ctx: ctx.quantity,
    "cart_total": lambda ctx: ctx.cart_total,
    "date": lambda ctx: ctx.transaction_date.date(),
    "cart_item_ids": lambda ctx: ctx.cart_item_ids,
}

SUPPORTED_FIELDS = frozenset(_FIELD_RESOLVERS)


def _coerce(actual: Any, expected: Any) -> Optional[Any]:
    """Convert the condition value to the type of the context attribute."""
    if isinstance(actual, Decimal):
        try:
            return Decimal(str(expected))
        except (InvalidOperation, ValueError):
            return None
    if isinstance(actual, date):
        if isinstance(expected, date):
            return expected
        try:
            return date.fromisoformat(str(expected))
        except ValueError:
            return None
    return expected


def _ordered(op: ConditionOperator, actual: Any, expected: Any) -> bool:
    if op == ConditionOperator.GT:
        return actual > expected
    if op == ConditionOperator.GTE:
        return actual >= expected
    if op == ConditionOperator.LT:
        return actual < expected
    return actual <= expected


def condition_matches(condition: PricingCondition, context: PricingContext) -> bool:
    """Evaluate one condition against the context."""
    resolver = _FIELD_RESOLVERS.get(condition.field)
    if resolver is None:
        logger.debug(f"Unknown condition field: {condition.field}")
        return False

    actual = resolver(context)
    op = condition.operator

    if op == ConditionOperator.IN:
        values = condition.value if isinstance(condition.value, (list, tuple, set)) else (condition.value,)
        return any(_coerce(actual, v) == actual for v in values) if actual is not None else False

    if op == ConditionOperator.CONTAINS:
        if actual is None:
            return False
        if isinstance(actual, str):
            return str(condition.value).lower() in actual.lower()
        return condition.value in actual

    if actual is None:
        # Missing attribute only satisfies an inequality
        return op == ConditionOperator.NE

    expected = _coerce(actual, condition.value)
    if expected is None:
        return False

    if op == ConditionOperator.EQ:
        return actual == expected
    if op == ConditionOperator.NE:
        return actual != expected

    try:
        return _ordered(op, actual, expected)
    except TypeError:
        return False


def all_conditions_match(conditions: Iterable[PricingCondition], context: PricingContext) -> bool:
    return all(condition_matches(c, context) for c in conditions)
