"""
Pricing data model.

Items come from the catalog and are read-only here. Rules are dated,
conditioned discount definitions; every applicable rule is evaluated
against the same line base amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from poscore.time.clock import ensure_utc

CENT = Decimal("0.01")
ZERO = Decimal("0")


def quantize_money(amount) -> Decimal:
    """Round a money amount to cents (half up)."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value)))


# ============================================================================
# ENUMS
# ============================================================================

class DiscountType(Enum):
    """How a rule's discount_value is interpreted."""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_ITEM = "free_item"


class RuleType(Enum):
    """Rule family, used for reporting and receipt grouping only."""
    ITEM = "item"
    CATEGORY = "category"
    BRAND = "brand"
    CUSTOMER = "customer"
    QUANTITY = "quantity"
    TIME = "time"
    BRANCH = "branch"
    GLOBAL = "global"


class ConditionOperator(Enum):
    """Comparison applied between a context attribute and a condition value."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"


# ============================================================================
# CATALOG ITEM
# ============================================================================

@dataclass(frozen=True)
class Item:
    """Catalog item as seen by the pricing engine."""
    item_id: str
    base_price: Decimal
    name: str = ""
    category: Optional[str] = None
    brand: Optional[str] = None
    barcode: Optional[str] = None


# ============================================================================
# RULES
# ============================================================================

@dataclass(frozen=True)
class PricingCondition:
    """One attribute comparison; a rule's conditions are ANDed."""
    field: str
    operator: ConditionOperator
    value: Any

    def to_dict(self) -> Dict:
        value = self.value
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, (list, tuple)):
            value = [str(v) if isinstance(v, Decimal) else v for v in value]
        return {"field": self.field, "operator": self.operator.value, "value": value}

    @classmethod
    def from_dict(cls, data: Dict) -> 'PricingCondition':
        value = data["value"]
        if isinstance(value, list):
            value = tuple(value)
        return cls(
            field=data["field"],
            operator=ConditionOperator(data.get("operator", "eq")),
            value=value
        )


@dataclass(frozen=True)
class PricingRule:
    """
    Dated, conditioned discount definition.

    A rule applies when it is active, the transaction date falls inside
    [valid_from, valid_to], the branch is listed (or no branches are
    listed) and every condition holds.
    """
    rule_id: str
    name: str
    priority: int
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_to: datetime
    rule_type: RuleType = RuleType.GLOBAL
    applicable_branches: Tuple[str, ...] = ()
    conditions: Tuple[PricingCondition, ...] = ()
    is_active: bool = True

    def __post_init__(self):
        if self.discount_value < 0:
            raise ValueError(f"Rule {self.rule_id}: discount_value cannot be negative")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError(f"Rule {self.rule_id}: percentage discount cannot exceed 100")
        if self.valid_from > self.valid_to:
            raise ValueError(f"Rule {self.rule_id}: valid_from is after valid_to")

    def is_valid_at(self, when: datetime) -> bool:
        return self.valid_from <= ensure_utc(when) <= self.valid_to

    def to_dict(self) -> Dict:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "priority": self.priority,
            "rule_type": self.rule_type.value,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat(),
            "applicable_branches": list(self.applicable_branches),
            "conditions": [c.to_dict() for c in self.conditions],
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'PricingRule':
        return cls(
            rule_id=str(data["rule_id"]),
            name=data["name"],
            priority=int(data.get("priority", 0)),
            rule_type=RuleType(data.get("rule_type", "global")),
            discount_type=DiscountType(data["discount_type"]),
            discount_value=Decimal(str(data["discount_value"])),
            valid_from=_parse_datetime(data["valid_from"]),
            valid_to=_parse_datetime(data["valid_to"]),
            applicable_branches=tuple(data.get("applicable_branches") or ()),
            conditions=tuple(PricingCondition.from_dict(c) for c in data.get("conditions") or ()),
            is_active=bool(data.get("is_active", True)),
        )


# ============================================================================
# CALCULATION INPUT / OUTPUT
# ============================================================================

@dataclass(frozen=True)
class PricingContext:
    """Everything a rule may look at when pricing one line."""
    item: Item
    quantity: Decimal
    branch_id: str
    transaction_date: datetime
    customer_id: Optional[str] = None
    customer_tier: Optional[str] = None
    cart_total: Decimal = ZERO
    cart_item_ids: Tuple[str, ...] = ()

    @property
    def line_base(self) -> Decimal:
        return quantize_money(self.item.base_price * self.quantity)


@dataclass(frozen=True)
class AppliedDiscount:
    """Record of one rule applied to one line (receipt and audit display)."""
    rule_id: str
    rule_name: str
    discount_type: DiscountType
    discount_value: Decimal
    amount: Decimal
    priority: int

    def to_dict(self) -> Dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
            "amount": str(self.amount),
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'AppliedDiscount':
        return cls(
            rule_id=data["rule_id"],
            rule_name=data["rule_name"],
            discount_type=DiscountType(data["discount_type"]),
            discount_value=Decimal(data["discount_value"]),
            amount=Decimal(data["amount"]),
            priority=int(data["priority"]),
        )


@dataclass(frozen=True)
class PriceCalculation:
    """
    Result of pricing one line.

    base_price is the line base (unit price x quantity); final_price is
    the line price after every applied discount, never below zero.
    """
    unit_price: Decimal
    base_price: Decimal
    final_price: Decimal
    discounts: Tuple[AppliedDiscount, ...] = ()
    applied_rules: Tuple[str, ...] = ()
    calculation_time_ms: float = 0.0
    degraded: bool = False

    @property
    def discount_total(self) -> Decimal:
        return self.base_price - self.final_price

    def to_dict(self) -> Dict:
        return {
            "unit_price": str(self.unit_price),
            "base_price": str(self.base_price),
            "final_price": str(self.final_price),
            "discounts": [d.to_dict() for d in self.discounts],
            "applied_rules": list(self.applied_rules),
            "calculation_time_ms": self.calculation_time_ms,
            "degraded": self.degraded,
        }
