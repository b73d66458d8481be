"""
Transaction data model.

- Line: one cart entry; total_price = max(0, quantity*unit_price - discount)
- PaymentBreakdown: amount per payment method
- TransactionContext: mutable working set of one in-progress sale
- TransactionState: persisted lifecycle record (status, step, snapshots)
- FinalizedSale: immutable record created once at completion

Money and quantities are Decimal. Every entity serializes to plain
JSON-compatible dicts (Decimal as str, datetime as ISO-8601) for the
durable store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from poscore.pricing.models import ZERO, AppliedDiscount, PriceCalculation, quantize_money


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================================================
# ENUMS
# ============================================================================

class TransactionStep(Enum):
    """Working steps of a sale."""
    ITEMS = "items"
    PRICING = "pricing"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"
    PRINTING = "printing"


class TransactionStatus(Enum):
    """Lifecycle status overlaying the working step."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({TransactionStatus.CANCELLED, TransactionStatus.COMPLETED})


# ============================================================================
# LINE
# ============================================================================

@dataclass(frozen=True)
class Line:
    """
    One cart entry.

    total_price and tax_amount are derived when omitted. A line restored
    from storage keeps whatever total it was saved with, which is what the
    pricing validator checks.
    """
    item_id: str
    quantity: Decimal
    unit_price: Decimal
    item_name: str = ""
    discount: Decimal = ZERO
    applied_rules: Tuple[AppliedDiscount, ...] = ()
    tax_rate: Decimal = ZERO        # Fraction, e.g. 0.11 for 11%
    category: Optional[str] = None
    brand: Optional[str] = None
    barcode: Optional[str] = None
    total_price: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, 'quantity', _dec(self.quantity))
        object.__setattr__(self, 'unit_price', _dec(self.unit_price))
        object.__setattr__(self, 'discount', _dec(self.discount))
        object.__setattr__(self, 'tax_rate', _dec(self.tax_rate))
        object.__setattr__(self, 'applied_rules', tuple(self.applied_rules))

        if self.total_price is None:
            object.__setattr__(self, 'total_price', self.expected_total)
        else:
            object.__setattr__(self, 'total_price', _dec(self.total_price))

        if self.tax_amount is None:
            object.__setattr__(self, 'tax_amount', quantize_money(self.total_price * self.tax_rate))
        else:
            object.__setattr__(self, 'tax_amount', _dec(self.tax_amount))

    @property
    def display_name(self) -> str:
        return self.item_name or self.item_id

    @property
    def base_amount(self) -> Decimal:
        return quantize_money(self.quantity * self.unit_price)

    @property
    def expected_total(self) -> Decimal:
        return max(ZERO, self.base_amount - self.discount)

    @property
    def is_consistent(self) -> bool:
        return self.total_price == self.expected_total

    def with_quantity(self, quantity) -> 'Line':
        """Copy with a new quantity; the discount is capped at the new base."""
        quantity = _dec(quantity)
        new_base = quantize_money(quantity * self.unit_price)
        return replace(
            self,
            quantity=quantity,
            discount=min(self.discount, new_base),
            total_price=None,
            tax_amount=None,
        )

    def with_pricing(self, calculation: PriceCalculation) -> 'Line':
        """Copy carrying the discounts of a fresh price calculation."""
        return replace(
            self,
            discount=calculation.discount_total,
            applied_rules=calculation.discounts,
            total_price=None,
            tax_amount=None,
        )

    def to_dict(self) -> Dict:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "total_price": str(self.total_price),
            "discount": str(self.discount),
            "applied_rules": [r.to_dict() for r in self.applied_rules],
            "tax_rate": str(self.tax_rate),
            "tax_amount": str(self.tax_amount),
            "category": self.category,
            "brand": self.brand,
            "barcode": self.barcode,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Line':
        return cls(
            item_id=data["item_id"],
            item_name=data.get("item_name", ""),
            quantity=Decimal(data["quantity"]),
            unit_price=Decimal(data["unit_price"]),
            total_price=Decimal(data["total_price"]) if data.get("total_price") is not None else None,
            discount=Decimal(data.get("discount", "0")),
            applied_rules=tuple(AppliedDiscount.from_dict(r) for r in data.get("applied_rules", [])),
            tax_rate=Decimal(data.get("tax_rate", "0")),
            tax_amount=Decimal(data["tax_amount"]) if data.get("tax_amount") is not None else None,
            category=data.get("category"),
            brand=data.get("brand"),
            barcode=data.get("barcode"),
        )


# ============================================================================
# PAYMENT
# ============================================================================

@dataclass(frozen=True)
class PaymentBreakdown:
    """Amount tendered per payment method."""
    cash: Decimal = ZERO
    card: Decimal = ZERO
    ewallet: Decimal = ZERO
    bank_transfer: Decimal = ZERO
    credit: Decimal = ZERO

    METHODS = ("cash", "card", "ewallet", "bank_transfer", "credit")

    def __post_init__(self):
        for method in self.METHODS:
            object.__setattr__(self, method, _dec(getattr(self, method)))

    @property
    def total(self) -> Decimal:
        return sum((getattr(self, m) for m in self.METHODS), ZERO)

    def negative_methods(self) -> List[str]:
        return [m for m in self.METHODS if getattr(self, m) < 0]

    def change_due(self, amount_due: Decimal) -> Decimal:
        """Cash back owed to the customer; never negative."""
        return max(ZERO, self.total - amount_due)

    def to_dict(self) -> Dict:
        return {m: str(getattr(self, m)) for m in self.METHODS}

    @classmethod
    def from_dict(cls, data: Dict) -> 'PaymentBreakdown':
        return cls(**{m: Decimal(data.get(m, "0")) for m in cls.METHODS})


# ============================================================================
# CONTEXT
# ============================================================================

@dataclass
class TransactionMetadata:
    started_at: datetime
    last_updated: datetime
    user_id: str
    branch_id: str
    device_id: str

    def to_dict(self) -> Dict:
        return {
            "started_at": _iso(self.started_at),
            "last_updated": _iso(self.last_updated),
            "user_id": self.user_id,
            "branch_id": self.branch_id,
            "device_id": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TransactionMetadata':
        return cls(
            started_at=_dt(data["started_at"]),
            last_updated=_dt(data["last_updated"]),
            user_id=data["user_id"],
            branch_id=data["branch_id"],
            device_id=data["device_id"],
        )


@dataclass
class TransactionContext:
    """Mutable working set of one in-progress sale."""
    transaction_id: str
    step: TransactionStep
    metadata: TransactionMetadata
    lines: List[Line] = field(default_factory=list)
    payment: Optional[PaymentBreakdown] = None
    customer_id: Optional[str] = None
    customer_tier: Optional[str] = None

    def find_line(self, item_id: str) -> Optional[int]:
        """Index of the line for item_id, or None."""
        for index, line in enumerate(self.lines):
            if line.item_id == item_id:
                return index
        return None

    @property
    def item_ids(self) -> Tuple[str, ...]:
        return tuple(line.item_id for line in self.lines)

    @property
    def cart_base_total(self) -> Decimal:
        """Cart spend before discounts (what minimum-spend rules look at)."""
        return sum((line.base_amount for line in self.lines), ZERO)

    def to_dict(self) -> Dict:
        return {
            "transaction_id": self.transaction_id,
            "step": self.step.value,
            "metadata": self.metadata.to_dict(),
            "lines": [line.to_dict() for line in self.lines],
            "payment": self.payment.to_dict() if self.payment else None,
            "customer_id": self.customer_id,
            "customer_tier": self.customer_tier,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TransactionContext':
        return cls(
            transaction_id=data["transaction_id"],
            step=TransactionStep(data["step"]),
            metadata=TransactionMetadata.from_dict(data["metadata"]),
            lines=[Line.from_dict(d) for d in data.get("lines", [])],
            payment=PaymentBreakdown.from_dict(data["payment"]) if data.get("payment") else None,
            customer_id=data.get("customer_id"),
            customer_tier=data.get("customer_tier"),
        )


# ============================================================================
# STATE
# ============================================================================

def empty_step_data() -> Dict[str, Dict]:
    return {step.value: {} for step in TransactionStep}


@dataclass
class TransactionState:
    """Persisted lifecycle record for one transaction."""
    transaction_id: str
    status: TransactionStatus
    current_step: TransactionStep
    started_at: datetime
    last_updated: datetime
    step_data: Dict[str, Dict] = field(default_factory=empty_step_data)
    validation_errors: Dict[str, List[str]] = field(default_factory=dict)
    cancel_reason: Optional[str] = None
    receipt_number: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == TransactionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict:
        return {
            "transaction_id": self.transaction_id,
            "status": self.status.value,
            "current_step": self.current_step.value,
            "started_at": _iso(self.started_at),
            "last_updated": _iso(self.last_updated),
            "step_data": self.step_data,
            "validation_errors": self.validation_errors,
            "cancel_reason": self.cancel_reason,
            "receipt_number": self.receipt_number,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TransactionState':
        return cls(
            transaction_id=data["transaction_id"],
            status=TransactionStatus(data["status"]),
            current_step=TransactionStep(data["current_step"]),
            started_at=_dt(data["started_at"]),
            last_updated=_dt(data["last_updated"]),
            step_data=data.get("step_data") or empty_step_data(),
            validation_errors=data.get("validation_errors") or {},
            cancel_reason=data.get("cancel_reason"),
            receipt_number=data.get("receipt_number"),
        )


# ============================================================================
# FINALIZED SALE
# ============================================================================

@dataclass(frozen=True)
class FinalizedSale:
    """Immutable record of a completed sale, queued for back-office sync."""
    transaction_id: str
    receipt_number: str
    branch_id: str
    cashier_id: str
    device_id: str
    lines: Tuple[Line, ...]
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total_amount: Decimal
    payment: PaymentBreakdown
    change_due: Decimal
    created_at: datetime
    completed_at: datetime
    customer_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "transaction_id": self.transaction_id,
            "receipt_number": self.receipt_number,
            "branch_id": self.branch_id,
            "cashier_id": self.cashier_id,
            "device_id": self.device_id,
            "customer_id": self.customer_id,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": str(self.subtotal),
            "discount_total": str(self.discount_total),
            "tax_total": str(self.tax_total),
            "total_amount": str(self.total_amount),
            "payment": self.payment.to_dict(),
            "change_due": str(self.change_due),
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'FinalizedSale':
        return cls(
            transaction_id=data["transaction_id"],
            receipt_number=data["receipt_number"],
            branch_id=data["branch_id"],
            cashier_id=data["cashier_id"],
            device_id=data["device_id"],
            customer_id=data.get("customer_id"),
            lines=tuple(Line.from_dict(d) for d in data["lines"]),
            subtotal=Decimal(data["subtotal"]),
            discount_total=Decimal(data["discount_total"]),
            tax_total=Decimal(data["tax_total"]),
            total_amount=Decimal(data["total_amount"]),
            payment=PaymentBreakdown.from_dict(data["payment"]),
            change_due=Decimal(data["change_due"]),
            created_at=_dt(data["created_at"]),
            completed_at=_dt(data["completed_at"]),
        )


# ============================================================================
# TOTALS
# ============================================================================

@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    grand_total: Decimal


def calculate_totals(lines: List[Line]) -> SaleTotals:
    """
    Totals for a set of lines.

    subtotal is the sum of line totals (already net of discounts);
    grand_total = subtotal + tax.
    """
    subtotal = sum((line.total_price for line in lines), ZERO)
    discount_total = sum((line.discount for line in lines), ZERO)
    tax_total = sum((line.tax_amount for line in lines), ZERO)
    return SaleTotals(
        subtotal=subtotal,
        discount_total=discount_total,
        tax_total=tax_total,
        grand_total=subtotal + tax_total,
    )
