"""
Step validators and the line/receipt data model.

TESTS:
    1. Items: empty cart, non-positive quantities, large cart warning.
    2. Pricing: line totals must equal max(0, qty*unit - discount).
    3. Payment: missing, insufficient, unusually high.
    4. Confirmation: total must be positive.
    5. Printing always passes.
    6. Line derives totals and tax; quantity change caps discount.
    7. Receipt numbers follow RCP-YYYYMMDD-###### in terminal local date and
       skip numbers already stored.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from poscore.state import (
    Line,
    PaymentBreakdown,
    ReceiptNumberGenerator,
    StepValidators,
    TransactionContext,
    TransactionMetadata,
    TransactionStep,
    ValidationCode,
)
from poscore.time import SimulatedClock

from tests.conftest import START


def _context(lines=(), payment=None):
    return TransactionContext(
        transaction_id="TXN-1",
        step=TransactionStep.ITEMS,
        metadata=TransactionMetadata(START, START, "cashier-1", "BR-01", "POS-01"),
        lines=list(lines),
        payment=payment,
    )


@pytest.fixture
def validators():
    return StepValidators()


class TestItemsValidator:

    def test_empty_cart(self, validators):
        result = validators.validate_items(_context())

        assert result.errors == ["No items in transaction"]
        assert result.is_valid is False
        assert result.can_proceed is False

    def test_non_positive_quantity(self, validators):
        result = validators.validate_items(_context([Line("A", Decimal("0"), Decimal("1.00"))]))

        assert result.errors == ["Invalid item quantities found"]
        assert result.has(ValidationCode.INVALID_QUANTITY)

    def test_large_cart_warns(self):
        validators = StepValidators(max_items_warning=2)
        lines = [Line(f"SKU-{i}", Decimal("1"), Decimal("1.00")) for i in range(3)]

        result = validators.validate_items(_context(lines))

        assert result.is_valid is True
        assert result.warnings == ["Large number of items may affect performance"]


class TestPricingValidator:

    def test_consistent_lines_pass(self, validators):
        lines = [
            Line("A", Decimal("2"), Decimal("10.00"), discount=Decimal("3.00")),
            Line("B", Decimal("1"), Decimal("5.00"), discount=Decimal("9.00")),
        ]

        assert validators.validate_pricing(_context(lines)).is_valid

    def test_mismatch_names_item(self, validators):
        bad = Line("A", Decimal("2"), Decimal("10.00"), "Latte", total_price=Decimal("25.00"))

        result = validators.validate_pricing(_context([bad]))

        assert result.errors == ["Pricing mismatch for item: Latte"]
        assert result.issues[0].item_id == "A"


class TestPaymentValidator:

    def test_payment_not_set(self, validators):
        result = validators.validate_payment(_context([Line("A", Decimal("1"), Decimal("10"))]))

        assert result.errors == ["Payment information not set"]

    def test_insufficient(self, validators):
        context = _context(
            [Line("A", Decimal("1"), Decimal("10.00"))],
            PaymentBreakdown(cash=Decimal("4.00"), card=Decimal("5.99")),
        )

        result = validators.validate_payment(context)

        assert result.has(ValidationCode.INSUFFICIENT_PAYMENT)
        assert result.to_dict()["can_proceed"] is False

    def test_exact_payment(self, validators):
        context = _context(
            [Line("A", Decimal("1"), Decimal("10.00"), tax_rate=Decimal("0.11"))],
            PaymentBreakdown(cash=Decimal("11.10")),
        )

        result = validators.validate_payment(context)

        assert result.is_valid
        assert result.warnings == []

    def test_unusually_high(self, validators):
        context = _context(
            [Line("A", Decimal("1"), Decimal("10.00"))],
            PaymentBreakdown(cash=Decimal("20.01")),
        )

        result = validators.validate_payment(context)

        assert result.can_proceed is True
        assert result.warnings == ["Payment amount seems unusually high"]


class TestConfirmationAndPrinting:

    def test_zero_total_rejected(self, validators):
        free = Line("A", Decimal("1"), Decimal("10.00"), discount=Decimal("10.00"))

        result = validators.validate_confirmation(_context([free]))

        assert result.errors == ["Transaction total must be greater than zero"]

    def test_positive_total_passes(self, validators):
        assert validators.validate_confirmation(_context([Line("A", Decimal("1"), Decimal("1"))])).is_valid

    def test_printing_always_passes(self, validators):
        assert validators.validate(TransactionStep.PRINTING, _context()).is_valid


class TestLine:

    def test_derived_total_and_tax(self):
        line = Line("A", Decimal("3"), Decimal("2.50"), discount=Decimal("0.50"), tax_rate=Decimal("0.11"))

        assert line.total_price == Decimal("7.00")
        assert line.tax_amount == Decimal("0.77")
        assert line.is_consistent

    def test_discount_never_drives_total_negative(self):
        line = Line("A", Decimal("1"), Decimal("2.00"), discount=Decimal("5.00"))

        assert line.total_price == Decimal("0")

    def test_quantity_change_caps_discount(self):
        line = Line("A", Decimal("4"), Decimal("2.00"), discount=Decimal("6.00"))

        smaller = line.with_quantity(Decimal("1"))

        assert smaller.discount == Decimal("2.00")
        assert smaller.total_price == Decimal("0.00")

    def test_change_due(self):
        payment = PaymentBreakdown(cash=Decimal("50"), ewallet=Decimal("10"))

        assert payment.total == Decimal("60")
        assert payment.change_due(Decimal("45.50")) == Decimal("14.50")
        assert payment.change_due(Decimal("70")) == Decimal("0")


class TestReceiptNumbers:

    def test_format(self, clock):
        receipt = ReceiptNumberGenerator(clock).next()

        assert re.match(r"^RCP-20260314-\d{6}$", receipt)

    def test_suffix_is_epoch_millis(self, clock):
        expected = int(START.timestamp() * 1000) % 1_000_000

        assert ReceiptNumberGenerator(clock).next() == f"RCP-20260314-{expected:06d}"

    def test_uses_terminal_local_date(self):
        # 22:30 UTC on the 14th is already the 15th in Jakarta
        clock = SimulatedClock(datetime(2026, 3, 14, 22, 30, tzinfo=timezone.utc), "Asia/Jakarta")

        assert ReceiptNumberGenerator(clock).next().startswith("RCP-20260315-")

    def test_skips_numbers_already_stored(self, clock):
        expected = int(START.timestamp() * 1000) % 1_000_000
        stored = {f"RCP-20260314-{expected:06d}"}

        receipt = ReceiptNumberGenerator(clock, is_taken=stored.__contains__).next()

        assert receipt == f"RCP-20260314-{(expected + 1) % 1_000_000:06d}"

    def test_same_millisecond_bumped(self, clock):
        generator = ReceiptNumberGenerator(clock)

        first, second = generator.next(), generator.next()

        assert first != second
        assert int(second[-6:]) == (int(first[-6:]) + 1) % 1_000_000
