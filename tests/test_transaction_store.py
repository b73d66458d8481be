"""
SQLite transaction store.

Verifies:
  - State and context round-trip with Decimal money intact.
  - Field updates are applied atomically; unknown ids raise StorageError.
  - Expiry query returns only active states older than the cutoff.
  - Finalized sales are append-only and unique per receipt.
  - Pricing rules persist and only active ones load.
  - Store can be closed and reopened without losing data.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from poscore.pricing import DiscountType
from poscore.state import (
    FinalizedSale,
    Line,
    PaymentBreakdown,
    StorageError,
    TransactionContext,
    TransactionMetadata,
    TransactionState,
    TransactionStatus,
    TransactionStep,
    TransactionStore,
)

from tests.conftest import START


def _records(transaction_id="TXN-1", when=START, user_id="cashier-1"):
    state = TransactionState(
        transaction_id=transaction_id,
        status=TransactionStatus.ACTIVE,
        current_step=TransactionStep.ITEMS,
        started_at=when,
        last_updated=when,
    )
    context = TransactionContext(
        transaction_id=transaction_id,
        step=TransactionStep.ITEMS,
        metadata=TransactionMetadata(
            started_at=when,
            last_updated=when,
            user_id=user_id,
            branch_id="BR-01",
            device_id="POS-01",
        ),
        lines=[Line("TEA", Decimal("1.5"), Decimal("3.333"), "Tea", discount=Decimal("0.25"))],
        payment=PaymentBreakdown(card=Decimal("5.00")),
    )
    return state, context


def _sale(receipt="RCP-20260314-000001", transaction_id="TXN-1"):
    return FinalizedSale(
        transaction_id=transaction_id,
        receipt_number=receipt,
        branch_id="BR-01",
        cashier_id="cashier-1",
        device_id="POS-01",
        lines=(Line("COFFEE", Decimal("2"), Decimal("10.00"), "Coffee"),),
        subtotal=Decimal("20.00"),
        discount_total=Decimal("0.00"),
        tax_total=Decimal("0.00"),
        total_amount=Decimal("20.00"),
        payment=PaymentBreakdown(cash=Decimal("20.00")),
        change_due=Decimal("0.00"),
        created_at=START,
        completed_at=START + timedelta(minutes=3),
    )


class TestTransactionStates:

    def test_round_trip(self, store):
        state, context = _records()
        store.create_state(state, context)

        assert store.get_state("TXN-1") == state
        loaded = store.get_context("TXN-1")
        assert loaded == context
        assert loaded.lines[0].unit_price == Decimal("3.333")
        assert loaded.lines[0].total_price == context.lines[0].total_price

    def test_missing_returns_none(self, store):
        assert store.get_state("nope") is None
        assert store.get_context("nope") is None

    def test_duplicate_id_rejected(self, store):
        store.create_state(*_records())

        with pytest.raises(StorageError):
            store.create_state(*_records())

    def test_update_fields(self, store):
        state, context = _records()
        store.create_state(state, context)

        updated = store.update_state("TXN-1", {
            "status": TransactionStatus.SUSPENDED,
            "current_step": TransactionStep.PRICING,
            "last_updated": START + timedelta(minutes=5),
        })

        assert updated.status == TransactionStatus.SUSPENDED
        reloaded = store.get_state("TXN-1")
        assert reloaded.current_step == TransactionStep.PRICING
        assert reloaded.last_updated == START + timedelta(minutes=5)
        assert store.get_context("TXN-1") == context

    def test_update_replaces_context(self, store):
        state, context = _records()
        store.create_state(state, context)

        context.lines = []
        store.update_state("TXN-1", {}, context)

        assert store.get_context("TXN-1").lines == []

    def test_update_unknown_raises(self, store):
        with pytest.raises(StorageError):
            store.update_state("nope", {"status": TransactionStatus.CANCELLED})

    def test_active_states_older_than(self, store):
        store.create_state(*_records("OLD", START - timedelta(hours=30)))
        store.create_state(*_records("NEW", START))
        old_suspended, ctx = _records("PARKED", START - timedelta(hours=30))
        old_suspended.status = TransactionStatus.SUSPENDED
        store.create_state(old_suspended, ctx)

        stale = store.query_active_states_older_than(START - timedelta(hours=24))

        assert [s.transaction_id for s in stale] == ["OLD"]

    def test_list_states_filters(self, store):
        store.create_state(*_records("A", user_id="cashier-1"))
        store.create_state(*_records("B", user_id="cashier-2"))
        store.update_state("B", {"status": TransactionStatus.CANCELLED})

        assert {s.transaction_id for s in store.list_states()} == {"A", "B"}
        assert [s.transaction_id for s in store.list_states(TransactionStatus.ACTIVE)] == ["A"]
        assert store.list_states(user_id="cashier-2")[0].transaction_id == "B"


class TestFinalizedSales:

    def test_append_and_get(self, store):
        sale = _sale()
        store.append_finalized_sale(sale)

        assert store.get_finalized_sale(sale.receipt_number) == sale
        assert store.list_finalized_sales() == [sale]

    def test_receipt_numbers_unique(self, store):
        store.append_finalized_sale(_sale())

        with pytest.raises(StorageError):
            store.append_finalized_sale(_sale(transaction_id="TXN-2"))

    def test_state_update_in_same_commit(self, store):
        store.create_state(*_records())

        store.append_finalized_sale(_sale(), {
            "status": TransactionStatus.COMPLETED,
            "receipt_number": "RCP-20260314-000001",
        })

        assert store.get_state("TXN-1").status == TransactionStatus.COMPLETED

    def test_failed_state_update_rolls_back_sale(self, store):
        # No state row for TXN-1, so the state update fails after the insert
        with pytest.raises(StorageError):
            store.append_finalized_sale(_sale(), {"status": TransactionStatus.COMPLETED})

        assert store.list_finalized_sales() == []


class TestPricingRules:

    def test_only_active_rules_load(self, store, make_rule):
        store.save_pricing_rule(make_rule("ON", DiscountType.PERCENTAGE, "10", priority=2))
        store.save_pricing_rule(make_rule("OFF", is_active=False))

        rules = store.load_active_pricing_rules()

        assert [r.rule_id for r in rules] == ["ON"]
        assert rules[0].discount_value == Decimal("10")

    def test_save_replaces(self, store, make_rule):
        store.save_pricing_rule(make_rule("R1", value="10"))
        store.save_pricing_rule(make_rule("R1", value="25"))

        rules = store.load_active_pricing_rules()
        assert len(rules) == 1
        assert rules[0].discount_value == Decimal("25")


class TestLifecycle:

    def test_reopen_keeps_data(self, tmp_path, clock):
        db_path = tmp_path / "terminal.db"

        first = TransactionStore(db_path, clock=clock)
        first.create_state(*_records())
        first.close()

        second = TransactionStore(db_path, clock=clock)
        assert second.get_state("TXN-1") is not None
        second.close()

    def test_multiple_close_calls_safe(self, tmp_path):
        store = TransactionStore(tmp_path / "terminal.db")

        store.close()
        store.close()

    def test_context_manager(self, tmp_path):
        with TransactionStore(tmp_path / "terminal.db") as store:
            store.create_state(*_records())
            assert store.get_state("TXN-1") is not None
