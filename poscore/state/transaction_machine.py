"""
Transaction State Machine with write-through persistence and step validation.

ARCHITECTURE:
- Active transactions indexed in memory (state + context per id)
- Durable store is the source of truth; the index is a write-through cache
- Validates all step transitions against a fixed adjacency table
- Cart mutations reprice lines through the injected pricing engine
- Logs every lifecycle event scoped to the transaction id

CRITICAL RULES:
1. All step transitions must be pre-defined as valid
2. Invalid transitions raise InvalidTransitionError
3. Every mutation works on a copy, commits to the store, and only then
   replaces the indexed copy. A failed commit leaves memory untouched.
4. Callers only ever receive deep copies of indexed objects
5. Completed and cancelled transactions are evicted from the index; their
   records stay in the store
6. Business-rule violations are returned as ValidationResult, never raised
7. Idle active transactions past the expiry threshold are cancelled, never
   resumed
"""

import copy
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from poscore.logging import get_logger, LogStream, LogContext, log_performance
from poscore.pricing import Item, PricingEngine
from poscore.state.models import (
    FinalizedSale,
    Line,
    PaymentBreakdown,
    SaleTotals,
    TransactionContext,
    TransactionMetadata,
    TransactionState,
    TransactionStatus,
    TransactionStep,
    calculate_totals,
)
from poscore.state.receipts import ReceiptNumberGenerator, new_transaction_id
from poscore.state.transaction_store import TransactionStore
from poscore.state.validators import StepValidators, ValidationResult
from poscore.time import Clock, RealTimeClock, ensure_utc

EXPIRED_ON_RECOVERY = "Expired due to inactivity"
EXPIRED_ON_CLEANUP = "Expired during cleanup"


# ============================================================================
# TRANSITION DEFINITION
# ============================================================================

@dataclass(frozen=True)
class StepTransition:
    """Immutable definition of a valid step move."""
    from_step: TransactionStep
    to_step: TransactionStep
    description: str = ""


# ============================================================================
# VALID TRANSITIONS REGISTRY
# ============================================================================

VALID_TRANSITIONS: Set[StepTransition] = {
    StepTransition(TransactionStep.ITEMS, TransactionStep.PRICING, "Cart ready for pricing"),
    StepTransition(TransactionStep.PRICING, TransactionStep.ITEMS, "Back to cart"),
    StepTransition(TransactionStep.PRICING, TransactionStep.PAYMENT, "Prices accepted"),
    StepTransition(TransactionStep.PAYMENT, TransactionStep.PRICING, "Back to pricing"),
    StepTransition(TransactionStep.PAYMENT, TransactionStep.CONFIRMATION, "Payment entered"),
    StepTransition(TransactionStep.CONFIRMATION, TransactionStep.PAYMENT, "Back to payment"),
    StepTransition(TransactionStep.CONFIRMATION, TransactionStep.PRINTING, "Sale confirmed"),
    StepTransition(TransactionStep.PRINTING, TransactionStep.CONFIRMATION, "Reprint declined"),
}


# ============================================================================
# EXCEPTIONS
# ============================================================================

class TransactionStateMachineError(Exception):
    """Base exception for transaction state machine errors."""
    pass

class TransactionNotFoundError(TransactionStateMachineError):
    """No state for the id in memory or in the store."""
    pass

class InvalidTransitionError(TransactionStateMachineError):
    """Step move not in the adjacency table."""

    def __init__(self, from_step: TransactionStep, to_step: TransactionStep):
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(f"Invalid step transition from {from_step.value} to {to_step.value}")

class TransactionNotActiveError(TransactionStateMachineError):
    """Operation requires an active transaction."""
    pass

class TransactionNotSuspendedError(TransactionStateMachineError):
    """Resume attempted on a transaction that is not suspended."""
    pass

class LineNotFoundError(TransactionStateMachineError):
    """Item is not in the cart."""
    pass

class InvalidPaymentError(TransactionStateMachineError):
    """Payment breakdown has a negative amount."""
    pass

class ValidationFailedError(TransactionStateMachineError):
    """Completion blocked by business-rule validation."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__(f"Cannot complete transaction: {', '.join(result.errors)}")


# ============================================================================
# TRANSACTION STATE MACHINE
# ============================================================================

class TransactionStateMachine:
    """
    Point-of-sale transaction lifecycle with write-through persistence.

    USAGE:
        machine = TransactionStateMachine(store, pricing_engine=engine, clock=clock)

        txn_id = machine.start_transaction("cashier-1", "BR-01", "POS-01")
        machine.add_items(txn_id, [Line("SKU-COFFEE", Decimal("2"), Decimal("10.00"), "Coffee")])
        machine.set_payment(txn_id, PaymentBreakdown(cash=Decimal("20.00")))

        sale = machine.complete_transaction(txn_id)
        assert sale.total_amount == Decimal("20.00")
    """

    def __init__(
        self,
        store: TransactionStore,
        pricing_engine: Optional[PricingEngine] = None,
        clock: Optional[Clock] = None,
        expiry_hours: int = 24,
        max_items_warning: int = 100,
        overpayment_warning_multiplier: Decimal = Decimal("2"),
        receipt_generator: Optional[ReceiptNumberGenerator] = None
    ):
        self.store = store
        self.pricing_engine = pricing_engine
        self.clock = clock or RealTimeClock()
        self.expiry = timedelta(hours=expiry_hours)
        self.validators = StepValidators(
            max_items_warning=max_items_warning,
            overpayment_warning_multiplier=overpayment_warning_multiplier,
        )
        self.receipts = receipt_generator or ReceiptNumberGenerator(
            self.clock,
            is_taken=lambda number: self.store.get_finalized_sale(number) is not None
        )

        self.logger = get_logger(LogStream.TRANSACTIONS)

        self._transition_map: Dict[Tuple[TransactionStep, TransactionStep], StepTransition] = {
            (t.from_step, t.to_step): t for t in VALID_TRANSITIONS
        }

        # ACTIVE INDEX
        self._states: Dict[str, TransactionState] = {}
        self._contexts: Dict[str, TransactionContext] = {}

        self.logger.info("TransactionStateMachine initialized", extra={
            "expiry_hours": expiry_hours,
            "pricing_engine": pricing_engine is not None
        })

    # ========================================================================
    # CREATION AND RETRIEVAL
    # ========================================================================

    def start_transaction(
        self,
        user_id: str,
        branch_id: str,
        device_id: str,
        customer_id: Optional[str] = None,
        customer_tier: Optional[str] = None
    ) -> str:
        """Create an active transaction at step items; returns its id."""
        transaction_id = new_transaction_id(self.clock)
        now = self.clock.now()

        with LogContext(transaction_id):
            state = TransactionState(
                transaction_id=transaction_id,
                status=TransactionStatus.ACTIVE,
                current_step=TransactionStep.ITEMS,
                started_at=now,
                last_updated=now,
            )
            context = TransactionContext(
                transaction_id=transaction_id,
                step=TransactionStep.ITEMS,
                metadata=TransactionMetadata(
                    started_at=now,
                    last_updated=now,
                    user_id=user_id,
                    branch_id=branch_id,
                    device_id=device_id,
                ),
                customer_id=customer_id,
                customer_tier=customer_tier,
            )

            self.store.create_state(state, context)
            self._index(state, context)

            self.logger.info(f"Transaction started: {transaction_id}", extra={
                "transaction_id": transaction_id,
                "user_id": user_id,
                "branch_id": branch_id,
                "device_id": device_id
            })

        return transaction_id

    def get_state(self, transaction_id: str) -> TransactionState:
        """
        Snapshot of a transaction's state (memory first, then store).

        Raises:
            TransactionNotFoundError: Unknown everywhere
        """
        state, _ = self._load(transaction_id)
        return copy.deepcopy(state)

    def get_context(self, transaction_id: str) -> TransactionContext:
        """Snapshot of a transaction's working context."""
        _, context = self._load(transaction_id)
        return copy.deepcopy(context)

    def get_active_transactions(self, user_id: Optional[str] = None) -> List[TransactionState]:
        """Active transactions in the store, optionally for one cashier."""
        return self.store.list_states(TransactionStatus.ACTIVE, user_id=user_id)

    def is_indexed(self, transaction_id: str) -> bool:
        return transaction_id in self._states

    @property
    def active_count(self) -> int:
        return len(self._states)

    # ========================================================================
    # STEP TRANSITIONS
    # ========================================================================

    def transition(
        self,
        transaction_id: str,
        to_step: TransactionStep,
        step_data: Optional[Dict] = None
    ) -> TransactionState:
        """
        Move an active transaction to an adjacent step.

        The step being left is validated and its errors recorded on the
        state; they do not block the move.

        Raises:
            InvalidTransitionError: to_step not adjacent to the current step
            TransactionNotActiveError: Transaction not active
        """
        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            from_step = state.current_step
            if (from_step, to_step) not in self._transition_map:
                raise InvalidTransitionError(from_step, to_step)

            left = self.validators.validate(from_step, context)
            state.validation_errors[from_step.value] = left.errors

            state.current_step = to_step
            context.step = to_step
            if step_data:
                state.step_data[to_step.value] = {**state.step_data.get(to_step.value, {}), **step_data}

            self._commit(state, context)

            self.logger.info(f"Transition: {from_step.value} -> {to_step.value}", extra={
                "transaction_id": transaction_id,
                "from_step": from_step.value,
                "to_step": to_step.value
            })

            return copy.deepcopy(state)

    def get_valid_transitions(self, from_step: TransactionStep) -> Set[TransactionStep]:
        return {to for (f, to) in self._transition_map.keys() if f == from_step}

    def can_transition(self, from_step: TransactionStep, to_step: TransactionStep) -> bool:
        return (from_step, to_step) in self._transition_map

    # ========================================================================
    # CART
    # ========================================================================

    def add_items(self, transaction_id: str, lines: Iterable[Line]) -> TransactionState:
        """
        Add lines to the cart, merging by item_id (quantities summed).

        Raises:
            TransactionNotActiveError: Transaction not active
        """
        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            added = 0
            for line in lines:
                index = context.find_line(line.item_id)
                if index is None:
                    context.lines.append(line)
                else:
                    existing = context.lines[index]
                    context.lines[index] = existing.with_quantity(existing.quantity + line.quantity)
                added += 1

            self._reprice_lines(context)
            self._snapshot_cart(state, context)
            self._commit(state, context)

            self.logger.info("Items added", extra={
                "transaction_id": transaction_id,
                "added": added,
                "line_count": len(context.lines)
            })

            return copy.deepcopy(state)

    def update_item_quantity(self, transaction_id: str, item_id: str, quantity) -> TransactionState:
        """
        Set a line's quantity; quantity <= 0 removes the line.

        Raises:
            LineNotFoundError: item_id not in the cart
        """
        quantity = Decimal(str(quantity))

        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            index = context.find_line(item_id)
            if index is None:
                raise LineNotFoundError(f"Item {item_id} not found in transaction {transaction_id}")

            if quantity <= 0:
                del context.lines[index]
            else:
                context.lines[index] = context.lines[index].with_quantity(quantity)

            self._reprice_lines(context)
            self._snapshot_cart(state, context)
            self._commit(state, context)

            self.logger.info("Item quantity updated", extra={
                "transaction_id": transaction_id,
                "item_id": item_id,
                "quantity": str(quantity),
                "removed": quantity <= 0
            })

            return copy.deepcopy(state)

    def remove_item(self, transaction_id: str, item_id: str) -> TransactionState:
        """
        Raises:
            LineNotFoundError: item_id not in the cart
        """
        return self.update_item_quantity(transaction_id, item_id, 0)

    def reprice(self, transaction_id: str) -> TransactionState:
        """Reprice every line against the current rule cache."""
        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            self._reprice_lines(context)
            self._snapshot_cart(state, context)
            self._commit(state, context)

            return copy.deepcopy(state)

    def set_customer(
        self,
        transaction_id: str,
        customer_id: Optional[str],
        customer_tier: Optional[str] = None
    ) -> TransactionState:
        """Attach (or clear) the customer and reprice for their tier."""
        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            context.customer_id = customer_id
            context.customer_tier = customer_tier

            self._reprice_lines(context)
            self._snapshot_cart(state, context)
            self._commit(state, context)

            self.logger.info("Customer set", extra={
                "transaction_id": transaction_id,
                "customer_id": customer_id,
                "customer_tier": customer_tier
            })

            return copy.deepcopy(state)

    def calculate_totals(self, lines: Iterable[Line]) -> SaleTotals:
        return calculate_totals(list(lines))

    # ========================================================================
    # PAYMENT
    # ========================================================================

    def set_payment(self, transaction_id: str, payment: PaymentBreakdown) -> TransactionState:
        """
        Record the payment breakdown and move to step payment.

        Raises:
            InvalidPaymentError: Any method amount is negative
        """
        negative = payment.negative_methods()
        if negative:
            raise InvalidPaymentError(f"Negative payment amount for: {', '.join(negative)}")

        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            context.payment = payment
            context.step = TransactionStep.PAYMENT
            state.current_step = TransactionStep.PAYMENT
            state.step_data[TransactionStep.PAYMENT.value] = {
                **state.step_data.get(TransactionStep.PAYMENT.value, {}),
                "payment": payment.to_dict(),
            }

            self._commit(state, context)

            self.logger.info("Payment set", extra={
                "transaction_id": transaction_id,
                "paid": str(payment.total)
            })

            return copy.deepcopy(state)

    # ========================================================================
    # VALIDATION AND COMPLETION
    # ========================================================================

    def validate_transaction(self, transaction_id: str) -> ValidationResult:
        """Run the current step's validator. Never raises for rule violations."""
        state, context = self._load(transaction_id)
        return self.validators.validate(state.current_step, context)

    @log_performance(LogStream.TRANSACTIONS)
    def complete_transaction(self, transaction_id: str) -> FinalizedSale:
        """
        Finalize the sale and queue it for sync.

        Raises:
            TransactionNotActiveError: Transaction not active
            ValidationFailedError: Current step or payment validation failed
        """
        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            result = self.validators.validate(state.current_step, context)
            if state.current_step != TransactionStep.PAYMENT:
                result = result.merge(self.validators.validate_payment(context))
            if not result.can_proceed:
                self.logger.warning("Completion blocked by validation", extra={
                    "transaction_id": transaction_id,
                    "errors": result.errors
                })
                raise ValidationFailedError(result)

            totals = calculate_totals(context.lines)
            now = self.clock.now()
            receipt_number = self.receipts.next()

            sale = FinalizedSale(
                transaction_id=transaction_id,
                receipt_number=receipt_number,
                branch_id=context.metadata.branch_id,
                cashier_id=context.metadata.user_id,
                device_id=context.metadata.device_id,
                customer_id=context.customer_id,
                lines=tuple(context.lines),
                subtotal=totals.subtotal,
                discount_total=totals.discount_total,
                tax_total=totals.tax_total,
                total_amount=totals.grand_total,
                payment=context.payment,
                change_due=context.payment.change_due(totals.grand_total),
                created_at=context.metadata.started_at,
                completed_at=now,
            )

            state.status = TransactionStatus.COMPLETED
            state.receipt_number = receipt_number
            state.last_updated = now
            context.metadata.last_updated = now

            self.store.append_finalized_sale(sale, self._state_fields(state), context)
            self._evict(transaction_id)

            self.logger.info(f"Transaction completed: {transaction_id}", extra={
                "transaction_id": transaction_id,
                "receipt_number": receipt_number,
                "total_amount": str(sale.total_amount),
                "change_due": str(sale.change_due)
            })

            return sale

    # ========================================================================
    # SUSPEND / RESUME / CANCEL
    # ========================================================================

    def suspend_transaction(self, transaction_id: str) -> None:
        """Park an active transaction; the durable record keeps its cart."""
        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            self._require_active(state)

            state.status = TransactionStatus.SUSPENDED
            self._commit(state, context, index=False)
            self._evict(transaction_id)

            self.logger.info(f"Transaction suspended: {transaction_id}", extra={
                "transaction_id": transaction_id
            })

    def resume_transaction(self, transaction_id: str) -> TransactionState:
        """
        Reinstate a suspended transaction with its lines and payment.

        A suspended transaction idle past the expiry threshold is cancelled
        instead and reported as not suspended.

        Raises:
            TransactionNotFoundError: Unknown id
            TransactionNotSuspendedError: Persisted status is not suspended,
                or it expired while suspended
        """
        with LogContext(transaction_id):
            state = self.store.get_state(transaction_id)
            context = self.store.get_context(transaction_id)
            if state is None or context is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            if state.status != TransactionStatus.SUSPENDED:
                raise TransactionNotSuspendedError(
                    f"Transaction {transaction_id} is {state.status.value}, not suspended"
                )
            if self._is_expired(state):
                self._cancel(state, context, EXPIRED_ON_RECOVERY)
                raise TransactionNotSuspendedError(
                    f"Transaction {transaction_id} expired while suspended and was cancelled"
                )

            state.status = TransactionStatus.ACTIVE
            self._commit(state, context)

            self.logger.info(f"Transaction resumed: {transaction_id}", extra={
                "transaction_id": transaction_id,
                "line_count": len(context.lines)
            })

            return copy.deepcopy(state)

    def cancel_transaction(self, transaction_id: str, reason: str) -> None:
        """
        Cancel from any status except completed, and evict.

        Cancelling an already cancelled transaction is a no-op.

        Raises:
            TransactionNotActiveError: Transaction already completed
        """
        with LogContext(transaction_id):
            state, context = self._working_copy(transaction_id)
            if state.status == TransactionStatus.CANCELLED:
                self.logger.debug(f"Transaction already cancelled: {transaction_id}")
                return
            if state.status == TransactionStatus.COMPLETED:
                raise TransactionNotActiveError(
                    f"Transaction {transaction_id} is already {state.status.value}"
                )

            self._cancel(state, context, reason)

    # ========================================================================
    # RECOVERY
    # ========================================================================

    def recover_transaction(self, transaction_id: str) -> Optional[TransactionState]:
        """
        Reload a persisted transaction after restart.

        Active and suspended transactions idle past the expiry threshold
        are cancelled.

        Returns:
            None if missing or expired; the state otherwise. Only active
            states are re-indexed.
        """
        with LogContext(transaction_id):
            state = self.store.get_state(transaction_id)
            context = self.store.get_context(transaction_id)
            if state is None or context is None:
                return None

            if not state.is_terminal and self._is_expired(state):
                self._cancel(state, context, EXPIRED_ON_RECOVERY)
                return None

            if state.is_active:
                self._index(state, context)
                self.logger.info(f"Transaction recovered: {transaction_id}", extra={
                    "transaction_id": transaction_id,
                    "current_step": state.current_step.value
                })

            return copy.deepcopy(state)

    def cleanup_expired_transactions(self) -> int:
        """Cancel every durable active state idle past the expiry threshold."""
        cutoff = self.clock.now() - self.expiry
        cleaned = 0

        for state in self.store.query_active_states_older_than(cutoff):
            context = self.store.get_context(state.transaction_id)
            if context is None:
                continue
            with LogContext(state.transaction_id):
                self._cancel(state, context, EXPIRED_ON_CLEANUP)
            cleaned += 1

        if cleaned:
            self.logger.info("Expired transactions cleaned up", extra={"cleaned": cleaned})

        return cleaned

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _load(self, transaction_id: str) -> Tuple[TransactionState, TransactionContext]:
        """Authoritative objects; callers must copy before mutating."""
        if transaction_id in self._states:
            return self._states[transaction_id], self._contexts[transaction_id]

        state = self.store.get_state(transaction_id)
        context = self.store.get_context(transaction_id)
        if state is None or context is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

        if state.is_active:
            self._index(state, context)

        return state, context

    def _working_copy(self, transaction_id: str) -> Tuple[TransactionState, TransactionContext]:
        state, context = self._load(transaction_id)
        return copy.deepcopy(state), copy.deepcopy(context)

    def _require_active(self, state: TransactionState) -> None:
        if not state.is_active:
            raise TransactionNotActiveError(
                f"Transaction {state.transaction_id} is {state.status.value}"
            )

    def _commit(self, state: TransactionState, context: TransactionContext, index: bool = True) -> None:
        """Persist, then (optionally) swap into the index."""
        now = self.clock.now()
        state.last_updated = now
        context.metadata.last_updated = now

        self.store.update_state(state.transaction_id, self._state_fields(state), context)

        if index:
            self._index(state, context)

    def _cancel(self, state: TransactionState, context: TransactionContext, reason: str) -> None:
        state.status = TransactionStatus.CANCELLED
        state.cancel_reason = reason
        self._commit(state, context, index=False)
        self._evict(state.transaction_id)

        self.logger.info(f"Transaction cancelled: {state.transaction_id}", extra={
            "transaction_id": state.transaction_id,
            "reason": reason
        })

    def _index(self, state: TransactionState, context: TransactionContext) -> None:
        self._states[state.transaction_id] = state
        self._contexts[state.transaction_id] = context

    def _evict(self, transaction_id: str) -> None:
        self._states.pop(transaction_id, None)
        self._contexts.pop(transaction_id, None)

    def _is_expired(self, state: TransactionState) -> bool:
        return self.clock.now() - ensure_utc(state.last_updated) > self.expiry

    @staticmethod
    def _state_fields(state: TransactionState) -> Dict:
        return {
            "status": state.status,
            "current_step": state.current_step,
            "last_updated": state.last_updated,
            "step_data": state.step_data,
            "validation_errors": state.validation_errors,
            "cancel_reason": state.cancel_reason,
            "receipt_number": state.receipt_number,
        }

    def _reprice_lines(self, context: TransactionContext) -> None:
        """Reprice all lines; cart-level conditions see the whole cart."""
        if self.pricing_engine is None:
            return

        cart_total = context.cart_base_total
        cart_item_ids = context.item_ids
        now = self.clock.now()

        repriced = []
        for line in context.lines:
            if line.quantity <= 0:
                repriced.append(line)
                continue
            calculation = self.pricing_engine.price_line(
                item=Item(
                    item_id=line.item_id,
                    base_price=line.unit_price,
                    name=line.item_name,
                    category=line.category,
                    brand=line.brand,
                    barcode=line.barcode,
                ),
                quantity=line.quantity,
                branch_id=context.metadata.branch_id,
                transaction_date=now,
                customer_id=context.customer_id,
                customer_tier=context.customer_tier,
                cart_total=cart_total,
                cart_item_ids=cart_item_ids,
            )
            repriced.append(line.with_pricing(calculation))

        context.lines = repriced

    def _snapshot_cart(self, state: TransactionState, context: TransactionContext) -> None:
        totals = calculate_totals(context.lines)
        state.step_data[TransactionStep.ITEMS.value] = {
            **state.step_data.get(TransactionStep.ITEMS.value, {}),
            "lines": [line.to_dict() for line in context.lines],
            "subtotal": str(totals.subtotal),
            "tax_total": str(totals.tax_total),
            "grand_total": str(totals.grand_total),
        }
