"""
Transaction state package.

Provides:
- TransactionStateMachine: lifecycle, cart, payment and completion
- TransactionStore: SQLite persistence for states, sales and rules
- StepValidators / ValidationResult: per-step business rules
- ReceiptNumberGenerator: RCP-YYYYMMDD-###### receipt numbers
"""

from .models import (
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

from .validators import (
    Severity,
    StepValidators,
    ValidationCode,
    ValidationIssue,
    ValidationResult,
)

from .receipts import (
    ReceiptNumberGenerator,
    new_transaction_id,
)

from .transaction_store import (
    StorageError,
    TransactionStore,
)

from .transaction_machine import (
    EXPIRED_ON_CLEANUP,
    EXPIRED_ON_RECOVERY,
    VALID_TRANSITIONS,
    InvalidPaymentError,
    InvalidTransitionError,
    LineNotFoundError,
    StepTransition,
    TransactionNotActiveError,
    TransactionNotFoundError,
    TransactionNotSuspendedError,
    TransactionStateMachine,
    TransactionStateMachineError,
    ValidationFailedError,
)

__all__ = [
    "FinalizedSale",
    "Line",
    "PaymentBreakdown",
    "SaleTotals",
    "TransactionContext",
    "TransactionMetadata",
    "TransactionState",
    "TransactionStatus",
    "TransactionStep",
    "calculate_totals",
    "Severity",
    "StepValidators",
    "ValidationCode",
    "ValidationIssue",
    "ValidationResult",
    "ReceiptNumberGenerator",
    "new_transaction_id",
    "StorageError",
    "TransactionStore",
    "EXPIRED_ON_CLEANUP",
    "EXPIRED_ON_RECOVERY",
    "VALID_TRANSITIONS",
    "InvalidPaymentError",
    "InvalidTransitionError",
    "LineNotFoundError",
    "StepTransition",
    "TransactionNotActiveError",
    "TransactionNotFoundError",
    "TransactionNotSuspendedError",
    "TransactionStateMachine",
    "TransactionStateMachineError",
    "ValidationFailedError",
]
