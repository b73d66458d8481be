"""
Per-step transaction validators.

Business-rule violations are returned as a ValidationResult, never
raised, so the shell can render field-level feedback. Each issue carries
a machine-readable code next to its display message.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List

from poscore.state.models import TransactionContext, TransactionStep, calculate_totals


class ValidationCode(Enum):
    NO_ITEMS = "NO_ITEMS"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    TOO_MANY_ITEMS = "TOO_MANY_ITEMS"
    PRICING_MISMATCH = "PRICING_MISMATCH"
    PAYMENT_NOT_SET = "PAYMENT_NOT_SET"
    INSUFFICIENT_PAYMENT = "INSUFFICIENT_PAYMENT"
    UNUSUAL_PAYMENT = "UNUSUAL_PAYMENT"
    NON_POSITIVE_TOTAL = "NON_POSITIVE_TOTAL"


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    code: ValidationCode
    message: str
    severity: Severity
    step: TransactionStep
    item_id: str = ""


@dataclass
class ValidationResult:
    """Outcome of validating one or more steps."""
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [i.message for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[str]:
        return [i.message for i in self.issues if i.severity == Severity.WARNING]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def can_proceed(self) -> bool:
        return self.is_valid

    @property
    def codes(self) -> List[ValidationCode]:
        return [i.code for i in self.issues]

    def has(self, code: ValidationCode) -> bool:
        return code in self.codes

    def error(self, step: TransactionStep, code: ValidationCode, message: str, item_id: str = "") -> None:
        self.issues.append(ValidationIssue(code, message, Severity.ERROR, step, item_id))

    def warn(self, step: TransactionStep, code: ValidationCode, message: str) -> None:
        self.issues.append(ValidationIssue(code, message, Severity.WARNING, step))

    def merge(self, other: 'ValidationResult') -> 'ValidationResult':
        merged = ValidationResult(list(self.issues))
        for issue in other.issues:
            if issue not in merged.issues:
                merged.issues.append(issue)
        return merged

    def to_dict(self) -> Dict:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "can_proceed": self.can_proceed,
        }


Validator = Callable[[TransactionContext], ValidationResult]


class StepValidators:
    """
    Validator registry keyed by step.

    items:        non-empty, positive quantities; warns on very large carts
    pricing:      every line total equals max(0, quantity*unit_price - discount)
    payment:      tendered >= grand total; warns on implausible overpayment
    confirmation: grand total > 0
    printing:     always passes (printing never blocks completion)
    """

    def __init__(
        self,
        max_items_warning: int = 100,
        overpayment_warning_multiplier: Decimal = Decimal("2")
    ):
        self.max_items_warning = max_items_warning
        self.overpayment_warning_multiplier = Decimal(overpayment_warning_multiplier)

        self._validators: Dict[TransactionStep, Validator] = {
            TransactionStep.ITEMS: self.validate_items,
            TransactionStep.PRICING: self.validate_pricing,
            TransactionStep.PAYMENT: self.validate_payment,
            TransactionStep.CONFIRMATION: self.validate_confirmation,
            TransactionStep.PRINTING: self.validate_printing,
        }

    def for_step(self, step: TransactionStep) -> Validator:
        return self._validators[step]

    def validate(self, step: TransactionStep, context: TransactionContext) -> ValidationResult:
        return self._validators[step](context)

    def validate_items(self, context: TransactionContext) -> ValidationResult:
        result = ValidationResult()
        step = TransactionStep.ITEMS

        if not context.lines:
            result.error(step, ValidationCode.NO_ITEMS, "No items in transaction")

        if any(line.quantity <= 0 for line in context.lines):
            result.error(step, ValidationCode.INVALID_QUANTITY, "Invalid item quantities found")

        if len(context.lines) > self.max_items_warning:
            result.warn(step, ValidationCode.TOO_MANY_ITEMS, "Large number of items may affect performance")

        return result

    def validate_pricing(self, context: TransactionContext) -> ValidationResult:
        result = ValidationResult()

        for line in context.lines:
            if not line.is_consistent:
                result.error(
                    TransactionStep.PRICING,
                    ValidationCode.PRICING_MISMATCH,
                    f"Pricing mismatch for item: {line.display_name}",
                    item_id=line.item_id,
                )

        return result

    def validate_payment(self, context: TransactionContext) -> ValidationResult:
        result = ValidationResult()
        step = TransactionStep.PAYMENT

        if context.payment is None:
            result.error(step, ValidationCode.PAYMENT_NOT_SET, "Payment information not set")
            return result

        paid = context.payment.total
        total = calculate_totals(context.lines).grand_total

        if paid < total:
            result.error(step, ValidationCode.INSUFFICIENT_PAYMENT, "Insufficient payment amount")

        if paid > total * self.overpayment_warning_multiplier:
            result.warn(step, ValidationCode.UNUSUAL_PAYMENT, "Payment amount seems unusually high")

        return result

    def validate_confirmation(self, context: TransactionContext) -> ValidationResult:
        result = ValidationResult()

        if calculate_totals(context.lines).grand_total <= 0:
            result.error(
                TransactionStep.CONFIRMATION,
                ValidationCode.NON_POSITIVE_TOTAL,
                "Transaction total must be greater than zero",
            )

        return result

    def validate_printing(self, context: TransactionContext) -> ValidationResult:
        return ValidationResult()
