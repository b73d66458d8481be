"""
Pricing rule engine.

ARCHITECTURE:
- One engine instance per terminal process, passed by reference to the
  transaction state machine (no module-level singleton)
- Rule cache written only by initialize()/reload_rules(), read-only
  everywhere else
- Hot path reads only the resident cache (no I/O)

APPLICATION POLICY:
1. A rule applies iff it is active, valid at the transaction date, the
   branch matches and every condition holds (conjunction)
2. ALL applicable rules apply
3. Each discount is computed against the same line base
   (unit price x quantity); discounts never compound
4. final = max(0, base - sum(discounts))

FAILURE POLICY:
- Queried before the rule cache is loaded: inline reload
- Reload fails, or anything else goes wrong: return the base price with
  no discounts and log a warning. calculate_price() never raises.
"""

import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from poscore.logging import get_logger, log_execution_time, LogStream, PerformanceLogger
from poscore.pricing.conditions import all_conditions_match
from poscore.pricing.models import (
    ZERO,
    AppliedDiscount,
    DiscountType,
    Item,
    PriceCalculation,
    PricingContext,
    PricingRule,
    quantize_money,
)
from poscore.pricing.sources import RuleSource
from poscore.time import Clock, RealTimeClock

BASE_PRICE_LABEL = "Base Price"
FALLBACK_LABEL = "Base Price (Error Fallback)"


class PricingEngine:
    """
    Computes discounted line prices from the resident rule cache.

    USAGE:
        engine = PricingEngine(rule_source=store, clock=clock)
        engine.initialize()

        result = engine.calculate_price(PricingContext(
            item=Item(item_id="SKU-1", base_price=Decimal("100")),
            quantity=Decimal("2"),
            branch_id="BR-01",
            transaction_date=clock.now(),
        ))
        assert result.final_price == Decimal("180.00")  # with a 10% rule
    """

    def __init__(
        self,
        rule_source: RuleSource,
        clock: Optional[Clock] = None,
        calculation_budget_ms: float = 50.0,
        perf: Optional[PerformanceLogger] = None
    ):
        self.rule_source = rule_source
        self.clock = clock or RealTimeClock()
        self.calculation_budget_ms = calculation_budget_ms

        self.logger = get_logger(LogStream.PRICING)
        self.perf = perf or PerformanceLogger()
        self.perf.set_budget("calculate_price", calculation_budget_ms)

        self._rules: List[PricingRule] = []
        self._initialized = False

    # ========================================================================
    # RULE CACHE
    # ========================================================================

    def initialize(self) -> bool:
        """
        Load the active rule set.

        Returns:
            True if rules were loaded, False if the source failed
        """
        try:
            with log_execution_time(
                "load_pricing_rules", perf=self.perf, source=type(self.rule_source).__name__
            ):
                rules = list(self.rule_source.load_active_pricing_rules())
        except Exception as e:
            self.logger.warning(
                "Pricing rule load failed",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            return False

        # Highest priority first so receipts list the headline promotion first
        self._rules = sorted(rules, key=lambda r: (-r.priority, r.rule_id))
        self._initialized = True

        self.logger.info("Pricing rules loaded", extra={"active_rules": len(self._rules)})
        return True

    def reload_rules(self) -> bool:
        """Replace the rule cache from the source; keeps the old cache on failure."""
        return self.initialize()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def get_status(self) -> Dict:
        return {
            "is_initialized": self._initialized,
            "active_rules_count": len(self._rules),
        }

    # ========================================================================
    # CALCULATION
    # ========================================================================

    def calculate_price(self, context: PricingContext) -> PriceCalculation:
        """
        Price one line.

        Returns:
            PriceCalculation; degraded=True when the base price was returned
            because rules were unavailable or evaluation failed
        """
        start = time.perf_counter()

        try:
            if not self._initialized and not self.initialize():
                return self._fallback(context, start, reason="rules unavailable")

            base = context.line_base
            discounts = []
            for rule in self._rules:
                if self.is_rule_applicable(rule, context):
                    discounts.append(self._evaluate_rule(rule, base))

            total_discount = sum((d.amount for d in discounts), ZERO)
            final_price = max(ZERO, base - total_discount)

            elapsed_ms = (time.perf_counter() - start) * 1000
            self._record_timing(context, elapsed_ms)

            return PriceCalculation(
                unit_price=context.item.base_price,
                base_price=base,
                final_price=final_price,
                discounts=tuple(discounts),
                applied_rules=(BASE_PRICE_LABEL,) + tuple(d.rule_name for d in discounts),
                calculation_time_ms=elapsed_ms,
            )

        except Exception as e:
            return self._fallback(context, start, reason=str(e), error_type=type(e).__name__)

    def price_line(
        self,
        item: Item,
        quantity: Decimal,
        branch_id: str,
        transaction_date: Optional[datetime] = None,
        customer_id: Optional[str] = None,
        customer_tier: Optional[str] = None,
        cart_total: Decimal = ZERO,
        cart_item_ids: Tuple[str, ...] = ()
    ) -> PriceCalculation:
        """calculate_price() for one cart line; the date defaults to now."""
        return self.calculate_price(PricingContext(
            item=item,
            quantity=quantity,
            branch_id=branch_id,
            transaction_date=transaction_date or self.clock.now(),
            customer_id=customer_id,
            customer_tier=customer_tier,
            cart_total=cart_total,
            cart_item_ids=tuple(cart_item_ids),
        ))

    def is_rule_applicable(self, rule: PricingRule, context: PricingContext) -> bool:
        if not rule.is_active:
            return False
        if not rule.is_valid_at(context.transaction_date):
            return False
        if rule.applicable_branches and context.branch_id not in rule.applicable_branches:
            return False
        return all_conditions_match(rule.conditions, context)

    def _evaluate_rule(self, rule: PricingRule, base: Decimal) -> AppliedDiscount:
        return AppliedDiscount(
            rule_id=rule.rule_id,
            rule_name=rule.name,
            discount_type=rule.discount_type,
            discount_value=rule.discount_value,
            amount=self.calculate_discount_amount(base, rule),
            priority=rule.priority,
        )

    @staticmethod
    def calculate_discount_amount(base: Decimal, rule: PricingRule) -> Decimal:
        """Discount for one rule against the line base."""
        if rule.discount_type == DiscountType.PERCENTAGE:
            return quantize_money(base * rule.discount_value / Decimal("100"))
        if rule.discount_type == DiscountType.FIXED_AMOUNT:
            return quantize_money(min(rule.discount_value, base))
        if rule.discount_type == DiscountType.FREE_ITEM:
            return base
        return ZERO

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _fallback(self, context: PricingContext, start: float, **details) -> PriceCalculation:
        item = context.item
        base = quantize_money(item.base_price * context.quantity)
        elapsed_ms = (time.perf_counter() - start) * 1000

        self.logger.warning("Pricing degraded to base price", extra={
            "item_id": item.item_id,
            "quantity": str(context.quantity),
            **details
        })

        return PriceCalculation(
            unit_price=item.base_price,
            base_price=base,
            final_price=base,
            applied_rules=(FALLBACK_LABEL,),
            calculation_time_ms=elapsed_ms,
            degraded=True,
        )

    def _record_timing(self, context: PricingContext, elapsed_ms: float) -> None:
        # Over-budget calls are reported by the performance logger
        self.perf.log_metric("calculate_price", elapsed_ms, item_id=context.item.item_id)
