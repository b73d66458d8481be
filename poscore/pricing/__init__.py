"""
Pricing rule engine.

Provides:
- PricingEngine: discounted line prices from the resident rule cache
- PricingRule / PricingCondition: dated, conditioned discount definitions
- YamlRuleSource: rule file loader
"""

from .models import (
    AppliedDiscount,
    ConditionOperator,
    DiscountType,
    Item,
    PriceCalculation,
    PricingCondition,
    PricingContext,
    PricingRule,
    RuleType,
    quantize_money,
)

from .conditions import (
    SUPPORTED_FIELDS,
    all_conditions_match,
    condition_matches,
)

from .sources import (
    RuleSource,
    RuleSourceError,
    YamlRuleSource,
)

from .engine import (
    BASE_PRICE_LABEL,
    FALLBACK_LABEL,
    PricingEngine,
)

__all__ = [
    "AppliedDiscount",
    "ConditionOperator",
    "DiscountType",
    "Item",
    "PriceCalculation",
    "PricingCondition",
    "PricingContext",
    "PricingRule",
    "RuleType",
    "quantize_money",
    "SUPPORTED_FIELDS",
    "all_conditions_match",
    "condition_matches",
    "RuleSource",
    "RuleSourceError",
    "YamlRuleSource",
    "BASE_PRICE_LABEL",
    "FALLBACK_LABEL",
    "PricingEngine",
]
