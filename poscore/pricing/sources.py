"""
Pricing rule sources.

A rule source is anything exposing `load_active_pricing_rules()`. The
durable store is one; a YAML rule file is the other, for terminals that
receive promotions as a file drop.

YAML layout:

    rules:
      - rule_id: PROMO-10
        name: "10% off coffee"
        priority: 10
        rule_type: category
        discount_type: percentage
        discount_value: "10"
        valid_from: "2026-01-01T00:00:00+00:00"
        valid_to: "2026-12-31T23:59:59+00:00"
        conditions:
          - {field: category, operator: eq, value: coffee}
"""

from pathlib import Path
from typing import List, Protocol

import yaml

from poscore.logging import get_logger, LogStream
from poscore.pricing.models import PricingRule


class RuleSource(Protocol):
    def load_active_pricing_rules(self) -> List[PricingRule]: ...


class RuleSourceError(RuntimeError):
    """Raised when a rule source cannot produce a rule set."""
    pass


class YamlRuleSource:
    """Loads active pricing rules from a YAML file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.logger = get_logger(LogStream.PRICING)

    def load_active_pricing_rules(self) -> List[PricingRule]:
        """
        Parse the rule file.

        Raises:
            RuleSourceError: missing file, bad YAML or an invalid rule
        """
        if not self.path.exists():
            raise RuleSourceError(f"Rule file not found: {self.path}")

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            raw_rules = data.get("rules") or []
            rules = [PricingRule.from_dict(r) for r in raw_rules]
        except (yaml.YAMLError, KeyError, ValueError, TypeError, AttributeError) as e:
            raise RuleSourceError(f"Invalid rule file {self.path}: {e}") from e

        active = [r for r in rules if r.is_active]
        self.logger.info("Rules loaded from file", extra={
            "path": str(self.path),
            "rules_total": len(rules),
            "rules_active": len(active)
        })
        return active
