# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import pytest

from poscore.pricing import DiscountType, PricingEngine, PricingRule
from poscore.state import Line, TransactionStateMachine, TransactionStore
from poscore.time import SimulatedClock

START = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


# -------------------------
# Fakes
# -------------------------

class StaticRuleSource:
    """In-memory rule source; set `fail` to simulate an unreachable rule store."""

    def __init__(self, rules: Optional[List[PricingRule]] = None):
        self.rules = list(rules or [])
        self.fail = False
        self.loads = 0

    def load_active_pricing_rules(self) -> List[PricingRule]:
        self.loads += 1
        if self.fail:
            raise RuntimeError("rule store unreachable")
        return [r for r in self.rules if r.is_active]


# -------------------------
# Fixtures
# -------------------------

@pytest.fixture
def clock():
    return SimulatedClock(START)


@pytest.fixture
def store(tmp_path, clock):
    s = TransactionStore(tmp_path / "terminal.db", clock=clock)
    yield s
    s.close()


@pytest.fixture
def rule_source():
    return StaticRuleSource()


@pytest.fixture
def engine(rule_source, clock):
    e = PricingEngine(rule_source=rule_source, clock=clock)
    e.initialize()
    return e


@pytest.fixture
def machine(store, engine, clock):
    return TransactionStateMachine(store, pricing_engine=engine, clock=clock)


@pytest.fixture
def make_rule():
    """Factory for rules valid across the whole test year."""
    def _make(
        rule_id: str,
        discount_type: DiscountType = DiscountType.PERCENTAGE,
        value: str = "10",
        priority: int = 0,
        **overrides
    ) -> PricingRule:
        fields = dict(
            rule_id=rule_id,
            name=overrides.pop("name", f"Rule {rule_id}"),
            priority=priority,
            discount_type=discount_type,
            discount_value=Decimal(value),
            valid_from=START - timedelta(days=60),
            valid_to=START + timedelta(days=60),
        )
        fields.update(overrides)
        return PricingRule(**fields)
    return _make


@pytest.fixture
def coffee():
    return Line(item_id="COFFEE", item_name="Coffee", quantity=Decimal("2"), unit_price=Decimal("10.00"))
