"""
Terminal wiring.

Builds the per-process component graph from configuration in dependency
order:
1. Logging
2. Clock (terminal timezone)
3. Transaction store
4. Pricing engine (rule source: store or YAML file)
5. Transaction state machine
6. Recovery coordinator
"""

from dataclasses import dataclass
from typing import Optional

from poscore.config import PosConfig, RuleSourceType
from poscore.logging import get_logger, setup_logging, LogStream
from poscore.pricing import PricingEngine, RuleSource, YamlRuleSource
from poscore.recovery import RecoveryCoordinator, RecoveryReport
from poscore.state import TransactionStateMachine, TransactionStore
from poscore.time import Clock, get_clock

logger = get_logger(LogStream.SYSTEM)


@dataclass
class Terminal:
    """Components of one running terminal."""
    config: PosConfig
    clock: Clock
    store: TransactionStore
    pricing_engine: PricingEngine
    machine: TransactionStateMachine
    recovery: RecoveryCoordinator

    def start(self) -> RecoveryReport:
        """Load the rule cache and recover interrupted transactions."""
        if not self.pricing_engine.initialize():
            logger.warning("Pricing rules unavailable at startup; prices will fall back to base")
        return self.recovery.recover()

    def close(self) -> None:
        self.store.close()
        logger.info("Terminal closed", extra={"device_id": self.config.terminal.device_id})

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def build_terminal(
    config: PosConfig,
    clock: Optional[Clock] = None,
    configure_logging: bool = True
) -> Terminal:
    """
    Wire a terminal from validated configuration.

    Args:
        config: Validated PosConfig
        clock: Clock override (tests); defaults to the wall clock in the
            terminal's timezone
        configure_logging: Install log handlers from config.logging
    """
    config.ensure_directories()

    if configure_logging:
        setup_logging(
            log_dir=config.logging.log_dir,
            log_level=config.logging.log_level.value,
            console_level=config.logging.console_level.value,
            json_logs=config.logging.json_logs,
            max_bytes=config.logging.max_bytes,
            backup_count=config.logging.backup_count,
        )

    clock = clock or get_clock(config.terminal.timezone)
    store = TransactionStore(config.storage.db_path, clock=clock)

    rule_source: RuleSource
    if config.pricing.rule_source == RuleSourceType.YAML:
        rule_source = YamlRuleSource(config.pricing.rules_file)
    else:
        rule_source = store

    engine = PricingEngine(
        rule_source=rule_source,
        clock=clock,
        calculation_budget_ms=config.pricing.calculation_budget_ms,
    )

    txn = config.transactions
    machine = TransactionStateMachine(
        store=store,
        pricing_engine=engine,
        clock=clock,
        expiry_hours=txn.expiry_hours,
        max_items_warning=txn.max_items_warning,
        overpayment_warning_multiplier=txn.overpayment_warning_multiplier,
    )

    recovery = RecoveryCoordinator(machine, store, cleanup_on_startup=txn.cleanup_on_startup)

    logger.info("Terminal built", extra={
        "branch_id": config.terminal.branch_id,
        "device_id": config.terminal.device_id,
        "rule_source": config.pricing.rule_source.value,
        "db_path": str(config.storage.db_path)
    })

    return Terminal(
        config=config,
        clock=clock,
        store=store,
        pricing_engine=engine,
        machine=machine,
        recovery=recovery,
    )
