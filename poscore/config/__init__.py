"""
Configuration system with Pydantic validation.

Single source of truth for all configuration parameters.
"""

from .schema import (
    PosConfig,
    TerminalConfig,
    TransactionConfig,
    PricingConfig,
    StorageConfig,
    LoggingConfig,
    LogLevel,
    RuleSourceType,
)

from .loader import (
    ConfigLoader,
    load_config,
)

__all__ = [
    "PosConfig",
    "TerminalConfig",
    "TransactionConfig",
    "PricingConfig",
    "StorageConfig",
    "LoggingConfig",
    "LogLevel",
    "RuleSourceType",
    "ConfigLoader",
    "load_config",
]
