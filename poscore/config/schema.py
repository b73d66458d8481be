"""
Configuration schema using Pydantic for validation.

Single source of truth for terminal configuration.
Validates on load, fails fast on invalid config.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# ENUMS
# ============================================================================

class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RuleSourceType(str, Enum):
    """Where the pricing engine loads its active rules from."""
    STORE = "store"
    YAML = "yaml"


# ============================================================================
# TERMINAL CONFIGURATION
# ============================================================================

class TerminalConfig(BaseModel):
    """Identity of this terminal process."""

    branch_id: str = Field(min_length=1, description="Branch this terminal belongs to")
    device_id: str = Field(min_length=1, description="Unique device identifier")
    timezone: str = Field(
        default="UTC",
        description="Terminal timezone (receipt dates use the local business day)"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


# ============================================================================
# TRANSACTION CONFIGURATION
# ============================================================================

class TransactionConfig(BaseModel):
    """
    Transaction lifecycle parameters.

    RULES:
    - Expiry threshold between 1 hour and 7 days
    - Overpayment warning multiplier > 1
    """

    expiry_hours: int = Field(
        ge=1,
        le=168,
        default=24,
        description="Idle hours after which an active transaction is auto-cancelled"
    )

    max_items_warning: int = Field(
        ge=1,
        default=100,
        description="Line count above which the items step warns"
    )

    overpayment_warning_multiplier: Decimal = Field(
        gt=Decimal("1"),
        default=Decimal("2"),
        description="Warn when payment exceeds total by this factor"
    )

    cleanup_on_startup: bool = Field(
        default=True,
        description="Run the expiry sweep during startup recovery"
    )


# ============================================================================
# PRICING CONFIGURATION
# ============================================================================

class PricingConfig(BaseModel):
    """Pricing engine settings."""

    rule_source: RuleSourceType = Field(
        default=RuleSourceType.STORE,
        description="Load rules from the durable store or a YAML file"
    )

    rules_file: Optional[Path] = Field(
        default=None,
        description="YAML rule file (required when rule_source is yaml)"
    )

    calculation_budget_ms: float = Field(
        gt=0,
        le=1000,
        default=50.0,
        description="Per-call latency budget; slower calls are logged"
    )

    @model_validator(mode="after")
    def require_rules_file_for_yaml(self):
        if self.rule_source == RuleSourceType.YAML and self.rules_file is None:
            raise ValueError("pricing.rules_file is required when rule_source is 'yaml'")
        return self


# ============================================================================
# STORAGE CONFIGURATION
# ============================================================================

class StorageConfig(BaseModel):
    """Durable store settings."""

    db_path: Path = Field(
        default=Path("data/pos/terminal.db"),
        description="SQLite database file"
    )


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_dir: Path = Field(
        default=Path("logs"),
        description="Base log directory"
    )

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="File logging level"
    )

    console_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Console logging level"
    )

    json_logs: bool = Field(
        default=True,
        description="Use JSON formatting"
    )

    max_bytes: int = Field(
        ge=1_000_000,
        le=100_000_000,
        default=10_000_000,
        description="Max bytes per log file"
    )

    backup_count: int = Field(
        ge=1,
        le=20,
        default=5,
        description="Number of backup files"
    )


# ============================================================================
# MASTER CONFIGURATION
# ============================================================================

class PosConfig(BaseModel):
    """
    Master configuration schema.

    Single source of truth for all parameters.
    Validates on load, fails fast on invalid config.
    """

    terminal: TerminalConfig
    transactions: TransactionConfig = Field(default_factory=TransactionConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    def ensure_directories(self) -> None:
        """Create directories for the database and logs."""
        self.storage.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.logging.log_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_yaml(cls, path: Path) -> "PosConfig":
        """Load config from YAML file."""
        import yaml
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls(**data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PosConfig":
        """Load config from dictionary."""
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save config to YAML file."""
        import yaml
        data = self.model_dump(mode="json")
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
