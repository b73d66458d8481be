"""
Logging infrastructure for the POS transaction core.

Provides structured, machine-readable logging for:
- Transaction lifecycle audit (start, transitions, completion, cancellation)
- Pricing decisions and degraded fallbacks
- Durable store failures
- Performance analysis of the pricing hot path

Features:
- JSON structured logging
- Correlation ID tracking (one id per transaction)
- Multiple log streams (system, transactions, pricing, storage, recovery)
- Automatic performance timing
- Log rotation
"""

from .logger import (
    get_logger,
    setup_logging,
    reset_logging,
    LogContext,
    log_performance,
    set_correlation_id,
    get_correlation_id,
    LogStream,
)

from .formatters import (
    JSONFormatter,
    ConsoleFormatter,
)

from .metrics import (
    PerformanceLogger,
    get_performance_logger,
    log_execution_time,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "reset_logging",
    "LogContext",
    "log_performance",
    "set_correlation_id",
    "get_correlation_id",
    "LogStream",
    "JSONFormatter",
    "ConsoleFormatter",
    "PerformanceLogger",
    "get_performance_logger",
    "log_execution_time",
]
