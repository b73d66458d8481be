"""
Stream loggers, correlation ids and handler setup.

Streams:
- system        startup, configuration, wiring
- transactions  lifecycle events of a sale
- pricing       rule loads, discounts, degraded fallbacks
- storage       durable store failures
- recovery      startup recovery and expiry sweeps
- performance   timings

Every stream logger lives under the "poscore." namespace. Records carry the
correlation id active in the current context; the state machine scopes it
to the transaction id for the duration of each operation.
"""

import functools
import logging
import logging.handlers
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import List, Optional, Tuple

_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

LOGGER_NAMESPACE = "poscore"


# ============================================================================
# LOG STREAM DEFINITIONS
# ============================================================================

class LogStream:
    """Log stream identifiers."""
    SYSTEM = "system"
    TRANSACTIONS = "transactions"
    PRICING = "pricing"
    STORAGE = "storage"
    RECOVERY = "recovery"
    PERFORMANCE = "performance"

    ALL = (SYSTEM, TRANSACTIONS, PRICING, STORAGE, RECOVERY, PERFORMANCE)


# ============================================================================
# CORRELATION ID MANAGEMENT
# ============================================================================

def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set the correlation id for the current context (random if None)."""
    correlation_id = correlation_id or uuid.uuid4().hex
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


class LogContext:
    """
    Scope a correlation id; the previous one is restored on exit.

    Usage:
        with LogContext(transaction_id):
            logger.info("Items added")
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or uuid.uuid4().hex
        self._token = None

    def __enter__(self) -> str:
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)
        self._token = None


_base_record_factory = logging.getLogRecordFactory()


def _record_with_correlation_id(*args, **kwargs):
    record = _base_record_factory(*args, **kwargs)
    record.correlation_id = _correlation_id.get()
    return record


logging.setLogRecordFactory(_record_with_correlation_id)


# ============================================================================
# HANDLER SETUP
# ============================================================================

_initialized = False
_installed: List[Tuple[logging.Logger, logging.Handler]] = []


def _level(name: str) -> int:
    return logging.getLevelName(name.upper())


def _install(logger: logging.Logger, handler: logging.Handler) -> None:
    logger.addHandler(handler)
    _installed.append((logger, handler))


def _stream_file_handler(
    log_file: Path,
    level: int,
    json_logs: bool,
    max_bytes: int,
    backup_count: int
) -> logging.Handler:
    from .formatters import JSONFormatter

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)-8s %(name)s [%(correlation_id)s] %(message)s'
        ))
    return handler


def setup_logging(
    log_dir: Path = Path("logs"),
    log_level: str = "INFO",
    console_level: str = "INFO",
    json_logs: bool = True,
    max_bytes: int = 10_000_000,
    backup_count: int = 5
) -> None:
    """
    Install console and per-stream rotating file handlers.

    Layout: <log_dir>/<stream>/<stream>.log for every LogStream. Console
    output is attached once, to the namespace logger; stream loggers
    propagate to it. Calling again before reset_logging() is a no-op.

    Args:
        log_dir: Base directory for logs
        log_level: File handler level
        console_level: Console handler level
        json_logs: JSON lines (True) or plain text files
        max_bytes: Rotation size per file
        backup_count: Rotated files kept per stream
    """
    global _initialized

    if _initialized:
        return

    from .formatters import ConsoleFormatter

    log_dir = Path(log_dir)

    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(_level(console_level))
    console.setFormatter(ConsoleFormatter())
    _install(namespace, console)

    file_level = _level(log_level)
    for stream in LogStream.ALL:
        stream_dir = log_dir / stream
        stream_dir.mkdir(parents=True, exist_ok=True)

        _install(get_logger(stream), _stream_file_handler(
            stream_dir / f"{stream}.log", file_level, json_logs, max_bytes, backup_count
        ))

    _initialized = True

    get_logger(LogStream.SYSTEM).info("Logging initialized", extra={
        "log_dir": str(log_dir),
        "log_level": log_level,
        "json_logs": json_logs
    })


def reset_logging() -> None:
    """Detach and close every handler installed by setup_logging()."""
    global _initialized

    while _installed:
        logger, handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()

    _initialized = False


def get_logger(stream: str) -> logging.Logger:
    """
    Logger for one stream.

    Example:
        logger = get_logger(LogStream.TRANSACTIONS)
        logger.info("Items added", extra={"transaction_id": txn_id, "line_count": 2})
    """
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{stream}")


# ============================================================================
# TIMING DECORATOR
# ============================================================================

def log_performance(stream: str = LogStream.PERFORMANCE):
    """
    Time every call; failures are logged to `stream` and re-raised.

    Durations are also recorded with the shared PerformanceLogger under the
    function's qualified name.

    Usage:
        @log_performance(LogStream.TRANSACTIONS)
        def complete_transaction(self, transaction_id):
            ...
    """
    def decorator(func):
        operation = func.__qualname__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            from .metrics import get_performance_logger

            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed_ms = (time.perf_counter() - start) * 1000
                get_performance_logger().log_metric(operation, elapsed_ms, success=False)
                get_logger(stream).error(f"{operation} failed", extra={
                    "operation": operation,
                    "duration_ms": round(elapsed_ms, 2),
                    "error_type": type(e).__name__
                })
                raise

            get_performance_logger().log_metric(operation, (time.perf_counter() - start) * 1000)
            return result

        return wrapper
    return decorator
