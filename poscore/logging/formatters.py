"""
Log formatters.

JSONFormatter writes one object per line for the stream files;
ConsoleFormatter writes a single readable line for the terminal operator.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

# Attributes every LogRecord carries; anything else arrived through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "correlation_id"
}


def _json_default(value):
    # Money stays exact in the logs
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _record_extra(record: logging.LogRecord) -> dict:
    """Fields passed to the logging call through `extra`."""
    return {
        key: value for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith('_')
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:

    {
        "timestamp": "2026-03-14T09:30:00.123456+00:00",
        "level": "INFO",
        "logger": "poscore.transactions",
        "stream": "transactions",
        "correlation_id": "TXN-20260314T093000Z-1b2c3d4e",
        "message": "Transaction completed: ...",
        "extra": {"receipt_number": "RCP-20260314-000123", "total_amount": "20.00"}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": record.name.rsplit('.', 1)[-1],
            "correlation_id": getattr(record, 'correlation_id', None),
            "message": record.getMessage(),
        }

        extra = _record_extra(record)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }

        if record.levelno >= logging.WARNING:
            payload["source"] = f"{record.module}:{record.funcName}:{record.lineno}"

        return json.dumps(payload, default=_json_default)


class ConsoleFormatter(logging.Formatter):
    """
    Single-line console output:

    09:30:00 INFO     TRANSACTIONS [1b2c3d4e] Items added

    The bracketed tag is the tail of the correlation id, which for
    transaction ids is the random suffix.
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')

        level = f"{record.levelname:8}"
        if self.use_colors and record.levelname in self.COLORS:
            level = f"{self.COLORS[record.levelname]}{level}{self.RESET}"

        stream = record.name.rsplit('.', 1)[-1].upper()

        correlation_id = getattr(record, 'correlation_id', None)
        tag = f" [{correlation_id[-8:]}]" if correlation_id else ""

        line = f"{clock} {level} {stream:12}{tag} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
