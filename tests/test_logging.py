"""
Structured logging.

TESTS:
    1. Stream loggers live under the poscore namespace.
    2. LogContext scopes the correlation id and restores the previous one.
    3. JSONFormatter emits extra fields and the correlation id.
    4. setup_logging writes one file per stream; reset_logging detaches.
    5. PerformanceLogger aggregates timings and counts budget overruns.
"""

import json
import logging
from decimal import Decimal

import pytest

from poscore.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LogContext,
    LogStream,
    PerformanceLogger,
    get_correlation_id,
    get_logger,
    log_execution_time,
    reset_logging,
    setup_logging,
)


def _record(message="Items added", **extra):
    record = logging.LogRecord(
        name="poscore.transactions",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLoggers:

    def test_stream_namespace(self):
        assert get_logger(LogStream.PRICING).name == "poscore.pricing"

    def test_log_context_scopes_correlation_id(self):
        assert get_correlation_id() is None

        with LogContext("TXN-outer"):
            with LogContext("TXN-inner"):
                assert get_correlation_id() == "TXN-inner"
            assert get_correlation_id() == "TXN-outer"

        assert get_correlation_id() is None

    def test_records_carry_correlation_id(self, caplog):
        with caplog.at_level(logging.INFO, logger="poscore.transactions"):
            with LogContext("TXN-42"):
                get_logger(LogStream.TRANSACTIONS).info("Items added")

        assert caplog.records[-1].correlation_id == "TXN-42"


class TestFormatters:

    def test_json_formatter(self):
        payload = json.loads(JSONFormatter().format(
            _record(correlation_id="TXN-1", transaction_id="TXN-1", line_count=2)
        ))

        assert payload["message"] == "Items added"
        assert payload["logger"] == "poscore.transactions"
        assert payload["correlation_id"] == "TXN-1"
        assert payload["extra"] == {"transaction_id": "TXN-1", "line_count": 2}

    def test_json_keeps_money_exact(self):
        payload = json.loads(JSONFormatter().format(_record(total_amount=Decimal("20.10"))))

        assert payload["stream"] == "transactions"
        assert payload["extra"]["total_amount"] == "20.10"

    def test_console_formatter(self):
        line = ConsoleFormatter(use_colors=False).format(
            _record(correlation_id="TXN-20260314T093000Z-1b2c3d4e")
        )

        assert "TRANSACTIONS" in line
        assert "[1b2c3d4e]" in line
        assert line.endswith("Items added")


class TestSetup:

    @pytest.fixture(autouse=True)
    def _reset(self):
        reset_logging()
        yield
        reset_logging()

    def test_files_per_stream(self, tmp_path):
        setup_logging(log_dir=tmp_path, console_level="CRITICAL", json_logs=True)

        get_logger(LogStream.STORAGE).warning("Store slow", extra={"duration_ms": 120})
        for handler in logging.getLogger("poscore.storage").handlers:
            handler.flush()

        for stream in LogStream.ALL:
            assert (tmp_path / stream / f"{stream}.log").exists()
        entry = json.loads((tmp_path / "storage" / "storage.log").read_text(encoding="utf-8").splitlines()[-1])
        assert entry["message"] == "Store slow"
        assert entry["extra"]["duration_ms"] == 120

    def test_reset_detaches_handlers(self, tmp_path):
        setup_logging(log_dir=tmp_path, console_level="CRITICAL")

        reset_logging()

        assert logging.getLogger("poscore.storage").handlers == []


class TestPerformanceLogger:

    def test_stats(self):
        perf = PerformanceLogger()
        for duration in (1.0, 2.0, 3.0):
            perf.log_metric("calculate_price", duration)
        perf.log_metric("calculate_price", 99.0, success=False)

        stats = perf.get_stats("calculate_price")

        assert stats["count"] == 3
        assert stats["min_ms"] == 1.0
        assert stats["max_ms"] == 3.0
        assert stats["mean_ms"] == 2.0
        assert stats["failures"] == 1

    def test_budget_overruns_counted(self, caplog):
        perf = PerformanceLogger()
        perf.set_budget("calculate_price", 5.0)

        with caplog.at_level(logging.WARNING, logger="poscore.performance"):
            assert perf.log_metric("calculate_price", 4.0) is False
            assert perf.log_metric("calculate_price", 7.5) is True

        assert perf.get_stats("calculate_price")["over_budget"] == 1
        assert any("over budget" in r.getMessage() for r in caplog.records)

    def test_only_recent_samples_kept(self):
        perf = PerformanceLogger(window=3)
        for duration in (100.0, 1.0, 2.0, 3.0):
            perf.log_metric("calculate_price", duration)

        stats = perf.get_stats("calculate_price")

        assert stats["count"] == 3
        assert stats["max_ms"] == 3.0

    def test_log_execution_time_uses_given_logger(self):
        perf = PerformanceLogger()

        with log_execution_time("load_pricing_rules", perf=perf):
            pass

        assert perf.get_stats("load_pricing_rules")["count"] == 1

    def test_reset_keeps_budget(self):
        perf = PerformanceLogger()
        perf.set_budget("calculate_price", 5.0)
        perf.log_metric("calculate_price", 1.0)

        perf.reset()

        assert perf.get_stats("calculate_price") is None
        perf.log_metric("calculate_price", 9.0)
        assert perf.get_stats("calculate_price")["over_budget"] == 1

    def test_unknown_operation(self):
        assert PerformanceLogger().get_stats("nothing") is None

    def test_log_execution_time_reraises(self):
        with pytest.raises(RuntimeError):
            with log_execution_time("load_rules"):
                raise RuntimeError("boom")
