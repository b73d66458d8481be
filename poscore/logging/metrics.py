"""
Operation timings.

The pricing hot path registers a latency budget; calls over budget are
counted per operation and reported on the performance stream. Each series
keeps only the most recent samples.
"""

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional

from .logger import get_logger, LogStream


DEFAULT_WINDOW = 1000


@dataclass
class TimingSeries:
    """Recent durations of one operation, successful calls only."""
    operation: str
    budget_ms: Optional[float] = None
    window: int = DEFAULT_WINDOW
    durations: Deque[float] = field(init=False)
    failures: int = 0
    over_budget: int = 0

    def __post_init__(self):
        self.durations = deque(maxlen=self.window)

    def record(self, duration_ms: float, success: bool) -> bool:
        """Add one sample; returns True when it exceeded the budget."""
        if not success:
            self.failures += 1
            return False

        self.durations.append(duration_ms)
        if self.budget_ms is not None and duration_ms > self.budget_ms:
            self.over_budget += 1
            return True
        return False

    def summary(self) -> Optional[Dict]:
        if not self.durations:
            return None

        ordered = sorted(self.durations)
        n = len(ordered)
        return {
            "count": n,
            "failures": self.failures,
            "over_budget": self.over_budget,
            "budget_ms": self.budget_ms,
            "min_ms": round(ordered[0], 3),
            "max_ms": round(ordered[-1], 3),
            "mean_ms": round(sum(ordered) / n, 3),
            "p50_ms": round(ordered[n // 2], 3),
            "p95_ms": round(ordered[int(n * 0.95)], 3),
        }


class PerformanceLogger:
    """
    Per-operation timing series, logged to the performance stream.

    Components that set budgets take their own instance; the shared one
    from get_performance_logger() serves ad hoc timing.
    """

    def __init__(self, window: int = DEFAULT_WINDOW):
        self.window = window
        self.logger = get_logger(LogStream.PERFORMANCE)
        self._series: Dict[str, TimingSeries] = {}

    def _get_series(self, operation: str) -> TimingSeries:
        series = self._series.get(operation)
        if series is None:
            series = self._series[operation] = TimingSeries(operation, window=self.window)
        return series

    def set_budget(self, operation: str, budget_ms: Optional[float]) -> None:
        self._get_series(operation).budget_ms = budget_ms

    def log_metric(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        **metadata
    ) -> bool:
        """
        Record one timing.

        Returns:
            True if the call exceeded the operation's budget
        """
        series = self._get_series(operation)
        over = series.record(duration_ms, success)

        fields = {
            "operation": operation,
            "duration_ms": round(duration_ms, 3),
            "success": success,
            **metadata
        }
        if over:
            self.logger.warning(f"{operation} over budget", extra={**fields, "budget_ms": series.budget_ms})
        else:
            self.logger.debug(f"{operation} timing", extra=fields)

        return over

    def get_stats(self, operation: str) -> Optional[Dict]:
        """count, failures, over_budget, min/max/mean/p50/p95 in ms; None if no samples."""
        series = self._series.get(operation)
        return series.summary() if series else None

    def reset(self) -> None:
        """Drop samples; budgets are kept."""
        for operation, series in list(self._series.items()):
            self._series[operation] = TimingSeries(operation, budget_ms=series.budget_ms, window=self.window)


_shared: Optional[PerformanceLogger] = None


def get_performance_logger() -> PerformanceLogger:
    """Process-wide PerformanceLogger."""
    global _shared
    if _shared is None:
        _shared = PerformanceLogger()
    return _shared


@contextmanager
def log_execution_time(
    operation: str,
    logger: Optional[logging.Logger] = None,
    perf: Optional[PerformanceLogger] = None,
    **metadata
):
    """
    Time a block and record it with `perf` (the shared PerformanceLogger
    by default).

    Exceptions are recorded as failures and re-raised; when `logger` is
    given they are also logged there.

    Usage:
        with log_execution_time("load_pricing_rules", source="YamlRuleSource"):
            rules = source.load_active_pricing_rules()
    """
    perf = perf or get_performance_logger()
    start = time.perf_counter()

    try:
        yield
    except Exception as e:
        elapsed_ms = (time.perf_counter() - start) * 1000
        perf.log_metric(operation, elapsed_ms, success=False, error_type=type(e).__name__, **metadata)
        if logger:
            logger.error(f"{operation} failed after {elapsed_ms:.2f}ms", extra={
                "operation": operation,
                "error": str(e),
                **metadata
            })
        raise

    perf.log_metric(operation, (time.perf_counter() - start) * 1000, **metadata)
