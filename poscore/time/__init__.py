"""Time abstraction layer"""

from .clock import Clock, RealTimeClock, SimulatedClock, ensure_utc, get_clock

__all__ = [
    'Clock',
    'RealTimeClock',
    'SimulatedClock',
    'ensure_utc',
    'get_clock',
]
