"""
Transaction and receipt identifiers.

Examples:
  TXN-20261019T091502Z-8f3c2a9d
  RCP-20261019-512345
"""

import uuid
from typing import Callable, Optional, Set

from poscore.time import Clock, RealTimeClock

_SEQUENCE_SPACE = 1_000_000


def new_transaction_id(clock: Optional[Clock] = None, *, prefix: str = "TXN") -> str:
    """Process-unique transaction id."""
    clock = clock or RealTimeClock()
    return f"{prefix}-{clock.now():%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"


class ReceiptNumberGenerator:
    """
    RCP-<terminal local date>-<last six digits of epoch milliseconds>.

    The suffix is bumped when it would repeat a number already issued by
    this generator for the same day, or one `is_taken` reports as already
    stored (numbers issued before a restart).
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        prefix: str = "RCP",
        is_taken: Optional[Callable[[str], bool]] = None
    ):
        self.clock = clock or RealTimeClock()
        self.prefix = prefix
        self.is_taken = is_taken
        self._day: Optional[str] = None
        self._issued: Set[int] = set()

    def next(self) -> str:
        day = self.clock.today().strftime("%Y%m%d")
        if day != self._day:
            self._day = day
            self._issued = set()

        sequence = int(self.clock.now().timestamp() * 1000) % _SEQUENCE_SPACE
        while sequence in self._issued or self._stored(day, sequence):
            self._issued.add(sequence)
            sequence = (sequence + 1) % _SEQUENCE_SPACE

        self._issued.add(sequence)
        return self._format(day, sequence)

    def _format(self, day: str, sequence: int) -> str:
        return f"{self.prefix}-{day}-{sequence:06d}"

    def _stored(self, day: str, sequence: int) -> bool:
        return self.is_taken is not None and self.is_taken(self._format(day, sequence))
