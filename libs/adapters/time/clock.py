from __future__ import annotations

import time

from ports.time import ClockPort


class MonotonicClockPort(ClockPort):
    def now(self) -> float:
        return time.monotonic()
