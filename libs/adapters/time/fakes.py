from __future__ import annotations

from ports.time import ClockPort


class ManualClockPort(ClockPort):
    """Only moves when told to; keeps idleness tie-breaks deterministic in tests."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        self._now += float(seconds)
        return self._now
