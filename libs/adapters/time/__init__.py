from .clock import MonotonicClockPort
from .fakes import ManualClockPort

__all__ = ["MonotonicClockPort", "ManualClockPort"]
