from __future__ import annotations

from abc import ABC, abstractmethod


class ClockPort(ABC):
    """Seconds on a monotonic scale.

    Feeds idle-time ordering in the registry and peer expiry in replication;
    only differences between readings are meaningful.
    """

    @abstractmethod
    def now(self) -> float: ...
