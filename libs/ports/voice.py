from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

# Keep these in ports so adapters and domain share them (no domain dependency)
Liveness = Literal["initializing", "online", "reconnecting", "error", "offline"]


@dataclass(frozen=True, order=True)
class SessionRef:
    """A voice channel scoped to its guild."""

    guild_id: int
    channel_id: int

    def __str__(self) -> str:
        return f"{self.guild_id}:{self.channel_id}"

    @classmethod
    def parse(cls, raw: str) -> SessionRef:
        gid, _, cid = raw.partition(":")
        if not cid:
            raise ValueError(f"Bad session reference: {raw!r} (expected 'guild:channel')")
        return cls(int(gid), int(cid))


class HandOffError(Exception):
    """Raised by a voice adapter when a join is rejected by the platform."""


class VoiceAgentPort(ABC):
    """Live handle of one bot agent; the domain never sees the platform client."""

    agent_id: str

    @abstractmethod
    async def join(self, session: SessionRef) -> None:
        """Connect to the session. Raises HandOffError when refused."""

    @abstractmethod
    async def leave(self, session: SessionRef) -> None: ...

    @abstractmethod
    def is_connected_to(self, session: SessionRef) -> bool: ...


class PlaybackPort(ABC):
    """Media engine seam. Queues, volume and decoding live behind it."""

    @abstractmethod
    async def start_serving(self, session: SessionRef, payload: Mapping[str, Any]) -> None: ...

    @abstractmethod
    async def stop_serving(self, session: SessionRef) -> None: ...
