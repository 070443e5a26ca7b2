from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

# {"ok": bool, "correlates_to": str, "data": {...}} or {"ok": False, "error": {...}}
Envelope = dict[str, Any]


class Command(Protocol):
    type: str


class AgentCommandPort(ABC):
    """Request/reply towards a coordination process at ``addr``.

    Never raises for a silent peer; a timeout comes back as a failed envelope.
    """

    @abstractmethod
    def send(self, addr: str, cmd: Command | Mapping[str, Any]) -> Envelope: ...


class StateSubPort(ABC):
    """Receives ``{"topic", "data"}`` state messages from any number of publishers."""

    @abstractmethod
    def subscribe(self, addr: str) -> None: ...
    @abstractmethod
    def recv(self, timeout_ms: int = 100) -> dict | None: ...


class StatePubPort(ABC):
    """Fans agent snapshots out to subscribers; slow or absent readers drop messages."""

    @abstractmethod
    def publish(self, topic: str, payload: Mapping[str, Any]) -> None: ...


@runtime_checkable
class CommandServerPort(Protocol):
    """Serves one request per ``poll_once``; returns False when nothing arrived."""

    def poll_once(self, handler: Callable[[dict], Envelope]) -> bool: ...
    def close(self) -> None: ...


__all__ = [
    "AgentCommandPort",
    "CommandServerPort",
    "StatePubPort",
    "StateSubPort",
    "Command",
    "Envelope",
]
