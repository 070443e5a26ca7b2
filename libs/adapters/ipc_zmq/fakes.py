from __future__ import annotations

from queue import Empty, SimpleQueue
from typing import Any

from ports.ipc import AgentCommandPort, StateSubPort
from shared.contracts.v1.commands import command_dict


class FakeAgentCommandPort(AgentCommandPort):
    """Records commands per addr; replies with a canned ok-envelope or a queued one."""

    def __init__(self) -> None:
        self.sent: dict[str, list[dict]] = {}
        self.replies: dict[str, list[dict]] = {}

    def reply_with(self, addr: str, response: dict) -> None:
        self.replies.setdefault(addr, []).append(response)

    def send(self, addr: str, cmd: Any) -> dict:
        payload = command_dict(cmd)
        self.sent.setdefault(addr, []).append(payload)
        queued = self.replies.get(addr)
        if queued:
            return queued.pop(0)
        return {"ok": True, "correlates_to": "fake", "data": {"echo": payload.get("type")}}

    def last(self, addr: str) -> dict | None:
        sent = self.sent.get(addr)
        return sent[-1] if sent else None


class FakeStateSubPort(StateSubPort):
    """Local queue-based state channel suitable for tests."""

    def __init__(self) -> None:
        self._subs: set[str] = set()
        self._q: SimpleQueue[dict] = SimpleQueue()

    def subscribe(self, addr: str) -> None:
        self._subs.add(addr)

    def recv(self, timeout_ms: int = 100) -> dict | None:
        try:
            return self._q.get(timeout=timeout_ms / 1000.0)
        except Empty:
            return None

    # Test/helper API: inject a message shaped like ZmqStateSubPort.recv() output
    def inject(self, topic: str, data: dict) -> None:
        self._q.put({"topic": topic, "data": data})
