from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from queue import Empty, SimpleQueue
from threading import Lock
from typing import Any

from ports.ipc import AgentCommandPort, StatePubPort, StateSubPort
from shared.contracts.v1.commands import command_dict
from shared.contracts.v1.ipc_wire import StateEnvelope, dispatch_reply, error_reply

_Request = tuple[str, dict, "SimpleQueue[dict]"]


class InprocHub:
    """Endpoint table shared by the in-proc ports of one process."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._servers: dict[str, SimpleQueue[_Request]] = {}
        self._subs: dict[str, list[SimpleQueue[dict]]] = {}

    def bind(self, addr: str) -> SimpleQueue[_Request]:
        with self._lock:
            if addr in self._servers:
                raise RuntimeError(f"Address already bound: {addr}")
            q: SimpleQueue[_Request] = SimpleQueue()
            self._servers[addr] = q
            return q

    def unbind(self, addr: str) -> None:
        with self._lock:
            self._servers.pop(addr, None)

    def server(self, addr: str) -> SimpleQueue[_Request] | None:
        with self._lock:
            return self._servers.get(addr)

    def attach(self, addr: str, q: SimpleQueue[dict]) -> None:
        with self._lock:
            self._subs.setdefault(addr, []).append(q)

    def fan_out(self, addr: str, msg: dict) -> None:
        with self._lock:
            targets = list(self._subs.get(addr, ()))
        for q in targets:
            q.put(msg)


class InprocAgentCommandPort(AgentCommandPort):
    """Queues the command on the bound server and waits for its reply."""

    def __init__(self, hub: InprocHub, timeout_ms: int = 500) -> None:
        self.hub = hub
        self.timeout_ms = timeout_ms

    @classmethod
    def create(cls, hub: InprocHub | None = None) -> InprocAgentCommandPort:
        return cls(hub or InprocHub())

    def send(self, addr: str, cmd: Any) -> dict[str, Any]:
        msg_id = str(uuid.uuid4())
        server = self.hub.server(addr)
        if server is None:
            return error_reply(msg_id, "timeout", f"nothing bound at {addr}")
        reply: SimpleQueue[dict] = SimpleQueue()
        server.put((msg_id, command_dict(cmd), reply))
        try:
            return reply.get(timeout=self.timeout_ms / 1000.0)
        except Empty:
            return error_reply(msg_id, "timeout", "in-proc timeout")


class InprocCommandServerPort:
    def __init__(self, hub: InprocHub, addr: str) -> None:
        self.hub = hub
        self.addr = addr
        self._q = hub.bind(addr)

    @classmethod
    def create(cls, hub: InprocHub, addr: str) -> InprocCommandServerPort:
        return cls(hub, addr)

    def poll_once(self, handler: Callable[[dict], dict]) -> bool:
        try:
            msg_id, command, reply = self._q.get(timeout=0.01)
        except Empty:
            return False
        reply.put(dispatch_reply(msg_id, command, handler))
        return True

    def close(self) -> None:
        self.hub.unbind(self.addr)


class InprocStatePubPort(StatePubPort):
    def __init__(self, hub: InprocHub, addr: str) -> None:
        self.hub = hub
        self.addr = addr

    @classmethod
    def create(cls, hub: InprocHub, addr: str) -> InprocStatePubPort:
        return cls(hub, addr)

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        env = StateEnvelope(msg_id=str(uuid.uuid4()), topic=topic, data=dict(payload))
        decoded = env.model_dump(mode="json")
        self.hub.fan_out(self.addr, {"topic": topic, "data": decoded["data"], "envelope": decoded})


class InprocStateSubPort(StateSubPort):
    """Local queue-based state channel; same message shape as the zmq SUB port."""

    def __init__(self, hub: InprocHub) -> None:
        self.hub = hub
        self._q: SimpleQueue[dict] = SimpleQueue()

    @classmethod
    def create(cls, hub: InprocHub) -> InprocStateSubPort:
        return cls(hub)

    def subscribe(self, addr: str) -> None:
        self.hub.attach(addr, self._q)

    def recv(self, timeout_ms: int = 100) -> dict | None:
        try:
            return self._q.get(timeout=max(timeout_ms, 0) / 1000.0)
        except Empty:
            return None
