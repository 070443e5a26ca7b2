import json
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from time import monotonic
from typing import Any, cast

import zmq
from ports.ipc import AgentCommandPort, StatePubPort, StateSubPort
from shared.contracts.v1.commands import command_dict
from shared.contracts.v1.ipc_wire import (
    SCHEMA_V1,
    CommandEnvelope,
    StateEnvelope,
    dispatch_reply,
    error_reply,
)

# --------- Common helpers ---------


def _new_ctx() -> zmq.Context:
    # one process-wide context; sockets are per thread
    return zmq.Context.instance()


def _set_common(sock: zmq.Socket, rcv_ms: int = 500, snd_ms: int = 500) -> None:
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, rcv_ms)
    sock.setsockopt(zmq.SNDTIMEO, snd_ms)


# --------- AgentCommandPort (REQ client + REP server) ---------


class ZmqAgentCommandPort(AgentCommandPort):
    """
    Client-side REQ socket per endpoint.
    The serving side is provided via bind_rep(...).
    """

    def __init__(self, rcv_ms: int = 500) -> None:
        self._ctx = _new_ctx()
        self._rcv_ms = rcv_ms
        self._req_cache: dict[str, zmq.Socket] = {}

    @classmethod
    def bind_rep(cls, addr: str) -> "ZmqCommandREPServer":
        return ZmqCommandREPServer(addr=addr)

    def _get_req(self, addr: str) -> zmq.Socket:
        s = self._req_cache.get(addr)
        if s is None:
            s = self._ctx.socket(zmq.REQ)
            _set_common(s, rcv_ms=self._rcv_ms)
            s.connect(addr)
            self._req_cache[addr] = s
        return s

    def _drop(self, addr: str) -> None:
        s = self._req_cache.pop(addr, None)
        if s is not None:
            s.close(0)

    def send(self, addr: str, cmd) -> dict[str, Any]:
        """
        Sends a CommandEnvelope and expects a ResponseEnvelope-like dict back.
        Retries once on timeout; a REQ socket that timed out is unusable, so it is replaced.
        """
        msg_id = str(uuid.uuid4())
        payload = CommandEnvelope(msg_id=msg_id, command=command_dict(cmd)).model_dump(mode="json")

        for attempt in (1, 2):
            s = self._get_req(addr)
            try:
                s.send_json(payload)
                return cast(dict[str, Any], s.recv_json())
            except zmq.error.Again:
                self._drop(addr)
                if attempt == 2:
                    return error_reply(msg_id, "timeout", "REQ timeout")
            except Exception as ex:
                self._drop(addr)
                return error_reply(msg_id, "internal", repr(ex))
        return error_reply(msg_id, "internal", "unreachable")

    def close(self) -> None:
        for addr in list(self._req_cache):
            self._drop(addr)


@dataclass
class ZmqCommandREPServer:
    """
    REP server binder. Call `poll_once(handler)` or `serve_for(seconds, handler)`
    from a worker thread to process command requests.
    """

    addr: str

    def __post_init__(self) -> None:
        self._ctx = _new_ctx()
        self._sock = self._ctx.socket(zmq.REP)
        _set_common(self._sock)
        self._sock.bind(self.addr)

    def close(self) -> None:
        self._sock.close(0)

    def poll_once(self, handler: Callable[[dict], dict]) -> bool:
        """
        Poll for one request; if present, process with handler(command_dict) -> response_dict.
        Returns True if a message was processed, False on idle.
        """
        try:
            if not self._sock.poll(timeout=10):
                return False

            try:
                req = self._sock.recv_json()
            except Exception:
                self._sock.send_json(error_reply("<unknown>", "bad-json", "Invalid JSON"))
                return True

            msg_id = req.get("msg_id", "<unknown>")
            if int(req.get("schema_version", 0)) != SCHEMA_V1:
                self._sock.send_json(error_reply(msg_id, "api-mismatch", "schema_version != 1"))
                return True

            self._sock.send_json(dispatch_reply(msg_id, req.get("command") or {}, handler))
            return True

        except zmq.error.Again:
            return False

    def serve_for(self, seconds: float, handler: Callable[[dict], dict]) -> None:
        deadline = monotonic() + seconds
        while monotonic() < deadline:
            self.poll_once(handler)


# --------- Agent state (PUB/SUB) ---------


class ZmqStatePubPort(StatePubPort):
    def __init__(self, addr: str) -> None:
        self._ctx = _new_ctx()
        self._pub = self._ctx.socket(zmq.PUB)
        _set_common(self._pub)
        self._pub.bind(addr)

    @classmethod
    def bind_pub(cls, addr: str) -> "ZmqStatePubPort":
        return cls(addr)

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        env = StateEnvelope(msg_id=str(uuid.uuid4()), topic=topic, data=dict(payload))
        self._pub.send_multipart(
            [
                topic.encode("utf-8"),
                json.dumps(env.model_dump(mode="json")).encode("utf-8"),
            ]
        )

    def close(self) -> None:
        self._pub.close(0)


class ZmqStateSubPort(StateSubPort):
    def __init__(self) -> None:
        self._ctx = _new_ctx()
        self._sub = self._ctx.socket(zmq.SUB)
        _set_common(self._sub)
        # Allow all topics by default
        self._sub.setsockopt(zmq.SUBSCRIBE, b"")
        # Prevent unbounded growth
        self._sub.setsockopt(zmq.RCVHWM, 1000)

    def subscribe(self, addr: str) -> None:
        self._sub.connect(addr)

    def recv(self, timeout_ms: int = 100) -> dict[str, Any] | None:
        if self._sub.poll(timeout=timeout_ms):
            topic, data = self._sub.recv_multipart()
            try:
                decoded = json.loads(data.decode("utf-8"))
            except Exception:
                return {"topic": topic.decode("utf-8"), "error": {"code": "bad-json"}}
            return {
                "topic": topic.decode("utf-8"),
                "data": decoded.get("data", {}),
                "envelope": decoded,
            }
        return None

    def close(self) -> None:
        self._sub.close(0)
