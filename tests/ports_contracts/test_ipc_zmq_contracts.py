from __future__ import annotations

import socket
import threading
import time
from contextlib import closing
from time import perf_counter

import pytest

try:
    import zmq  # noqa: F401
except Exception:
    pytest.skip("pyzmq not installed", allow_module_level=True)

from adapters.ipc_zmq import ZmqAgentCommandPort, ZmqStatePubPort, ZmqStateSubPort
from shared.contracts.v1.commands import Cmd
from shared.contracts.v1.ipc_wire import UnknownCommandError
from shared.contracts.v1.state import STATE_TOPIC


def _free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])  # explicit int()


def _cmd_handler(cmd: dict) -> dict:
    t = (cmd or {}).get("type", "")
    if t == "PING":
        return {"pong": True}
    if t == "STATUS":
        return {"agent_id": cmd.get("agent_id"), "session": cmd.get("session")}
    raise UnknownCommandError(t)


def _run_rep_server(addr: str, stop_event: threading.Event):
    rep = ZmqAgentCommandPort.bind_rep(addr)
    try:
        while not stop_event.is_set():
            rep.poll_once(_cmd_handler)
            # yield a tick
            time.sleep(0.001)
    finally:
        rep.close()


def _endpoints() -> tuple[str, str]:
    a = f"tcp://127.0.0.1:{_free_port()}"
    b = f"tcp://127.0.0.1:{_free_port()}"
    return a, b


def _serving(addr: str) -> tuple[threading.Event, threading.Thread]:
    stop = threading.Event()
    th = threading.Thread(target=_run_rep_server, args=(addr, stop), daemon=True)
    th.start()
    return stop, th


def test_zmq_ping_under_500ms():
    cmd_ep, _ = _endpoints()
    stop, th = _serving(cmd_ep)
    try:
        client = ZmqAgentCommandPort()
        t0 = perf_counter()
        resp = client.send(cmd_ep, Cmd(type="PING"))
        dt = perf_counter() - t0

        assert isinstance(resp, dict)
        assert resp.get("ok") is True
        assert resp.get("data", {}).get("pong") is True
        assert dt < 0.5, f"Round-trip too slow: {dt:.3f}s"
        client.close()
    finally:
        stop.set()
        th.join(timeout=1.0)


def test_zmq_command_fields_reach_the_handler():
    cmd_ep, _ = _endpoints()
    stop, th = _serving(cmd_ep)
    try:
        client = ZmqAgentCommandPort()
        resp = client.send(cmd_ep, Cmd(type="STATUS", agent_id="bot-1", session="1:10"))
        assert resp["data"] == {"agent_id": "bot-1", "session": "1:10"}

        unknown = client.send(cmd_ep, {"type": "HOLD"})
        assert unknown.get("ok") is False
        assert unknown["error"]["code"] == "unknown-command"
        client.close()
    finally:
        stop.set()
        th.join(timeout=1.0)


def test_zmq_timeout_when_nobody_listens():
    cmd_ep, _ = _endpoints()
    client = ZmqAgentCommandPort(rcv_ms=50)
    resp = client.send(cmd_ep, Cmd(type="PING"))
    assert resp.get("ok") is False
    assert resp["error"]["code"] == "timeout"
    client.close()


def test_zmq_bad_json_error():
    cmd_ep, _ = _endpoints()
    stop, th = _serving(cmd_ep)
    try:
        ctx = zmq.Context.instance()
        s = ctx.socket(zmq.REQ)
        s.setsockopt(zmq.LINGER, 0)
        s.setsockopt(zmq.RCVTIMEO, 500)
        s.setsockopt(zmq.SNDTIMEO, 500)
        s.connect(cmd_ep)

        # Send non-JSON bytes to simulate malformed message
        s.send(b"\x80\x81\x82")
        resp = s.recv_json()
        assert resp.get("ok") is False
        assert resp.get("error", {}).get("code") == "bad-json"
        s.close(0)
    finally:
        stop.set()
        th.join(timeout=1.0)


def test_zmq_api_mismatch_error():
    cmd_ep, _ = _endpoints()
    stop, th = _serving(cmd_ep)
    try:
        ctx = zmq.Context.instance()
        s = ctx.socket(zmq.REQ)
        s.setsockopt(zmq.LINGER, 0)
        s.setsockopt(zmq.RCVTIMEO, 500)
        s.setsockopt(zmq.SNDTIMEO, 500)
        s.connect(cmd_ep)

        bad = {"schema_version": 999, "msg_id": "x", "command": {"type": "PING"}}
        s.send_json(bad)
        resp = s.recv_json()
        assert resp.get("ok") is False
        assert resp.get("error", {}).get("code") == "api-mismatch"
        s.close(0)
    finally:
        stop.set()
        th.join(timeout=1.0)


def test_zmq_agent_state_receive():
    _, state_ep = _endpoints()

    pub = ZmqStatePubPort.bind_pub(state_ep)
    sub = ZmqStateSubPort()
    sub.subscribe(state_ep)

    # Give SUB a moment to connect (classic PUB/SUB pattern)
    time.sleep(0.05)

    pub.publish(STATE_TOPIC, {"agent_id": "bot-1", "liveness": "online", "session": "1:10"})

    # Allow up to 500 ms for delivery
    end = time.time() + 0.5
    got = None
    while time.time() < end and got is None:
        got = sub.recv(timeout_ms=50)

    assert got is not None, "Did not receive agent state within timeout"
    assert got.get("topic") == STATE_TOPIC
    assert got.get("data", {}).get("agent_id") == "bot-1"
    assert got.get("data", {}).get("session") == "1:10"
    assert got["envelope"]["schema_version"] == 1
    pub.close()
    sub.close()
