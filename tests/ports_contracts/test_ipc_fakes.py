from __future__ import annotations

import time

from adapters.ipc_zmq import FakeAgentCommandPort, FakeStateSubPort
from shared.contracts.v1.commands import Cmd


def test_command_send_returns_ok():
    cmd = FakeAgentCommandPort()
    out = cmd.send("agent://bot-1", Cmd(type="PING"))
    assert out.get("ok") is True
    # sent payload recorded per-address
    assert cmd.last("agent://bot-1")["type"] == "PING"
    assert cmd.last("agent://bot-2") is None


def test_queued_replies_are_returned_in_order():
    cmd = FakeAgentCommandPort()
    cmd.reply_with("agent://a", {"ok": False, "error": {"code": "timeout"}})
    assert cmd.send("agent://a", {"type": "JOIN"})["ok"] is False
    assert cmd.send("agent://a", {"type": "JOIN"})["ok"] is True
    assert len(cmd.sent["agent://a"]) == 2


def test_fake_sub_receives_within_500ms():
    sub = FakeStateSubPort()
    sub.subscribe("agent://bot-1")  # no-op for fake, but mirrors the real API

    t0 = time.perf_counter()
    sub.inject("agent_state", {"agent_id": "bot-1", "liveness": "online"})

    rec = None
    deadline = t0 + 0.5
    while rec is None and time.perf_counter() < deadline:
        rec = sub.recv(timeout_ms=50)

    assert rec is not None, "No state received within 500ms"
    assert rec["topic"] == "agent_state"
    assert rec["data"]["agent_id"] == "bot-1"
