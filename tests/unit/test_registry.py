from __future__ import annotations

from adapters.time import ManualClockPort
from adapters.voice import FakeVoiceAgent
from domain.coordination import AgentRegistry
from ports.voice import SessionRef

S1 = SessionRef(1, 10)


def _registry(*ids: str) -> tuple[AgentRegistry, ManualClockPort]:
    clock = ManualClockPort(start=100.0)
    reg = AgentRegistry(clock)
    for agent_id in ids:
        reg.register(FakeVoiceAgent(agent_id), liveness="online")
    return reg, clock


def test_register_and_lookup():
    reg, _ = _registry("a1", "a2")
    assert len(reg) == 2
    assert "a1" in reg
    assert reg.get("a1").liveness == "online"
    assert reg.get("nope") is None


def test_replacing_an_agent_keeps_its_tie_break_position():
    reg, _ = _registry("a1", "a2")
    seq = reg.get("a1").seq
    reg.register(FakeVoiceAgent("a1"))
    assert reg.get("a1").seq == seq
    assert reg.get("a1").liveness == "initializing"


def test_unknown_agent_updates_are_ignored():
    reg, _ = _registry()
    assert reg.set_liveness("ghost", "online") is False
    assert reg.set_session("ghost", S1) is False
    assert reg.deregister("ghost") is None
    assert len(reg) == 0


def test_set_session_refreshes_last_activity():
    reg, clock = _registry("a1")
    clock.advance(5.0)
    reg.set_session("a1", S1)
    rec = reg.get("a1")
    assert rec.session == S1
    assert rec.last_activity == 105.0
    assert not rec.idle


def test_available_means_online_and_idle():
    reg, _ = _registry("a1", "a2", "a3")
    reg.set_session("a1", S1)
    reg.set_liveness("a3", "reconnecting")

    assert [r.agent_id for r in reg.list_online()] == ["a1", "a2"]
    assert [r.agent_id for r in reg.list_available()] == ["a2"]
    assert reg.is_online("a1") and not reg.is_online("a3")


def test_snapshot_is_a_copy():
    reg, _ = _registry("a1")
    snap = reg.get("a1").snapshot()
    reg.set_session("a1", S1)
    assert snap.session is None
    assert reg.get("a1").snapshot().session == S1
