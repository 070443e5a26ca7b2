from __future__ import annotations

from adapters.ipc_zmq import FakeStateSubPort
from adapters.time import ManualClockPort
from adapters.voice import FakePlayback, FakeVoiceAgent
from domain.coordination import AgentRegistry, AssignmentTable, Coordinator, StateReplicator
from ports.ipc import StatePubPort
from ports.voice import SessionRef
from shared.contracts.v1.state import STATE_TOPIC

S1 = SessionRef(1, 10)


class _RecordingPub(StatePubPort):
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []

    def publish(self, topic, payload) -> None:
        self.sent.append((topic, dict(payload)))


def _replicator(ttl_s: float = 5.0):
    clock = ManualClockPort(start=10.0)
    coord = Coordinator(AgentRegistry(clock), AssignmentTable())
    coord.register_agent(FakeVoiceAgent("local"), liveness="online")
    pub, sub = _RecordingPub(), FakeStateSubPort()
    rep = StateReplicator(
        coord,
        clock,
        {"local"},
        pub=pub,
        sub=sub,
        handle_factory=FakeVoiceAgent,
        ttl_s=ttl_s,
    )
    return rep, coord, pub, sub, clock


def _update(agent_id: str, liveness: str = "online", session: str | None = None) -> dict:
    return {"api": "v1", "agent_id": agent_id, "liveness": liveness, "session": session, "ts": 0.0}


def test_publishes_local_agents_only():
    rep, coord, pub, _, _ = _replicator()
    assert rep.publish("local") is True
    assert rep.publish("elsewhere") is False

    topic, data = pub.sent[-1]
    assert topic == STATE_TOPIC
    assert data["agent_id"] == "local"
    assert data["liveness"] == "online"
    assert data["session"] is None
    assert data["ts"] == 10.0


def test_peer_state_is_folded_in():
    rep, coord, _, sub, _ = _replicator()
    sub.inject(STATE_TOPIC, _update("peer", session="1:10"))

    assert rep.poll() == 1
    assert coord.registry.is_online("peer")
    assert coord.table.owner_of(S1) == "peer"
    # the local agent is not offered for a session a live peer holds
    assert coord.should_handle("local", S1) is False


def test_own_echo_and_garbage_are_dropped():
    rep, coord, _, _, _ = _replicator()
    assert rep.apply({"topic": STATE_TOPIC, "data": _update("local", liveness="offline")}) is False
    assert coord.registry.is_online("local")

    assert rep.apply({"topic": STATE_TOPIC, "data": {"agent_id": "x"}}) is False
    assert rep.apply({"topic": STATE_TOPIC, "data": _update("x", session="nope")}) is False
    assert rep.apply({"topic": "other", "data": _update("x")}) is False
    assert rep.apply({"topic": STATE_TOPIC, "error": {"code": "bad-json"}}) is False


def test_silent_peer_goes_offline():
    rep, coord, _, _, clock = _replicator(ttl_s=2.0)
    rep.apply({"topic": STATE_TOPIC, "data": _update("peer", session="1:10")})

    clock.advance(1.0)
    assert rep.expire() == []
    clock.advance(1.5)
    assert rep.expire() == ["peer"]
    assert coord.registry.get("peer").liveness == "offline"
    # the stale row no longer blocks a claim
    assert coord.should_handle("local", S1) is True


def test_new_peers_get_the_factory_playback():
    rep, coord, _, sub, _ = _replicator()
    playbacks: dict[str, FakePlayback] = {}

    def _playback(handle):
        playbacks[handle.agent_id] = FakePlayback()
        return playbacks[handle.agent_id]

    rep.playback_factory = _playback
    sub.inject(STATE_TOPIC, _update("peer"))
    rep.poll()

    assert coord.playback_for("peer") is playbacks["peer"]
