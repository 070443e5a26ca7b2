from __future__ import annotations

import asyncio

import pytest
from adapters.time import ManualClockPort
from adapters.voice import FakePlayback, FakeVoiceAgent
from domain.coordination import (
    AgentJoinedSession,
    AgentLeftSession,
    AgentRegistry,
    AssignmentTable,
    Coordinator,
    InboundRequest,
    LifecycleMonitor,
    MembershipChanged,
)
from ports.voice import SessionRef

S1, S2 = SessionRef(1, 10), SessionRef(1, 11)


async def _serving(grace_s: float = 0.1):
    """One agent already serving S1 with one listener."""
    coord = Coordinator(AgentRegistry(ManualClockPort()), AssignmentTable())
    agent = FakeVoiceAgent("a1")
    coord.register_agent(agent, FakePlayback(), liveness="online")
    monitor = LifecycleMonitor(coord, grace_period_s=grace_s)
    await coord.route(InboundRequest(S1))
    await monitor.handle_event(AgentJoinedSession("a1", S1, participants=1))
    return coord, monitor, agent


@pytest.mark.asyncio
async def test_rejoin_during_grace_keeps_the_agent():
    coord, monitor, agent = await _serving(grace_s=0.1)

    await monitor.handle_event(MembershipChanged("a1", S1, 0))
    assert monitor.phase_of(S1) == "grace"

    await asyncio.sleep(0.05)
    await monitor.handle_event(MembershipChanged("a1", S1, 1))
    assert monitor.phase_of(S1) == "active"

    # well past the original deadline
    await asyncio.sleep(0.15)
    assert coord.table.owner_of(S1) == "a1"
    assert coord.playback_for("a1").stopped == []
    await monitor.close()


@pytest.mark.asyncio
async def test_empty_session_is_vacated_after_grace():
    coord, monitor, agent = await _serving(grace_s=0.05)

    await monitor.handle_event(MembershipChanged("a1", S1, 0))
    await asyncio.sleep(0.15)

    assert coord.playback_for("a1").stopped == [S1]
    assert agent.leaves == [S1]
    assert coord.table.owner_of(S1) is None
    assert coord.registry.get("a1").idle
    assert monitor.phase_of(S1) is None


@pytest.mark.asyncio
async def test_agent_leaving_releases_at_once():
    coord, monitor, agent = await _serving(grace_s=10.0)

    await monitor.handle_event(AgentLeftSession("a1", S1))
    assert coord.table.owner_of(S1) is None
    assert monitor.tracked() == {}
    # no stop/leave round trip for a session the agent already left
    assert coord.playback_for("a1").stopped == []
    assert agent.leaves == []


@pytest.mark.asyncio
async def test_leaving_cancels_a_running_grace_timer():
    coord, monitor, _ = await _serving(grace_s=0.05)
    await monitor.handle_event(MembershipChanged("a1", S1, 0))
    await monitor.handle_event(AgentLeftSession("a1", S1))
    await asyncio.sleep(0.1)
    assert coord.playback_for("a1").stopped == []


@pytest.mark.asyncio
async def test_membership_from_another_agent_is_ignored():
    coord, monitor, _ = await _serving(grace_s=0.05)
    await monitor.handle_event(MembershipChanged("a2", S1, 0))
    assert monitor.phase_of(S1) == "active"
    await monitor.handle_event(MembershipChanged("a1", S2, 0))
    assert monitor.phase_of(S2) is None


@pytest.mark.asyncio
async def test_vacate_on_demand():
    coord, monitor, agent = await _serving(grace_s=10.0)

    assert await monitor.vacate(S1) is True
    assert agent.leaves == [S1]
    assert coord.table.owner_of(S1) is None
    assert await monitor.vacate(S1) is False


@pytest.mark.asyncio
async def test_vacate_survives_a_failing_playback():
    coord, monitor, agent = await _serving(grace_s=10.0)

    async def boom(session):
        raise RuntimeError("media engine gone")

    coord.playback_for("a1").stop_serving = boom
    assert await monitor.vacate(S1) is True
    assert coord.table.owner_of(S1) is None


@pytest.mark.asyncio
async def test_close_cancels_pending_timers():
    coord, monitor, _ = await _serving(grace_s=10.0)
    await monitor.handle_event(MembershipChanged("a1", S1, 0))
    await monitor.close()
    assert coord.table.owner_of(S1) == "a1"


@pytest.mark.asyncio
async def test_double_claim_does_not_hide_the_owner():
    coord, monitor, agent = await _serving(grace_s=0.05)
    intruder = FakeVoiceAgent("a2")
    coord.register_agent(intruder, FakePlayback(), liveness="online")

    # both consumers see the intruder join, get sent away and leave
    for event in (AgentJoinedSession("a2", S1, participants=1), AgentLeftSession("a2", S1)):
        await coord.handle_event(event)
        await monitor.handle_event(event)
    assert intruder.leaves == [S1]
    assert coord.table.owner_of(S1) == "a1"
    assert monitor.phase_of(S1) == "active"

    await monitor.handle_event(MembershipChanged("a1", S1, 0))
    await asyncio.sleep(0.15)
    assert coord.table.owner_of(S1) is None
    assert coord.playback_for("a1").stopped == [S1]
    assert agent.leaves == [S1]


@pytest.mark.asyncio
async def test_owner_without_a_join_event_is_still_debounced():
    coord = Coordinator(AgentRegistry(ManualClockPort()), AssignmentTable())
    agent = FakeVoiceAgent("a1")
    coord.register_agent(agent, FakePlayback(), liveness="online")
    monitor = LifecycleMonitor(coord, grace_period_s=0.05)
    await coord.route(InboundRequest(S1))

    await monitor.handle_event(MembershipChanged("a1", S1, 0))
    assert monitor.phase_of(S1) == "grace"
    await asyncio.sleep(0.15)
    assert coord.table.owner_of(S1) is None
    assert agent.leaves == [S1]
