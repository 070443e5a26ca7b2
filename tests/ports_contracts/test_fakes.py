from __future__ import annotations

import pytest
from adapters.time import ManualClockPort, MonotonicClockPort
from adapters.voice import FakePlayback, FakeVoiceAgent
from ports.time import ClockPort
from ports.voice import HandOffError, PlaybackPort, SessionRef, VoiceAgentPort

S1 = SessionRef(1, 10)


def test_session_ref_parse_and_str():
    assert str(S1) == "1:10"
    assert SessionRef.parse("1:10") == S1
    with pytest.raises(ValueError):
        SessionRef.parse("110")
    with pytest.raises(ValueError):
        SessionRef.parse("a:b")


@pytest.mark.asyncio
async def test_voice_agent_fake():
    agent: VoiceAgentPort = FakeVoiceAgent("a1")
    await agent.join(S1)
    assert agent.is_connected_to(S1)
    await agent.leave(S1)
    assert not agent.is_connected_to(S1)

    agent.refuse_joins = True
    with pytest.raises(HandOffError):
        await agent.join(S1)
    assert agent.joins == [S1, S1]


@pytest.mark.asyncio
async def test_playback_fake():
    pb: PlaybackPort = FakePlayback()
    await pb.start_serving(S1, {"url": "a"})
    await pb.stop_serving(S1)
    assert pb.started == [(S1, {"url": "a"})]
    assert pb.stopped == [S1]

    pb.fail_start = True
    with pytest.raises(RuntimeError):
        await pb.start_serving(S1, {})


def test_time_fakes():
    clk: ClockPort = ManualClockPort(start=5.0)
    assert clk.now() == 5.0
    assert clk.advance(1.5) == 6.5

    real = MonotonicClockPort()
    t1 = real.now()
    assert real.now() >= t1
