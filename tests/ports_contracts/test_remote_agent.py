from __future__ import annotations

import pytest
from adapters.ipc_zmq import FakeAgentCommandPort
from adapters.remote import RemotePlayback, RemoteVoiceAgent
from ports.voice import HandOffError, SessionRef

S1 = SessionRef(1, 10)
ADDR = "tcp://peer:7792"


@pytest.mark.asyncio
async def test_join_sends_join_and_tracks_session():
    cmd = FakeAgentCommandPort()
    cmd.reply_with(ADDR, {"ok": True, "data": {"agent_id": "bot-2", "joined": True}})
    agent = RemoteVoiceAgent("bot-2", ADDR, cmd)

    await agent.join(S1)
    sent = cmd.last(ADDR)
    assert sent["type"] == "JOIN"
    assert sent["agent_id"] == "bot-2"
    assert sent["session"] == "1:10"
    assert agent.is_connected_to(S1)

    await agent.leave(S1)
    assert cmd.last(ADDR)["type"] == "LEAVE"
    assert not agent.is_connected_to(S1)


@pytest.mark.asyncio
async def test_refused_or_unreachable_join_raises():
    cmd = FakeAgentCommandPort()
    cmd.reply_with(ADDR, {"ok": True, "data": {"joined": False}})
    cmd.reply_with(ADDR, {"ok": False, "error": {"code": "timeout"}})
    agent = RemoteVoiceAgent("bot-2", ADDR, cmd)

    with pytest.raises(HandOffError):
        await agent.join(S1)
    with pytest.raises(HandOffError, match="timeout"):
        await agent.join(S1)
    assert not agent.is_connected_to(S1)


@pytest.mark.asyncio
async def test_remote_playback_forwards_the_payload():
    cmd = FakeAgentCommandPort()
    agent = RemoteVoiceAgent("bot-2", ADDR, cmd)
    playback = RemotePlayback(agent)

    cmd.reply_with(ADDR, {"ok": True, "data": {"agent_id": "bot-2", "serving": True}})
    await playback.start_serving(S1, {"url": "song.mp3"})
    sent = cmd.last(ADDR)
    assert sent["type"] == "PLAY"
    assert sent["session"] == "1:10"
    assert sent["payload"] == {"url": "song.mp3"}

    await playback.stop_serving(S1)
    assert cmd.last(ADDR)["type"] == "STOP"


@pytest.mark.asyncio
async def test_remote_playback_failure_raises():
    cmd = FakeAgentCommandPort()
    cmd.reply_with(ADDR, {"ok": False, "error": {"code": "internal"}})
    playback = RemotePlayback(RemoteVoiceAgent("bot-2", ADDR, cmd))

    with pytest.raises(RuntimeError, match="internal"):
        await playback.start_serving(S1, {"url": "song.mp3"})
