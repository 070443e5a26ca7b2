"""discord.py implementation of the voice agent and playback ports.

One ``DiscordVoiceAgent`` per bot token. Gateway and voice-state callbacks are
translated into coordination events on the shared ``EventBus``; the domain
never touches discord objects.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Final

import discord
from domain.coordination.events import (
    AgentDisconnected,
    AgentErrored,
    AgentJoinedSession,
    AgentLeftSession,
    AgentReady,
    AgentReconnecting,
    EventBus,
    MembershipChanged,
)
from ports.voice import HandOffError, PlaybackPort, SessionRef, VoiceAgentPort

LOG: Final = logging.getLogger("voicefleet.discord")


def _session_of(channel: Any) -> SessionRef | None:
    if channel is None:
        return None
    return SessionRef(channel.guild.id, channel.id)


def count_participants(channel: Any) -> int:
    """Non-bot members currently in a voice channel."""
    return sum(1 for m in channel.members if not m.bot)


def make_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.voice_states = True
    intents.members = True
    return intents


class DiscordVoiceAgent(VoiceAgentPort):
    def __init__(
        self,
        agent_id: str,
        bus: EventBus,
        client: discord.Client | None = None,
        connect_timeout_s: float = 10.0,
    ) -> None:
        self.agent_id = agent_id
        self.bus = bus
        self.client = client or discord.Client(intents=make_intents())
        self.connect_timeout_s = connect_timeout_s
        self._was_disconnected = False
        self._wire_events()

    # --- lifecycle -----------------------------------------------------------

    async def start(self, token: str) -> None:
        LOG.info("[%s] logging in", self.agent_id)
        await self.client.start(token)

    async def close(self) -> None:
        await self.client.close()

    # --- VoiceAgentPort ------------------------------------------------------

    def voice_client_for(self, session: SessionRef) -> discord.VoiceClient | None:
        guild = self.client.get_guild(session.guild_id)
        vc = guild.voice_client if guild else None
        if not isinstance(vc, discord.VoiceClient) or vc.channel is None:
            return None
        return vc if vc.channel.id == session.channel_id else None

    def is_connected_to(self, session: SessionRef) -> bool:
        vc = self.voice_client_for(session)
        return vc is not None and vc.is_connected()

    async def join(self, session: SessionRef) -> None:
        channel = self.client.get_channel(session.channel_id)
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            raise HandOffError(f"{self.agent_id}: no voice channel {session} visible")
        me = channel.guild.me
        if me is not None and not channel.permissions_for(me).connect:
            raise HandOffError(f"{self.agent_id}: missing Connect permission in {session}")
        if self.is_connected_to(session):
            return

        current = channel.guild.voice_client
        try:
            if isinstance(current, discord.VoiceClient) and current.is_connected():
                await current.move_to(channel)
            else:
                await channel.connect(timeout=self.connect_timeout_s, self_deaf=True)
        except (discord.ClientException, discord.HTTPException, asyncio.TimeoutError) as ex:
            raise HandOffError(f"{self.agent_id}: could not connect to {session}: {ex!r}") from ex
        LOG.info("[%s] connected to %s", self.agent_id, session)

    async def leave(self, session: SessionRef) -> None:
        vc = self.voice_client_for(session)
        if vc is not None:
            await vc.disconnect(force=False)

    # --- gateway events ------------------------------------------------------

    def _wire_events(self) -> None:
        client = self.client

        @client.event
        async def on_ready():
            LOG.info("[%s] ready as %s", self.agent_id, client.user)
            self._was_disconnected = False
            await self.bus.publish(AgentReady(self.agent_id))

        @client.event
        async def on_resumed():
            LOG.info("[%s] resumed", self.agent_id)
            self._was_disconnected = False
            await self.bus.publish(AgentReady(self.agent_id))

        @client.event
        async def on_connect():
            if self._was_disconnected:
                await self.bus.publish(AgentReconnecting(self.agent_id))

        @client.event
        async def on_disconnect():
            LOG.warning("[%s] disconnected from gateway", self.agent_id)
            self._was_disconnected = True
            await self.bus.publish(AgentDisconnected(self.agent_id))

        @client.event
        async def on_error(event_method, *args, **kwargs):
            LOG.exception("[%s] error in %s", self.agent_id, event_method)
            await self.bus.publish(AgentErrored(self.agent_id, detail=str(event_method)))

        @client.event
        async def on_voice_state_update(member, before, after):
            await self.on_voice_state_update(member, before, after)

    async def on_voice_state_update(self, member: Any, before: Any, after: Any) -> None:
        user = self.client.user
        if user is None:
            return
        old, new = _session_of(before.channel), _session_of(after.channel)
        if old == new:
            return  # mute/deafen toggles

        if member.id == user.id:
            if old is not None:
                LOG.info("[%s] left %s", self.agent_id, old)
                await self.bus.publish(AgentLeftSession(self.agent_id, old))
            if new is not None:
                await self.bus.publish(
                    AgentJoinedSession(self.agent_id, new, count_participants(after.channel))
                )
            return

        if member.bot:
            return
        me = member.guild.me
        mine = _session_of(me.voice.channel) if me is not None and me.voice else None
        if mine is None:
            return
        if mine == old:
            channel = before.channel
        elif mine == new:
            channel = after.channel
        else:
            return
        await self.bus.publish(MembershipChanged(self.agent_id, mine, count_participants(channel)))


class DiscordPlayback(PlaybackPort):
    """Thin bridge to the agent's voice client; the media engine lives elsewhere."""

    def __init__(self, agent: DiscordVoiceAgent, ffmpeg_options: str | None = None) -> None:
        self.agent = agent
        self.ffmpeg_options = ffmpeg_options

    async def start_serving(self, session: SessionRef, payload: Mapping[str, Any]) -> None:
        vc = self.agent.voice_client_for(session)
        if vc is None:
            raise HandOffError(f"{self.agent.agent_id}: not connected to {session}")
        url = payload.get("url")
        if not url:
            return
        if vc.is_playing():
            vc.stop()
        vc.play(discord.FFmpegPCMAudio(url, options=self.ffmpeg_options))

    async def stop_serving(self, session: SessionRef) -> None:
        vc = self.agent.voice_client_for(session)
        if vc is not None and (vc.is_playing() or vc.is_paused()):
            vc.stop()
