from __future__ import annotations

import logging
from typing import Final

from adapters.ipc_inproc import InprocHub
from adapters.remote import RemotePlayback, RemoteVoiceAgent
from domain.coordination import InboundRequest, RouteDecision
from ports.ipc import AgentCommandPort, CommandServerPort, StatePubPort, StateSubPort
from ports.time import ClockPort
from ports.voice import PlaybackPort, VoiceAgentPort

from apps.agent.settings import AgentSettings
from apps.runtime import CoordinationRuntime

LOG: Final = logging.getLogger("voicefleet.agent.app")


def build_ipc(
    settings: AgentSettings, hub: InprocHub | None = None
) -> tuple[CommandServerPort, StatePubPort]:
    cmd_server: CommandServerPort
    state_pub: StatePubPort

    if settings.ipc_impl == "zmq":
        from adapters.ipc_zmq import ZmqAgentCommandPort, ZmqStatePubPort

        cmd_server = ZmqAgentCommandPort.bind_rep(settings.cmd_bind)
        state_pub = ZmqStatePubPort.bind_pub(settings.state_bind)
    else:
        from adapters.ipc_inproc import InprocCommandServerPort, InprocStatePubPort

        hub = hub or InprocHub()
        cmd_server = InprocCommandServerPort.create(hub, settings.cmd_bind)
        state_pub = InprocStatePubPort.create(hub, settings.state_bind)

    return cmd_server, state_pub


def build_peer_ipc(
    settings: AgentSettings, hub: InprocHub | None = None
) -> tuple[AgentCommandPort, StateSubPort]:
    """REQ port towards peer agents and a SUB port on all their state endpoints."""
    cmd_port: AgentCommandPort
    state_sub: StateSubPort
    # a remote JOIN waits for the peer's own hand-off
    wait_ms = int(settings.handoff_timeout_s * 1000) + 2000

    if settings.ipc_impl == "zmq":
        from adapters.ipc_zmq import ZmqAgentCommandPort, ZmqStateSubPort

        cmd_port = ZmqAgentCommandPort(rcv_ms=wait_ms)
        state_sub = ZmqStateSubPort()
    else:
        from adapters.ipc_inproc import InprocAgentCommandPort, InprocStateSubPort

        hub = hub or InprocHub()
        cmd_port = InprocAgentCommandPort(hub, timeout_ms=wait_ms)
        state_sub = InprocStateSubPort.create(hub)

    for ep in settings.peers_state:
        state_sub.subscribe(ep)
    return cmd_port, state_sub


class AgentApp:
    """One bot per process. Peers are known only through their published state."""

    def __init__(
        self,
        settings: AgentSettings,
        clock: ClockPort | None = None,
        hub: InprocHub | None = None,
        handle: VoiceAgentPort | None = None,
        playback: PlaybackPort | None = None,
    ) -> None:
        self.settings = settings
        self.runtime = CoordinationRuntime(
            clock=clock,
            grace_period_s=settings.grace_period_s,
            handoff_timeout_s=settings.handoff_timeout_s,
            event_queue_size=settings.event_queue_size,
            state_interval_s=settings.state_interval_s,
        )
        self.cmd_server, self.state_pub = build_ipc(settings, hub)
        self.peer_cmd, self.peer_sub = build_peer_ipc(settings, hub)
        self.replicator = self.runtime.attach_replicator(
            pub=self.state_pub,
            sub=self.peer_sub,
            handle_factory=self.remote_handle,
            playback_factory=self.remote_playback,
            ttl_s=settings.state_ttl_s,
        )

        self.bot = None
        if handle is None:
            from adapters.discord_voice import DiscordPlayback, DiscordVoiceAgent

            self.bot = DiscordVoiceAgent(
                settings.agent_id,
                self.runtime.bus,
                connect_timeout_s=settings.connect_timeout_s,
            )
            handle = self.bot
            playback = DiscordPlayback(self.bot, ffmpeg_options=settings.ffmpeg_options)
        self.handle = handle
        self.runtime.add_agent(handle, playback)

    @property
    def agent_id(self) -> str:
        return self.settings.agent_id

    def remote_handle(self, agent_id: str) -> VoiceAgentPort | None:
        addr = self.settings.peers_cmd.get(agent_id)
        if addr is None:
            LOG.warning("State from %s but no command endpoint configured for it", agent_id)
            return None
        return RemoteVoiceAgent(agent_id, addr, self.peer_cmd)

    def remote_playback(self, handle: VoiceAgentPort) -> PlaybackPort | None:
        return RemotePlayback(handle) if isinstance(handle, RemoteVoiceAgent) else None

    def should_handle(self, request: InboundRequest) -> bool:
        """Whether this process's bot should answer a request its client received."""
        return self.runtime.should_handle(self.agent_id, request)

    async def route(self, request: InboundRequest) -> RouteDecision:
        return await self.runtime.route(request)

    async def start(self) -> None:
        await self.runtime.start(self.cmd_server)

    async def run(self) -> None:
        if self.bot is None:
            raise RuntimeError("run() needs the discord-backed agent")
        if not self.settings.token:
            raise RuntimeError("No bot token configured (VF_TOKEN or BOT_TOKEN)")
        await self.start()
        try:
            await self.bot.start(self.settings.token)
        finally:
            await self.stop()

    async def stop(self) -> None:
        if self.bot is not None:
            await self.bot.close()
        await self.runtime.stop()
        for port in (self.state_pub, self.peer_sub, self.peer_cmd):
            close = getattr(port, "close", None)
            if close is not None:
                close()
