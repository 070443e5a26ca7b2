from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Final

from adapters.ipc_inproc import InprocHub
from domain.coordination import InboundRequest, RouteDecision
from ports.ipc import AgentCommandPort, CommandServerPort, StatePubPort, StateSubPort
from ports.time import ClockPort

from apps.coordinator.settings import CoordinatorSettings
from apps.runtime import CoordinationRuntime

if TYPE_CHECKING:
    from adapters.discord_voice import DiscordVoiceAgent

LOG: Final = logging.getLogger("voicefleet.coordinator.app")


def build_ipc(
    settings: CoordinatorSettings, hub: InprocHub | None = None
) -> tuple[CommandServerPort, StatePubPort]:
    """Serving side: command REP + agent-state PUB."""
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


def build_client_ipc(
    settings: CoordinatorSettings, hub: InprocHub | None = None
) -> tuple[AgentCommandPort, StateSubPort]:
    """Client side used by the CLI and the TUI: command REQ + agent-state SUB."""
    cmd_port: AgentCommandPort
    state_sub: StateSubPort

    if settings.ipc_impl == "zmq":
        from adapters.ipc_zmq import ZmqAgentCommandPort, ZmqStateSubPort

        cmd_port = ZmqAgentCommandPort(rcv_ms=int(settings.handoff_timeout_s * 1000) + 2000)
        state_sub = ZmqStateSubPort()
    else:
        from adapters.ipc_inproc import InprocAgentCommandPort, InprocStateSubPort

        hub = hub or InprocHub()
        cmd_port = InprocAgentCommandPort(hub, timeout_ms=500)
        state_sub = InprocStateSubPort.create(hub)

    state_sub.subscribe(settings.state_bind)
    return cmd_port, state_sub


def agent_ids(settings: CoordinatorSettings) -> list[str]:
    return [f"{settings.agent_prefix}-{i}" for i in range(1, len(settings.tokens) + 1)]


class CoordinatorApp:
    """All bots of the fleet in one process, sharing one coordinator."""

    def __init__(
        self,
        settings: CoordinatorSettings,
        clock: ClockPort | None = None,
        hub: InprocHub | None = None,
    ) -> None:
        self.settings = settings
        self.hub = hub
        self.runtime = CoordinationRuntime(
            clock=clock,
            grace_period_s=settings.grace_period_s,
            handoff_timeout_s=settings.handoff_timeout_s,
            event_queue_size=settings.event_queue_size,
            state_interval_s=settings.state_interval_s,
        )
        self._bots: dict[str, DiscordVoiceAgent] = {}

    def build_discord_agents(self) -> list[str]:
        """Create one discord.py client per configured token and register it."""
        from adapters.discord_voice import DiscordPlayback, DiscordVoiceAgent

        ids = agent_ids(self.settings)
        for agent_id in ids:
            bot = DiscordVoiceAgent(
                agent_id,
                self.runtime.bus,
                connect_timeout_s=self.settings.connect_timeout_s,
            )
            playback = DiscordPlayback(bot, ffmpeg_options=self.settings.ffmpeg_options)
            self.runtime.add_agent(bot, playback)
            self._bots[agent_id] = bot
        return ids

    def should_handle(self, agent_id: str, request: InboundRequest) -> bool:
        return self.runtime.should_handle(agent_id, request)

    async def route(self, request: InboundRequest) -> RouteDecision:
        return await self.runtime.route(request)

    async def start(self) -> None:
        cmd_server, state_pub = build_ipc(self.settings, self.hub)
        self.runtime.attach_replicator(pub=state_pub)
        await self.runtime.start(cmd_server)

    async def run(self) -> None:
        if not self.settings.tokens:
            raise RuntimeError("No bot tokens configured (VF_TOKENS or BOT_TOKEN_1..N)")
        self.build_discord_agents()
        await self.start()
        logins = [
            asyncio.create_task(bot.start(token), name=f"login-{agent_id}")
            for (agent_id, bot), token in zip(self._bots.items(), self.settings.tokens)
        ]
        LOG.info("Starting %d bot(s): %s", len(logins), ", ".join(self._bots))
        try:
            results = await asyncio.gather(*logins, return_exceptions=True)
            for agent_id, res in zip(self._bots, results):
                if isinstance(res, Exception):
                    LOG.error("Bot %s stopped: %r", agent_id, res)
        finally:
            await self.stop()

    async def stop(self) -> None:
        for bot in self._bots.values():
            await bot.close()
        await self.runtime.stop()
