from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Final

from ports.ipc import AgentCommandPort
from ports.voice import HandOffError, PlaybackPort, SessionRef, VoiceAgentPort
from shared.contracts.v1.commands import Cmd

LOG: Final = logging.getLogger("voicefleet.remote")


class RemoteVoiceAgent(VoiceAgentPort):
    """Handle for an agent living in another process, driven over REQ/REP."""

    def __init__(self, agent_id: str, addr: str, cmd: AgentCommandPort) -> None:
        self.agent_id = agent_id
        self.addr = addr
        self.cmd = cmd
        self.known_session: SessionRef | None = None

    async def send(self, command: Cmd) -> dict[str, Any]:
        return await asyncio.to_thread(self.cmd.send, self.addr, command)

    async def join(self, session: SessionRef) -> None:
        resp = await self.send(Cmd(type="JOIN", agent_id=self.agent_id, session=str(session)))
        data = resp.get("data") or {}
        if not resp.get("ok") or not data.get("joined"):
            err = (resp.get("error") or {}).get("code", "refused")
            raise HandOffError(f"{self.agent_id} @ {self.addr}: JOIN {session} -> {err}")
        self.known_session = session

    async def leave(self, session: SessionRef) -> None:
        resp = await self.send(Cmd(type="LEAVE", agent_id=self.agent_id, session=str(session)))
        if not resp.get("ok"):
            LOG.warning("LEAVE %s on %s failed: %s", session, self.agent_id, resp.get("error"))
            return
        if self.known_session == session:
            self.known_session = None

    def is_connected_to(self, session: SessionRef) -> bool:
        return self.known_session == session


class RemotePlayback(PlaybackPort):
    """Forwards the request payload to the peer that owns ``agent``."""

    def __init__(self, agent: RemoteVoiceAgent) -> None:
        self.agent = agent

    async def start_serving(self, session: SessionRef, payload: Mapping[str, Any]) -> None:
        agent_id = self.agent.agent_id
        cmd = Cmd(type="PLAY", agent_id=agent_id, session=str(session), payload=dict(payload))
        resp = await self.agent.send(cmd)
        if not resp.get("ok") or not (resp.get("data") or {}).get("serving"):
            err = (resp.get("error") or {}).get("code", "refused")
            raise RuntimeError(f"{agent_id} @ {self.agent.addr}: PLAY {session} -> {err}")

    async def stop_serving(self, session: SessionRef) -> None:
        resp = await self.agent.send(
            Cmd(type="STOP", agent_id=self.agent.agent_id, session=str(session))
        )
        if not resp.get("ok"):
            LOG.warning("STOP %s on %s failed: %s", session, self.agent.agent_id, resp.get("error"))
