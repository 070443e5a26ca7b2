from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from ports.voice import HandOffError, PlaybackPort, SessionRef, VoiceAgentPort


class FakeVoiceAgent(VoiceAgentPort):
    """Records joins/leaves; can be told to refuse or stall a join."""

    def __init__(self, agent_id: str, join_delay_s: float = 0.0) -> None:
        self.agent_id = agent_id
        self.join_delay_s = join_delay_s
        self.refuse_joins = False
        self.connected: SessionRef | None = None
        self.joins: list[SessionRef] = []
        self.leaves: list[SessionRef] = []

    async def join(self, session: SessionRef) -> None:
        self.joins.append(session)
        if self.join_delay_s:
            await asyncio.sleep(self.join_delay_s)
        if self.refuse_joins:
            raise HandOffError(f"{self.agent_id}: missing permissions for {session}")
        self.connected = session

    async def leave(self, session: SessionRef) -> None:
        self.leaves.append(session)
        if self.connected == session:
            self.connected = None

    def is_connected_to(self, session: SessionRef) -> bool:
        return self.connected == session


class FakePlayback(PlaybackPort):
    def __init__(self) -> None:
        self.fail_start = False
        self.started: list[tuple[SessionRef, dict[str, Any]]] = []
        self.stopped: list[SessionRef] = []

    async def start_serving(self, session: SessionRef, payload: Mapping[str, Any]) -> None:
        if self.fail_start:
            raise RuntimeError("playback unavailable")
        self.started.append((session, dict(payload)))

    async def stop_serving(self, session: SessionRef) -> None:
        self.stopped.append(session)
