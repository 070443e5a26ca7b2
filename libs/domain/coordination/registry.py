from __future__ import annotations

import itertools
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Final

from ports.time import ClockPort
from ports.voice import Liveness, PlaybackPort, SessionRef, VoiceAgentPort

from domain.types import AgentSnapshot

LOG: Final = logging.getLogger("voicefleet.registry")


@dataclass
class AgentRecord:
    agent_id: str
    handle: VoiceAgentPort
    playback: PlaybackPort | None = None
    liveness: Liveness = "initializing"
    session: SessionRef | None = None
    last_activity: float = 0.0
    seq: int = field(default=0, compare=False)

    @property
    def idle(self) -> bool:
        return self.session is None

    def snapshot(self) -> AgentSnapshot:
        return AgentSnapshot(
            agent_id=self.agent_id,
            liveness=self.liveness,
            session=self.session,
            last_activity=self.last_activity,
        )


class AgentRegistry:
    """Soft view of the known agents. Not authoritative over process existence."""

    def __init__(self, clock: ClockPort) -> None:
        self.clock: Final = clock
        self._agents: dict[str, AgentRecord] = {}
        self._seq = itertools.count()

    def register(
        self,
        handle: VoiceAgentPort,
        playback: PlaybackPort | None = None,
        liveness: Liveness = "initializing",
    ) -> AgentRecord:
        """Add or replace the entry for ``handle.agent_id``."""
        prev = self._agents.get(handle.agent_id)
        rec = AgentRecord(
            agent_id=handle.agent_id,
            handle=handle,
            playback=playback,
            liveness=liveness,
            last_activity=self.clock.now(),
            seq=prev.seq if prev else next(self._seq),
        )
        self._agents[rec.agent_id] = rec
        LOG.info("Agent %s registered (%s)", rec.agent_id, liveness)
        return rec

    def deregister(self, agent_id: str) -> AgentRecord | None:
        rec = self._agents.pop(agent_id, None)
        if rec is None:
            LOG.warning("deregister: unknown agent %s", agent_id)
        return rec

    def get(self, agent_id: str) -> AgentRecord | None:
        return self._agents.get(agent_id)

    def set_liveness(self, agent_id: str, state: Liveness) -> bool:
        rec = self._agents.get(agent_id)
        if rec is None:
            LOG.warning("set_liveness(%s): unknown agent %s", state, agent_id)
            return False
        if rec.liveness != state:
            LOG.info("Agent %s liveness %s -> %s", agent_id, rec.liveness, state)
        rec.liveness = state
        return True

    def set_session(self, agent_id: str, session: SessionRef | None) -> bool:
        rec = self._agents.get(agent_id)
        if rec is None:
            LOG.warning("set_session(%s): unknown agent %s", session, agent_id)
            return False
        rec.session = session
        rec.last_activity = self.clock.now()
        return True

    def is_online(self, agent_id: str) -> bool:
        rec = self._agents.get(agent_id)
        return rec is not None and rec.liveness == "online"

    def list_online(self) -> list[AgentRecord]:
        return [r for r in self._agents.values() if r.liveness == "online"]

    def list_available(self) -> list[AgentRecord]:
        return [r for r in self._agents.values() if r.liveness == "online" and r.idle]

    def __iter__(self) -> Iterator[AgentRecord]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents
