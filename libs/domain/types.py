from __future__ import annotations

from dataclasses import dataclass

from ports.voice import Liveness, SessionRef


@dataclass(frozen=True)
class AgentSnapshot:
    agent_id: str
    liveness: Liveness
    session: SessionRef | None
    last_activity: float
