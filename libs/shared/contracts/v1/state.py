from __future__ import annotations

from typing import Literal

from domain.types import AgentSnapshot
from ports.voice import SessionRef
from pydantic import BaseModel

STATE_TOPIC: Literal["agent_state"] = "agent_state"


class AgentStateUpdate(BaseModel):
    api: Literal["v1"] = "v1"
    agent_id: str
    liveness: Literal["initializing", "online", "reconnecting", "error", "offline"]
    session: str | None = None  # "guild:channel"
    last_activity: float = 0.0
    ts: float

    @classmethod
    def from_snapshot(cls, snap: AgentSnapshot, ts: float) -> AgentStateUpdate:
        return cls(
            agent_id=snap.agent_id,
            liveness=snap.liveness,
            session=str(snap.session) if snap.session else None,
            last_activity=snap.last_activity,
            ts=ts,
        )

    def to_snapshot(self) -> AgentSnapshot:
        return AgentSnapshot(
            agent_id=self.agent_id,
            liveness=self.liveness,
            session=SessionRef.parse(self.session) if self.session else None,
            last_activity=self.last_activity,
        )
