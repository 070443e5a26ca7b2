from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Final, Literal

from ports.voice import SessionRef

from .coordinator import Coordinator
from .events import AgentJoinedSession, AgentLeftSession, CoordinationEvent, MembershipChanged

LOG: Final = logging.getLogger("voicefleet.lifecycle")

SessionPhase = Literal["active", "grace", "vacating", "terminated"]


@dataclass
class _Tracked:
    agent_id: str
    participants: int
    phase: SessionPhase = "active"
    timer: asyncio.Task[None] | None = None


class LifecycleMonitor:
    """Debounces empty sessions and releases agents that stopped serving.

    active --(0 participants)--> grace --(re-join)--> active
    grace --(timer expires, still 0)--> vacating --> terminated (untracked)

    An agent's own "left" event releases it at once, with no grace period.
    """

    def __init__(self, coordinator: Coordinator, grace_period_s: float = 60.0) -> None:
        self.coordinator: Final = coordinator
        self.grace_period_s = grace_period_s
        self._sessions: dict[SessionRef, _Tracked] = {}

    def phase_of(self, session: SessionRef) -> SessionPhase | None:
        t = self._sessions.get(session)
        return t.phase if t else None

    def tracked(self) -> dict[SessionRef, SessionPhase]:
        return {s: t.phase for s, t in self._sessions.items()}

    async def handle_event(self, event: CoordinationEvent) -> None:
        if isinstance(event, AgentJoinedSession):
            self._track(event.agent_id, event.session, event.participants)
        elif isinstance(event, MembershipChanged):
            self._on_membership(event.agent_id, event.session, event.participants)
        elif isinstance(event, AgentLeftSession):
            self._on_agent_left(event.agent_id, event.session)

    def _held_by_other(self, agent_id: str, session: SessionRef) -> bool:
        owner = self.coordinator.table.owner_of(session)
        if owner is None or owner == agent_id:
            return False
        return self.coordinator.registry.is_online(owner)

    def _track(self, agent_id: str, session: SessionRef, participants: int) -> None:
        if self._held_by_other(agent_id, session):
            # double claim; the coordinator sends the newcomer away
            LOG.debug("%s joined %s held by another agent; not tracked", agent_id, session)
            return
        prev = self._sessions.pop(session, None)
        if prev is not None:
            self._cancel(prev)
        self._sessions[session] = _Tracked(agent_id=agent_id, participants=participants)
        self._on_membership(agent_id, session, participants)

    def _on_membership(self, agent_id: str, session: SessionRef, participants: int) -> None:
        t = self._sessions.get(session)
        if (t is None or t.agent_id != agent_id) and (
            self.coordinator.table.owner_of(session) == agent_id
        ):
            # the owner reports on a session it was handed without a join event
            if t is not None:
                self._cancel(t)
            t = self._sessions[session] = _Tracked(agent_id=agent_id, participants=participants)
        if t is None or t.agent_id != agent_id:
            # only the agent serving the session reports on it
            LOG.debug("Ignoring membership of %s reported by %s", session, agent_id)
            return
        t.participants = participants
        if participants == 0 and t.phase == "active":
            t.phase = "grace"
            t.timer = asyncio.create_task(self._expire(session, t), name=f"grace-{session}")
            LOG.info("%s is empty; vacating in %.0fs", session, self.grace_period_s)
        elif participants > 0 and t.phase == "grace":
            self._cancel(t)
            t.phase = "active"
            LOG.info("%s occupied again; grace cancelled", session)

    def _on_agent_left(self, agent_id: str, session: SessionRef) -> None:
        t = self._sessions.get(session)
        if t is not None and t.agent_id == agent_id:
            self._cancel(t)
            t.phase = "terminated"
            del self._sessions[session]
        if self.coordinator.release(agent_id, session):
            LOG.info("Agent %s left %s; released", agent_id, session)

    async def _expire(self, session: SessionRef, t: _Tracked) -> None:
        await asyncio.sleep(self.grace_period_s)
        if self._sessions.get(session) is t and t.phase == "grace" and t.participants == 0:
            t.timer = None
            await self.vacate(session)

    async def vacate(self, session: SessionRef) -> bool:
        """Stop serving ``session`` and release its agent."""
        t = self._sessions.get(session)
        agent_id = t.agent_id if t else self.coordinator.table.owner_of(session)
        if agent_id is None:
            return False
        if t is not None:
            self._cancel(t)
            t.phase = "vacating"

        playback = self.coordinator.playback_for(agent_id)
        if playback is not None:
            try:
                await playback.stop_serving(session)
            except Exception as ex:
                LOG.warning("stop_serving(%s) on %s failed: %r", session, agent_id, ex)
        handle = self.coordinator.handle_for(agent_id)
        if handle is not None and handle.is_connected_to(session):
            try:
                await handle.leave(session)
            except Exception as ex:
                LOG.warning("Agent %s could not leave %s: %r", agent_id, session, ex)

        self.coordinator.release(agent_id, session)
        if t is not None:
            t.phase = "terminated"
            if self._sessions.get(session) is t:
                del self._sessions[session]
        LOG.info("Vacated %s (agent %s)", session, agent_id)
        return True

    def _cancel(self, t: _Tracked) -> None:
        timer, t.timer = t.timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def close(self) -> None:
        timers = [t.timer for t in self._sessions.values() if t.timer is not None]
        for t in self._sessions.values():
            self._cancel(t)
        await asyncio.gather(*timers, return_exceptions=True)
