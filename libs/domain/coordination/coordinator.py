from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Literal

from ports.voice import HandOffError, Liveness, PlaybackPort, SessionRef, VoiceAgentPort

from domain.types import AgentSnapshot

from .events import (
    AgentDisconnected,
    AgentErrored,
    AgentJoinedSession,
    AgentReady,
    AgentReconnecting,
    CoordinationEvent,
)
from .registry import AgentRecord, AgentRegistry
from .selection import SelectionPolicy
from .table import AssignmentTable

LOG: Final = logging.getLogger("voicefleet.coordinator")

RouteOutcome = Literal["owned", "handed_off", "pending", "no_agent", "failed"]

MSG_RETRY: Final = "Could not reach a bot for your voice channel, please retry."
MSG_PENDING: Final = "A bot is already joining your voice channel, please retry in a moment."
MSG_NO_AGENT: Final = "No bot is available right now, all of them are busy."


@dataclass(frozen=True)
class InboundRequest:
    session: SessionRef
    payload: Mapping[str, Any] = field(default_factory=dict)
    requested_by: str | None = None  # agent whose client received the request


@dataclass(frozen=True)
class RouteDecision:
    outcome: RouteOutcome
    agent_id: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in ("owned", "handed_off")


_LIVENESS_EVENTS: Final[dict[type, Liveness]] = {
    AgentReady: "online",
    AgentReconnecting: "reconnecting",
    AgentDisconnected: "offline",
    AgentErrored: "error",
}


class Coordinator:
    """Single writer of the registry and the assignment table.

    Methods run to completion between awaits. ``hand_off`` suspends on the join,
    so concurrent requests for the same session are ordered by arrival: the
    first one reserves the session, later ones see it as pending.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        table: AssignmentTable,
        policy: SelectionPolicy | None = None,
        handoff_timeout_s: float = 15.0,
    ) -> None:
        self.registry: Final = registry
        self.table: Final = table
        self.policy: Final = policy or SelectionPolicy()
        self.handoff_timeout_s = handoff_timeout_s
        self._pending: dict[SessionRef, str] = {}

    # --- registry passthrough ------------------------------------------------

    def register_agent(
        self,
        handle: VoiceAgentPort,
        playback: PlaybackPort | None = None,
        liveness: Liveness = "initializing",
    ) -> AgentRecord:
        prev = self.registry.get(handle.agent_id)
        if prev is not None and prev.session is not None:
            self.table.release_agent(handle.agent_id)
        return self.registry.register(handle, playback, liveness)

    def deregister_agent(self, agent_id: str) -> None:
        self.table.release_agent(agent_id)
        self.registry.deregister(agent_id)

    def set_liveness(self, agent_id: str, state: Liveness) -> bool:
        return self.registry.set_liveness(agent_id, state)

    def handle_for(self, agent_id: str) -> VoiceAgentPort | None:
        rec = self.registry.get(agent_id)
        return rec.handle if rec else None

    def playback_for(self, agent_id: str) -> PlaybackPort | None:
        rec = self.registry.get(agent_id)
        return rec.playback if rec else None

    def pending_for(self, session: SessionRef) -> str | None:
        return self._pending.get(session)

    # --- routing -------------------------------------------------------------

    def should_handle(self, agent_id: str, session: SessionRef) -> bool:
        rec = self.registry.get(agent_id)
        if rec is None:
            LOG.warning("should_handle: unknown agent %s", agent_id)
            return False
        pending = self._pending.get(session)
        if pending is not None:
            return pending == agent_id
        owner = self.table.owner_of(session)
        if owner == agent_id:
            return True
        if owner is not None and self.registry.is_online(owner):
            return False
        # unowned, or the owner is stale: any idle online agent may claim it
        return rec.liveness == "online" and rec.idle

    def best_agent_for(self, session: SessionRef) -> str | None:
        busy = {a for s, a in self._pending.items() if s != session}
        return self.policy.select(session, self.registry, self.table, exclude=busy)

    async def hand_off(self, agent_id: str, request: InboundRequest) -> bool:
        """Make ``agent_id`` join ``request.session`` and start serving it.

        Shared state is only written after the join succeeded.
        """
        rec = self.registry.get(agent_id)
        if rec is None:
            LOG.warning("hand_off: unknown agent %s", agent_id)
            return False
        if rec.liveness != "online":
            LOG.warning("hand_off: agent %s is %s", agent_id, rec.liveness)
            return False

        session = request.session
        self._pending[session] = agent_id
        try:
            try:
                await asyncio.wait_for(rec.handle.join(session), self.handoff_timeout_s)
            except (HandOffError, asyncio.TimeoutError) as ex:
                LOG.warning("Hand-off of %s to %s failed: %r", session, agent_id, ex)
                await self._back_out(rec, session)
                return False
            except Exception:
                LOG.exception("Hand-off of %s to %s crashed", session, agent_id)
                await self._back_out(rec, session)
                return False

            if not await self._deliver(rec, request):
                await self._back_out(rec, session)
                return False

            self._assign(session, agent_id)
            LOG.info("Agent %s now serves %s", agent_id, session)
            return True
        finally:
            if self._pending.get(session) == agent_id:
                del self._pending[session]

    async def _back_out(self, rec: AgentRecord, session: SessionRef) -> None:
        # a cancelled or refused connect can leave a half-open voice connection
        try:
            await asyncio.wait_for(rec.handle.leave(session), self.handoff_timeout_s)
        except Exception as ex:
            LOG.warning("Agent %s could not leave %s: %r", rec.agent_id, session, ex)

    async def route(self, request: InboundRequest) -> RouteDecision:
        session = request.session
        pending = self._pending.get(session)
        if pending is not None:
            return RouteDecision("pending", pending, MSG_PENDING)

        agent_id = self.best_agent_for(session)
        if agent_id is None:
            LOG.info("No agent available for %s", session)
            return RouteDecision("no_agent", None, MSG_NO_AGENT)

        if self.table.owner_of(session) == agent_id:
            rec = self.registry.get(agent_id)
            if rec is not None and await self._deliver(rec, request):
                return RouteDecision("owned", agent_id)
            return RouteDecision("failed", agent_id, MSG_RETRY)

        if await self.hand_off(agent_id, request):
            return RouteDecision("handed_off", agent_id)
        return RouteDecision("failed", agent_id, MSG_RETRY)

    async def _deliver(self, rec: AgentRecord, request: InboundRequest) -> bool:
        if rec.playback is None or not request.payload:
            return True
        try:
            await asyncio.wait_for(
                rec.playback.start_serving(request.session, request.payload),
                self.handoff_timeout_s,
            )
        except Exception as ex:
            LOG.warning(
                "Agent %s could not start serving %s: %r", rec.agent_id, request.session, ex
            )
            return False
        return True

    # --- release / reconcile -------------------------------------------------

    def _assign(self, session: SessionRef, agent_id: str) -> None:
        rec = self.registry.get(agent_id)
        if rec is not None and rec.session is not None and rec.session != session:
            self.table.release(rec.session)
        prev = self.table.assign(session, agent_id)
        if prev is not None and prev != agent_id:
            prev_rec = self.registry.get(prev)
            if prev_rec is not None and prev_rec.session == session:
                self.registry.set_session(prev, None)
        self.registry.set_session(agent_id, session)

    def release(self, agent_id: str, session: SessionRef | None = None) -> bool:
        """Return the agent to the idle pool. Idempotent.

        With ``session`` given, only releases when the agent still holds it.
        """
        rec = self.registry.get(agent_id)
        if session is not None:
            held = self.table.owner_of(session) == agent_id or (
                rec is not None and rec.session == session
            )
            if not held:
                return False
        freed = self.table.release_agent(agent_id)
        if rec is None:
            if freed:
                LOG.warning("release: unknown agent %s held %s", agent_id, sorted(map(str, freed)))
            return bool(freed)
        changed = bool(freed) or rec.session is not None
        if rec.session is not None:
            self.registry.set_session(agent_id, None)
        if changed:
            LOG.info("Agent %s released", agent_id)
        return changed

    def confirm_join(self, agent_id: str, session: SessionRef) -> bool:
        """Reconcile an agent's own join. False means it collided with another owner."""
        rec = self.registry.get(agent_id)
        if rec is None:
            LOG.warning("confirm_join: unknown agent %s", agent_id)
            return False
        pending = self._pending.get(session)
        if pending == agent_id:
            return True  # hand_off records it once the join returns
        owner = self.table.owner_of(session)
        if owner == agent_id:
            if rec.session != session:
                self.registry.set_session(agent_id, session)
            return True
        if pending is None and (owner is None or not self.registry.is_online(owner)):
            self._assign(session, agent_id)
            LOG.info("Agent %s adopted %s", agent_id, session)
            return True
        LOG.warning(
            "Double claim on %s: %s joined while %s holds it",
            session,
            agent_id,
            pending or owner,
        )
        return False

    async def handle_event(self, event: CoordinationEvent) -> None:
        state = _LIVENESS_EVENTS.get(type(event))
        if state is not None:
            self.set_liveness(event.agent_id, state)
            return
        if isinstance(event, AgentJoinedSession):
            if not self.confirm_join(event.agent_id, event.session):
                handle = self.handle_for(event.agent_id)
                if handle is not None:
                    try:
                        await handle.leave(event.session)
                    except Exception as ex:
                        LOG.warning(
                            "Agent %s could not back out of %s: %r",
                            event.agent_id,
                            event.session,
                            ex,
                        )

    def apply_remote(
        self,
        snap: AgentSnapshot,
        handle: VoiceAgentPort | None = None,
        playback: PlaybackPort | None = None,
    ) -> bool:
        """Fold a peer's published state into the local view."""
        rec = self.registry.get(snap.agent_id)
        if rec is None:
            if handle is None:
                LOG.warning("apply_remote: unknown agent %s and no handle", snap.agent_id)
                return False
            rec = self.registry.register(handle, playback, liveness=snap.liveness)
        self.registry.set_liveness(snap.agent_id, snap.liveness)
        if snap.session is None:
            if rec.session is not None:
                self.release(snap.agent_id)
        elif rec.session != snap.session or self.table.owner_of(snap.session) != snap.agent_id:
            self._assign(snap.session, snap.agent_id)
        return True

    # --- read-only views -----------------------------------------------------

    def snapshot(self, agent_id: str) -> AgentSnapshot | None:
        rec = self.registry.get(agent_id)
        return rec.snapshot() if rec else None

    def get_agent_stats(self) -> dict[str, dict[str, Any]]:
        return {
            r.agent_id: {
                "liveness": r.liveness,
                "session": str(r.session) if r.session else None,
            }
            for r in self.registry
        }

    def get_health(self) -> dict[str, Any]:
        online = len(self.registry.list_online())
        return {
            "total_agents": len(self.registry),
            "online_agents": online,
            "available_agents": len(self.policy.candidates(self.registry, self.table)),
            "active_sessions": len(self.table),
            "status": "healthy" if online > 0 else "unhealthy",
        }
