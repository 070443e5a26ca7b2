from __future__ import annotations

from collections.abc import Iterator

from ports.voice import SessionRef


class AssignmentTable:
    """Session -> owning agent, with the reverse index per agent.

    Writes are last-writer-wins. With ``single_tenant`` (the default) assigning
    an agent drops whatever other session it held, so each agent maps to at
    most one session.
    """

    def __init__(self, single_tenant: bool = True) -> None:
        self.single_tenant = single_tenant
        self._owner: dict[SessionRef, str] = {}
        self._sessions: dict[str, set[SessionRef]] = {}

    def owner_of(self, session: SessionRef) -> str | None:
        return self._owner.get(session)

    def sessions_of(self, agent_id: str) -> frozenset[SessionRef]:
        return frozenset(self._sessions.get(agent_id, ()))

    def load_of(self, agent_id: str) -> int:
        return len(self._sessions.get(agent_id, ()))

    def assign(self, session: SessionRef, agent_id: str) -> str | None:
        """Map ``session`` to ``agent_id``; returns the previous owner, if any."""
        prev = self._owner.get(session)
        if prev is not None and prev != agent_id:
            self._drop_reverse(prev, session)
        if self.single_tenant:
            for other in self.sessions_of(agent_id) - {session}:
                self.release(other)
        self._owner[session] = agent_id
        self._sessions.setdefault(agent_id, set()).add(session)
        return prev

    def release(self, session: SessionRef) -> str | None:
        agent_id = self._owner.pop(session, None)
        if agent_id is not None:
            self._drop_reverse(agent_id, session)
        return agent_id

    def release_agent(self, agent_id: str) -> frozenset[SessionRef]:
        sessions = frozenset(self._sessions.pop(agent_id, ()))
        for s in sessions:
            self._owner.pop(s, None)
        return sessions

    def _drop_reverse(self, agent_id: str, session: SessionRef) -> None:
        owned = self._sessions.get(agent_id)
        if owned is None:
            return
        owned.discard(session)
        if not owned:
            del self._sessions[agent_id]

    def items(self) -> list[tuple[SessionRef, str]]:
        return sorted(self._owner.items())

    def __iter__(self) -> Iterator[SessionRef]:
        return iter(list(self._owner))

    def __len__(self) -> int:
        return len(self._owner)

    def __contains__(self, session: object) -> bool:
        return session in self._owner
