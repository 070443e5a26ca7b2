from __future__ import annotations

from collections.abc import Collection

from ports.voice import SessionRef

from .registry import AgentRecord, AgentRegistry
from .table import AssignmentTable


class SelectionPolicy:
    """Sticky owner first, then least-loaded, then longest idle.

    Stateless per call: every decision re-reads the registry and table.
    ``capacity`` is the number of sessions an agent may hold; at 1 only idle
    agents are candidates.
    """

    def __init__(self, capacity: int = 1) -> None:
        self.capacity = max(1, capacity)

    def candidates(self, registry: AgentRegistry, table: AssignmentTable) -> list[AgentRecord]:
        if self.capacity == 1:
            return registry.list_available()
        return [r for r in registry.list_online() if table.load_of(r.agent_id) < self.capacity]

    def select(
        self,
        session: SessionRef,
        registry: AgentRegistry,
        table: AssignmentTable,
        exclude: Collection[str] = (),
    ) -> str | None:
        owner = table.owner_of(session)
        if owner is not None and registry.is_online(owner):
            return owner

        pool = [r for r in self.candidates(registry, table) if r.agent_id not in exclude]
        if not pool:
            return None
        # seq keeps equal timestamps in registration order
        best = min(pool, key=lambda r: (table.load_of(r.agent_id), r.last_activity, r.seq))
        return best.agent_id
