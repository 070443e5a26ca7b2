"""Coordination events and the bounded fan-out bus that carries them.

Every consumer gets its own bounded queue and sees events in publish order.
The Coordinator (liveness, join reconciliation) and the LifecycleMonitor
(membership, grace timers) are independent consumers of the same stream.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Final, Union

from ports.voice import SessionRef

LOG: Final = logging.getLogger("voicefleet.events")


@dataclass(frozen=True)
class AgentReady:
    agent_id: str


@dataclass(frozen=True)
class AgentReconnecting:
    agent_id: str


@dataclass(frozen=True)
class AgentDisconnected:
    agent_id: str


@dataclass(frozen=True)
class AgentErrored:
    agent_id: str
    detail: str = ""


@dataclass(frozen=True)
class AgentJoinedSession:
    agent_id: str
    session: SessionRef
    participants: int


@dataclass(frozen=True)
class AgentLeftSession:
    agent_id: str
    session: SessionRef


@dataclass(frozen=True)
class MembershipChanged:
    """Non-agent participant count of a session, as seen by the agent inside it."""

    agent_id: str
    session: SessionRef
    participants: int


CoordinationEvent = Union[
    AgentReady,
    AgentReconnecting,
    AgentDisconnected,
    AgentErrored,
    AgentJoinedSession,
    AgentLeftSession,
    MembershipChanged,
]

EventHandler = Callable[[CoordinationEvent], Awaitable[None]]


class EventBus:
    def __init__(self, maxsize: int = 256) -> None:
        self.maxsize = maxsize
        self._queues: dict[str, asyncio.Queue[CoordinationEvent]] = {}

    def subscribe(self, name: str) -> asyncio.Queue[CoordinationEvent]:
        if name in self._queues:
            raise ValueError(f"Subscriber already registered: {name}")
        q: asyncio.Queue[CoordinationEvent] = asyncio.Queue(maxsize=self.maxsize)
        self._queues[name] = q
        return q

    async def publish(self, event: CoordinationEvent) -> None:
        """Deliver to every subscriber; waits while a subscriber queue is full."""
        for q in list(self._queues.values()):
            await q.put(event)

    def publish_nowait(self, event: CoordinationEvent) -> bool:
        """For synchronous callers. Returns False if any subscriber dropped it."""
        delivered = True
        for name, q in list(self._queues.items()):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                LOG.warning("Event queue %s full; dropped %s", name, type(event).__name__)
                delivered = False
        return delivered

    async def drain(self) -> None:
        """Wait until every published event has been handled."""
        await asyncio.gather(*(q.join() for q in list(self._queues.values())))

    @staticmethod
    async def consume(queue: asyncio.Queue[CoordinationEvent], handler: EventHandler) -> None:
        """Run ``handler`` for each event until cancelled. Handler errors are logged."""
        while True:
            event = await queue.get()
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOG.exception("Handler failed for %r", event)
            finally:
                queue.task_done()
