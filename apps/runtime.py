from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Final

from adapters.time import MonotonicClockPort
from domain.coordination import (
    AgentRecord,
    AgentRegistry,
    AssignmentTable,
    CoordinationEvent,
    Coordinator,
    EventBus,
    InboundRequest,
    LifecycleMonitor,
    RouteDecision,
    StateReplicator,
)
from domain.coordination.replica import HandleFactory, PlaybackFactory
from ports.ipc import CommandServerPort, StatePubPort, StateSubPort
from ports.time import ClockPort
from ports.voice import Liveness, PlaybackPort, VoiceAgentPort

from apps.commands import CommandDispatcher, coordination_routes

LOG: Final = logging.getLogger("voicefleet.runtime")


class CoordinationRuntime:
    """Coordinator, lifecycle monitor and their event consumers on one loop.

    Both apps build on this: the coordinator process registers every bot it runs,
    the per-bot agent process registers one and replicates the rest.
    """

    def __init__(
        self,
        clock: ClockPort | None = None,
        grace_period_s: float = 60.0,
        handoff_timeout_s: float = 15.0,
        event_queue_size: int = 256,
        state_interval_s: float = 1.0,
    ) -> None:
        self.clock = clock or MonotonicClockPort()
        self.bus = EventBus(maxsize=event_queue_size)
        self.registry = AgentRegistry(self.clock)
        self.table = AssignmentTable()
        self.coordinator = Coordinator(
            self.registry, self.table, handoff_timeout_s=handoff_timeout_s
        )
        self.monitor = LifecycleMonitor(self.coordinator, grace_period_s=grace_period_s)
        self.state_interval_s = state_interval_s
        self.local_ids: set[str] = set()
        self.replicator: StateReplicator | None = None

        self.dispatcher = CommandDispatcher(timeout_s=handoff_timeout_s + 5.0)
        coordination_routes(self, self.dispatcher)

        self._coord_q = self.bus.subscribe("coordinator")
        self._monitor_q = self.bus.subscribe("lifecycle")
        self._tasks: list[asyncio.Task[None]] = []
        self._server: CommandServerPort | None = None
        self._server_thread: threading.Thread | None = None
        self._stop = threading.Event()

    # --- wiring --------------------------------------------------------------

    def add_agent(
        self,
        handle: VoiceAgentPort,
        playback: PlaybackPort | None = None,
        liveness: Liveness = "initializing",
    ) -> AgentRecord:
        self.local_ids.add(handle.agent_id)
        if self.replicator is not None:
            self.replicator.local_ids.add(handle.agent_id)
        return self.coordinator.register_agent(handle, playback, liveness)

    def attach_replicator(
        self,
        pub: StatePubPort | None = None,
        sub: StateSubPort | None = None,
        handle_factory: HandleFactory | None = None,
        playback_factory: PlaybackFactory | None = None,
        ttl_s: float = 5.0,
    ) -> StateReplicator:
        self.replicator = StateReplicator(
            self.coordinator,
            self.clock,
            self.local_ids,
            pub=pub,
            sub=sub,
            handle_factory=handle_factory,
            playback_factory=playback_factory,
            ttl_s=ttl_s,
        )
        return self.replicator

    def publish_state(self, agent_id: str | None = None) -> None:
        if self.replicator is None:
            return
        if agent_id is None:
            self.replicator.publish_all()
        else:
            self.replicator.publish(agent_id)

    def session_phases(self) -> dict[str, str]:
        return {str(s): phase for s, phase in self.monitor.tracked().items()}

    # --- requests ------------------------------------------------------------

    def should_handle(self, agent_id: str, request: InboundRequest) -> bool:
        if self.replicator is not None:
            self.replicator.expire()
        return self.coordinator.should_handle(agent_id, request.session)

    async def route(self, request: InboundRequest) -> RouteDecision:
        if self.replicator is not None:
            self.replicator.expire()
        decision = await self.coordinator.route(request)
        if decision.agent_id is not None:
            self.publish_state(decision.agent_id)
        LOG.debug("route %s -> %s (%s)", request.session, decision.agent_id, decision.outcome)
        return decision

    # --- event consumers -----------------------------------------------------

    async def _on_coordination_event(self, event: CoordinationEvent) -> None:
        await self.coordinator.handle_event(event)
        self.publish_state(event.agent_id)

    async def _on_lifecycle_event(self, event: CoordinationEvent) -> None:
        await self.monitor.handle_event(event)
        self.publish_state(event.agent_id)

    async def _state_loop(self, replicator: StateReplicator) -> None:
        loop = asyncio.get_running_loop()
        sub = replicator.sub
        while True:
            replicator.publish_all()
            if sub is None:
                await asyncio.sleep(self.state_interval_s)
            else:
                deadline = loop.time() + self.state_interval_s
                while loop.time() < deadline:
                    wait_ms = int(max(0.0, min(deadline - loop.time(), 0.2)) * 1000)
                    msg = await asyncio.to_thread(sub.recv, wait_ms)
                    if msg is not None:
                        replicator.apply(msg)
            replicator.expire()

    # --- command server ------------------------------------------------------

    def _serve_commands(self, server: CommandServerPort) -> None:
        def loop() -> None:
            while not self._stop.is_set():
                try:
                    server.poll_once(self.dispatcher.handle)
                except Exception:
                    LOG.exception("Command server error")
                    time.sleep(0.1)

        self._server = server
        self._server_thread = threading.Thread(target=loop, name="command-server", daemon=True)
        self._server_thread.start()

    # --- lifecycle -----------------------------------------------------------

    async def start(self, server: CommandServerPort | None = None) -> None:
        self.dispatcher.loop = asyncio.get_running_loop()
        self._stop.clear()
        self._tasks.append(
            asyncio.create_task(
                EventBus.consume(self._coord_q, self._on_coordination_event),
                name="coordinator-events",
            )
        )
        self._tasks.append(
            asyncio.create_task(
                EventBus.consume(self._monitor_q, self._on_lifecycle_event),
                name="lifecycle-events",
            )
        )
        if self.replicator is not None:
            state_loop = self._state_loop(self.replicator)
            self._tasks.append(asyncio.create_task(state_loop, name="agent-state"))
        if server is not None:
            self._serve_commands(server)
        LOG.info("Runtime started with %d local agent(s)", len(self.local_ids))

    async def stop(self) -> None:
        self._stop.set()
        if self._server_thread is not None:
            await asyncio.to_thread(self._server_thread.join, 1.0)
            self._server_thread = None
        if self._server is not None:
            self._server.close()
            self._server = None
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.monitor.close()
