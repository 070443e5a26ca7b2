from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ports.voice import PlaybackPort, SessionRef
from shared.contracts.v1.ipc_wire import UnknownCommandError

from domain.coordination import InboundRequest

if TYPE_CHECKING:
    from apps.runtime import CoordinationRuntime

Handler = Callable[[dict], Awaitable[dict]]


class CommandDispatcher:
    """Maps command types to coroutine handlers run on the runtime's loop.

    ``handle`` is called from the REP polling thread; every handler is marshalled
    onto the event loop so the coordinator keeps a single writer.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None, timeout_s: float = 30.0):
        self.loop = loop
        self.timeout_s = timeout_s
        self._routes: dict[str, Handler] = {}

    def route(self, cmd_type: str):
        def deco(fn: Handler):
            self._routes[cmd_type.upper()] = fn
            return fn

        return deco

    def lookup(self, cmd: dict[str, Any]) -> Handler:
        t = str((cmd or {}).get("type", "")).upper()
        fn = self._routes.get(t)
        if fn is None:
            raise UnknownCommandError(t or "UNKNOWN")
        return fn

    async def dispatch(self, cmd: dict[str, Any]) -> dict[str, Any]:
        return await self.lookup(cmd)(cmd)

    def handle(self, cmd: dict[str, Any]) -> dict[str, Any]:
        fn = self.lookup(cmd)
        if self.loop is None:
            raise RuntimeError("dispatcher has no event loop")
        fut = asyncio.run_coroutine_threadsafe(fn(cmd), self.loop)
        return fut.result(self.timeout_s)


def _session_arg(cmd: dict[str, Any]) -> SessionRef:
    raw = cmd.get("session")
    if not raw:
        raise ValueError("command needs a session")
    return SessionRef.parse(str(raw))


def _agent_arg(cmd: dict[str, Any]) -> str:
    agent_id = cmd.get("agent_id")
    if not agent_id:
        raise ValueError("command needs an agent_id")
    return str(agent_id)


def coordination_routes(runtime: CoordinationRuntime, dispatcher: CommandDispatcher) -> None:
    """PING / STATUS / STATS / HEALTH / JOIN / LEAVE / PLAY / STOP / RELEASE over ``runtime``."""
    coord = runtime.coordinator

    @dispatcher.route("PING")
    async def ping(cmd: dict) -> dict:
        return {"pong": True, "agents": sorted(runtime.local_ids)}

    @dispatcher.route("STATS")
    async def stats(cmd: dict) -> dict:
        return coord.get_agent_stats()

    @dispatcher.route("HEALTH")
    async def health(cmd: dict) -> dict:
        return coord.get_health()

    @dispatcher.route("STATUS")
    async def status(cmd: dict) -> dict:
        agent_id = cmd.get("agent_id")
        all_stats = coord.get_agent_stats()
        if not agent_id:
            return {"agents": all_stats, "sessions": runtime.session_phases()}
        if agent_id not in all_stats:
            raise ValueError(f"unknown agent {agent_id}")
        return {"agent_id": agent_id, **all_stats[agent_id]}

    @dispatcher.route("JOIN")
    async def join(cmd: dict) -> dict:
        # a peer asks one of our agents to take a session
        agent_id = _agent_arg(cmd)
        if agent_id not in runtime.local_ids:
            raise ValueError(f"{agent_id} is not served here")
        request = InboundRequest(_session_arg(cmd), cmd.get("payload") or {})
        joined = await coord.hand_off(agent_id, request)
        runtime.publish_state(agent_id)
        return {"agent_id": agent_id, "joined": joined}

    @dispatcher.route("LEAVE")
    async def leave(cmd: dict) -> dict:
        agent_id = _agent_arg(cmd)
        handle = coord.handle_for(agent_id)
        if handle is None or agent_id not in runtime.local_ids:
            raise ValueError(f"{agent_id} is not served here")
        session = _session_arg(cmd)
        await handle.leave(session)
        released = coord.release(agent_id, session)
        runtime.publish_state(agent_id)
        return {"agent_id": agent_id, "released": released}

    def _local_playback(agent_id: str) -> PlaybackPort:
        playback = coord.playback_for(agent_id)
        if playback is None or agent_id not in runtime.local_ids:
            raise ValueError(f"{agent_id} has no playback here")
        return playback

    @dispatcher.route("PLAY")
    async def play(cmd: dict) -> dict:
        agent_id = _agent_arg(cmd)
        session = _session_arg(cmd)
        playback = _local_playback(agent_id)
        if coord.table.owner_of(session) != agent_id:
            raise ValueError(f"{agent_id} does not serve {session}")
        await playback.start_serving(session, cmd.get("payload") or {})
        return {"agent_id": agent_id, "serving": True}

    @dispatcher.route("STOP")
    async def stop(cmd: dict) -> dict:
        agent_id = _agent_arg(cmd)
        session = _session_arg(cmd)
        await _local_playback(agent_id).stop_serving(session)
        return {"agent_id": agent_id, "stopped": True}

    @dispatcher.route("RELEASE")
    async def release(cmd: dict) -> dict:
        agent_id = _agent_arg(cmd)
        rec = coord.registry.get(agent_id)
        if rec is None:
            raise ValueError(f"unknown agent {agent_id}")
        if rec.session is not None:
            released = await runtime.monitor.vacate(rec.session)
        else:
            released = coord.release(agent_id)
        runtime.publish_state(agent_id)
        return {"agent_id": agent_id, "released": released}
