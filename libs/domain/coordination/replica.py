from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, Final

from ports.ipc import StatePubPort, StateSubPort
from ports.time import ClockPort
from ports.voice import PlaybackPort, VoiceAgentPort
from pydantic import ValidationError
from shared.contracts.v1.state import STATE_TOPIC, AgentStateUpdate

from .coordinator import Coordinator

LOG: Final = logging.getLogger("voicefleet.replica")

HandleFactory = Callable[[str], VoiceAgentPort | None]
PlaybackFactory = Callable[[VoiceAgentPort], PlaybackPort | None]


class StateReplicator:
    """Shares agent state between processes that each run their own Coordinator.

    Local agents are published on ``pub``; peer updates read from ``sub`` are
    folded into the local coordinator. A peer that stops publishing for longer
    than ``ttl_s`` is marked offline, which makes its sessions claimable.
    """

    def __init__(
        self,
        coordinator: Coordinator,
        clock: ClockPort,
        local_ids: Iterable[str],
        pub: StatePubPort | None = None,
        sub: StateSubPort | None = None,
        handle_factory: HandleFactory | None = None,
        playback_factory: PlaybackFactory | None = None,
        ttl_s: float = 5.0,
    ) -> None:
        self.coordinator = coordinator
        self.clock = clock
        self.local_ids = set(local_ids)
        self.pub = pub
        self.sub = sub
        self.handle_factory = handle_factory
        self.playback_factory = playback_factory
        self.ttl_s = ttl_s
        self._seen: dict[str, float] = {}
        self.published = 0
        self.applied = 0

    # --- outbound ------------------------------------------------------------

    def publish(self, agent_id: str) -> bool:
        if self.pub is None or agent_id not in self.local_ids:
            return False
        snap = self.coordinator.snapshot(agent_id)
        if snap is None:
            return False
        msg = AgentStateUpdate.from_snapshot(snap, ts=self.clock.now())
        self.pub.publish(STATE_TOPIC, msg.model_dump(mode="json"))
        self.published += 1
        return True

    def publish_all(self) -> int:
        return sum(1 for a in sorted(self.local_ids) if self.publish(a))

    # --- inbound -------------------------------------------------------------

    def apply(self, msg: dict[str, Any]) -> bool:
        """Fold one message from a state SUB port. Own and malformed updates are dropped."""
        if msg.get("topic") != STATE_TOPIC or "data" not in msg:
            return False
        try:
            update = AgentStateUpdate.model_validate(msg["data"])
            snap = update.to_snapshot()
        except (ValidationError, ValueError) as ex:
            LOG.warning("Dropping malformed state update: %s", ex)
            return False
        if snap.agent_id in self.local_ids:
            return False

        handle: VoiceAgentPort | None = None
        playback: PlaybackPort | None = None
        if snap.agent_id not in self.coordinator.registry and self.handle_factory is not None:
            handle = self.handle_factory(snap.agent_id)
            if handle is not None and self.playback_factory is not None:
                playback = self.playback_factory(handle)
        if not self.coordinator.apply_remote(snap, handle, playback):
            return False
        self._seen[snap.agent_id] = self.clock.now()
        self.applied += 1
        return True

    def poll(self, timeout_ms: int = 0, max_msgs: int = 64) -> int:
        if self.sub is None:
            return 0
        n = 0
        while n < max_msgs:
            msg = self.sub.recv(timeout_ms)
            if msg is None:
                break
            if self.apply(msg):
                n += 1
        return n

    def expire(self) -> list[str]:
        """Mark peers offline when their last update is older than ``ttl_s``."""
        now = self.clock.now()
        gone = []
        for agent_id, seen in list(self._seen.items()):
            if now - seen <= self.ttl_s:
                continue
            if self.coordinator.registry.is_online(agent_id):
                self.coordinator.set_liveness(agent_id, "offline")
                LOG.warning("Peer %s silent for %.1fs; marked offline", agent_id, now - seen)
            del self._seen[agent_id]
            gone.append(agent_id)
        return gone

    def last_seen(self, agent_id: str) -> float | None:
        return self._seen.get(agent_id)
