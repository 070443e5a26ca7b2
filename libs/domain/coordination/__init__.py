from .coordinator import Coordinator, InboundRequest, RouteDecision, RouteOutcome
from .events import (
    AgentDisconnected,
    AgentErrored,
    AgentJoinedSession,
    AgentLeftSession,
    AgentReady,
    AgentReconnecting,
    CoordinationEvent,
    EventBus,
    MembershipChanged,
)
from .lifecycle import LifecycleMonitor, SessionPhase
from .registry import AgentRecord, AgentRegistry
from .replica import StateReplicator
from .selection import SelectionPolicy
from .table import AssignmentTable

__all__ = [
    "AgentRegistry",
    "AgentRecord",
    "AssignmentTable",
    "SelectionPolicy",
    "Coordinator",
    "InboundRequest",
    "RouteDecision",
    "RouteOutcome",
    "LifecycleMonitor",
    "SessionPhase",
    "StateReplicator",
    "EventBus",
    "CoordinationEvent",
    "AgentReady",
    "AgentReconnecting",
    "AgentDisconnected",
    "AgentErrored",
    "AgentJoinedSession",
    "AgentLeftSession",
    "MembershipChanged",
]
