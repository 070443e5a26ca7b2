from .ipc import AgentCommandPort, CommandServerPort, StatePubPort, StateSubPort
from .time import ClockPort
from .voice import HandOffError, Liveness, PlaybackPort, SessionRef, VoiceAgentPort

__all__ = [
    "VoiceAgentPort",
    "PlaybackPort",
    "HandOffError",
    "SessionRef",
    "Liveness",
    "AgentCommandPort",
    "CommandServerPort",
    "StatePubPort",
    "StateSubPort",
    "ClockPort",
]
