from .fakes import FakeAgentCommandPort, FakeStateSubPort
from .zmq import ZmqAgentCommandPort, ZmqCommandREPServer, ZmqStatePubPort, ZmqStateSubPort

__all__ = [
    "ZmqAgentCommandPort",
    "ZmqCommandREPServer",
    "ZmqStatePubPort",
    "ZmqStateSubPort",
    "FakeAgentCommandPort",
    "FakeStateSubPort",
]
