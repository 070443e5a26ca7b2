from .inproc import (
    InprocAgentCommandPort,
    InprocCommandServerPort,
    InprocHub,
    InprocStatePubPort,
    InprocStateSubPort,
)

__all__ = [
    "InprocHub",
    "InprocAgentCommandPort",
    "InprocCommandServerPort",
    "InprocStatePubPort",
    "InprocStateSubPort",
]
