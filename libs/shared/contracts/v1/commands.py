from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel

CommandType = Literal[
    "PING", "STATUS", "STATS", "HEALTH", "JOIN", "LEAVE", "RELEASE", "PLAY", "STOP"
]


class Cmd(BaseModel):
    api: Literal["v1"] = "v1"
    type: CommandType
    agent_id: str | None = None
    session: str | None = None  # "guild:channel"
    payload: dict[str, Any] = {}


def command_dict(cmd: Any) -> dict[str, Any]:
    """Accept a Cmd, a plain mapping, or anything with a ``type``."""
    if isinstance(cmd, BaseModel):
        return cmd.model_dump(mode="json")
    if isinstance(cmd, Mapping):
        return dict(cmd)
    return {"type": getattr(cmd, "type", "UNKNOWN")}
