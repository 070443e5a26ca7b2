from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

SCHEMA_V1: Literal[1] = 1

ErrorCode = Literal[
    "bad-json", "api-mismatch", "timeout", "internal", "unknown-command", "bad-request"
]


def utc_now() -> datetime:
    return datetime.now(UTC)


class UnknownCommandError(LookupError):
    """Raised by command handlers for a command type they do not serve."""


class ErrorInfo(BaseModel):
    code: ErrorCode
    detail: str | None = None


class CommandEnvelope(BaseModel):
    schema_version: Literal[1] = Field(default=SCHEMA_V1)
    msg_id: str
    ts: datetime = Field(default_factory=utc_now)
    command: dict  # a Cmd dump


class ResponseEnvelope(BaseModel):
    ok: bool
    correlates_to: str  # echoes msg_id from request
    data: Any | None = None
    error: ErrorInfo | None = None


class StateEnvelope(BaseModel):
    schema_version: Literal[1] = Field(default=SCHEMA_V1)
    msg_id: str
    ts: datetime = Field(default_factory=utc_now)
    topic: str
    data: dict  # an AgentStateUpdate dump


def error_reply(msg_id: str, code: ErrorCode, detail: str | None = None) -> dict[str, Any]:
    return ResponseEnvelope(
        ok=False, correlates_to=msg_id, error=ErrorInfo(code=code, detail=detail)
    ).model_dump(mode="json")


def dispatch_reply(
    msg_id: str, command: dict, handler: Callable[[dict], dict]
) -> dict[str, Any]:
    """Run a command handler and wrap its outcome in a ResponseEnvelope dict."""
    try:
        result = handler(command) or {}
    except UnknownCommandError as ex:
        return error_reply(msg_id, "unknown-command", str(ex))
    except ValueError as ex:
        return error_reply(msg_id, "bad-request", str(ex))
    except Exception as ex:
        return error_reply(msg_id, "internal", repr(ex))
    return ResponseEnvelope(ok=True, correlates_to=msg_id, data=result).model_dump(mode="json")
