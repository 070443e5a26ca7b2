from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """One bot per process; peers are reached over their command/state endpoints."""

    model_config = SettingsConfigDict(env_prefix="VF_", extra="ignore")

    agent_id: str = "bot-1"
    token: str = ""

    grace_period_s: float = 60.0
    handoff_timeout_s: float = 15.0
    connect_timeout_s: float = 10.0
    event_queue_size: int = 256
    ffmpeg_options: str | None = None

    # choose transport impl
    ipc_impl: Literal["inproc", "zmq"] = "inproc"

    cmd_bind: str = "tcp://127.0.0.1:7792"
    state_bind: str = "tcp://127.0.0.1:7793"
    peers_cmd: dict[str, str] = {}  # agent_id -> REQ endpoint
    peers_state: list[str] = []  # SUB endpoints
    state_interval_s: float = 1.0
    state_ttl_s: float = 5.0

    log_level: str = "INFO"
