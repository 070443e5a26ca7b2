from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class CoordinatorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VF_", extra="ignore")

    # one bot per token; ids are "<agent_prefix>-<n>" in token order
    tokens: list[str] = []
    agent_prefix: str = "bot"

    grace_period_s: float = 60.0
    handoff_timeout_s: float = 15.0
    connect_timeout_s: float = 10.0
    event_queue_size: int = 256
    ffmpeg_options: str | None = None

    # choose transport impl
    ipc_impl: Literal["inproc", "zmq"] = "inproc"

    cmd_bind: str = "tcp://127.0.0.1:7790"
    state_bind: str = "tcp://127.0.0.1:7791"
    state_interval_s: float = 1.0

    refresh_hz: float = 2.0
    log_level: str = "INFO"
