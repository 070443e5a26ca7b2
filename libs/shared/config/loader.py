from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from apps.agent.settings import AgentSettings
from apps.coordinator.settings import CoordinatorSettings

# --- paths --------------------------------------------------------------------


def _repo_root() -> Path:
    """Heuristic: walk up from this file until we find pyproject.toml."""
    p = Path(__file__).resolve()
    for ancestor in [p, *p.parents]:
        if (ancestor / "pyproject.toml").exists():
            return ancestor
    return Path.cwd()


def _profiles_dir(env: Mapping[str, str]) -> Path:
    # VF_CONFIG_DIR points *at* profiles/
    override = env.get("VF_CONFIG_DIR")
    if override:
        return Path(override)
    return _repo_root() / "configs" / "profiles"


def _load_profile_table(env: Mapping[str, str], profile: str) -> dict[str, Any]:
    f = _profiles_dir(env) / f"{profile}.toml"
    if not f.exists():
        return {}
    text = f.read_text("utf-8")
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise RuntimeError(f"Failed to parse profile TOML: {f}") from e


def _resolve_env(env: Mapping[str, str] | None) -> Mapping[str, str]:
    if env is not None:
        return env
    # only the real process environment picks up a .env file
    load_dotenv()
    return os.environ


# --- env overlay helpers ------------------------------------------------------


def _coerce_env_value(raw: str) -> Any:
    """
    Try to parse JSON first (so lists/dicts/numbers/bools work),
    then fall back to the original string.
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _collect_env_for(
    fields: set[str], env: Mapping[str, str], prefix: str = "VF_"
) -> dict[str, Any]:
    """
    Collect overrides like VF_AGENT_ID, VF_GRACE_PERIOD_S -> {'agent_id': '...'}.
    Case-insensitive; underscores only.
    """
    out: dict[str, Any] = {}
    upper_to_field = {f.upper(): f for f in fields}
    plen = len(prefix)
    for k, v in env.items():
        if not k.startswith(prefix):
            continue
        key = k[plen:].upper()
        if key in upper_to_field:
            out[upper_to_field[key]] = _coerce_env_value(v)
    return out


def _split_tokens(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(t).strip() for t in raw or () if str(t).strip()]


def collect_tokens(env: Mapping[str, str]) -> list[str]:
    """
    Bot tokens from BOT_TOKENS=a,b,c or numbered BOT_TOKEN_1..N
    (numbering stops at the first gap).
    """
    if env.get("BOT_TOKENS"):
        return _split_tokens(env["BOT_TOKENS"])
    tokens: list[str] = []
    i = 1
    while env.get(f"BOT_TOKEN_{i}"):
        tokens.append(env[f"BOT_TOKEN_{i}"].strip())
        i += 1
    return tokens


# --- public API ---------------------------------------------------------------


def load_agent_settings(
    env: Mapping[str, str] | None = None, profile: str | None = None
) -> AgentSettings:
    """
    Merge defaults (AgentSettings) <- TOML [agent] <- env VF_*.
    Env examples: VF_AGENT_ID=bot-2, VF_TOKEN=..., VF_PEERS_CMD={"bot-1":"tcp://..."}
    BOT_TOKEN is accepted when VF_TOKEN is unset.
    """
    env = _resolve_env(env)
    profile = (profile or env.get("VF_PROFILE") or "dev").strip()

    # start from model defaults; the env is overlaid below, not read twice
    base = AgentSettings.model_construct().model_dump()

    toml_table = _load_profile_table(env, profile)
    toml_agent = toml_table.get("agent", {}) if isinstance(toml_table, dict) else {}
    if isinstance(toml_agent, dict):
        base.update(toml_agent)

    base.update(_collect_env_for(set(base.keys()), env))
    if not base.get("token") and env.get("BOT_TOKEN"):
        base["token"] = env["BOT_TOKEN"].strip()

    return AgentSettings.model_validate(base)


def load_coordinator_settings(
    env: Mapping[str, str] | None = None, profile: str | None = None
) -> CoordinatorSettings:
    """
    Merge defaults (CoordinatorSettings) <- TOML [coordinator] <- env VF_*.
    Env examples: VF_GRACE_PERIOD_S=30, VF_TOKENS=["...","..."] or VF_TOKENS=a,b
    Falls back to BOT_TOKENS / BOT_TOKEN_1..N when no tokens were configured.
    """
    env = _resolve_env(env)
    profile = (profile or env.get("VF_PROFILE") or "dev").strip()

    base = CoordinatorSettings.model_construct().model_dump()

    toml_table = _load_profile_table(env, profile)
    toml_coord = toml_table.get("coordinator", {}) if isinstance(toml_table, dict) else {}
    if isinstance(toml_coord, dict):
        base.update(toml_coord)

    base.update(_collect_env_for(set(base.keys()), env))
    base["tokens"] = _split_tokens(base.get("tokens")) or collect_tokens(env)

    return CoordinatorSettings.model_validate(base)
