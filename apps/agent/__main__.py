from __future__ import annotations

import argparse
import asyncio

from shared.config.loader import load_agent_settings
from shared.config.log import configure_logging

from apps.agent.compose import AgentApp


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="voicefleet-agent")
    ap.add_argument("--profile", help="Config profile under configs/profiles/ (default: dev).")
    ap.add_argument("--agent-id", help="Override the configured agent id.")
    ap.add_argument("--log-level", default=None, help="Override the configured log level.")
    ap.add_argument("--quiet", action="store_true", help="Reduce console output.")
    args = ap.parse_args(argv)

    settings = load_agent_settings(profile=args.profile)
    if args.agent_id:
        settings = settings.model_copy(update={"agent_id": args.agent_id})
    configure_logging(args.log_level or settings.log_level, quiet=args.quiet)

    if not args.quiet:
        print(
            f"[agent] ipc_impl={settings.ipc_impl} "
            f"cmd_bind={settings.cmd_bind} "
            f"state_bind={settings.state_bind} "
            f"agent_id={settings.agent_id} peers={sorted(settings.peers_cmd)}"
        )

    try:
        asyncio.run(AgentApp(settings).run())
    except KeyboardInterrupt:
        if not args.quiet:
            print("\n[agent] shutting down...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
