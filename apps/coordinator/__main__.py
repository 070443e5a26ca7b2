from __future__ import annotations

import argparse
import asyncio
import json
import time
from typing import Any

from shared.config.loader import load_coordinator_settings
from shared.config.log import configure_logging
from shared.contracts.v1.commands import Cmd

from apps.coordinator.compose import CoordinatorApp, build_client_ipc


def _print_reply(label: str, resp: dict[str, Any], quiet: bool) -> int:
    if quiet:
        print(json.dumps(resp.get("data") if resp.get("ok") else resp.get("error")))
    else:
        print(f"[coord] {label} :: {json.dumps(resp, indent=2, default=str)}")
    return 0 if resp.get("ok") else 1


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="voicefleet-coordinator")
    ap.add_argument("--stats", action="store_true", help="Print per-agent stats and exit.")
    ap.add_argument("--health", action="store_true", help="Print fleet health and exit.")
    ap.add_argument("--ping", action="store_true", help="Ping the running coordinator and exit.")
    ap.add_argument("--status", metavar="AGENT", help="Print one agent's state and exit.")
    ap.add_argument("--release", metavar="AGENT", help="Vacate the agent's session and exit.")
    ap.add_argument("--watch", action="store_true", help="Print agent-state updates until Ctrl+C.")
    ap.add_argument("--tui", action="store_true", help="Run the Textual TUI.")
    ap.add_argument("--profile", help="Config profile under configs/profiles/ (default: dev).")
    ap.add_argument("--log-level", default=None, help="Override the configured log level.")
    ap.add_argument("--quiet", action="store_true", help="Reduce console output.")
    ap.add_argument(
        "--connect-wait-ms", type=int, default=100, help="PUB/SUB settle time before first recv."
    )
    args = ap.parse_args(argv)

    settings = load_coordinator_settings(profile=args.profile)
    configure_logging(args.log_level or settings.log_level, quiet=args.quiet)

    if args.tui:
        # Launch the TUI app; it builds its own IPC via the loader.
        from apps.coordinator.tui import CoordinatorTUI

        CoordinatorTUI(settings=settings).run()
        return 0

    one_shots: list[tuple[str, Cmd]] = []
    if args.ping:
        one_shots.append(("PING", Cmd(type="PING")))
    if args.stats:
        one_shots.append(("STATS", Cmd(type="STATS")))
    if args.health:
        one_shots.append(("HEALTH", Cmd(type="HEALTH")))
    if args.status:
        one_shots.append((f"STATUS {args.status}", Cmd(type="STATUS", agent_id=args.status)))
    if args.release:
        one_shots.append((f"RELEASE {args.release}", Cmd(type="RELEASE", agent_id=args.release)))

    if not one_shots and not args.watch:
        try:
            asyncio.run(CoordinatorApp(settings).run())
        except KeyboardInterrupt:
            if not args.quiet:
                print("\n[coord] shutting down...")
        return 0

    cmd_port, state_sub = build_client_ipc(settings)
    if not args.quiet:
        print(
            f"[coord] ipc_impl={settings.ipc_impl} "
            f"cmd={settings.cmd_bind} state={settings.state_bind}"
        )

    rc = 0
    for label, cmd in one_shots:
        rc = max(rc, _print_reply(label, cmd_port.send(settings.cmd_bind, cmd), args.quiet))
    if not args.watch:
        return rc

    # Give SUB a brief moment to connect before first receive
    time.sleep(max(args.connect_wait_ms, 0) / 1000.0)
    try:
        while True:
            msg = state_sub.recv(timeout_ms=250)
            if not msg:
                continue
            data = msg.get("data") or {}
            print(
                f"[coord] STATE <- {data.get('agent_id')} "
                f"{data.get('liveness')} session={data.get('session')}"
            )
    except KeyboardInterrupt:
        if not args.quiet:
            print("\n[coord] exiting.")
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
