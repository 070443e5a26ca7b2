from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, cast

from rich.text import Text
from shared.config.loader import load_coordinator_settings
from shared.contracts.v1.commands import Cmd
from textual.app import App, ComposeResult
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static

from apps.coordinator.compose import build_client_ipc
from apps.coordinator.settings import CoordinatorSettings

_LIVENESS_STYLE = {
    "online": "green",
    "initializing": "cyan",
    "reconnecting": "yellow",
    "error": "red",
    "offline": "red",
}


def _utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


# helper for safe dt age
def _age_seconds(ts: datetime | None) -> float | None:
    if not ts:
        return None
    return (datetime.now(UTC) - ts).total_seconds()


@dataclass
class AgentRow:
    agent_id: str
    liveness: str = "-"
    session: str | None = None
    last_seen: str = "-"
    updates: int = 0
    last_seen_ts: datetime | None = None

    def apply(self, data: dict[str, Any]) -> None:
        self.liveness = str(data.get("liveness") or self.liveness)
        self.session = data.get("session")
        self.last_seen = _utc_now_iso()
        self.last_seen_ts = datetime.now(UTC)
        self.updates += 1


class CoordinatorTUI(App):
    CSS_PATH = None
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("p", "ping", "Ping"),
        ("l", "release", "Release"),
        ("R", "refresh", "Refresh"),
        ("s", "sort", "Sort"),
        ("?", "help", "Help"),
    ]

    # UI state
    rows: reactive[dict[str, AgentRow]] = reactive(dict)

    def __init__(self, settings: CoordinatorSettings | None = None) -> None:
        super().__init__()
        self.settings = settings or load_coordinator_settings()
        self.cmd_port, self.sub_port = build_client_ipc(self.settings)
        self._sub_thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._table: DataTable | None = None
        self._status: Static | None = None
        self._last_msg_ts: datetime | None = None
        self._health: dict[str, Any] = {}

        # agents publish every state_interval_s; rows go stale after a few misses
        self._state_interval_s: float = self.settings.state_interval_s
        self._stale_factor: float = 2.0
        self._ttl_factor: float = 3.0
        self._sort_mode: str = "last"  # last | agent | liveness

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static(
            f"[b]ipc_impl[/b]= {self.settings.ipc_impl} • cmd: {self.settings.cmd_bind}"
            f" • state: {self.settings.state_bind}"
        )
        table = DataTable(zebra_stripes=True)
        table.add_columns("Agent", "Liveness", "Session", "Last Update (UTC)", "Updates")
        self._table = table
        # status bar under table (dynamic)
        self._status = Static("")
        yield table
        yield self._status
        yield Footer()

    def on_mount(self) -> None:
        self.action_refresh()

        self._stop.clear()
        self._sub_thread = threading.Thread(target=self._state_loop, daemon=True)
        self._sub_thread.start()

        # Give SUB a moment to connect initially
        time.sleep(0.1)

    def on_unmount(self) -> None:
        self._stop.set()
        if self._sub_thread and self._sub_thread.is_alive():
            self._sub_thread.join(timeout=1.0)

    # ----- Actions (key bindings) -----

    def action_quit(self) -> None:
        self.exit()

    def _selected_agent(self) -> AgentRow | None:
        if not self._table or not self.rows:
            return None
        row_idx = self._table.cursor_row
        # respect current visible ordering
        keys = [r.agent_id for r in self._sorted_rows()]
        if 0 <= row_idx < len(keys):
            return cast(AgentRow, self.rows[keys[row_idx]])
        return None

    def action_refresh(self) -> None:
        """Re-seed rows from STATS and HEALTH on the coordinator."""
        stats = self._send(Cmd(type="STATS"), quiet=True)
        if stats is not None:
            for agent_id, data in stats.items():
                self.merge_state({"agent_id": agent_id, **data})
        self._health = self._send(Cmd(type="HEALTH"), quiet=True) or self._health
        self._refresh_table()

    def action_ping(self) -> None:
        self._send(Cmd(type="PING"))

    def action_release(self) -> None:
        ag = self._selected_agent()
        if not ag:
            self.notify("No agent selected", severity="warning")
            return
        self._send(Cmd(type="RELEASE", agent_id=ag.agent_id))

    def action_sort(self) -> None:
        self._sort_mode = {"last": "agent", "agent": "liveness", "liveness": "last"}[
            self._sort_mode
        ]
        self.notify(f"Sort: {self._sort_mode}", severity="information")
        self._refresh_table()

    def action_help(self) -> None:
        self.notify(
            "Keys: q quit • p ping • l release • R refresh • s sort • ? help\n"
            "Sort cycles: last update → agent → liveness\n"
            "Rows turn yellow when stale; red when offline or never seen.",
            severity="information",
        )

    def _send(self, cmd: Cmd, quiet: bool = False) -> dict[str, Any] | None:
        label = f"{cmd.type} {cmd.agent_id or ''}".strip()
        try:
            t0 = time.perf_counter()
            resp = self.cmd_port.send(self.settings.cmd_bind, cmd)
            dt_ms = int((time.perf_counter() - t0) * 1000)
        except Exception as ex:
            self.notify(f"{label} failed: {ex!r}", severity="error")
            return None
        ok = bool(resp.get("ok"))
        if not quiet or not ok:
            err_code = (resp.get("error") or {}).get("code", "timeout" if not ok else "")
            self.notify(
                f"{label}: {'✓ ' + str(dt_ms) + 'ms' if ok else '✕ ' + err_code}",
                severity=("information" if ok else "error"),
            )
        return cast(dict[str, Any], resp.get("data") or {}) if ok else None

    # ----- State loop -----

    def merge_state(self, data: dict[str, Any]) -> AgentRow | None:
        agent_id = data.get("agent_id")
        if not agent_id:
            return None
        row = self.rows.get(agent_id)
        if row is None:
            row = self.rows[agent_id] = AgentRow(agent_id=agent_id)
        row.apply(data)
        self._last_msg_ts = row.last_seen_ts
        return row

    def _state_loop(self) -> None:
        while not self._stop.is_set():
            try:
                msg = self.sub_port.recv(timeout_ms=250)
            except Exception:
                msg = None
            if not msg:
                continue
            if self.merge_state(msg.get("data", {}) or {}) is not None:
                self.call_from_thread(self._refresh_table)

    # ----- Table rendering -----

    def _refresh_table(self) -> None:
        if not self._table:
            return
        self._table.clear()
        for row in self._sorted_rows():
            status = self._classify(row)
            if status == "DOWN":
                liveness_cell = Text(row.liveness if row.liveness != "-" else "DOWN", style="red")
            elif status == "STALE":
                liveness_cell = Text(f"{row.liveness} (STALE)", style="yellow")
            else:
                liveness_cell = Text(row.liveness, style=_LIVENESS_STYLE.get(row.liveness, ""))

            self._table.add_row(
                row.agent_id,
                liveness_cell,
                row.session or "idle",
                row.last_seen,
                str(row.updates),
            )
        if self._status:
            self._status.update(self._status_text())

    def _classify(self, row: AgentRow) -> str:
        """Return OK | STALE | DOWN based on liveness and last_seen_ts."""
        if not row.last_seen_ts or row.liveness == "offline":
            return "DOWN"
        age = _age_seconds(row.last_seen_ts) or 0.0
        return "STALE" if age > self._stale_factor * self._state_interval_s else "OK"

    def _sorted_rows(self) -> list[AgentRow]:
        items = list(self.rows.values())
        if self._sort_mode == "agent":
            items.sort(key=lambda r: r.agent_id.lower())
        elif self._sort_mode == "liveness":
            items.sort(key=lambda r: (r.liveness, r.agent_id.lower()))
        else:  # "last"
            items.sort(key=lambda r: r.last_seen_ts or datetime.fromtimestamp(0, UTC), reverse=True)
        return items

    def _status_text(self) -> str:
        known = len(self.rows)
        ttl_secs = self._ttl_factor * self._state_interval_s
        now = datetime.now(UTC)
        fresh = sum(
            1
            for r in self.rows.values()
            if (r.last_seen_ts and (now - r.last_seen_ts) <= timedelta(seconds=ttl_secs))
        )
        busy = sum(1 for r in self.rows.values() if r.session)
        last_ts = self._last_msg_ts.isoformat(timespec="seconds") if self._last_msg_ts else "—"
        health = self._health.get("status", "?")
        return (
            f"Agents: {fresh}/{known} • Sessions: {busy} • Health: {health}"
            + f" • Last msg: {last_ts} • Sort: {self._sort_mode} • Q quit  ? help"
        )
