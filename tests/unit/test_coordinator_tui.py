# tests/unit/test_coordinator_tui.py
from datetime import UTC, datetime, timedelta

from apps.coordinator.settings import CoordinatorSettings
from apps.coordinator.tui import AgentRow, CoordinatorTUI


def make_app():
    # Use the real constructor so Textual's Reactable init runs
    app = CoordinatorTUI(settings=CoordinatorSettings(ipc_impl="inproc"))

    # Don't mutate pydantic settings. Just configure the internal knobs used by helpers.
    app._state_interval_s = 1.0  # agents publish once per second
    app._stale_factor = 2.0  # STALE after 2s
    app._ttl_factor = 3.0  # "fresh" if seen within 3s
    app._sort_mode = "last"

    # We aren't rendering a UI here
    app._table = None
    app._status = None

    # Seed rows
    app.rows = {
        "bot-1": AgentRow(agent_id="bot-1"),
        "bot-2": AgentRow(agent_id="bot-2"),
    }
    return app


def test_classify_down_and_stale_and_ok():
    app = make_app()
    r = app.rows["bot-1"]

    # DOWN: no state yet
    assert app._classify(r) == "DOWN"

    # STALE: older than stale_factor * state interval
    r.liveness = "online"
    r.last_seen_ts = datetime.now(UTC) - timedelta(seconds=3.1)
    assert app._classify(r) == "STALE"

    # OK: recent
    r.last_seen_ts = datetime.now(UTC)
    assert app._classify(r) == "OK"

    # DOWN again once the agent reports itself offline
    r.liveness = "offline"
    assert app._classify(r) == "DOWN"


def test_merge_state_creates_and_updates_rows():
    app = make_app()
    row = app.merge_state({"agent_id": "bot-3", "liveness": "online", "session": "1:10"})
    assert row is app.rows["bot-3"]
    assert row.session == "1:10" and row.updates == 1

    app.merge_state({"agent_id": "bot-3", "liveness": "reconnecting", "session": None})
    assert row.liveness == "reconnecting"
    assert row.session is None
    assert row.updates == 2

    assert app.merge_state({"liveness": "online"}) is None


def test_sorted_rows_orders_by_last_seen_desc():
    app = make_app()
    now = datetime.now(UTC)
    app.rows["bot-1"].last_seen_ts = now - timedelta(seconds=5)
    app.rows["bot-2"].last_seen_ts = now - timedelta(seconds=1)

    app._sort_mode = "last"
    names = [r.agent_id for r in app._sorted_rows()]
    assert names == ["bot-2", "bot-1"]


def test_sorted_rows_by_agent_and_liveness():
    app = make_app()
    app.rows["bot-1"].liveness = "reconnecting"
    app.rows["bot-2"].liveness = "online"

    app._sort_mode = "agent"
    assert [r.agent_id for r in app._sorted_rows()] == ["bot-1", "bot-2"]

    app._sort_mode = "liveness"
    assert [r.agent_id for r in app._sorted_rows()] == ["bot-2", "bot-1"]  # online < reconnecting


def test_status_text_counts():
    app = make_app()
    now = datetime.now(UTC)
    # ttl = ttl_factor * state interval = 3s
    app.rows["bot-1"].last_seen_ts = now - timedelta(seconds=1)  # fresh
    app.rows["bot-1"].session = "1:10"
    app.rows["bot-2"].last_seen_ts = now - timedelta(seconds=10)  # not fresh
    app._last_msg_ts = now
    app._health = {"status": "healthy"}
    s = app._status_text()
    assert "Agents: 1/2" in s
    assert "Sessions: 1" in s
    assert "Health: healthy" in s
    assert "Last msg:" in s
