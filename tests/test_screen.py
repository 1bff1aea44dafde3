from __future__ import annotations

from dbtop.monitor import render_screen


def test_render_screen_layout() -> None:
    metrics = {
        "active_sessions": 2.5,
        "db_time_per_sec": 4.0,
        "cpu_time_per_sec": 1.0,
        "wait_time_per_sec": 3.0,
        "sql_exec_per_sec": 150.0,
        "redo_mb_per_sec": 0.25,
    }
    waits = [
        {"event": f"event {idx}", "wait_class": "User I/O", "wait_sec_per_sec": idx / 10}
        for idx in range(5)
    ]
    hotspots = [{"sql_id": "7h35uxf5uhmm1", "plan_hash_value": "1388734953"}]
    text = render_screen(
        "2024-05-01T12:00:00.000Z",
        metrics,
        [{"sid": "1"}, {"sid": "2"}],
        waits,
        hotspots,
        collector_state="ON",
    )
    lines = text.splitlines()
    assert lines[0] == "dbtop | 2024-05-01T12:00:00.000Z | collector=ON"
    assert lines[1] == "Active Sessions: 2.50  DB Time/s: 4.00"
    assert lines[2] == "CPU Time/s: 1.00 (25%)  Wait Time/s: 3.00 (75%)"
    assert "SQL Exec/s: 150.00" in lines[3]
    assert "Redo MB/s: 0.25" in text
    assert sum(1 for line in lines if line.startswith("- event")) == 3
    assert "- 7h35uxf5uhmm1 phv=1388734953" in lines
    assert lines[-1] == "Sessions: 2"


def test_render_screen_idle_and_error() -> None:
    text = render_screen(
        "t", {}, [], [], [], collector_state="ERR", last_error="connection lost: ORA-03113"
    )
    assert "CPU Time/s: 0.00 (-)  Wait Time/s: 0.00 (-)" in text
    assert text.splitlines()[-1] == "Last error: connection lost: ORA-03113"
    assert "collector=ERR" in text
