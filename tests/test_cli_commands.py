from __future__ import annotations

import contextlib
import io
import json
import os
from pathlib import Path
from typing import Any

import pytest

from dbtop.cli import app as cli_app
from dbtop.cli import commands
from dbtop.metrics.waits import WaitTotal
from dbtop.monitor import Frame
from tests.util.fakes import ScriptedDb, make_adapter

TARGET = ["--host", "db", "--service-name", "ORCLPDB1", "--user", "dbtop", "--password", "pw"]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("DBTOP_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def scripted_db(monkeypatch: pytest.MonkeyPatch) -> ScriptedDb:
    db = ScriptedDb()
    monkeypatch.setattr(commands, "get_connection_factory", lambda _settings: db.connect)
    monkeypatch.setattr(commands, "get_adapter_class", lambda _vendor: make_adapter(db))
    return db


def run_cli(argv: list[str]) -> tuple[int, str, str]:
    stdout = io.StringIO()
    stderr = io.StringIO()
    with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
        try:
            code = cli_app.main(argv)
        except SystemExit as exc:  # guard_cli exits with the envelope code
            code = exc.code if isinstance(exc.code, int) else 1
        finally:
            cli_app.OUTPUT_JSON = False
    return code, stdout.getvalue().strip(), stderr.getvalue().strip()


def parse_error(stderr: str) -> dict[str, Any]:
    if not stderr.strip():
        return {}
    return json.loads(stderr.splitlines()[-1])


def _frame_line(state: str = "ON") -> str:
    return Frame(
        db_type="oracle",
        instance_name="ORCL",
        collector_state=state,
        data_sources={
            "metrics": "collector",
            "sessions": "collector",
            "wait_events": "collector",
            "sql_hotspots": "synthetic",
        },
    ).to_json()


def test_register_subcommands_names() -> None:
    _, handlers = cli_app.build_parser()
    assert set(handlers) == {
        "health",
        "metrics",
        "sessions",
        "waits",
        "sql",
        "monitor",
        "tui",
        "report",
        "validate-frames",
    }


def test_report_prints_markdown(tmp_path: Path) -> None:
    record = tmp_path / "frames.ndjson"
    record.write_text(_frame_line() + "\n" + _frame_line("ERR") + "\n", encoding="utf-8")
    code, out, _ = run_cli(["report", "--record-file", str(record)])
    assert code == 0
    assert out.startswith("# dbtop Monitoring Run Report")
    assert "ON=1, ERR=1" in out


def test_report_json_with_output(tmp_path: Path) -> None:
    record = tmp_path / "frames.ndjson"
    record.write_text(_frame_line() + "\n", encoding="utf-8")
    output = tmp_path / "out" / "report.md"
    code, out, _ = run_cli(
        ["--json", "report", "--record-file", str(record), "--output", str(output)]
    )
    assert code == 0
    payload = json.loads(out.splitlines()[-1])
    assert payload["ok"] is True
    assert payload["command"] == "report"
    assert payload["report"]["frames"] == 1
    assert payload["report"]["sections"]["sql_hotspots"] == {"collector": 0, "degraded": 1}
    assert payload["output"] == str(output)
    assert output.read_text(encoding="utf-8").startswith("# dbtop Monitoring Run Report")


def test_report_requires_record_file() -> None:
    code, _, err = run_cli(["report"])
    assert code == 2
    assert parse_error(err)["error"] == "BadInput"


def test_report_missing_record_file(tmp_path: Path) -> None:
    code, _, err = run_cli(["report", "--record-file", str(tmp_path / "absent.ndjson")])
    assert code == 5
    assert parse_error(err)["error"] == "IO"


def test_validate_frames_exit_codes(tmp_path: Path) -> None:
    good = tmp_path / "good.ndjson"
    good.write_text(_frame_line() + "\n", encoding="utf-8")
    code, out, _ = run_cli(["validate-frames", str(good)])
    assert code == 0
    assert out == "Validation finished: all 1 line(s) valid"

    bad = tmp_path / "bad.ndjson"
    bad.write_text(_frame_line() + "\n{\"type\": \"frame\"}\n", encoding="utf-8")
    code, _, err = run_cli(["validate-frames", str(bad)])
    assert code == 2
    assert "[invalid line 2]" in err
    envelope = parse_error(err)
    assert envelope["error"] == "BadInput"
    assert envelope["detail"].startswith("1 invalid line(s) of 2")

    code, _, err = run_cli(["validate-frames", str(tmp_path / "absent.ndjson")])
    assert code == 5


def test_bad_config_file_exits_bad_input(tmp_path: Path) -> None:
    cfg = tmp_path / "dbtop.toml"
    cfg.write_text("[monitor]\nhistory_capacity = 0\n", encoding="utf-8")
    code, _, err = run_cli(["--config", str(cfg), "report"])
    assert code == 2
    assert "history_capacity" in parse_error(err)["detail"]


def test_health_requires_connection_settings() -> None:
    code, _, err = run_cli(["health", "--host", "db"])
    envelope = parse_error(err)
    assert code == 2
    assert envelope["detail"].startswith("Missing connection settings")
    assert "--service-name" in envelope["hint"]


def test_unsupported_engine_is_policy_error() -> None:
    code, _, err = run_cli(["health", "--dbms-type", "postgres", *TARGET])
    assert code == 4
    assert parse_error(err)["error"] == "Policy"


def test_health_reports_instance(scripted_db: ScriptedDb) -> None:
    code, out, _ = run_cli(["health", *TARGET])
    assert code == 0
    assert out == "OK oracle instance=ORCL version=-"


def test_connect_failure_exits_connection(scripted_db: ScriptedDb) -> None:
    scripted_db.refuse_connect = True
    code, _, err = run_cli(["sessions", *TARGET])
    assert code == 6
    assert "ORA-12541" in parse_error(err)["detail"]


def test_sessions_and_sql_dumps(scripted_db: ScriptedDb) -> None:
    code, out, _ = run_cli(["sessions", *TARGET])
    assert code == 0
    assert out.splitlines()[0].split()[:3] == ["sid", "username", "status"]
    assert "APP" in out

    code, out, _ = run_cli(["--json", "sql", *TARGET])
    assert code == 0
    assert json.loads(out)["sql_hotspots"][0]["sql_id"] == "abc"


def test_waits_lists_cumulative_totals(scripted_db: ScriptedDb) -> None:
    scripted_db.waits = [
        WaitTotal("db file sequential read", "User I/O", 1_000.0, 5.0),
        WaitTotal("log file sync", "Commit", 9_000.0, 3.0),
    ]
    code, out, _ = run_cli(["--json", "waits", "--top", "1", *TARGET])
    assert code == 0
    rows = json.loads(out)["waits"]
    assert [row["event"] for row in rows] == ["log file sync"]


def test_waits_rejects_short_sample() -> None:
    code, _, err = run_cli(["waits", "--sample-seconds", "0.2", *TARGET])
    assert code == 2
    assert "--sample-seconds" in parse_error(err)["detail"]


def test_metrics_dump(scripted_db: ScriptedDb) -> None:
    code, out, _ = run_cli(["metrics", *TARGET])
    assert code == 0
    assert out.splitlines()[0] == "Counters:"
    assert "Gauges:" in out


def test_monitor_records_and_captures(scripted_db: ScriptedDb, tmp_path: Path) -> None:
    record = tmp_path / "frames.ndjson"
    capture = tmp_path / "screen.txt"
    code, out, _ = run_cli(
        [
            "monitor",
            *TARGET,
            "--max-cycles",
            "2",
            "--interval-seconds",
            "0.01",
            "--record-file",
            str(record),
            "--capture-file",
            str(capture),
        ]
    )
    assert code == 0
    assert out.count("dbtop | ") == 2
    assert out.splitlines()[-1] == "Monitor stopped after 2 cycle(s)"
    assert len(record.read_text(encoding="utf-8").splitlines()) == 2
    assert capture.read_text(encoding="utf-8").startswith("dbtop | ")


def test_monitor_json_stream(scripted_db: ScriptedDb) -> None:
    code, out, _ = run_cli(
        ["--json", "monitor", *TARGET, "--max-cycles", "2", "--interval-seconds", "0.01"]
    )
    assert code == 0
    lines = [json.loads(line) for line in out.splitlines()]
    assert [line.get("type") for line in lines[:2]] == ["frame", "frame"]
    assert lines[-1]["command"] == "monitor"
    assert lines[-1]["cycles"] == 2
    assert lines[-1]["instance_name"] == "ORCL"


def test_monitor_rejects_zero_cycles() -> None:
    code, _, _ = run_cli(["monitor", *TARGET, "--max-cycles", "0"])
    assert code == 2
