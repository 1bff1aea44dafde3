from __future__ import annotations

import json
from pathlib import Path

import pytest

from dbtop.contracts.error import BadInputError, IOErrorEnvelope
from dbtop.metrics.constants import SECTION_METRICS, SECTION_SESSIONS
from dbtop.monitor import Frame
from dbtop.report import load_workload_result, render_markdown, summarize, validate_frame_log
from dbtop.report.validate import load_frame_schema


def _line(state: str = "ON", **sources: str) -> str:
    frame = Frame(
        db_type="oracle",
        instance_name="ORCL",
        collector_state=state,
        data_sources={
            "metrics": sources.get("metrics", "collector"),
            "sessions": sources.get("sessions", "collector"),
            "wait_events": sources.get("wait_events", "collector"),
            "sql_hotspots": sources.get("sql_hotspots", "collector"),
        },
        metrics={"sql_exec_per_sec": 1.0},
    )
    return frame.to_json()


def _write(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_summarize_tallies_states_and_sections(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "frames.ndjson",
        [
            _line(),
            _line(sessions="synthetic"),
            "",
            _line("ERR", metrics="synthetic", sessions="synthetic"),
            '{"type": "frame", "collector_st',
        ],
    )
    stats = summarize(path)
    assert stats.frames == 3
    assert stats.on == 2
    assert stats.err == 1
    assert stats.skipped_lines == 1
    assert stats.section(SECTION_METRICS).collector == 2
    assert stats.section(SECTION_SESSIONS).collector == 1
    assert stats.section(SECTION_SESSIONS).degraded == 2
    assert stats.first_timestamp is not None
    assert stats.to_dict()["collector_state"] == {"ON": 2, "ERR": 1}


def test_summarize_skips_foreign_records(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "frames.ndjson",
        [_line(), '{"type": "event"}', '{"type": "frame", "schema": "other.v9"}', "[1, 2]"],
    )
    stats = summarize(path)
    assert stats.frames == 1
    assert stats.skipped_lines == 3


def test_summarize_missing_file(tmp_path: Path) -> None:
    with pytest.raises(IOErrorEnvelope):
        summarize(tmp_path / "absent.ndjson")


def test_render_markdown_sections(tmp_path: Path) -> None:
    path = _write(tmp_path / "frames.ndjson", [_line(), _line("ERR", metrics="synthetic")])
    text = render_markdown(
        summarize(path),
        path,
        workload_result={"totalTransactions": 1200, "postWarmupTps": 41.5, "p95": 12.25},
        workload_log="workload.log",
        monitor_log="monitor.log",
    )
    assert text.startswith("# dbtop Monitoring Run Report")
    assert "- Frames: 2" in text
    assert "## Workload Summary" in text
    assert "- Total Transactions: 1200" in text
    assert "- Total Errors: 0" in text
    assert "- Post-warmup TPS: 41.5" in text
    assert "- P95 Latency: 12.25ms" in text
    assert "## Monitor Log" in text
    assert "- Collector states: ON=1, ERR=1" in text
    assert "(metrics/sessions/waits/sql): 1/2/2/2" in text


def test_render_markdown_without_workload(tmp_path: Path) -> None:
    path = _write(tmp_path / "frames.ndjson", [_line()])
    text = render_markdown(summarize(path), path)
    assert "## Workload Summary" not in text
    assert "## Monitor Log" not in text
    assert "## Collector Provenance" in text


def test_load_workload_result(tmp_path: Path) -> None:
    good = tmp_path / "result.json"
    good.write_text(json.dumps({"totalTransactions": 5}), encoding="utf-8")
    bad = tmp_path / "broken.json"
    bad.write_text("{not json", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[1]", encoding="utf-8")

    assert load_workload_result(good) == {"totalTransactions": 5}
    assert load_workload_result(bad) == {}
    assert load_workload_result(listing) == {}
    assert load_workload_result(tmp_path / "missing.json") == {}
    assert load_workload_result(None) == {}


def test_validate_accepts_recorded_frames(tmp_path: Path) -> None:
    path = _write(tmp_path / "frames.ndjson", [_line(), "", _line("ERR")])
    report = validate_frame_log(path)
    assert report.ok
    assert report.checked == 2
    assert report.to_dict() == {"checked": 2, "invalid": 0, "invalid_lines": []}


def test_validate_reports_schema_violations(tmp_path: Path) -> None:
    broken = json.loads(_line())
    broken["metrics"]["sql_exec_per_sec"] = -1
    del broken["sessions"]
    path = _write(tmp_path / "frames.ndjson", [_line(), json.dumps(broken), "not json"])
    report = validate_frame_log(path)
    assert not report.ok
    assert report.invalid_lines == [2, 3]
    assert "[invalid line 2]" in report.messages
    assert any("'sessions' is a required property" in msg for msg in report.messages)
    assert any(msg.startswith("[invalid line 3] not JSON") for msg in report.messages)


def test_validate_with_custom_schema(tmp_path: Path) -> None:
    schema = tmp_path / "schema.json"
    schema.write_text(json.dumps({"type": "object", "required": ["extra"]}), encoding="utf-8")
    path = _write(tmp_path / "frames.ndjson", [_line()])
    assert validate_frame_log(path, schema).invalid_lines == [1]


def test_schema_loading_errors(tmp_path: Path) -> None:
    bad = tmp_path / "schema.json"
    bad.write_text("[]", encoding="utf-8")
    with pytest.raises(BadInputError):
        load_frame_schema(bad)
    with pytest.raises(IOErrorEnvelope):
        load_frame_schema(tmp_path / "missing.json")
    assert load_frame_schema()["title"] == "dbtop frame log line"


def test_validate_missing_log(tmp_path: Path) -> None:
    with pytest.raises(IOErrorEnvelope):
        validate_frame_log(tmp_path / "absent.ndjson")
