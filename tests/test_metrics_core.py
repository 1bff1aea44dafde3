from __future__ import annotations

import json

import pytest

from dbtop.metrics import constants as mc
from dbtop.metrics.core import map_metrics, parse_frame_line


def test_every_metric_key_is_present_for_empty_input() -> None:
    metrics = map_metrics(None, None)
    assert set(metrics) == set(mc.METRIC_KEYS)
    assert all(value == 0.0 for value in metrics.values())


def test_native_gauges_override_rates() -> None:
    rates = {mc.DB_TIME_PER_SEC: 10.0, mc.CPU_USAGE_PER_SEC: 5.0}
    gauges = {mc.DB_TIME_PER_SEC: 50.0, mc.CPU_USAGE_PER_SEC: 20.0}
    metrics = map_metrics(gauges, rates)
    assert metrics["db_time_per_sec"] == 50.0
    assert metrics["cpu_time_per_sec"] == 20.0
    assert metrics["wait_time_per_sec"] == pytest.approx(30.0)


def test_wait_time_is_never_negative() -> None:
    metrics = map_metrics({mc.DB_TIME_PER_SEC: 10.0, mc.CPU_USAGE_PER_SEC: 12.0}, {})
    assert metrics["wait_time_per_sec"] == 0.0


def test_transactions_sum_commits_and_rollbacks() -> None:
    metrics = map_metrics({}, {mc.COMMITS_PER_SEC: 7.0, mc.ROLLBACKS_PER_SEC: 3.0})
    assert metrics["tran_per_sec"] == pytest.approx(10.0)


def test_byte_rates_are_reported_in_mib() -> None:
    mib = 1024.0 * 1024.0
    metrics = map_metrics(
        {},
        {mc.READ_BYTES_PER_SEC: 2 * mib, mc.WRITE_BYTES_PER_SEC: mib / 2, mc.REDO_PER_SEC: mib},
    )
    assert metrics["physical_read_mb_per_sec"] == pytest.approx(2.0)
    assert metrics["physical_write_mb_per_sec"] == pytest.approx(0.5)
    assert metrics["redo_mb_per_sec"] == pytest.approx(1.0)


def test_bad_values_read_as_zero() -> None:
    metrics = map_metrics(
        {mc.HOST_CPU_UTIL: "high", mc.AVERAGE_ACTIVE_SESSIONS: float("nan")},
        {mc.EXECUTIONS_PER_SEC: -4.0},
    )
    assert metrics["host_cpu_util"] == 0.0
    assert metrics["active_sessions"] == 0.0
    assert metrics["sql_exec_per_sec"] == 0.0


def test_parse_frame_line_accepts_frames() -> None:
    frame = {"type": "frame", "schema": mc.FRAME_SCHEMA, "collector_state": "ON"}
    assert parse_frame_line(json.dumps(frame) + "\n") == frame
    legacy = {"type": "frame", "collector_state": "ERR"}
    assert parse_frame_line(json.dumps(legacy)) == legacy


@pytest.mark.parametrize(
    "line",
    [
        "",
        "   ",
        '{"type": "frame", "collector',
        "[1, 2, 3]",
        '{"type": "summary"}',
        '{"type": "frame", "schema": "dbtop.frame.v99"}',
    ],
)
def test_parse_frame_line_rejects_non_frames(line: str) -> None:
    assert parse_frame_line(line) is None
