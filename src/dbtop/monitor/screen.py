"""Plain-text screen printed by the headless ``monitor`` command."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_TOP_ROWS = 3


def _num(metrics: Mapping[str, Any], key: str) -> float:
    value = metrics.get(key)
    return float(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else 0.0


def _share(part: float, whole: float) -> str:
    return f"{part / whole * 100:.0f}%" if whole > 0.001 else "-"


def render_screen(
    timestamp: str,
    metrics: Mapping[str, Any],
    sessions: Sequence[Mapping[str, Any]],
    waits: Sequence[Mapping[str, Any]],
    hotspots: Sequence[Mapping[str, Any]],
    *,
    collector_state: str = "ON",
    last_error: str | None = None,
) -> str:
    db_time = _num(metrics, "db_time_per_sec")
    cpu_time = _num(metrics, "cpu_time_per_sec")
    wait_time = _num(metrics, "wait_time_per_sec")

    lines = [
        f"dbtop | {timestamp} | collector={collector_state}",
        f"Active Sessions: {_num(metrics, 'active_sessions'):.2f}  DB Time/s: {db_time:.2f}",
        f"CPU Time/s: {cpu_time:.2f} ({_share(cpu_time, db_time)})"
        f"  Wait Time/s: {wait_time:.2f} ({_share(wait_time, db_time)})",
        f"Tran/s: {_num(metrics, 'tran_per_sec'):.2f}"
        f"  SQL Exec/s: {_num(metrics, 'sql_exec_per_sec'):.2f}"
        f"  Parse Total/s: {_num(metrics, 'parse_total_per_sec'):.2f}"
        f"  Hard Parse/s: {_num(metrics, 'hard_parses_per_sec'):.2f}"
        f"  Logical Reads/s: {_num(metrics, 'logical_reads_per_sec'):.2f}",
        f"Phy Reads/s: {_num(metrics, 'physical_reads_per_sec'):.2f}"
        f"  Phy Read MB/s: {_num(metrics, 'physical_read_mb_per_sec'):.2f}"
        f"  Phy Write MB/s: {_num(metrics, 'physical_write_mb_per_sec'):.2f}",
        f"Redo MB/s: {_num(metrics, 'redo_mb_per_sec'):.2f}",
        "Top Waits:",
    ]
    for row in waits[:_TOP_ROWS]:
        lines.append(
            f"- {row.get('event', '')} ({row.get('wait_class', '')})"
            f" {_num(row, 'wait_sec_per_sec'):.2f}s/s"
        )
    lines.append("Top SQL:")
    for row in hotspots[:_TOP_ROWS]:
        lines.append(f"- {row.get('sql_id', '')} phv={row.get('plan_hash_value', '')}")
    lines.append(f"Sessions: {len(sessions)}")
    if last_error:
        lines.append(f"Last error: {last_error}")
    return "\n".join(lines)


__all__ = ["render_screen"]
