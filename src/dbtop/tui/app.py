"""Textual dashboard for dbtop.

The :class:`~dbtop.monitor.PollLoop` runs on a daemon thread; every completed
cycle is handed to the UI thread with ``call_from_thread`` and the widgets are
redrawn from that one immutable :class:`~dbtop.monitor.CycleResult`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static

from dbtop.metrics.buffer import render_sparkline
from dbtop.metrics.constants import DEFAULT_SPARKLINE_WIDTH
from dbtop.metrics.waits import WaitRow
from dbtop.monitor.loop import CycleResult, PollLoop

logger = logging.getLogger(__name__)

LOAD_PROFILE_ROWS: tuple[tuple[str, str], ...] = (
    ("active_sessions", "Active Sessions"),
    ("db_time_per_sec", "DB Time/s"),
    ("cpu_time_per_sec", "CPU Time/s"),
    ("wait_time_per_sec", "Wait Time/s"),
    ("host_cpu_util", "Host CPU %"),
    ("tran_per_sec", "Tran/s"),
    ("sql_exec_per_sec", "SQL Exec/s"),
    ("logical_reads_per_sec", "Logical Reads/s"),
    ("physical_reads_per_sec", "Phy Reads/s"),
    ("physical_read_mb_per_sec", "Phy Read MB/s"),
    ("physical_write_mb_per_sec", "Phy Write MB/s"),
    ("redo_mb_per_sec", "Redo MB/s"),
    ("hard_parses_per_sec", "Hard Parse/s"),
    ("buffer_cache_hit", "Buffer Hit %"),
)

SESSION_COLUMNS: tuple[tuple[str, str], ...] = (
    ("sid", "SID"),
    ("username", "User"),
    ("status", "Status"),
    ("event", "Event"),
    ("wait_class", "Class"),
    ("blocking_sid", "Blk"),
    ("sql_id", "SQL ID"),
    ("elapsed_s", "Elapsed"),
    ("program", "Program"),
)

_EMPTY = "-"


def format_load_profile(history: Mapping[str, Sequence[float]], width: int) -> str:
    """Latest value and sparkline per metric, drawn from one cycle's history."""

    lines = ["Load Profile"]
    for key, label in LOAD_PROFILE_ROWS:
        samples = history.get(key, ())
        value = samples[-1] if samples else 0.0
        lines.append(f"{label:<16} {value:>12,.2f}  {render_sparkline(samples, width)}")
    return "\n".join(lines)


def format_waits(rows: Sequence[WaitRow]) -> str:
    lines = [f"{'Top Waits':<36} {'Class':<14} {'s/s':>8} {'waits/s':>10} {'avg ms':>9}"]
    if not rows:
        lines.append("  (collecting baseline)")
    for row in rows:
        lines.append(
            f"{row.event[:36]:<36} {row.wait_class[:14]:<14} {row.wait_sec_per_sec:>8.2f}"
            f" {row.waits_per_sec:>10.1f} {row.avg_wait_ms:>9.2f}"
        )
    return "\n".join(lines)


def format_hotspots(rows: Sequence[Mapping[str, Any]], offset: int = 0) -> str:
    """Top SQL table; ``offset`` picks which statement's text is shown in full."""

    lines = [f"{'Top SQL':<16} {'Plan':>12} {'Elapsed s':>12} {'Execs':>10}"]
    if not rows:
        lines.append("  (no SQL in the last 10 minutes)")
        return "\n".join(lines)
    for row in rows:
        lines.append(
            f"{str(row.get('sql_id', '')):<16} {str(row.get('plan_hash_value', '')):>12}"
            f" {_number(row.get('elapsed_time')):>12.2f} {_number(row.get('executions')):>10.0f}"
        )
    chosen = rows[offset % len(rows)]
    lines.append("")
    lines.append(f"[{chosen.get('sql_id', '')}] {chosen.get('sql_text', _EMPTY)}")
    return "\n".join(lines)


def format_status(result: CycleResult, instance_name: str, interval: float) -> str:
    line = (
        f"{result.frame.db_type} / {instance_name}  collector={result.collector_state}"
        f"  cycle={result.cycle}  collect={result.collect_ms:.0f} ms  every {interval:g}s"
    )
    if result.degraded:
        line += f"  degraded: {', '.join(result.degraded)}"
    if result.last_error:
        line += f"\nLast error: {result.last_error}"
    return line


def session_cells(session: Mapping[str, Any]) -> tuple[str, ...]:
    cells = []
    for key, _ in SESSION_COLUMNS:
        value = session.get(key)
        if isinstance(value, float):
            cells.append(f"{value:.0f}")
        else:
            cells.append(str(value) if value not in (None, "") else _EMPTY)
    return tuple(cells)


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


class DbtopApp(App[None]):
    """Live dashboard: load profile with sparklines, waits, sessions and top SQL."""

    TITLE = "dbtop"

    CSS = """
    Screen { layout: vertical; }
    #status { padding: 0 1; background: #1f2937; color: #e5e7eb; }
    #load { padding: 0 1; }
    #waits { padding: 0 1; color: #fbbf24; }
    #sessions { height: 12; }
    #session-sql { padding: 0 1; color: #94a3b8; }
    #sql { padding: 0 1; }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("escape", "quit", "Quit", show=False),
        Binding("tab", "next_sql", "Next SQL", priority=True),
        Binding("home", "first_session", "First", show=False),
        Binding("end", "last_session", "Last", show=False),
    ]

    sql_offset: reactive[int] = reactive(0)

    def __init__(
        self,
        loop: PollLoop,
        *,
        sparkline_width: int = DEFAULT_SPARKLINE_WIDTH,
    ) -> None:
        super().__init__()
        self.loop = loop
        self.sparkline_width = sparkline_width
        self._result: CycleResult | None = None
        self._sessions: list[dict[str, Any]] = []
        self._selected_sid: str | None = None
        self._worker: threading.Thread | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static(f"Connecting to {self.loop.vendor}…", id="status")
        yield Static(format_load_profile({}, self.sparkline_width), id="load")
        yield Static(format_waits([]), id="waits")
        yield DataTable(id="sessions", cursor_type="row", zebra_stripes=True)
        yield Static("", id="session-sql")
        yield Static(format_hotspots([]), id="sql")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#sessions", DataTable)
        table.add_columns(*(label for _, label in SESSION_COLUMNS))
        table.focus()
        self.loop.on_cycle(self._from_loop_thread)
        self._worker = threading.Thread(target=self._run_loop, name="dbtop-poll", daemon=True)
        self._worker.start()

    def on_unmount(self) -> None:
        self.loop.stop()

    def _run_loop(self) -> None:
        try:
            self.loop.run()
        except Exception as exc:  # noqa: BLE001 - surfaced in the status bar
            logger.exception("Poll loop failed")
            if self.is_running:
                self.call_from_thread(self._show_failure, str(exc))

    def _from_loop_thread(self, result: CycleResult) -> None:
        if self.is_running:
            self.call_from_thread(self.apply_result, result)

    def _show_failure(self, message: str) -> None:
        self.query_one("#status", Static).update(f"Poll loop stopped: {message}")

    def apply_result(self, result: CycleResult) -> None:
        self._result = result
        self.sub_title = f"{self.loop.vendor} / {self.loop.instance_name}"
        self.query_one("#status", Static).update(
            format_status(result, self.loop.instance_name, self.loop.settings.interval_seconds)
        )
        self.query_one("#load", Static).update(
            format_load_profile(result.history, self.sparkline_width)
        )
        self.query_one("#waits", Static).update(format_waits(result.waits))
        self._refresh_sessions(result.sessions)
        self._refresh_sql()

    def _refresh_sessions(self, sessions: list[dict[str, Any]]) -> None:
        table = self.query_one("#sessions", DataTable)
        selected = self._selected_sid
        self._sessions = sessions
        table.clear()
        target_row = 0
        for idx, session in enumerate(sessions):
            table.add_row(*session_cells(session))
            if selected is not None and str(session.get("sid")) == selected:
                target_row = idx
        if sessions:
            table.move_cursor(row=target_row)
        self._show_session_sql(target_row)

    def _show_session_sql(self, row: int) -> None:
        widget = self.query_one("#session-sql", Static)
        if not 0 <= row < len(self._sessions):
            widget.update("")
            return
        session = self._sessions[row]
        self._selected_sid = str(session.get("sid"))
        widget.update(f"SID {self._selected_sid}: {session.get('sql_text', _EMPTY)}")

    def _refresh_sql(self) -> None:
        hotspots = self._result.hotspots if self._result is not None else []
        self.query_one("#sql", Static).update(format_hotspots(hotspots, self.sql_offset))

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        self._show_session_sql(event.cursor_row)

    def watch_sql_offset(self, _offset: int) -> None:
        if self.is_running:
            self._refresh_sql()

    def action_next_sql(self) -> None:
        self.sql_offset += 1

    def action_first_session(self) -> None:
        if self._sessions:
            self.query_one("#sessions", DataTable).move_cursor(row=0)

    def action_last_session(self) -> None:
        if self._sessions:
            self.query_one("#sessions", DataTable).move_cursor(row=len(self._sessions) - 1)

    async def action_quit(self) -> None:
        self.loop.stop()
        self.exit()


def run_tui(loop: PollLoop, *, sparkline_width: int = DEFAULT_SPARKLINE_WIDTH) -> None:
    """Run the dashboard until the user quits; the loop is stopped on exit."""

    app = DbtopApp(loop, sparkline_width=sparkline_width)
    try:
        app.run()
    finally:
        loop.stop()
        worker = app._worker
        if worker is not None:
            worker.join(timeout=loop.settings.interval_seconds + 5.0)


__all__ = [
    "DbtopApp",
    "LOAD_PROFILE_ROWS",
    "format_hotspots",
    "format_load_profile",
    "format_status",
    "format_waits",
    "run_tui",
    "session_cells",
]
