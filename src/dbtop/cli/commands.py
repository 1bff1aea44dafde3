"""CLI command registration and handlers for dbtop."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dbtop.collectors import (
    SnapshotAdapter,
    close_quietly,
    get_adapter_class,
    get_connection_factory,
)
from dbtop.config import (
    MONITOR_INTERVAL_SECONDS,
    TUI_INTERVAL_SECONDS,
    AppConfig,
    ConnectionConfig,
)
from dbtop.contracts.error import (
    BadInputError,
    CollectorError,
    ConnectionFailedError,
    ConnectionLostError,
    EnvelopeError,
    Exit,
    IOErrorEnvelope,
)
from dbtop.metrics.buffer import MetricsBuffer
from dbtop.metrics.constants import MIN_ELAPSED_SECONDS
from dbtop.metrics.waits import WaitDeltaTracker
from dbtop.monitor import CycleResult, FrameLog, LoopSettings, PollLoop, render_screen
from dbtop.report import load_workload_result, render_markdown, summarize, validate_frame_log


@dataclass(frozen=True)
class CLIContext:
    """Runtime hooks supplied by the top-level CLI entrypoint."""

    emit_success: Callable[..., None]
    app_config: Callable[[], AppConfig]
    logger: logging.Logger
    json_enabled: Callable[[], bool]
    guard: Callable[[Callable[[argparse.Namespace], int]], Callable[[argparse.Namespace], int]]


def register_subcommands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ctx: CLIContext,
) -> Dict[str, Callable[[argparse.Namespace], int]]:
    """Define CLI subcommands and return their handlers."""

    handlers: Dict[str, Callable[[argparse.Namespace], int]] = {}

    def _register(
        name: str,
        help_text: Optional[str],
        configure: Callable[[argparse.ArgumentParser], Callable[[argparse.Namespace], int]],
    ) -> None:
        parser = subparsers.add_parser(name, help=help_text)
        handler = configure(parser)
        handlers[name] = ctx.guard(handler)

    _register(
        "health",
        "Connect, ping the database and show instance details.",
        lambda parser: _configure_health(parser, ctx),
    )
    _register(
        "metrics",
        "Dump raw cumulative counters and gauges (or time model) once.",
        lambda parser: _configure_metrics(parser, ctx),
    )
    _register(
        "sessions",
        "List active user sessions once.",
        lambda parser: _configure_sessions(parser, ctx),
    )
    _register(
        "waits",
        "List wait events (cumulative, or ranked over a short sample).",
        lambda parser: _configure_waits(parser, ctx),
    )
    _register(
        "sql",
        "List top SQL by elapsed time once.",
        lambda parser: _configure_sql(parser, ctx),
    )
    _register(
        "monitor",
        "Run the headless poll loop, printing a text screen and recording frames.",
        lambda parser: _configure_monitor(parser, ctx),
    )
    _register(
        "tui",
        "Launch the live Textual dashboard.",
        lambda parser: _configure_tui(parser, ctx),
    )
    _register(
        "report",
        "Summarize a recorded frame log as a Markdown run report.",
        lambda parser: _configure_report(parser, ctx),
    )
    _register(
        "validate-frames",
        "Validate a frame log against the bundled JSON Schema.",
        lambda parser: _configure_validate_frames(parser, ctx),
    )

    return handlers


# --------------------------------------------------------------------
# Connection plumbing shared by the database commands
# --------------------------------------------------------------------


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("connection")
    group.add_argument(
        "--dbms-type",
        default=None,
        help="Database engine: oracle or tibero (default: config or oracle)",
    )
    group.add_argument("--host", default=None, help="Database host")
    group.add_argument("--port", type=int, default=None, help="Listener port (engine default)")
    group.add_argument("--service-name", default=None, help="Service name / database name")
    group.add_argument("--user", default=None, help="Monitoring user")
    group.add_argument(
        "--password",
        default=None,
        help="Password (prefer DBTOP_PASSWORD so it stays out of the process list)",
    )


def _connection_settings(args: argparse.Namespace, cfg: AppConfig) -> ConnectionConfig:
    overrides = {
        name: getattr(args, name)
        for name in ("dbms_type", "host", "port", "service_name", "user", "password")
        if getattr(args, name, None) is not None
    }
    settings = replace(cfg.connection, **overrides)
    settings.validate()
    settings.require_target()
    return settings


@contextmanager
def _open_adapter(settings: ConnectionConfig) -> Iterator[SnapshotAdapter]:
    """One-shot connection for the dump commands; closed on exit."""

    adapter_cls = get_adapter_class(settings.dbms_type)
    factory = get_connection_factory(settings)
    try:
        connection = factory()
    except EnvelopeError:
        raise
    except Exception as exc:
        raise ConnectionFailedError(
            f"Could not connect to {settings.dbms_type}: {exc}",
            hint="Check host, port, service name and credentials",
        ) from exc
    try:
        yield adapter_cls(connection)
    finally:
        close_quietly(connection)


def _fetch(fetch: Callable[[], Any]) -> Any:
    try:
        return fetch()
    except ConnectionLostError as exc:
        raise ConnectionFailedError(f"Connection lost during {exc.section}: {exc.detail}") from exc
    except CollectorError as exc:
        raise IOErrorEnvelope(f"Query failed: {exc}") from exc


def _format_rows(rows: List[Dict[str, Any]], columns: List[str]) -> str:
    if not rows:
        return "(no rows)"
    widths = {
        col: max(len(col), *(len(str(row.get(col, ""))) for row in rows)) for col in columns
    }
    header = "  ".join(col.ljust(widths[col]) for col in columns)
    body = [
        "  ".join(str(row.get(col, "")).ljust(widths[col]) for col in columns) for row in rows
    ]
    return "\n".join([header, *body])


# --------------------------------------------------------------------
# One-shot commands
# --------------------------------------------------------------------


def _configure_health(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    _add_connection_args(parser)

    def handler(args: argparse.Namespace) -> int:
        settings = _connection_settings(args, ctx.app_config())
        with _open_adapter(settings) as adapter:
            _fetch(adapter.ping)
            try:
                info = adapter.fetch_instance_info()
            except CollectorError as exc:
                ctx.logger.warning("Instance lookup failed: %s", exc)
                info = {}
        name = info.get("instance_name", "unknown")
        ctx.emit_success(
            "health",
            text=f"OK {adapter.vendor.value} instance={name} version={info.get('version', '-')}",
            data={"vendor": adapter.vendor.value, "instance": info},
        )
        return int(Exit.OK)

    return handler


def _configure_metrics(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    _add_connection_args(parser)

    def handler(args: argparse.Namespace) -> int:
        settings = _connection_settings(args, ctx.app_config())
        with _open_adapter(settings) as adapter:
            counters = _fetch(adapter.fetch_counters)
            gauges = _fetch(adapter.fetch_gauges) if adapter.has_native_gauges else {}
            time_model = {} if adapter.has_native_gauges else _fetch(adapter.fetch_time_model)
        lines = ["Counters:"]
        lines.extend(f"  {key} = {value:.0f}" for key, value in sorted(counters.items()))
        if gauges:
            lines.append("Gauges:")
            lines.extend(f"  {key} = {value:.2f}" for key, value in sorted(gauges.items()))
        if time_model:
            lines.append("Time model (us):")
            lines.extend(f"  {key} = {value:.0f}" for key, value in sorted(time_model.items()))
        ctx.emit_success(
            "metrics",
            text="\n".join(lines),
            data={"counters": counters, "gauges": gauges, "time_model": time_model},
        )
        return int(Exit.OK)

    return handler


def _configure_sessions(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    _add_connection_args(parser)

    def handler(args: argparse.Namespace) -> int:
        settings = _connection_settings(args, ctx.app_config())
        with _open_adapter(settings) as adapter:
            sessions = _fetch(adapter.fetch_sessions)
        text = _format_rows(
            sessions, ["sid", "username", "status", "event", "sql_id", "elapsed_s", "program"]
        )
        ctx.emit_success("sessions", text=text, data={"sessions": sessions})
        return int(Exit.OK)

    return handler


def _configure_waits(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    _add_connection_args(parser)
    parser.add_argument(
        "--sample-seconds",
        type=float,
        default=0.0,
        help="Rank waits by their rate over this many seconds (0 lists cumulative totals)",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=None,
        help="Rows to show (default: engine dashboard size)",
    )

    def handler(args: argparse.Namespace) -> int:
        if args.sample_seconds and args.sample_seconds < MIN_ELAPSED_SECONDS:
            raise BadInputError(f"--sample-seconds must be 0 or >= {MIN_ELAPSED_SECONDS}")
        if args.top is not None and args.top < 1:
            raise BadInputError("--top must be >= 1")
        settings = _connection_settings(args, ctx.app_config())
        with _open_adapter(settings) as adapter:
            top = args.top or ctx.app_config().monitor.top_waits or adapter.top_waits
            if args.sample_seconds:
                tracker = WaitDeltaTracker(top_n=top)
                tracker.compute_top_waits(_fetch(adapter.fetch_wait_totals))
                time.sleep(args.sample_seconds)
                rows = [
                    row.to_dict()
                    for row in tracker.compute_top_waits(_fetch(adapter.fetch_wait_totals))
                ]
                columns = ["event", "wait_class", "wait_sec_per_sec", "waits_per_sec", "avg_wait_ms"]
            else:
                totals = sorted(
                    _fetch(adapter.fetch_wait_totals), key=lambda w: (-w.time_us, w.event)
                )
                rows = [
                    {
                        "event": w.event,
                        "wait_class": w.wait_class,
                        "time_us": w.time_us,
                        "total_waits": w.total_waits,
                    }
                    for w in totals[:top]
                ]
                columns = ["event", "wait_class", "time_us", "total_waits"]
        ctx.emit_success("waits", text=_format_rows(rows, columns), data={"waits": rows})
        return int(Exit.OK)

    return handler


def _configure_sql(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    _add_connection_args(parser)

    def handler(args: argparse.Namespace) -> int:
        settings = _connection_settings(args, ctx.app_config())
        with _open_adapter(settings) as adapter:
            hotspots = _fetch(adapter.fetch_hotspots)
        text = _format_rows(
            hotspots, ["sql_id", "plan_hash_value", "elapsed_time", "executions", "sql_text"]
        )
        ctx.emit_success("sql", text=text, data={"sql_hotspots": hotspots})
        return int(Exit.OK)

    return handler


# --------------------------------------------------------------------
# Live loop commands
# --------------------------------------------------------------------


def _add_loop_args(parser: argparse.ArgumentParser, default_interval: float) -> None:
    parser.add_argument(
        "--record-file",
        default=None,
        help="Append one JSON frame per cycle to this file",
    )
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help=f"Seconds between cycles (default: config or {default_interval:g})",
    )
    parser.add_argument(
        "--top-waits",
        type=int,
        default=None,
        help="Wait events kept per cycle (default: engine dashboard size)",
    )


def _build_loop(
    args: argparse.Namespace,
    cfg: AppConfig,
    default_interval: float,
) -> tuple[PollLoop, Optional[FrameLog]]:
    settings = _connection_settings(args, cfg)
    interval = args.interval_seconds or cfg.monitor.interval_seconds or default_interval
    if interval <= 0:
        raise BadInputError("--interval-seconds must be > 0")
    top_waits = args.top_waits or cfg.monitor.top_waits
    if top_waits is not None and top_waits < 1:
        raise BadInputError("--top-waits must be >= 1")
    record_file = args.record_file or cfg.recording.record_file
    writer = FrameLog(record_file).open() if record_file else None
    loop = PollLoop(
        get_connection_factory(settings),
        get_adapter_class(settings.dbms_type),
        LoopSettings(interval_seconds=interval, top_waits=top_waits),
        writer=writer,
        buffer=MetricsBuffer(cfg.monitor.history_capacity),
    )
    return loop, writer


def screen_for(result: CycleResult) -> str:
    return render_screen(
        result.frame.timestamp,
        result.metrics,
        result.sessions,
        [row.to_dict() for row in result.waits],
        result.hotspots,
        collector_state=result.collector_state,
        last_error=result.last_error,
    )


def _configure_monitor(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    _add_connection_args(parser)
    _add_loop_args(parser, MONITOR_INTERVAL_SECONDS)
    parser.add_argument(
        "--capture-file",
        default=None,
        help="Overwrite this file with the latest text screen every cycle",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Stop after this many cycles (default: run until interrupted)",
    )

    def handler(args: argparse.Namespace) -> int:
        if args.max_cycles is not None and args.max_cycles < 1:
            raise BadInputError("--max-cycles must be >= 1")
        cfg = ctx.app_config()
        loop, writer = _build_loop(args, cfg, MONITOR_INTERVAL_SECONDS)
        capture = args.capture_file or cfg.recording.capture_file
        capture_path = Path(capture).expanduser() if capture else None
        as_json = ctx.json_enabled()

        def show(result: CycleResult) -> None:
            screen = screen_for(result)
            if as_json:
                print(result.frame.to_json(), flush=True)
            else:
                print(screen + "\n", flush=True)
            if capture_path is not None:
                try:
                    capture_path.write_text(screen + "\n", encoding="utf-8")
                except OSError as exc:
                    ctx.logger.warning("Capture file %s not updated: %s", capture_path, exc)

        loop.on_cycle(show)
        cycles = 0
        try:
            loop.connect()
            cycles = loop.run(max_cycles=args.max_cycles)
        except KeyboardInterrupt:
            loop.stop()
            cycles = loop.cycles
            ctx.logger.info("Interrupted; stopping monitor")
        finally:
            loop.close()
            if writer is not None:
                writer.close()

        data: Dict[str, Any] = {"cycles": cycles, "instance_name": loop.instance_name}
        if writer is not None:
            data["record_file"] = str(writer.path)
            data["frames_written"] = writer.frames_written
        if as_json:
            ctx.emit_success("monitor", data=data)
        else:
            ctx.emit_success("monitor", text=f"Monitor stopped after {cycles} cycle(s)")
        return int(Exit.OK)

    return handler


def _configure_tui(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    _add_connection_args(parser)
    _add_loop_args(parser, TUI_INTERVAL_SECONDS)

    def handler(args: argparse.Namespace) -> int:
        from dbtop.tui.app import run_tui

        cfg = ctx.app_config()
        loop, writer = _build_loop(args, cfg, TUI_INTERVAL_SECONDS)
        try:
            loop.connect()
            run_tui(loop, sparkline_width=cfg.monitor.sparkline_width)
        finally:
            loop.stop()
            loop.close()
            if writer is not None:
                writer.close()
        return int(Exit.OK)

    return handler


# --------------------------------------------------------------------
# Frame-log tooling
# --------------------------------------------------------------------


def _configure_report(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    parser.add_argument(
        "--record-file",
        default=None,
        help="Frame log to summarize (default: [recording].record_file)",
    )
    parser.add_argument("--output", default=None, help="Write the Markdown report to this file")
    parser.add_argument(
        "--workload-result",
        default=None,
        help="Optional workload-driver result JSON (totalTransactions, p95, ...)",
    )
    parser.add_argument("--workload-log", default=None, help="Workload-driver log path to cite")
    parser.add_argument("--monitor-log", default=None, help="Monitor log path to cite")

    def handler(args: argparse.Namespace) -> int:
        record_file = args.record_file or ctx.app_config().recording.record_file
        if not record_file:
            raise BadInputError(
                "No frame log given", hint="Pass --record-file or set [recording].record_file"
            )
        stats = summarize(record_file)
        workload = load_workload_result(args.workload_result) if args.workload_result else None
        markdown = render_markdown(
            stats,
            record_file,
            workload_result=workload,
            workload_log=args.workload_log,
            monitor_log=args.monitor_log,
        )
        data: Dict[str, Any] = {"report": stats.to_dict()}
        if args.output:
            out_path = Path(args.output).expanduser()
            try:
                out_path.parent.mkdir(parents=True, exist_ok=True)
                out_path.write_text(markdown, encoding="utf-8")
            except OSError as exc:
                raise IOErrorEnvelope(f"Cannot write report {out_path}: {exc}") from exc
            ctx.logger.info("Wrote report to %s", out_path)
            data["output"] = str(out_path)

        if ctx.json_enabled():
            ctx.emit_success("report", data=data)
        else:
            ctx.emit_success("report", text=markdown, data=data)
        return int(Exit.OK)

    return handler


def _configure_validate_frames(
    parser: argparse.ArgumentParser, ctx: CLIContext
) -> Callable[[argparse.Namespace], int]:
    parser.add_argument("ndjson", type=Path, help="Path to a frame log (NDJSON)")
    parser.add_argument(
        "--schema",
        type=Path,
        default=None,
        help="Schema JSON path (default: bundled frame schema)",
    )

    def handler(args: argparse.Namespace) -> int:
        if not args.ndjson.is_file():
            raise IOErrorEnvelope(f"Frame log not found: {args.ndjson}")
        report = validate_frame_log(args.ndjson, args.schema)
        for message in report.messages:
            print(message, file=sys.stderr)
        if not report.ok:
            raise BadInputError(
                f"{len(report.invalid_lines)} invalid line(s) of {report.checked} in {args.ndjson}"
            )
        ctx.emit_success(
            "validate-frames",
            text=f"Validation finished: all {report.checked} line(s) valid",
            data={"validation": report.to_dict()},
        )
        return int(Exit.OK)

    return handler


__all__ = ["CLIContext", "register_subcommands", "screen_for"]
