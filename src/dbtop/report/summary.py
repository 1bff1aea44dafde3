"""Frame-log replay: provenance tallies and the Markdown run report."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dbtop.contracts.error import IOErrorEnvelope
from dbtop.metrics.constants import (
    COLLECTOR_ERR,
    COLLECTOR_ON,
    SECTION_HOTSPOTS,
    SECTION_METRICS,
    SECTION_SESSIONS,
    SECTION_WAITS,
    SECTIONS,
    SOURCE_COLLECTOR,
)
from dbtop.metrics.core import iter_frame_lines

logger = logging.getLogger(__name__)

WORKLOAD_FIELDS: tuple[tuple[str, str], ...] = (
    ("totalTransactions", "Total Transactions"),
    ("totalErrors", "Total Errors"),
    ("postWarmupTps", "Post-warmup TPS"),
    ("p95", "P95 Latency"),
)


@dataclass(frozen=True)
class SectionStats:
    collector: int = 0
    degraded: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"collector": self.collector, "degraded": self.degraded}


@dataclass(frozen=True)
class ReportStats:
    frames: int = 0
    on: int = 0
    err: int = 0
    sections: Mapping[str, SectionStats] = field(default_factory=dict)
    skipped_lines: int = 0
    first_timestamp: str | None = None
    last_timestamp: str | None = None

    def section(self, name: str) -> SectionStats:
        return self.sections.get(name, SectionStats())

    def to_dict(self) -> dict[str, Any]:
        return {
            "frames": self.frames,
            "collector_state": {COLLECTOR_ON: self.on, COLLECTOR_ERR: self.err},
            "sections": {name: self.section(name).to_dict() for name in SECTIONS},
            "skipped_lines": self.skipped_lines,
            "first_timestamp": self.first_timestamp,
            "last_timestamp": self.last_timestamp,
        }


def summarize(path: Path | str) -> ReportStats:
    """Tally frames in ``path``; undecodable or non-frame lines are skipped and counted."""

    log_path = Path(path)
    if not log_path.is_file():
        raise IOErrorEnvelope(f"Frame log not found: {log_path}")

    frames = on = err = skipped = 0
    collector = dict.fromkeys(SECTIONS, 0)
    degraded = dict.fromkeys(SECTIONS, 0)
    first_ts: str | None = None
    last_ts: str | None = None
    try:
        for _, _, frame in iter_frame_lines(log_path):
            if frame is None:
                skipped += 1
                continue
            frames += 1
            state = frame.get("collector_state")
            if state == COLLECTOR_ON:
                on += 1
            elif state == COLLECTOR_ERR:
                err += 1
            sources = frame.get("data_sources")
            if not isinstance(sources, dict):
                sources = {}
            for section in SECTIONS:
                if sources.get(section) == SOURCE_COLLECTOR:
                    collector[section] += 1
                else:
                    degraded[section] += 1
            timestamp = frame.get("timestamp")
            if isinstance(timestamp, str) and timestamp:
                first_ts = first_ts or timestamp
                last_ts = timestamp
    except OSError as exc:
        raise IOErrorEnvelope(f"Failed to read frame log {log_path}: {exc}") from exc

    if skipped:
        logger.info("Skipped %d non-frame line(s) in %s", skipped, log_path)
    return ReportStats(
        frames=frames,
        on=on,
        err=err,
        sections={
            section: SectionStats(collector=collector[section], degraded=degraded[section])
            for section in SECTIONS
        },
        skipped_lines=skipped,
        first_timestamp=first_ts,
        last_timestamp=last_ts,
    )


def load_workload_result(path: Path | str | None) -> dict[str, Any]:
    """Read the workload-driver result JSON; missing or unreadable files yield ``{}``."""

    if not path:
        return {}
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring workload result %s: %s", path, exc)
        return {}
    return payload if isinstance(payload, dict) else {}


def _workload_value(result: Mapping[str, Any], key: str) -> str:
    value = result.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "0"
    return f"{value:g}" if isinstance(value, float) else str(value)


def render_markdown(
    stats: ReportStats,
    record_file: Path | str,
    *,
    workload_result: Mapping[str, Any] | None = None,
    workload_log: str | None = None,
    monitor_log: str | None = None,
) -> str:
    lines = [
        "# dbtop Monitoring Run Report",
        "",
        "## Recording",
        f"- File: `{record_file}`",
        f"- Frames: {stats.frames}",
    ]
    if stats.first_timestamp:
        lines.append(f"- Window: {stats.first_timestamp} .. {stats.last_timestamp}")
    if stats.skipped_lines:
        lines.append(f"- Skipped lines: {stats.skipped_lines}")
    lines.append("")

    if workload_result is not None or workload_log:
        result = workload_result or {}
        lines.append("## Workload Summary")
        lines.append(f"- Log: `{workload_log or ''}`")
        for key, label in WORKLOAD_FIELDS:
            suffix = "ms" if key == "p95" else ""
            lines.append(f"- {label}: {_workload_value(result, key)}{suffix}")
        lines.append("")

    if monitor_log:
        lines.extend(["## Monitor Log", f"- Log: `{monitor_log}`", ""])

    backed = "/".join(
        str(stats.section(name).collector)
        for name in (SECTION_METRICS, SECTION_SESSIONS, SECTION_WAITS, SECTION_HOTSPOTS)
    )
    lines.extend(
        [
            "## Collector Provenance",
            f"- Collector states: ON={stats.on}, ERR={stats.err}",
            f"- Collector-backed frames (metrics/sessions/waits/sql): {backed}",
            "",
        ]
    )
    return "\n".join(lines)


__all__ = [
    "ReportStats",
    "SectionStats",
    "load_workload_result",
    "render_markdown",
    "summarize",
]
