from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import (
    AVERAGE_ACTIVE_SESSIONS,
    BUFFER_CACHE_HIT_RATIO,
    COMMITS_PER_SEC,
    CPU_USAGE_PER_SEC,
    DB_TIME_PER_SEC,
    EXECUTIONS_PER_SEC,
    FRAME_SCHEMA,
    FRAME_TYPE,
    HOST_CPU_UTIL,
    LOGICAL_READS_PER_SEC,
    PARSE_HARD_PER_SEC,
    PARSE_TOTAL_PER_SEC,
    PHYSICAL_READS_PER_SEC,
    PHYSICAL_WRITES_PER_SEC,
    READ_BYTES_PER_SEC,
    REDO_PER_SEC,
    ROLLBACKS_PER_SEC,
    WAIT_TIME_RATIO,
    WRITE_BYTES_PER_SEC,
)

logger = logging.getLogger(__name__)

_BYTES_PER_MIB = 1024.0 * 1024.0


def _number(source: Mapping[str, Any], key: str) -> float:
    """Fetch ``key`` as a finite, non-negative float (0.0 otherwise)."""
    value = source.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    number = float(value)
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def map_metrics(
    gauges: Optional[Mapping[str, Any]], rates: Optional[Mapping[str, Any]]
) -> Dict[str, float]:
    """Flatten native gauges and computed rates into the renderer's metric keys.

    Native gauges take precedence over a rate carrying the same label. Byte
    rates are reported in MiB per second.
    """
    merged: Dict[str, Any] = dict(rates or {})
    merged.update(gauges or {})

    db_time = _number(merged, DB_TIME_PER_SEC)
    cpu_time = _number(merged, CPU_USAGE_PER_SEC)
    commits = _number(merged, COMMITS_PER_SEC)
    rollbacks = _number(merged, ROLLBACKS_PER_SEC)
    return {
        "host_cpu_util": _number(merged, HOST_CPU_UTIL),
        "active_sessions": _number(merged, AVERAGE_ACTIVE_SESSIONS),
        "sql_exec_per_sec": _number(merged, EXECUTIONS_PER_SEC),
        "logical_reads_per_sec": _number(merged, LOGICAL_READS_PER_SEC),
        "physical_reads_per_sec": _number(merged, PHYSICAL_READS_PER_SEC),
        "physical_read_mb_per_sec": _number(merged, READ_BYTES_PER_SEC) / _BYTES_PER_MIB,
        "physical_writes_per_sec": _number(merged, PHYSICAL_WRITES_PER_SEC),
        "physical_write_mb_per_sec": _number(merged, WRITE_BYTES_PER_SEC) / _BYTES_PER_MIB,
        "redo_mb_per_sec": _number(merged, REDO_PER_SEC) / _BYTES_PER_MIB,
        "db_time_per_sec": db_time,
        "cpu_time_per_sec": cpu_time,
        "wait_time_per_sec": max(0.0, db_time - cpu_time),
        "wait_time_ratio": _number(merged, WAIT_TIME_RATIO),
        "commits_per_sec": commits,
        "rollbacks_per_sec": rollbacks,
        "tran_per_sec": commits + rollbacks,
        "parse_total_per_sec": _number(merged, PARSE_TOTAL_PER_SEC),
        "hard_parses_per_sec": _number(merged, PARSE_HARD_PER_SEC),
        "buffer_cache_hit": _number(merged, BUFFER_CACHE_HIT_RATIO),
    }


def parse_frame_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one frame-log line; anything that is not a frame yields ``None``."""
    text = line.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Ignored invalid frame line: %s", text[:200])
        return None
    if not isinstance(payload, dict):
        return None
    if payload.get("type") != FRAME_TYPE:
        return None
    schema = payload.get("schema")
    if schema not in (None, FRAME_SCHEMA):
        logger.debug("Skipping frame with schema=%s", schema)
        return None
    return payload


def iter_frame_lines(path: Path) -> Iterator[tuple[int, str, Optional[Dict[str, Any]]]]:
    """Yield ``(line_number, raw_line, frame_or_None)`` for every non-blank line."""
    with path.open("r", encoding="utf-8", errors="replace") as fh:
        for number, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            yield number, line, parse_frame_line(line)


__all__ = ["iter_frame_lines", "map_metrics", "parse_frame_line"]
