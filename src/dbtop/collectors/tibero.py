"""Tibero snapshot adapter.

Tibero exposes no ``v$sysmetric`` equivalent, so the adapter hands the
time model to the Delta Engine, which derives active sessions and DB/CPU
time per second from it. Wait times arrive in centiseconds and block
counters in blocks; both are normalised here.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from dbtop.metrics import constants as mc
from dbtop.metrics.waits import WaitTotal

from .base import (
    QUERY_HOTSPOTS,
    QUERY_SESSIONS,
    QUERY_SYSSTAT,
    QUERY_TIME_MODEL,
    QUERY_WAITS,
    DbmsType,
    SnapshotAdapter,
    default_str,
    hotspot_row,
    name_value_map,
    sql_in_list,
    to_float,
    to_str,
    trim_sql,
)

logger = logging.getLogger(__name__)

PAGE_SIZE_BYTES = 8192.0
MICROS_PER_CENTISECOND = 10_000.0
_STAT_CLASS_PREFIX = "STAT_CLASS_"

SYSSTAT_NAMES: dict[str, str] = {
    "logical reads": mc.LOGICAL_READS,
    "physical reads": mc.PHYSICAL_READS,
    "redo log size": mc.REDO_BYTES,
    "dbwr multi block writes - block count": mc.PHYSICAL_WRITES,
    "the number of user commits performed": mc.COMMITS,
    "user rollbacks": mc.ROLLBACKS,
    "parse count (total)": mc.PARSE_TOTAL,
    "parse count (hard)": mc.PARSE_HARD,
    "execute count": mc.EXECUTE_COUNT,
}

TIME_MODEL_NAMES: dict[str, str] = {
    "DB Time": mc.DB_TIME_US,
    "DB CPU": mc.DB_CPU_US,
}

SYSSTAT_SQL = (
    f"SELECT name, value FROM v$sysstat WHERE name IN ({sql_in_list(list(SYSSTAT_NAMES))})"
)

TIME_MODEL_SQL = (
    "SELECT stat_name, value FROM v$sys_time_model"
    f" WHERE stat_name IN ({sql_in_list(list(TIME_MODEL_NAMES))})"
)

WAITS_SQL = (
    'SELECT class, name, "DESC", time_waited, total_waits'
    " FROM v$system_event"
    " WHERE class <> 'STAT_CLASS_IDLE' AND total_waits > 0"
)

MY_SID_SQL = "SELECT sid FROM v$mystat WHERE ROWNUM = 1"

SESSIONS_SQL = (
    "SELECT * FROM ("
    " SELECT s.sid, s.serial#, s.username, s.status,"
    "  CASE WHEN s.wait_event = -1 THEN 'On CPU'"
    '   ELSE NVL((SELECT e."DESC" FROM v$event_name e'
    "    WHERE e.event# = s.wait_event AND ROWNUM = 1), TO_CHAR(s.wait_event)) END AS wait_desc,"
    "  CASE WHEN s.wait_event = -1 THEN 'CPU'"
    "   ELSE NVL((SELECT e.class FROM v$event_name e"
    "    WHERE e.event# = s.wait_event AND ROWNUM = 1), '') END AS wait_class,"
    "  s.sql_id, s.prev_sql_id, s.sql_et,"
    "  s.machine, s.prog_name,"
    "  (SELECT REPLACE(SUBSTR(q.sql_text, 1, 120), CHR(10), ' ')"
    "   FROM v$sql q WHERE q.sql_id = COALESCE(s.sql_id, s.prev_sql_id)"
    "   AND ROWNUM = 1) AS sql_text"
    " FROM v$session s"
    " WHERE s.type = 'WTHR' AND s.username IS NOT NULL AND s.sid <> ?"
    " ORDER BY s.sql_et DESC, s.wait_time DESC"
    ") WHERE ROWNUM <= 30"
)

HOTSPOTS_SQL = (
    "SELECT * FROM ("
    " SELECT sql_id, plan_hash_value, elapsed_time, cpu_time, executions,"
    "  buffer_gets, disk_reads, rows_processed, sql_text"
    " FROM v$sql"
    " WHERE executions > 0 AND sql_id IS NOT NULL"
    " AND sql_text NOT LIKE '%v$%' AND sql_text NOT LIKE '%V$%'"
    " ORDER BY elapsed_time DESC"
    ") WHERE ROWNUM <= 15"
)


def normalize_wait_class(raw: str | None) -> str:
    """``STAT_CLASS_USER_IO`` -> ``User I/O``; ``STAT_CLASS_CONCURRENCY`` -> ``Concurrency``."""
    if raw is None:
        return "Other"
    if not raw.startswith(_STAT_CLASS_PREFIX):
        return raw
    suffix = raw[len(_STAT_CLASS_PREFIX) :]
    if not suffix:
        return "Other"
    if suffix == "USER_IO":
        return "User I/O"
    if suffix == "SYSTEM_IO":
        return "System I/O"
    return suffix[:1].upper() + suffix[1:].lower()


def normalize_session_status(raw: Any) -> str:
    status = to_str(raw)
    return "ACTIVE" if status == "RUNNING" else status


class TiberoAdapter(SnapshotAdapter):
    vendor: ClassVar[DbmsType] = DbmsType.TIBERO
    has_native_gauges: ClassVar[bool] = False
    top_waits: ClassVar[int] = 13

    def __init__(self, connection: Any) -> None:
        super().__init__(connection)
        self._my_sid: int | None = None

    def fetch_counters(self) -> dict[str, float]:
        counters = name_value_map(self._query(QUERY_SYSSTAT, SYSSTAT_SQL), SYSSTAT_NAMES)
        # Tibero counts blocks; byte rates use the default page size.
        counters[mc.PHYSICAL_READ_BYTES] = counters.get(mc.PHYSICAL_READS, 0.0) * PAGE_SIZE_BYTES
        counters[mc.PHYSICAL_WRITE_BYTES] = (
            counters.get(mc.PHYSICAL_WRITES, 0.0) * PAGE_SIZE_BYTES
        )
        return counters

    def fetch_time_model(self) -> dict[str, float]:
        return name_value_map(self._query(QUERY_TIME_MODEL, TIME_MODEL_SQL), TIME_MODEL_NAMES)

    def fetch_wait_totals(self) -> list[WaitTotal]:
        totals = []
        for wait_class, name, desc, time_waited, total_waits in self._query(
            QUERY_WAITS, WAITS_SQL
        ):
            totals.append(
                WaitTotal(
                    event=default_str(desc, default_str(name, "unknown")),
                    wait_class=normalize_wait_class(default_str(wait_class, "Other")),
                    time_us=to_float(time_waited) * MICROS_PER_CENTISECOND,
                    total_waits=to_float(total_waits),
                    name=default_str(name, "unknown"),
                )
            )
        return totals

    def my_sid(self) -> int:
        """SID of the monitoring session, looked up once per connection."""
        if self._my_sid is None:
            rows = self._query(QUERY_SESSIONS, MY_SID_SQL)
            self._my_sid = int(to_float(rows[0][0])) if rows else 0
            logger.debug("Tibero monitor session sid=%s", self._my_sid)
        return self._my_sid

    def fetch_sessions(self) -> list[dict[str, Any]]:
        sessions = []
        for row in self._query(QUERY_SESSIONS, SESSIONS_SQL, (self.my_sid(),)):
            sessions.append(
                {
                    "sid": to_str(row[0]),
                    "serial": to_str(row[1]),
                    "username": default_str(row[2], "-"),
                    "status": normalize_session_status(row[3]),
                    "event": default_str(row[4], "On CPU"),
                    "blocking_sid": "",
                    "wait_class": normalize_wait_class(default_str(row[5], "CPU")),
                    "sql_id": default_str(row[6], "-"),
                    "prev_sql_id": default_str(row[7], "-"),
                    "seconds_in_wait": to_float(row[8]),
                    "elapsed_s": to_float(row[8]),
                    "machine": default_str(row[9], "-"),
                    "program": default_str(row[10], "-"),
                    "sql_text": trim_sql(row[11]),
                }
            )
        return sessions

    def fetch_hotspots(self) -> list[dict[str, Any]]:
        return [hotspot_row(row) for row in self._query(QUERY_HOTSPOTS, HOTSPOTS_SQL)]


__all__ = [
    "PAGE_SIZE_BYTES",
    "SYSSTAT_NAMES",
    "TIME_MODEL_NAMES",
    "TiberoAdapter",
    "normalize_session_status",
    "normalize_wait_class",
]
