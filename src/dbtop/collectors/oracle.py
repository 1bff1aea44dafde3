"""Oracle snapshot adapter (native ``v$sysmetric`` gauges)."""

from __future__ import annotations

from typing import Any, ClassVar

from dbtop.metrics import constants as mc
from dbtop.metrics.waits import WaitTotal

from .base import (
    QUERY_HOTSPOTS,
    QUERY_SESSIONS,
    QUERY_SYSMETRIC,
    QUERY_SYSSTAT,
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
from .connection import PROGRAM_NAME

SYSSTAT_NAMES: dict[str, str] = {
    "execute count": mc.EXECUTE_COUNT,
    "session logical reads": mc.LOGICAL_READS,
    "physical reads": mc.PHYSICAL_READS,
    "physical writes": mc.PHYSICAL_WRITES,
    "redo size": mc.REDO_BYTES,
    "user commits": mc.COMMITS,
    "user rollbacks": mc.ROLLBACKS,
    "parse count (total)": mc.PARSE_TOTAL,
    "parse count (hard)": mc.PARSE_HARD,
    "physical read total bytes": mc.PHYSICAL_READ_BYTES,
    "physical write total bytes": mc.PHYSICAL_WRITE_BYTES,
}

SYSMETRIC_NAMES: tuple[str, ...] = (
    mc.HOST_CPU_UTIL,
    mc.AVERAGE_ACTIVE_SESSIONS,
    mc.DB_TIME_PER_SEC,
    mc.CPU_USAGE_PER_SEC,
    mc.WAIT_TIME_RATIO,
)

SYSSTAT_SQL = (
    f"SELECT name, value FROM v$sysstat WHERE name IN ({sql_in_list(list(SYSSTAT_NAMES))})"
)

# Several interval sizes exist per metric; keep the shortest (most current) one.
SYSMETRIC_SQL = (
    "SELECT metric_name, value FROM ("
    " SELECT metric_name, value,"
    " ROW_NUMBER() OVER (PARTITION BY metric_name ORDER BY intsize_csec ASC) rn"
    " FROM v$sysmetric"
    f") x WHERE rn = 1 AND metric_name IN ({sql_in_list(SYSMETRIC_NAMES)})"
)

WAITS_SQL = (
    "SELECT wait_class, event, time_waited_micro, total_waits"
    " FROM v$system_event WHERE wait_class <> 'Idle'"
)

SESSIONS_SQL = (
    "SELECT s.sid, s.serial#, s.username, s.status, s.event,"
    " s.blocking_session, s.sql_id, s.prev_sql_id,"
    " s.wait_class, s.seconds_in_wait, s.last_call_et,"
    " s.machine, s.program,"
    " (SELECT REPLACE(SUBSTR(q.sql_text, 1, 120), CHR(10), ' ')"
    "  FROM v$sql q WHERE q.sql_id = COALESCE(s.sql_id, s.prev_sql_id)"
    "  AND ROWNUM = 1) AS sql_text"
    " FROM v$session s"
    " WHERE s.type = 'USER' AND s.wait_class <> 'Idle'"
    " AND s.sid <> SYS_CONTEXT('USERENV', 'SID')"
    f" AND NVL(s.program, '-') <> '{PROGRAM_NAME}'"
    f" AND NVL(s.module, '-') <> '{PROGRAM_NAME}'"
    " ORDER BY s.seconds_in_wait DESC, s.last_call_et DESC"
    " FETCH FIRST 30 ROWS ONLY"
)

HOTSPOTS_SQL = (
    "SELECT sql_id, plan_hash_value, elapsed_time, cpu_time, executions,"
    " buffer_gets, disk_reads, rows_processed, sql_text"
    " FROM v$sql"
    " WHERE executions > 0 AND sql_id IS NOT NULL"
    " AND last_active_time > SYSDATE - 10/(24*60)"
    " AND sql_text NOT LIKE '%v$%' AND sql_text NOT LIKE '%V$%'"
    " AND sql_text NOT LIKE '%x$%' AND sql_text NOT LIKE '%X$%'"
    " ORDER BY elapsed_time DESC FETCH FIRST 15 ROWS ONLY"
)


class OracleAdapter(SnapshotAdapter):
    vendor: ClassVar[DbmsType] = DbmsType.ORACLE
    has_native_gauges: ClassVar[bool] = True
    top_waits: ClassVar[int] = 12

    def fetch_counters(self) -> dict[str, float]:
        return name_value_map(self._query(QUERY_SYSSTAT, SYSSTAT_SQL), SYSSTAT_NAMES)

    def fetch_gauges(self) -> dict[str, float]:
        rows = self._query(QUERY_SYSMETRIC, SYSMETRIC_SQL)
        return {to_str(row[0]): to_float(row[1]) for row in rows if len(row) >= 2}

    def fetch_wait_totals(self) -> list[WaitTotal]:
        totals = []
        for wait_class, event, time_micro, total_waits in self._query(QUERY_WAITS, WAITS_SQL):
            totals.append(
                WaitTotal(
                    event=default_str(event, "unknown"),
                    wait_class=default_str(wait_class, "Other"),
                    time_us=to_float(time_micro),
                    total_waits=to_float(total_waits),
                )
            )
        return totals

    def fetch_sessions(self) -> list[dict[str, Any]]:
        sessions = []
        for row in self._query(QUERY_SESSIONS, SESSIONS_SQL):
            sessions.append(
                {
                    "sid": to_str(row[0]),
                    "serial": to_str(row[1]),
                    "username": default_str(row[2], "-"),
                    "status": to_str(row[3]),
                    "event": default_str(row[4], "CPU"),
                    "blocking_sid": to_str(row[5]),
                    "wait_class": default_str(row[8], "CPU"),
                    "sql_id": default_str(row[6], "-"),
                    "prev_sql_id": default_str(row[7], "-"),
                    "seconds_in_wait": to_float(row[9]),
                    "elapsed_s": to_float(row[10]),
                    "machine": default_str(row[11], "-"),
                    "program": default_str(row[12], "-"),
                    "sql_text": trim_sql(row[13]),
                }
            )
        return sessions

    def fetch_hotspots(self) -> list[dict[str, Any]]:
        return [hotspot_row(row) for row in self._query(QUERY_HOTSPOTS, HOTSPOTS_SQL)]


__all__ = ["OracleAdapter", "SYSMETRIC_NAMES", "SYSSTAT_NAMES"]
