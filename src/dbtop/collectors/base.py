"""Vendor-neutral snapshot adapter interface and DB-API helpers."""

from __future__ import annotations

import contextlib
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any, ClassVar

from dbtop.contracts.error import BadInputError, CollectorError, ConnectionLostError
from dbtop.metrics.constants import DEFAULT_TOP_WAITS
from dbtop.metrics.waits import WaitTotal

from .connection import PROGRAM_NAME, is_connection_lost

logger = logging.getLogger(__name__)

SQL_TEXT_LIMIT = 120

SESSION_KEYS: tuple[str, ...] = (
    "sid",
    "serial",
    "username",
    "status",
    "event",
    "blocking_sid",
    "wait_class",
    "sql_id",
    "prev_sql_id",
    "seconds_in_wait",
    "elapsed_s",
    "machine",
    "program",
    "sql_text",
)
HOTSPOT_KEYS: tuple[str, ...] = (
    "sql_id",
    "plan_hash_value",
    "elapsed_time",
    "cpu_time",
    "executions",
    "buffer_gets",
    "disk_reads",
    "rows_processed",
    "sql_text",
)
INSTANCE_KEYS: tuple[str, ...] = ("instance_name", "host_name", "version", "status", "startup_time")

# Query labels carried by CollectorError.section.
QUERY_SYSSTAT = "sysstat"
QUERY_SYSMETRIC = "sysmetric"
QUERY_TIME_MODEL = "time_model"
QUERY_WAITS = "waits"
QUERY_SESSIONS = "sessions"
QUERY_HOTSPOTS = "sql_hotspots"
QUERY_INSTANCE = "instance"
QUERY_PING = "ping"


class DbmsType(StrEnum):
    """Database engines the CLI recognises."""

    ORACLE = "oracle"
    TIBERO = "tibero"
    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLSERVER = "sqlserver"

    @classmethod
    def parse(cls, raw: str | None) -> DbmsType:
        value = (raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            options = ", ".join(member.value for member in cls)
            raise BadInputError(
                f"Unknown dbms type: {raw!r}", hint=f"Choose one of: {options}"
            ) from None


def to_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def to_str(value: Any) -> str:
    return "" if value is None else str(value)


def default_str(value: Any, fallback: str) -> str:
    text = to_str(value)
    return fallback if not text.strip() else text


def trim_sql(raw: Any, limit: int = SQL_TEXT_LIMIT) -> str:
    """Collapse SQL text onto one line, capped at ``limit`` characters ("-" when empty)."""

    if raw is None:
        return "-"
    compact = " ".join(str(raw).split())
    if not compact:
        return "-"
    return compact[:limit]


def name_value_map(rows: Sequence[Sequence[Any]], names: Mapping[str, str]) -> dict[str, float]:
    """Translate ``(native_name, value)`` rows into the vocabulary given by ``names``."""

    out: dict[str, float] = {}
    for row in rows:
        if len(row) < 2:
            continue
        key = names.get(to_str(row[0]))
        if key is not None:
            out[key] = to_float(row[1])
    return out


def hotspot_row(row: Sequence[Any]) -> dict[str, Any]:
    """Shape one ``v$sql`` row; both vendors select the same nine columns."""
    return {
        "sql_id": to_str(row[0]),
        "plan_hash_value": default_str(row[1], "-"),
        "elapsed_time": to_float(row[2]),
        "cpu_time": to_float(row[3]),
        "executions": to_float(row[4]),
        "buffer_gets": to_float(row[5]),
        "disk_reads": to_float(row[6]),
        "rows_processed": to_float(row[7]),
        "sql_text": trim_sql(row[8]),
    }


def sql_in_list(names: Sequence[str]) -> str:
    return ", ".join("'" + name.replace("'", "''") + "'" for name in names)


class SnapshotAdapter(ABC):
    """Reads one vendor's system views through a DB-API connection.

    Every ``fetch_*`` call is independent: a failed query raises
    :class:`CollectorError` (or :class:`ConnectionLostError` when the
    connection itself is gone) and leaves the other queries usable.
    """

    vendor: ClassVar[DbmsType]
    has_native_gauges: ClassVar[bool] = False
    top_waits: ClassVar[int] = DEFAULT_TOP_WAITS
    ping_sql: ClassVar[str] = "SELECT 1 FROM DUAL"

    def __init__(self, connection: Any) -> None:
        self.connection = connection

    def _query(
        self, section: str, sql: str, params: Sequence[Any] | None = None
    ) -> list[Sequence[Any]]:
        try:
            cursor = self.connection.cursor()
        except Exception as exc:
            raise self._wrap(section, exc) from exc
        try:
            if params is None:
                cursor.execute(sql)
            else:
                cursor.execute(sql, params)
            return list(cursor.fetchall())
        except Exception as exc:
            raise self._wrap(section, exc) from exc
        finally:
            # Closing a cursor on a dead connection raises again; the query error wins.
            with contextlib.suppress(Exception):
                cursor.close()

    @staticmethod
    def _wrap(section: str, exc: Exception) -> CollectorError:
        if isinstance(exc, CollectorError):
            return exc
        message = str(exc).strip() or type(exc).__name__
        if is_connection_lost(exc):
            return ConnectionLostError(section, message)
        return CollectorError(section, message)

    @abstractmethod
    def fetch_counters(self) -> dict[str, float]:
        """Cumulative counters keyed by the vendor-neutral counter names."""

    def fetch_time_model(self) -> dict[str, float]:
        """Cumulative DB/CPU time in microseconds (empty when gauges are native)."""
        return {}

    def fetch_gauges(self) -> dict[str, float]:
        """Instantaneous gauges keyed by rate label (empty when the vendor has none)."""
        return {}

    @abstractmethod
    def fetch_wait_totals(self) -> list[WaitTotal]:
        """Cumulative wait totals with times normalised to microseconds."""

    @abstractmethod
    def fetch_sessions(self) -> list[dict[str, Any]]:
        """Active user sessions keyed by :data:`SESSION_KEYS`."""

    @abstractmethod
    def fetch_hotspots(self) -> list[dict[str, Any]]:
        """Top SQL by elapsed time keyed by :data:`HOTSPOT_KEYS`."""

    def fetch_instance_info(self) -> dict[str, str]:
        rows = self._query(
            QUERY_INSTANCE,
            "SELECT instance_name, host_name, version, status, "
            "TO_CHAR(startup_time, 'YYYY-MM-DD HH24:MI:SS') FROM v$instance",
        )
        if not rows:
            return {}
        row = rows[0]
        fallbacks = ("unknown", "unknown", "unknown", "unknown", "-")
        return {
            key: default_str(row[idx] if idx < len(row) else None, fallbacks[idx])
            for idx, key in enumerate(INSTANCE_KEYS)
        }

    def ping(self) -> None:
        """Raise :class:`ConnectionLostError` when the connection no longer answers."""
        try:
            self._query(QUERY_PING, self.ping_sql)
        except ConnectionLostError:
            raise
        except CollectorError as exc:
            raise ConnectionLostError(QUERY_PING, exc.detail) from exc


__all__ = [
    "DbmsType",
    "HOTSPOT_KEYS",
    "INSTANCE_KEYS",
    "PROGRAM_NAME",
    "SESSION_KEYS",
    "SnapshotAdapter",
    "WaitTotal",
    "default_str",
    "hotspot_row",
    "name_value_map",
    "sql_in_list",
    "to_float",
    "to_str",
    "trim_sql",
]
