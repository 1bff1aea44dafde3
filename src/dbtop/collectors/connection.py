"""Connection factories and disconnect classification."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import oracledb

from dbtop.contracts.error import ConnectionLostError, PolicyError

if TYPE_CHECKING:
    from dbtop.config import ConnectionConfig

logger = logging.getLogger(__name__)

PROGRAM_NAME = "dbtop"

ConnectionFactory = Callable[[], Any]

# Driver messages that mean the session is gone rather than one query failing.
_DISCONNECT_MARKERS: tuple[str, ...] = (
    "ora-03113",
    "ora-03114",
    "ora-03135",
    "ora-12537",
    "dpi-1080",
    "dpy-4011",
    "tbr-2131",
    "not connected",
    "connection closed",
)


def is_connection_lost(exc: BaseException) -> bool:
    """Return True when ``exc`` (or its cause chain) signals a dead connection."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (ConnectionLostError, OSError)):
            return True
        message = str(current).lower()
        if any(marker in message for marker in _DISCONNECT_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def close_quietly(connection: Any) -> None:
    if connection is None:
        return
    try:
        connection.close()
    except Exception as exc:  # noqa: BLE001 - stale handles routinely fail to close
        logger.debug("Ignoring error while closing connection: %s", exc)


class OracleConnectionFactory:
    """Opens python-oracledb (thin mode) connections for one configured target."""

    def __init__(self, settings: ConnectionConfig) -> None:
        self.settings = settings

    @property
    def dsn(self) -> str:
        s = self.settings
        return f"{s.host}:{s.resolved_port()}/{s.service_name}"

    def __call__(self) -> oracledb.Connection:
        s = self.settings
        logger.info("Connecting to Oracle at %s as %s", self.dsn, s.user)
        connection = oracledb.connect(
            user=s.user,
            password=s.password,
            dsn=self.dsn,
            tcp_connect_timeout=float(s.connect_timeout_seconds),
        )
        connection.call_timeout = int(s.call_timeout_ms)
        # v$session.module; the session query filters on it.
        connection.module = PROGRAM_NAME
        return connection


class TiberoConnectionFactory:
    """Opens Tibero connections through its ODBC driver (``pyodbc``)."""

    def __init__(self, settings: ConnectionConfig) -> None:
        self.settings = settings

    def connection_string(self) -> str:
        s = self.settings
        parts = {
            "DRIVER": "{" + s.odbc_driver + "}",
            "SERVER": s.host,
            "PORT": str(s.resolved_port()),
            "DB": s.service_name,
            "UID": s.user,
            "PWD": s.password,
        }
        return ";".join(f"{key}={value}" for key, value in parts.items())

    def __call__(self) -> Any:
        try:
            import pyodbc
        except ImportError as exc:
            raise PolicyError(
                "Tibero support requires the pyodbc driver",
                hint="Install the optional extra: pip install 'dbtop[tibero]'",
            ) from exc

        s = self.settings
        logger.info(
            "Connecting to Tibero at %s:%s/%s as %s",
            s.host,
            s.resolved_port(),
            s.service_name,
            s.user,
        )
        connection = pyodbc.connect(
            self.connection_string(), timeout=int(s.connect_timeout_seconds), autocommit=True
        )
        connection.timeout = max(1, int(s.call_timeout_ms) // 1000)
        cursor = connection.cursor()
        try:
            cursor.execute(
                f"CALL DBMS_APPLICATION_INFO.SET_MODULE('{PROGRAM_NAME}', 'monitor')"
            )
        except pyodbc.Error as exc:
            logger.debug("DBMS_APPLICATION_INFO unavailable: %s", exc)
        finally:
            cursor.close()
        return connection


def get_connection_factory(settings: ConnectionConfig) -> ConnectionFactory:
    from .base import DbmsType

    dbms = DbmsType.parse(settings.dbms_type)
    if dbms is DbmsType.ORACLE:
        return OracleConnectionFactory(settings)
    if dbms is DbmsType.TIBERO:
        return TiberoConnectionFactory(settings)
    raise PolicyError(f"{dbms.value} is recognised but not supported yet")


__all__ = [
    "ConnectionFactory",
    "OracleConnectionFactory",
    "PROGRAM_NAME",
    "TiberoConnectionFactory",
    "close_quietly",
    "get_connection_factory",
    "is_connection_lost",
]
