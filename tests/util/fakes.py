"""Test doubles shared across the suite."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, ClassVar

from dbtop.collectors.base import DbmsType, SnapshotAdapter
from dbtop.contracts.error import ConnectionLostError
from dbtop.metrics import constants as mc
from dbtop.metrics.waits import WaitTotal


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCursor:
    def __init__(self, connection: FakeConnection) -> None:
        self._connection = connection
        self._rows: list[Sequence[Any]] = []
        self.closed = False

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        self._connection.executed.append((sql, params))
        if self._connection.fail_with is not None:
            raise self._connection.fail_with
        self._rows = list(self._connection.responder(sql, params))

    def fetchall(self) -> list[Sequence[Any]]:
        return list(self._rows)

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    """DB-API connection whose queries are answered by ``responder(sql, params)``."""

    def __init__(
        self,
        responder: Callable[[str, Sequence[Any] | None], list[Sequence[Any]]] | None = None,
    ) -> None:
        self.responder = responder or (lambda _sql, _params: [])
        self.executed: list[tuple[str, Sequence[Any] | None]] = []
        self.fail_with: Exception | None = None
        self.closed = False

    def cursor(self) -> FakeCursor:
        if self.closed:
            raise RuntimeError("DPI-1080: connection was closed")
        return FakeCursor(self)

    def close(self) -> None:
        self.closed = True


SESSION = {"sid": "10", "username": "APP", "status": "ACTIVE", "event": "CPU"}
HOTSPOT = {"sql_id": "abc", "plan_hash_value": "1", "elapsed_time": 3.0, "executions": 2.0}


class ScriptedDb:
    """In-memory stand-in for the monitored database."""

    def __init__(self) -> None:
        self.counters: dict[str, float] = {mc.EXECUTE_COUNT: 0.0, mc.COMMITS: 0.0}
        self.gauges: dict[str, float] = {mc.HOST_CPU_UTIL: 12.0}
        self.time_model: dict[str, float] = {mc.DB_TIME_US: 0.0, mc.DB_CPU_US: 0.0}
        self.waits = [WaitTotal("log file sync", "Commit", 0.0, 0.0)]
        self.failures: dict[str, Exception] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.lost = False
        self.refuse_connect = False
        self.connects = 0

    def connect(self) -> FakeConnection:
        if self.refuse_connect:
            raise OSError("ORA-12541: TNS:no listener")
        self.connects += 1
        self.lost = False
        return FakeConnection()

    def read(self, name: str, value: Any) -> Any:
        hook = self.hooks.get(name)
        if hook is not None:
            hook()
        failure = self.failures.get(name)
        if failure is not None:
            raise failure
        return value


def make_adapter(db: ScriptedDb, *, native: bool = True) -> type[SnapshotAdapter]:
    class ScriptedAdapter(SnapshotAdapter):
        vendor: ClassVar[DbmsType] = DbmsType.ORACLE if native else DbmsType.TIBERO
        has_native_gauges: ClassVar[bool] = native

        def fetch_counters(self) -> dict[str, float]:
            return db.read("counters", dict(db.counters))

        def fetch_gauges(self) -> dict[str, float]:
            return db.read("gauges", dict(db.gauges))

        def fetch_time_model(self) -> dict[str, float]:
            return db.read("time_model", dict(db.time_model))

        def fetch_wait_totals(self) -> list[WaitTotal]:
            return db.read("waits", list(db.waits))

        def fetch_sessions(self) -> list[dict[str, Any]]:
            return db.read("sessions", [dict(SESSION)])

        def fetch_hotspots(self) -> list[dict[str, Any]]:
            return db.read("hotspots", [dict(HOTSPOT)])

        def fetch_instance_info(self) -> dict[str, str]:
            return {"instance_name": "ORCL"}

        def ping(self) -> None:
            if db.lost:
                raise ConnectionLostError("ping", "ORA-03113: end-of-file on communication channel")

    return ScriptedAdapter
