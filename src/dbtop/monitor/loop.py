"""Poll/record/render loop.

``PollLoop`` owns the single database connection, runs one collection cycle
per tick and publishes each :class:`CycleResult` by replacing a reference
under a lock, so readers on other threads never see a half-built cycle.
Per-query failures degrade only their own section; a lost connection moves
the loop to ``ERROR`` and the next tick reconnects.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from dbtop.collectors.base import SnapshotAdapter
from dbtop.collectors.connection import ConnectionFactory, close_quietly
from dbtop.contracts.error import (
    CollectorError,
    ConnectionFailedError,
    ConnectionLostError,
    EnvelopeError,
    IOErrorEnvelope,
)
from dbtop.metrics.buffer import MetricsBuffer
from dbtop.metrics.constants import (
    COLLECTOR_ERR,
    COLLECTOR_ON,
    METRIC_KEYS,
    SECTION_HOTSPOTS,
    SECTION_METRICS,
    SECTION_SESSIONS,
    SECTION_WAITS,
    SECTIONS,
    SOURCE_COLLECTOR,
    SOURCE_SYNTHETIC,
)
from dbtop.metrics.core import map_metrics
from dbtop.metrics.delta import DeltaEngine
from dbtop.metrics.waits import WaitDeltaTracker, WaitRow

from .frame import Frame, FrameLog

logger = logging.getLogger(__name__)

_COUNTERS = "counters"
_GAUGES = "gauges"
_TIME_MODEL = "time_model"
_WAITS = "waits"
_SESSIONS = "sessions"
_HOTSPOTS = "hotspots"


class LoopState(StrEnum):
    CONNECTING = "connecting"
    CYCLING = "cycling"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass(frozen=True)
class LoopSettings:
    interval_seconds: float = 6.0
    top_waits: int | None = None

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")


@dataclass(frozen=True)
class CycleResult:
    """Everything a renderer needs from one completed cycle."""

    cycle: int
    state: LoopState
    frame: Frame
    metrics: dict[str, float]
    waits: list[WaitRow]
    sessions: list[dict[str, Any]]
    hotspots: list[dict[str, Any]]
    collector_state: str
    last_error: str | None
    collect_ms: float
    degraded: tuple[str, ...] = field(default=())
    # Buffer contents right after this cycle was pushed.
    history: Mapping[str, tuple[float, ...]] = field(default_factory=dict)


CycleListener = Callable[[CycleResult], None]


class PollLoop:
    def __init__(
        self,
        factory: ConnectionFactory,
        adapter_cls: type[SnapshotAdapter],
        settings: LoopSettings | None = None,
        *,
        writer: FrameLog | None = None,
        buffer: MetricsBuffer | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.settings = settings or LoopSettings()
        self.writer = writer
        self.buffer = buffer if buffer is not None else MetricsBuffer()
        self._factory = factory
        self._adapter_cls = adapter_cls
        self._clock = clock
        self._stop = threading.Event()
        self._sleep = sleep if sleep is not None else self._stop.wait
        self.delta = DeltaEngine(clock=clock)
        self.waits = WaitDeltaTracker(
            top_n=self.settings.top_waits or adapter_cls.top_waits, clock=clock
        )
        self.state = LoopState.CONNECTING
        self.instance_name = self.vendor.capitalize()
        self.cycles = 0
        self.last_error: str | None = None
        self._connection: Any = None
        self._adapter: SnapshotAdapter | None = None
        self._latest: CycleResult | None = None
        self._publish_lock = threading.Lock()
        self._listeners: list[CycleListener] = []

    @property
    def vendor(self) -> str:
        return self._adapter_cls.vendor.value

    @property
    def adapter(self) -> SnapshotAdapter | None:
        return self._adapter

    @property
    def latest(self) -> CycleResult | None:
        with self._publish_lock:
            return self._latest

    def on_cycle(self, listener: CycleListener) -> None:
        self._listeners.append(listener)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to finish; checked between queries and between ticks."""
        self._stop.set()

    # -- connection management -------------------------------------------------

    def connect(self) -> None:
        """Open the initial connection; failure here is fatal."""
        self.state = LoopState.CONNECTING
        try:
            self._open()
        except EnvelopeError:
            self.state = LoopState.STOPPED
            raise
        except Exception as exc:
            self.state = LoopState.STOPPED
            raise ConnectionFailedError(
                f"Could not connect to {self.vendor}: {exc}",
                hint="Check host, port, service name and credentials",
            ) from exc
        self.state = LoopState.CYCLING
        logger.info("Connected to %s", self.vendor)
        self._resolve_instance_name()

    def close(self) -> None:
        close_quietly(self._connection)
        self._connection = None
        self._adapter = None

    def _open(self) -> None:
        connection = self._factory()
        self._connection = connection
        self._adapter = self._adapter_cls(connection)

    def _resolve_instance_name(self) -> None:
        assert self._adapter is not None
        try:
            info = self._adapter.fetch_instance_info()
        except CollectorError as exc:
            logger.warning("Instance lookup failed: %s", exc)
            return
        name = str(info.get("instance_name") or "").strip()
        if name and name != "unknown":
            self.instance_name = name

    def _reconnect(self) -> bool:
        self.close()
        try:
            self._open()
        except Exception as exc:  # noqa: BLE001 - retried next tick
            self.last_error = f"reconnect failed: {exc}"
            logger.error("Reconnect to %s failed: %s", self.vendor, exc)
            return False
        self.delta.reset()
        self.waits.reset()
        self.state = LoopState.CYCLING
        logger.info("Reconnected to %s", self.vendor)
        self._resolve_instance_name()
        return True

    # -- one cycle -------------------------------------------------------------

    def _steps(self, adapter: SnapshotAdapter) -> list[tuple[str, Callable[[], Any]]]:
        steps: list[tuple[str, Callable[[], Any]]] = [(_COUNTERS, adapter.fetch_counters)]
        if adapter.has_native_gauges:
            steps.append((_GAUGES, adapter.fetch_gauges))
        else:
            steps.append((_TIME_MODEL, adapter.fetch_time_model))
        steps.extend(
            [
                (_WAITS, adapter.fetch_wait_totals),
                (_SESSIONS, adapter.fetch_sessions),
                (_HOTSPOTS, adapter.fetch_hotspots),
            ]
        )
        return steps

    def _collect(
        self, adapter: SnapshotAdapter, errors: list[str]
    ) -> tuple[dict[str, Any], bool]:
        """Run each query in isolation; missing keys mean the query failed or never ran.

        The flag is True when :meth:`stop` cut the cycle short.
        """
        fetched: dict[str, Any] = {}
        for name, fetch in self._steps(adapter):
            if self._stop.is_set():
                return fetched, True
            try:
                fetched[name] = fetch()
            except ConnectionLostError as exc:
                self._mark_lost(exc, errors)
                break
            except CollectorError as exc:
                logger.warning("Collector query failed: %s", exc)
                errors.append(str(exc))
            except Exception as exc:  # noqa: BLE001 - one section must not sink the cycle
                logger.warning("Collector query %s raised %s: %s", name, type(exc).__name__, exc)
                errors.append(f"{name}: {exc}")
            else:
                continue
            # A failed query may mean the session itself is gone.
            try:
                adapter.ping()
            except ConnectionLostError as exc:
                self._mark_lost(exc, errors)
                break
        return fetched, False

    def _mark_lost(self, exc: ConnectionLostError, errors: list[str]) -> None:
        self.state = LoopState.ERROR
        message = f"connection lost: {exc.detail}"
        errors.append(message)
        logger.error("Connection to %s lost: %s", self.vendor, exc.detail)

    def run_cycle(self) -> CycleResult | None:
        """Collect, record and publish one cycle.

        Returns ``None`` when :meth:`stop` interrupts the cycle; an unfinished
        cycle is neither recorded nor published.
        """
        started = self._clock()
        errors: list[str] = []
        fetched: dict[str, Any] = {}

        if (self.state is LoopState.ERROR or self._adapter is None) and not self._reconnect():
            self.state = LoopState.ERROR
            errors.append(self.last_error or "reconnect failed")
        if self.state is not LoopState.ERROR and self._adapter is not None:
            fetched, interrupted = self._collect(self._adapter, errors)
            if interrupted:
                logger.info("Cycle interrupted by stop; not recorded")
                return None

        result = self._build_result(fetched, errors, started)
        self._record(result.frame)
        self._publish(result)
        return result

    def _build_result(
        self, fetched: dict[str, Any], errors: list[str], started: float
    ) -> CycleResult:
        native = self._adapter_cls.has_native_gauges
        gauge_key = _GAUGES if native else _TIME_MODEL
        gauges: dict[str, float] = fetched.get(_GAUGES, {}) if native else {}

        metrics: dict[str, float] = {}
        if _COUNTERS in fetched:
            time_model = None if native else fetched.get(_TIME_MODEL)
            rates = self.delta.compute(fetched[_COUNTERS], time_model)
            metrics = map_metrics(gauges, rates)
        elif gauges:
            metrics = map_metrics(gauges, {})
        if metrics:
            self.buffer.push_many(metrics)
        history = self.buffer.snapshot(METRIC_KEYS)

        wait_rows: list[WaitRow] = []
        if _WAITS in fetched:
            wait_rows = self.waits.compute_top_waits(fetched[_WAITS])

        backed = {
            SECTION_METRICS: _COUNTERS in fetched and gauge_key in fetched,
            SECTION_WAITS: _WAITS in fetched,
            SECTION_SESSIONS: _SESSIONS in fetched,
            SECTION_HOTSPOTS: _HOTSPOTS in fetched,
        }
        sources = {
            section: SOURCE_COLLECTOR if backed[section] else SOURCE_SYNTHETIC
            for section in SECTIONS
        }
        healthy = self.state is not LoopState.ERROR and any(backed.values())
        collector_state = COLLECTOR_ON if healthy else COLLECTOR_ERR
        last_error = "; ".join(errors) if errors else None
        if last_error:
            self.last_error = last_error

        sessions = list(fetched.get(_SESSIONS, []))
        hotspots = list(fetched.get(_HOTSPOTS, []))
        frame = Frame(
            db_type=self.vendor,
            instance_name=self.instance_name,
            collector_state=collector_state,
            data_sources=sources,
            metrics=metrics,
            sessions=sessions,
            wait_events=[row.to_dict() for row in wait_rows],
            sql_hotspots=hotspots,
            last_error=last_error,
        )
        self.cycles += 1
        return CycleResult(
            cycle=self.cycles,
            state=self.state,
            frame=frame,
            metrics=metrics,
            waits=wait_rows,
            sessions=sessions,
            hotspots=hotspots,
            collector_state=collector_state,
            last_error=last_error,
            collect_ms=max(0.0, (self._clock() - started) * 1000.0),
            degraded=tuple(section for section in SECTIONS if not backed[section]),
            history=history,
        )

    def _record(self, frame: Frame) -> None:
        if self.writer is None:
            return
        try:
            self.writer.write(frame)
        except IOErrorEnvelope as exc:
            logger.error("Frame not recorded: %s", exc)

    def _publish(self, result: CycleResult) -> None:
        with self._publish_lock:
            self._latest = result
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception:  # noqa: BLE001 - a renderer fault must not stop collection
                logger.exception("Cycle listener failed")

    # -- driver ----------------------------------------------------------------

    def run(self, max_cycles: int | None = None) -> int:
        """Cycle at a fixed cadence until :meth:`stop` or ``max_cycles``; returns cycles run."""
        if self._adapter is None and self.state is LoopState.CONNECTING:
            self.connect()
        completed = 0
        interval = self.settings.interval_seconds
        try:
            while not self._stop.is_set():
                tick_started = self._clock()
                if self.run_cycle() is None:
                    break
                completed += 1
                if max_cycles is not None and completed >= max_cycles:
                    break
                if self._stop.is_set():
                    break
                remaining = interval - (self._clock() - tick_started)
                self._sleep(max(0.0, remaining))
        finally:
            self.state = LoopState.STOPPED
            self.close()
            logger.info("Poll loop stopped after %d cycle(s)", completed)
        return completed


__all__ = ["CycleListener", "CycleResult", "LoopSettings", "LoopState", "PollLoop"]
