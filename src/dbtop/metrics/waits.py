"""Per-second wait-event intensity from cumulative wait totals."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .constants import DEFAULT_TOP_WAITS, MIN_ELAPSED_SECONDS

logger = logging.getLogger(__name__)

_MICROS_PER_SECOND = 1_000_000.0
_MICROS_PER_MS = 1_000.0


@dataclass(frozen=True, slots=True)
class WaitTotal:
    """Cumulative wait reading for one event; ``time_us`` is already in microseconds.

    ``event`` is the display label. ``name`` is the native event name when it
    differs from the label; rows are matched across snapshots by :attr:`key`.
    """

    event: str
    wait_class: str
    time_us: float
    total_waits: float
    name: str = ""

    @property
    def key(self) -> str:
        return self.name or self.event


@dataclass(frozen=True, slots=True)
class WaitRow:
    wait_class: str
    event: str
    wait_sec_per_sec: float
    waits_per_sec: float
    avg_wait_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "wait_class": self.wait_class,
            "event": self.event,
            "wait_sec_per_sec": self.wait_sec_per_sec,
            "waits_per_sec": self.waits_per_sec,
            "avg_wait_ms": self.avg_wait_ms,
        }


@dataclass(frozen=True)
class _WaitBaseline:
    totals: dict[str, tuple[float, float]]
    taken_at: float


class WaitDeltaTracker:
    """Ranks wait events by how much wait time they accumulated since the last call."""

    def __init__(
        self,
        top_n: int = DEFAULT_TOP_WAITS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if top_n < 1:
            raise ValueError("top_n must be >= 1")
        self.top_n = top_n
        self._clock = clock
        self._baseline: _WaitBaseline | None = None

    @property
    def bootstrapped(self) -> bool:
        return self._baseline is not None

    def reset(self) -> None:
        self._baseline = None

    def compute_top_waits(
        self, totals: Iterable[WaitTotal], *, now: float | None = None
    ) -> list[WaitRow]:
        now = self._clock() if now is None else now
        current: dict[str, tuple[float, float]] = {}
        labels: dict[str, tuple[str, str]] = {}
        for total in totals:
            current[total.key] = (float(total.time_us), float(total.total_waits))
            labels[total.key] = (total.event, total.wait_class or "Other")

        baseline = self._baseline
        if baseline is None:
            self._baseline = _WaitBaseline(current, now)
            logger.debug("Wait tracker baseline recorded (%d events)", len(current))
            return []

        elapsed = now - baseline.taken_at
        if elapsed < MIN_ELAPSED_SECONDS:
            # Keep the older baseline; the next call spans a usable interval.
            return []

        rows: list[WaitRow] = []
        for key, (time_us, waits) in current.items():
            prev_time, prev_waits = baseline.totals.get(key, (0.0, 0.0))
            d_time = time_us - prev_time
            d_waits = waits - prev_waits
            if d_time <= 0 or d_waits < 0:
                continue
            event, wait_class = labels[key]
            rows.append(
                WaitRow(
                    wait_class=wait_class,
                    event=event,
                    wait_sec_per_sec=(d_time / _MICROS_PER_SECOND) / elapsed,
                    waits_per_sec=d_waits / elapsed,
                    avg_wait_ms=(d_time / d_waits / _MICROS_PER_MS) if d_waits > 0 else 0.0,
                )
            )

        rows.sort(key=lambda row: (-row.wait_sec_per_sec, row.event))
        self._baseline = _WaitBaseline(current, now)
        return rows[: self.top_n]


__all__ = ["WaitDeltaTracker", "WaitRow", "WaitTotal"]
