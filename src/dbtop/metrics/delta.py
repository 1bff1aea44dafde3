"""Cumulative counter -> per-second rate conversion."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from .constants import (
    AVERAGE_ACTIVE_SESSIONS,
    BUFFER_CACHE_HIT_RATIO,
    CPU_USAGE_PER_SEC,
    DB_CPU_US,
    DB_TIME_PER_SEC,
    DB_TIME_US,
    FALLBACK_ELAPSED_SECONDS,
    LOGICAL_READS,
    MIN_ELAPSED_SECONDS,
    PHYSICAL_READS,
    RATE_LABELS,
    SYNTHETIC_GAUGE_LABELS,
    THROUGHPUT_RATES,
)

logger = logging.getLogger(__name__)

Snapshot = Mapping[str, float]

_MICROS_PER_SECOND = 1_000_000.0
# Native gauges report DB/CPU time in centiseconds per second.
_CENTISECONDS_PER_SECOND = 100.0


def clamp_delta(current: float, previous: float) -> float:
    """Return ``current - previous`` floored at zero (counter resets read as no activity)."""

    delta = current - previous
    return delta if delta > 0 else 0.0


def effective_elapsed(now: float, previous: float) -> float:
    """Seconds between two samples; bursts under half a second (or skew) count as one second."""

    elapsed = now - previous
    if elapsed < MIN_ELAPSED_SECONDS:
        return FALLBACK_ELAPSED_SECONDS
    return elapsed


def normalize_snapshot(raw: Mapping[str, Any] | None) -> dict[str, float]:
    """Keep finite numeric readings only."""

    out: dict[str, float] = {}
    if not raw:
        return out
    for key, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        number = float(value)
        if math.isfinite(number):
            out[str(key)] = number
    return out


def _delta(current: Snapshot, previous: Snapshot, key: str) -> float:
    return clamp_delta(current.get(key, 0.0), previous.get(key, 0.0))


@dataclass(frozen=True)
class DeltaState:
    """Previous readings retained between two :meth:`DeltaEngine.compute` calls."""

    counters: Snapshot | None = None
    counters_at: float = 0.0
    time_model: Snapshot | None = None
    time_model_at: float = 0.0


class DeltaEngine:
    """Turns successive cumulative counter snapshots into a Rate Mapping.

    The first call for a snapshot family only records a baseline and reports
    zeros. Later calls difference against the stored baseline, which is
    replaced once the new rates are known. When ``time_model`` is supplied the
    engine also derives active sessions plus DB/CPU time per second for
    backends without native gauges.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._state = DeltaState()

    @property
    def state(self) -> DeltaState:
        return self._state

    @property
    def bootstrapped(self) -> bool:
        return self._state.counters is not None

    def reset(self) -> None:
        """Forget the baseline so the next call bootstraps again."""

        self._state = DeltaState()

    def compute(
        self,
        counters: Mapping[str, Any],
        time_model: Mapping[str, Any] | None = None,
        *,
        now: float | None = None,
    ) -> dict[str, float]:
        now = self._clock() if now is None else now
        current = normalize_snapshot(counters)
        state = self._state

        rates = self._counter_rates(current, state, now)
        new_state = replace(state, counters=current, counters_at=now)

        if time_model is not None:
            current_tm = normalize_snapshot(time_model)
            rates.update(self._synthetic_gauges(current_tm, state, now))
            new_state = replace(new_state, time_model=current_tm, time_model_at=now)

        self._state = new_state
        return rates

    @staticmethod
    def _counter_rates(current: Snapshot, state: DeltaState, now: float) -> dict[str, float]:
        previous = state.counters
        if previous is None:
            logger.debug("Delta engine baseline recorded (%d counters)", len(current))
            return {label: 0.0 for label in RATE_LABELS}

        elapsed = effective_elapsed(now, state.counters_at)
        rates: dict[str, float] = {}
        for counter, label in THROUGHPUT_RATES:
            rates[label] = _delta(current, previous, counter) / elapsed

        d_logical = _delta(current, previous, LOGICAL_READS)
        d_physical = _delta(current, previous, PHYSICAL_READS)
        hit_ratio = 0.0
        if d_logical > 0:
            hit_ratio = max(0.0, (1.0 - d_physical / d_logical) * 100.0)
        rates[BUFFER_CACHE_HIT_RATIO] = hit_ratio
        return rates

    @staticmethod
    def _synthetic_gauges(current: Snapshot, state: DeltaState, now: float) -> dict[str, float]:
        previous = state.time_model
        if previous is None:
            return {label: 0.0 for label in SYNTHETIC_GAUGE_LABELS}

        elapsed = effective_elapsed(now, state.time_model_at)
        d_db_time = _delta(current, previous, DB_TIME_US)
        d_db_cpu = _delta(current, previous, DB_CPU_US)
        active_sessions = d_db_time / elapsed / _MICROS_PER_SECOND
        cpu_sessions = d_db_cpu / elapsed / _MICROS_PER_SECOND
        return {
            AVERAGE_ACTIVE_SESSIONS: active_sessions,
            DB_TIME_PER_SEC: active_sessions * _CENTISECONDS_PER_SECOND,
            CPU_USAGE_PER_SEC: cpu_sessions * _CENTISECONDS_PER_SECOND,
        }


__all__ = [
    "DeltaEngine",
    "DeltaState",
    "Snapshot",
    "clamp_delta",
    "effective_elapsed",
    "normalize_snapshot",
]
