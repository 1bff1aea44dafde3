"""Fixed-capacity per-metric history with block-character sparklines."""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .constants import DEFAULT_HISTORY_CAPACITY

BLOCKS = " ▁▂▃▄▅▆▇█"
_MAX_LEVEL = len(BLOCKS) - 1
_FLAT_EPSILON = 0.0001
_FLAT_LEVEL = 4


class _Ring:
    """Circular array of samples; ``count`` saturates at capacity."""

    __slots__ = ("slots", "cursor", "count")

    def __init__(self, capacity: int) -> None:
        self.slots = [0.0] * capacity
        self.cursor = 0
        self.count = 0

    def push(self, value: float) -> None:
        capacity = len(self.slots)
        self.slots[self.cursor] = value
        self.cursor = (self.cursor + 1) % capacity
        if self.count < capacity:
            self.count += 1

    def ordered(self) -> list[float]:
        capacity = len(self.slots)
        start = (self.cursor - self.count) % capacity
        return [self.slots[(start + i) % capacity] for i in range(self.count)]

    def latest(self) -> float:
        if self.count == 0:
            return 0.0
        return self.slots[(self.cursor - 1) % len(self.slots)]


def quantize(window: list[float]) -> str:
    """Map ``window`` onto the nine sparkline glyphs."""

    if not window:
        return ""
    low = min(window)
    high = max(window)
    span = high - low
    if span < _FLAT_EPSILON:
        glyph = BLOCKS[_FLAT_LEVEL] if high > _FLAT_EPSILON else BLOCKS[0]
        return glyph * len(window)
    chars = []
    for value in window:
        level = int(math.floor((value - low) / span * _MAX_LEVEL))
        chars.append(BLOCKS[max(0, min(_MAX_LEVEL, level))])
    return "".join(chars)


def _finite(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def render_sparkline(history: Sequence[float], width: int) -> str:
    """Render the last ``width`` samples of ``history`` as exactly ``width`` glyphs."""

    if width <= 0:
        return ""
    window = [value for value in history[-width:] if math.isfinite(value)]
    return BLOCKS[0] * (width - len(window)) + quantize(window)


class MetricsBuffer:
    """Thread-safe ring buffers keyed by metric name.

    The poll loop writes once per cycle while the dashboard reads from its own
    thread, so every operation takes the same lock. Non-finite samples are
    dropped on the way in.
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._rings: dict[str, _Ring] = {}
        self._lock = threading.Lock()

    def _push_locked(self, name: str, value: Any) -> None:
        number = _finite(value)
        if number is None:
            return
        ring = self._rings.get(name)
        if ring is None:
            ring = self._rings[name] = _Ring(self.capacity)
        ring.push(number)

    def push(self, name: str, value: float) -> None:
        with self._lock:
            self._push_locked(name, value)

    def push_many(self, values: Mapping[str, Any]) -> None:
        """Push every finite numeric entry of ``values`` under one lock acquisition."""

        with self._lock:
            for name, value in values.items():
                self._push_locked(name, value)

    def values(self, name: str) -> list[float]:
        with self._lock:
            ring = self._rings.get(name)
            return ring.ordered() if ring is not None else []

    def snapshot(self, names: Iterable[str] | None = None) -> dict[str, tuple[float, ...]]:
        """Copy the history of ``names`` (default: every metric) in one consistent read."""

        with self._lock:
            keys = list(self._rings) if names is None else list(names)
            return {
                key: tuple(self._rings[key].ordered()) if key in self._rings else ()
                for key in keys
            }

    def latest(self, name: str) -> float:
        with self._lock:
            ring = self._rings.get(name)
            return ring.latest() if ring is not None else 0.0

    def size(self, name: str) -> int:
        with self._lock:
            ring = self._rings.get(name)
            return ring.count if ring is not None else 0

    def names(self) -> list[str]:
        with self._lock:
            return list(self._rings)

    def sparkline(self, name: str, width: int) -> str:
        """Render the last ``width`` samples as exactly ``width`` glyphs."""

        return render_sparkline(self.values(name), width)


__all__ = ["BLOCKS", "MetricsBuffer", "quantize", "render_sparkline"]
