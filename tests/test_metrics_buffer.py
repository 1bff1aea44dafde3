from __future__ import annotations

import math
import threading

import pytest
from hypothesis import given, strategies as st

from dbtop.metrics.buffer import BLOCKS, MetricsBuffer, quantize, render_sparkline


def test_overflow_keeps_most_recent_capacity_values() -> None:
    buffer = MetricsBuffer(capacity=60)
    for value in range(75):
        buffer.push("tps", float(value))
    assert buffer.values("tps") == [float(v) for v in range(15, 75)]
    assert buffer.size("tps") == 60
    assert buffer.latest("tps") == 74.0


def test_unknown_metric_is_empty() -> None:
    buffer = MetricsBuffer()
    assert buffer.values("missing") == []
    assert buffer.latest("missing") == 0.0
    assert buffer.size("missing") == 0
    assert buffer.sparkline("missing", 5) == " " * 5


def test_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        MetricsBuffer(capacity=0)


def test_sparkline_non_positive_width_is_empty() -> None:
    buffer = MetricsBuffer()
    buffer.push("x", 1.0)
    assert buffer.sparkline("x", 0) == ""
    assert buffer.sparkline("x", -3) == ""


def test_quantize_maps_linear_ramp_onto_every_glyph() -> None:
    assert quantize([float(v) for v in range(9)]) == BLOCKS


def test_flat_positive_series_renders_mid_level() -> None:
    assert quantize([5.0, 5.0, 5.0]) == BLOCKS[4] * 3


def test_flat_zero_series_renders_blank() -> None:
    assert quantize([0.0, 0.0]) == BLOCKS[0] * 2


def test_sparkline_left_pads_short_history() -> None:
    buffer = MetricsBuffer()
    buffer.push("x", 1.0)
    buffer.push("x", 2.0)
    assert buffer.sparkline("x", 5) == BLOCKS[0] * 3 + BLOCKS[0] + BLOCKS[8]


def test_sparkline_uses_only_last_width_samples() -> None:
    buffer = MetricsBuffer()
    for value in (100.0, 0.0, 1.0):
        buffer.push("x", value)
    assert buffer.sparkline("x", 2) == BLOCKS[0] + BLOCKS[8]


def test_push_many_skips_non_numeric_values() -> None:
    buffer = MetricsBuffer()
    buffer.push_many({"a": 1, "b": True, "c": "x", "d": float("inf"), "e": 2.5})
    assert sorted(buffer.names()) == ["a", "e"]
    assert buffer.values("e") == [2.5]


def test_push_drops_non_finite_samples() -> None:
    buffer = MetricsBuffer()
    buffer.push("x", math.nan)
    buffer.push("x", 1.0)
    buffer.push("x", math.inf)
    buffer.push("x", -math.inf)
    assert buffer.values("x") == [1.0]
    assert buffer.sparkline("x", 5) == BLOCKS[0] * 4 + BLOCKS[4]


def test_render_sparkline_ignores_non_finite_history() -> None:
    line = render_sparkline([0.0, math.nan, 8.0, math.inf], 6)
    assert line == BLOCKS[0] * 4 + BLOCKS[0] + BLOCKS[8]


def test_snapshot_copies_history() -> None:
    buffer = MetricsBuffer(capacity=3)
    buffer.push_many({"a": 1.0, "b": 2.0})
    snap = buffer.snapshot(["a", "missing"])
    buffer.push("a", 5.0)
    assert snap == {"a": (1.0,), "missing": ()}
    assert set(buffer.snapshot()) == {"a", "b"}


def test_concurrent_pushes_respect_capacity() -> None:
    buffer = MetricsBuffer(capacity=16)

    def writer() -> None:
        for value in range(500):
            buffer.push_many({"m": float(value)})

    threads = [threading.Thread(target=writer) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert buffer.size("m") == 16
    assert len(buffer.values("m")) == 16


@given(
    samples=st.lists(
        st.one_of(
            st.floats(min_value=0, max_value=1e9, allow_nan=False, allow_infinity=False),
            st.sampled_from([math.nan, math.inf, -math.inf]),
        ),
        max_size=80,
    ),
    width=st.integers(min_value=1, max_value=120),
)
def test_sparkline_is_always_exactly_width(samples: list[float], width: int) -> None:
    buffer = MetricsBuffer(capacity=60)
    for sample in samples:
        buffer.push("m", sample)
    line = buffer.sparkline("m", width)
    assert len(line) == width
    assert set(line) <= set(BLOCKS)
