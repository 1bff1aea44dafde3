"""Rate computation, wait ranking and metric history."""

from .buffer import BLOCKS, MetricsBuffer, render_sparkline
from .core import map_metrics, parse_frame_line
from .delta import DeltaEngine, DeltaState
from .waits import WaitDeltaTracker, WaitRow, WaitTotal

__all__ = [
    "BLOCKS",
    "DeltaEngine",
    "DeltaState",
    "MetricsBuffer",
    "WaitDeltaTracker",
    "WaitRow",
    "WaitTotal",
    "map_metrics",
    "parse_frame_line",
    "render_sparkline",
]
