"""Poll loop, frame records and the plain-text monitor screen."""

from .frame import Frame, FrameLog, utc_timestamp
from .loop import CycleResult, LoopSettings, LoopState, PollLoop
from .screen import render_screen

__all__ = [
    "CycleResult",
    "Frame",
    "FrameLog",
    "LoopSettings",
    "LoopState",
    "PollLoop",
    "render_screen",
    "utc_timestamp",
]
