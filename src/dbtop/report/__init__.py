"""Frame-log reporting and validation."""

from .summary import ReportStats, SectionStats, load_workload_result, render_markdown, summarize
from .validate import ValidationReport, validate_frame_log

__all__ = [
    "ReportStats",
    "SectionStats",
    "ValidationReport",
    "load_workload_result",
    "render_markdown",
    "summarize",
    "validate_frame_log",
]
