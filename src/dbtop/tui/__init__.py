"""Textual dashboard for dbtop."""

from .app import DbtopApp, run_tui

__all__ = ["DbtopApp", "run_tui"]
