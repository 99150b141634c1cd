"""Dwell tracking and automatic milestone capture."""

from .controller import AutoCaptureController, CaptureResult
from .dwell import DwellState, DwellTracker

__all__ = ["AutoCaptureController", "CaptureResult", "DwellState", "DwellTracker"]
