"""Tracking loop and its display state."""

from .models import PositionSummary, TrackedLoad, TrackingState
from .service import TrackingService, get_tracking_service

__all__ = ["PositionSummary", "TrackedLoad", "TrackingService", "TrackingState", "get_tracking_service"]
