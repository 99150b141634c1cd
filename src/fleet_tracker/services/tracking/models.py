"""In-memory display state rebuilt on every tracking tick."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..capture.controller import CaptureResult
from ..time_window import Variance
from ..trips.progress import EtaEstimate, TripProgress


@dataclass(frozen=True, slots=True)
class PositionSummary:
    vehicle_id: str
    latitude: float
    longitude: float
    speed_kmh: float
    heading_direction: str
    last_connected: Optional[datetime]
    last_connected_label: str
    signal_strength: str
    is_stale: bool
    nearest_depot: Optional[str] = None
    nearest_depot_distance_m: Optional[float] = None
    current_location: Optional[str] = None


@dataclass(slots=True)
class TrackedLoad:
    id: str
    load_id: str
    origin: str
    destination: str
    status: str
    phase: str
    is_current: bool
    vehicle_id: Optional[str]
    position: Optional[PositionSummary]
    progress: Optional[TripProgress]
    eta: EtaEstimate
    next_phase: Optional[str] = None
    driver_id: Optional[str] = None
    is_at_origin: bool = False
    is_at_destination: bool = False
    awaiting_delivery_confirmation: bool = False
    variances: dict[str, Variance] = field(default_factory=dict)


@dataclass(slots=True)
class TrackingState:
    last_refresh: Optional[datetime] = None
    tracking_available: bool = False
    unauthenticated: bool = False
    last_error: Optional[str] = None
    loads: list[TrackedLoad] = field(default_factory=list)
    last_captures: list[CaptureResult] = field(default_factory=list)
