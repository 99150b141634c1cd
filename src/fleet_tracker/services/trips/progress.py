"""Trip progress along the origin-destination corridor and ETA estimates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...config import settings
from ...models.domain import Depot
from ..geofence import is_within
from ..geospatial import corridor_fraction, haversine_km
from .osrm_client import RoadDistanceClient

logger = logging.getLogger(__name__)

UNKNOWN_ETA = "--:--"
UNKNOWN_DURATION = "Unknown"


@dataclass(frozen=True, slots=True)
class TripProgress:
    total_distance_km: float
    distance_traveled_km: float
    distance_remaining_km: float
    progress: float
    is_at_origin: bool
    is_at_destination: bool


@dataclass(frozen=True, slots=True)
class EtaEstimate:
    eta: Optional[datetime]
    eta_formatted: str
    duration_minutes: Optional[int]
    duration_formatted: str
    speed_used_kmh: Optional[float]
    distance_remaining_km: Optional[float]
    distance_remaining_formatted: str

    @property
    def is_known(self) -> bool:
        return self.eta is not None

    @classmethod
    def unknown(cls) -> "EtaEstimate":
        return cls(
            eta=None,
            eta_formatted=UNKNOWN_ETA,
            duration_minutes=None,
            duration_formatted=UNKNOWN_DURATION,
            speed_used_kmh=None,
            distance_remaining_km=None,
            distance_remaining_formatted=UNKNOWN_DURATION,
        )


def format_duration(minutes: int) -> str:
    hours, mins = divmod(max(minutes, 0), 60)
    return f"{hours}h {mins}m" if hours else f"{mins}m"


def format_distance(distance_km: float) -> str:
    if distance_km < 1:
        return f"{round(distance_km * 1000)}m"
    return f"{round(distance_km)}km"


def estimate_trip_progress(origin: Depot, destination: Depot, latitude: float, longitude: float) -> TripProgress:
    """Project a live position onto the straight origin->destination corridor."""
    total = haversine_km(origin.latitude, origin.longitude, destination.latitude, destination.longitude)

    fraction = corridor_fraction(
        (origin.latitude, origin.longitude),
        (destination.latitude, destination.longitude),
        (latitude, longitude),
    )
    if fraction is not None:
        traveled = total * fraction
    else:
        traveled = total - haversine_km(latitude, longitude, destination.latitude, destination.longitude)
    traveled = min(max(traveled, 0.0), total)

    return TripProgress(
        total_distance_km=total,
        distance_traveled_km=traveled,
        distance_remaining_km=total - traveled,
        progress=(100.0 * traveled / total) if total > 0 else 0.0,
        is_at_origin=is_within(latitude, longitude, origin),
        is_at_destination=is_within(latitude, longitude, destination),
    )


def estimate_eta(
    distance_remaining_km: float,
    speed_kmh: Optional[float],
    now: datetime,
    floor_speed_kmh: Optional[float] = None,
    tz: Optional[str] = None,
) -> EtaEstimate:
    """ETA at ``max(reported speed, floor)`` so stalled readings stay finite.

    The clock time is shown in ``tz`` when given, else in the zone of ``now``.
    """
    floor = floor_speed_kmh if floor_speed_kmh is not None else settings.eta_floor_speed_kmh
    speed = max(speed_kmh or 0.0, floor)
    minutes = round(distance_remaining_km / speed * 60)
    eta = now + timedelta(minutes=minutes)
    clock = eta
    if tz:
        try:
            clock = eta.astimezone(ZoneInfo(tz))
        except ZoneInfoNotFoundError:
            logger.warning(f"Unknown timezone '{tz}', showing ETA in {eta.tzname() or 'UTC'}")
    return EtaEstimate(
        eta=eta,
        eta_formatted=clock.strftime("%H:%M"),
        duration_minutes=minutes,
        duration_formatted=format_duration(minutes),
        speed_used_kmh=speed,
        distance_remaining_km=distance_remaining_km,
        distance_remaining_formatted=format_distance(distance_remaining_km),
    )


class TripEstimator:
    """Progress plus ETA for a load, optionally using road distance for the ETA."""

    def __init__(
        self,
        road_client: RoadDistanceClient | None = None,
        floor_speed_kmh: float | None = None,
        timezone: str | None = None,
    ) -> None:
        self.road_client = road_client
        self.floor_speed_kmh = floor_speed_kmh if floor_speed_kmh is not None else settings.eta_floor_speed_kmh
        self.timezone = timezone if timezone is not None else settings.local_timezone

    @classmethod
    def from_settings(cls) -> "TripEstimator":
        road_client = RoadDistanceClient() if settings.osrm_base_url else None
        return cls(road_client=road_client)

    def estimate(
        self,
        origin: Depot,
        destination: Depot,
        latitude: Optional[float],
        longitude: Optional[float],
        speed_kmh: Optional[float],
        now: datetime,
    ) -> tuple[Optional[TripProgress], EtaEstimate]:
        if latitude is None or longitude is None:
            return None, EtaEstimate.unknown()

        progress = estimate_trip_progress(origin, destination, latitude, longitude)
        remaining = progress.distance_remaining_km
        if self.road_client is not None and not progress.is_at_destination:
            road_km = self.road_client.distance_km((latitude, longitude), (destination.latitude, destination.longitude))
            if road_km is not None:
                remaining = road_km
        return progress, estimate_eta(remaining, speed_kmh, now, self.floor_speed_kmh, self.timezone)
