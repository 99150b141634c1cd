"""Telemetry domain models and display helpers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


@dataclass(frozen=True, slots=True)
class VehiclePosition:
    """Last reported position of one tracked asset."""

    vehicle_id: str
    latitude: float
    longitude: float
    speed_kmh: float = 0.0
    heading: float = 0.0
    last_connected: Optional[datetime] = None
    name: Optional[str] = None
    registration: Optional[str] = None


@dataclass(slots=True)
class TelemetrySnapshot:
    """Positions for the whole fleet as of one polling tick."""

    positions: dict[str, VehiclePosition] = field(default_factory=dict)
    fetched_at: Optional[datetime] = None
    stale: bool = False
    unauthenticated: bool = False

    def mark_stale(self, *, unauthenticated: bool = False) -> "TelemetrySnapshot":
        return replace(self, stale=True, unauthenticated=unauthenticated)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def parse_utc(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp; values without an offset are UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _as_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def position_from_asset(raw: Mapping[str, Any]) -> Optional[VehiclePosition]:
    """Build a position from a provider asset payload.

    Returns None when the asset has no id or no usable coordinates.
    """
    asset_id = _first(raw, "id", "Id", "assetId", "AssetId")
    latitude = _as_float(_first(raw, "lastLatitude", "LastLatitude"))
    longitude = _as_float(_first(raw, "lastLongitude", "LastLongitude"))
    if asset_id is None or latitude is None or longitude is None:
        return None
    return VehiclePosition(
        vehicle_id=str(asset_id),
        latitude=latitude,
        longitude=longitude,
        speed_kmh=_as_float(_first(raw, "speedKmH", "SpeedKmH"), 0.0) or 0.0,
        heading=_as_float(_first(raw, "heading", "Heading"), 0.0) or 0.0,
        last_connected=parse_utc(_first(raw, "lastConnectedUtc", "LastConnectedUtc", "lastPositionUtc")),
        name=_first(raw, "displayName", "name", "Name", "code"),
        registration=_first(raw, "registrationNumber", "RegistrationNumber"),
    )


def minutes_since(moment: Optional[datetime], now: datetime) -> Optional[float]:
    if moment is None:
        return None
    return (now - moment).total_seconds() / 60.0


def is_stale(position: VehiclePosition, now: datetime, stale_after_minutes: float) -> bool:
    age = minutes_since(position.last_connected, now)
    return age is None or age > stale_after_minutes


def gps_signal_strength(position: Optional[VehiclePosition], now: datetime) -> str:
    age = minutes_since(position.last_connected, now) if position else None
    if age is None:
        return "none"
    if age < 5:
        return "strong"
    if age < 15:
        return "medium"
    if age < 60:
        return "weak"
    return "none"


def format_last_connected(moment: Optional[datetime], now: datetime) -> str:
    """Relative "time ago" label for a last-connected timestamp."""
    if moment is None:
        return "Never"
    age = minutes_since(moment, now)
    # Provider clocks run slightly ahead at times.
    if age is None or age < 1:
        return "Just now"
    minutes = int(age)
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"
