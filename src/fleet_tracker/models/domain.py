"""Domain models for depots, fleet vehicles and loads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from ..schemas.time_window import TimeWindowRecord

LoadStatus = Literal["pending", "scheduled", "in-transit", "delivered"]
TimeSource = Literal["auto", "manual"]
Leg = Literal["origin", "destination"]

ACTIVE_STATUSES: tuple[str, ...] = ("pending", "scheduled", "in-transit")


@dataclass(frozen=True, slots=True)
class Depot:
    """A named circular geofence around a loading or offloading point."""

    id: str
    name: str
    latitude: float
    longitude: float
    radius_m: float
    country: Optional[str] = None
    type: str = "depot"


@dataclass(slots=True)
class FleetVehicleRef:
    """The fleet vehicle a load is assigned to, as joined onto the load row."""

    id: str
    vehicle_id: str
    type: Optional[str] = None
    telematics_asset_id: Optional[str] = None


@dataclass(slots=True)
class Load:
    """A shipment and the actual milestone times recorded against it."""

    id: str
    load_id: str
    origin: str
    destination: str
    status: str
    loading_date: Optional[datetime] = None
    offloading_date: Optional[datetime] = None
    fleet_vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle: Optional[FleetVehicleRef] = None

    actual_loading_arrival: Optional[datetime] = None
    actual_loading_arrival_verified: bool = False
    actual_loading_arrival_source: Optional[str] = None
    actual_loading_departure: Optional[datetime] = None
    actual_loading_departure_verified: bool = False
    actual_loading_departure_source: Optional[str] = None
    actual_offloading_arrival: Optional[datetime] = None
    actual_offloading_arrival_verified: bool = False
    actual_offloading_arrival_source: Optional[str] = None
    actual_offloading_departure: Optional[datetime] = None
    actual_offloading_departure_verified: bool = False
    actual_offloading_departure_source: Optional[str] = None

    time_window: TimeWindowRecord = field(default_factory=TimeWindowRecord)

    @property
    def vehicle_id(self) -> Optional[str]:
        return self.vehicle.vehicle_id if self.vehicle else None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(frozen=True, slots=True)
class GeofenceEvent:
    """One auto-captured milestone as kept in the geofence event log."""

    load_id: str
    event_type: str
    event_time: datetime
    load_number: Optional[str] = None
    geofence_name: Optional[str] = None
    vehicle_registration: Optional[str] = None
    telematics_asset_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: str = "auto"

    def to_row(self) -> dict:
        return {
            "load_id": self.load_id,
            "load_number": self.load_number,
            "vehicle_registration": self.vehicle_registration,
            "telematics_asset_id": self.telematics_asset_id,
            "event_type": self.event_type,
            "geofence_name": self.geofence_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "event_time": self.event_time.isoformat(),
            "source": self.source,
        }
