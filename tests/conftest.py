from datetime import datetime, timezone
from typing import Any, Mapping

import pytest

from src.fleet_tracker.data.load_repository import LoadNotFoundError, load_from_row
from src.fleet_tracker.models.domain import ACTIVE_STATUSES, Depot
from src.fleet_tracker.services.milestones import milestone_fields
from src.fleet_tracker.services.telemetry.models import VehiclePosition
from src.fleet_tracker.services.time_window import merge_stored_time_window

# Meters per degree of latitude on the haversine sphere.
METERS_PER_DEGREE = 111_194.93

DEPOT_LAT = -26.2041
DEPOT_LON = 28.0473


def north_of(latitude: float, meters: float) -> float:
    return latitude + meters / METERS_PER_DEGREE


def make_row(
    row_id: str,
    status: str = "scheduled",
    origin: str = "Johannesburg DC",
    destination: str = "Durban DC",
    vehicle_id: str = "T1",
    asset_id: str | None = "1001",
    loading_date: str = "2026-03-02",
    **extra: Any,
) -> dict:
    row = {
        "id": row_id,
        "load_id": f"LD-{row_id}",
        "status": status,
        "origin": origin,
        "destination": destination,
        "loading_date": loading_date,
        "offloading_date": "2026-03-03",
        "fleet_vehicle_id": f"fv-{vehicle_id}",
        "driver_id": f"drv-{vehicle_id}",
        "fleet_vehicle": {"id": f"fv-{vehicle_id}", "vehicle_id": vehicle_id, "telematics_asset_id": asset_id},
        "time_window": {
            "origin": {"plannedArrival": "15:00", "plannedDeparture": "17:00"},
            "destination": {"plannedArrival": "08:00", "plannedDeparture": "11:00"},
            "backload": {"enabled": True, "destination": "Pretoria", "quantities": {"bins": 4}},
        },
    }
    row.update(extra)
    return row


def make_position(
    latitude: float,
    longitude: float = DEPOT_LON,
    speed_kmh: float = 0.0,
    vehicle_id: str = "1001",
    last_connected: datetime | None = None,
) -> VehiclePosition:
    return VehiclePosition(
        vehicle_id=vehicle_id,
        latitude=latitude,
        longitude=longitude,
        speed_kmh=speed_kmh,
        heading=90.0,
        last_connected=last_connected or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc),
        name=f"Truck {vehicle_id}",
        registration=None,
    )


class FakeLoadRepository:
    """In-memory load store applying the same partial updates as Supabase."""

    def __init__(self, rows=()) -> None:
        self.rows = {row["id"]: dict(row) for row in rows}
        self.writes: list[tuple[str, str, str]] = []
        self.failures_left = 0
        self.events = []

    def get_active_loads(self):
        return [load_from_row(row) for row in self.rows.values() if row["status"] in ACTIVE_STATUSES]

    def _row(self, load_id: str) -> dict:
        if load_id not in self.rows:
            raise LoadNotFoundError(f"Load {load_id} not found")
        return self.rows[load_id]

    def get_load(self, load_id: str):
        return load_from_row(self._row(load_id))

    def update_load(self, load_id: str, fields: Mapping[str, Any], time_window_patch=None):
        row = self._row(load_id)
        row.update({key: value for key, value in fields.items() if key != "time_window"})
        if time_window_patch:
            row["time_window"] = merge_stored_time_window(row.get("time_window"), time_window_patch)
        return load_from_row(row)

    def record_milestone(self, load_id, event, timestamp, source, overwrite=False):
        if self.failures_left:
            self.failures_left -= 1
            raise RuntimeError("database unavailable")
        row = self._row(load_id)
        row.update(milestone_fields(row, event, timestamp, source, overwrite=overwrite))
        self.writes.append((load_id, event.value, source))
        return load_from_row(row)

    def record_event(self, event):
        self.events.append(event)

    def list_events(self, load_id, limit=50):
        matching = [event for event in self.events if event.load_id == load_id]
        return sorted(matching, key=lambda event: event.event_time, reverse=True)[:limit]


@pytest.fixture
def origin_depot() -> Depot:
    return Depot(id="d1", name="Johannesburg DC", latitude=DEPOT_LAT, longitude=DEPOT_LON, radius_m=300.0)


@pytest.fixture
def destination_depot() -> Depot:
    return Depot(id="d2", name="Durban DC", latitude=-29.8587, longitude=31.0218, radius_m=500.0)
