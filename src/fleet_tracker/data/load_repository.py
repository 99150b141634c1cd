"""Load records stored in Supabase: point reads and merge-only updates."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import ACTIVE_STATUSES, FleetVehicleRef, GeofenceEvent, Load
from ..services.milestones import MilestoneAlreadyRecordedError, MilestoneEvent, milestone_fields
from ..services.time_window import merge_stored_time_window, parse_time_window

logger = logging.getLogger(__name__)

LOAD_COLUMNS = "*, fleet_vehicle:fleet_vehicles(id, vehicle_id, type, telematics_asset_id)"


class LoadNotFoundError(LookupError):
    """The load row no longer exists."""


class LoadRepository(Protocol):
    def get_active_loads(self) -> list[Load]: ...

    def get_load(self, load_id: str) -> Load: ...

    def update_load(
        self, load_id: str, fields: Mapping[str, Any], time_window_patch: Mapping[str, Any] | None = None
    ) -> Load: ...

    def record_milestone(
        self,
        load_id: str,
        event: MilestoneEvent,
        timestamp: datetime,
        source: str,
        overwrite: bool = False,
    ) -> Load: ...

    def record_event(self, event: GeofenceEvent) -> None: ...

    def list_events(self, load_id: str, limit: int = 50) -> list[GeofenceEvent]: ...


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Ignoring unparseable timestamp '{value}'")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _vehicle_from_row(raw: Any) -> Optional[FleetVehicleRef]:
    if not isinstance(raw, Mapping) or not raw.get("vehicle_id"):
        return None
    asset_id = raw.get("telematics_asset_id")
    return FleetVehicleRef(
        id=str(raw.get("id", "")),
        vehicle_id=str(raw["vehicle_id"]),
        type=raw.get("type"),
        telematics_asset_id=str(asset_id) if asset_id not in (None, "") else None,
    )


def load_from_row(row: Mapping[str, Any]) -> Load:
    """Convert a ``loads`` row (with the joined fleet vehicle) into a Load."""
    milestones: dict[str, Any] = {}
    for event in MilestoneEvent:
        milestones[event.column] = _parse_datetime(row.get(event.column))
        milestones[f"{event.column}_verified"] = bool(row.get(f"{event.column}_verified"))
        milestones[f"{event.column}_source"] = row.get(f"{event.column}_source")

    return Load(
        id=str(row["id"]),
        load_id=str(row.get("load_id") or row["id"]),
        origin=str(row.get("origin") or ""),
        destination=str(row.get("destination") or ""),
        status=str(row.get("status") or "pending"),
        loading_date=_parse_datetime(row.get("loading_date")),
        offloading_date=_parse_datetime(row.get("offloading_date")),
        fleet_vehicle_id=row.get("fleet_vehicle_id"),
        driver_id=row.get("driver_id"),
        vehicle=_vehicle_from_row(row.get("fleet_vehicle")),
        time_window=parse_time_window(row.get("time_window")),
        **milestones,
    )


def _optional_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def event_from_row(row: Mapping[str, Any]) -> GeofenceEvent:
    def text(key: str) -> Optional[str]:
        value = row.get(key)
        return str(value) if value not in (None, "") else None

    event_time = _parse_datetime(row.get("event_time"))
    if event_time is None:
        raise ValueError(f"Geofence event {row.get('id')} has no event time")
    return GeofenceEvent(
        load_id=str(row["load_id"]),
        event_type=str(row["event_type"]),
        event_time=event_time,
        load_number=text("load_number"),
        geofence_name=text("geofence_name"),
        vehicle_registration=text("vehicle_registration"),
        telematics_asset_id=text("telematics_asset_id"),
        latitude=_optional_float(row.get("latitude")),
        longitude=_optional_float(row.get("longitude")),
        source=str(row.get("source") or "auto"),
    )


class SupabaseLoadRepository:
    """Read-modify-write access to individual load rows."""

    def __init__(self, client: Any = None, table: str | None = None, events_table: str | None = None) -> None:
        self.client = client if client is not None else get_supabase_client()
        if self.client is None:
            raise ValueError("Supabase is not configured; set FLEET_SUPABASE_URL and FLEET_SUPABASE_KEY.")
        self.table = table or settings.loads_table
        self.events_table = events_table or settings.events_table

    def _fetch_row(self, load_id: str) -> dict[str, Any]:
        response = self.client.table(self.table).select(LOAD_COLUMNS).eq("id", load_id).limit(1).execute()
        if not response.data:
            raise LoadNotFoundError(f"Load {load_id} not found")
        return response.data[0]

    def get_active_loads(self, statuses: Sequence[str] = ACTIVE_STATUSES) -> list[Load]:
        response = self.client.table(self.table).select(LOAD_COLUMNS).in_("status", list(statuses)).execute()
        loads: list[Load] = []
        for row in response.data or []:
            try:
                loads.append(load_from_row(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid load row: {e}")
        return loads

    def get_load(self, load_id: str) -> Load:
        return load_from_row(self._fetch_row(load_id))

    def update_load(
        self, load_id: str, fields: Mapping[str, Any], time_window_patch: Mapping[str, Any] | None = None
    ) -> Load:
        """Apply ``fields``; a time-window change is merged into the stored document."""
        updates = dict(fields)
        updates.pop("time_window", None)
        if time_window_patch:
            current = self._fetch_row(load_id)
            updates["time_window"] = merge_stored_time_window(current.get("time_window"), time_window_patch)
        if not updates:
            return self.get_load(load_id)

        response = self.client.table(self.table).update(updates).eq("id", load_id).execute()
        if not response.data:
            raise LoadNotFoundError(f"Load {load_id} not found")
        return self.get_load(load_id)

    def record_milestone(
        self,
        load_id: str,
        event: MilestoneEvent,
        timestamp: datetime,
        source: str,
        overwrite: bool = False,
    ) -> Load:
        """Write a milestone time; unless ``overwrite``, only into an empty column."""
        row = self._fetch_row(load_id)
        updates = milestone_fields(row, event, timestamp, source, overwrite=overwrite)

        query = self.client.table(self.table).update(updates).eq("id", load_id)
        if not overwrite:
            # Guards against a manual entry landing between the read and the write.
            query = query.is_(event.column, "null")
        response = query.execute()
        if not response.data:
            raise MilestoneAlreadyRecordedError(f"{event.column} already recorded for load {load_id}")
        logger.info(f"Recorded {event.value} for load {row.get('load_id', load_id)} ({source})")
        return self.get_load(load_id)

    def record_event(self, event: GeofenceEvent) -> None:
        self.client.table(self.events_table).insert(event.to_row()).execute()

    def list_events(self, load_id: str, limit: int = 50) -> list[GeofenceEvent]:
        """Most recent events first."""
        response = (
            self.client.table(self.events_table)
            .select("*")
            .eq("load_id", load_id)
            .order("event_time", desc=True)
            .limit(limit)
            .execute()
        )
        events: list[GeofenceEvent] = []
        for row in response.data or []:
            try:
                events.append(event_from_row(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid geofence event row: {e}")
        return events
