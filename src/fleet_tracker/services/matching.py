"""Associates active loads with vehicle positions and picks each vehicle's current load."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from ..models.domain import ACTIVE_STATUSES, Depot, Load
from .geofence import find_depot_by_name, is_within
from .telemetry.models import VehiclePosition

STATUS_PRIORITY = {"in-transit": 0, "scheduled": 1, "pending": 2}


@dataclass(slots=True)
class LoadMatch:
    load: Load
    position: Optional[VehiclePosition]
    is_current: bool
    origin_depot: Optional[Depot]
    destination_depot: Optional[Depot]
    is_at_origin: bool = False
    is_at_destination: bool = False

    @property
    def vehicle_key(self) -> Optional[str]:
        """Lock/grouping key: the matched asset id, else the fleet vehicle id."""
        if self.position is not None:
            return self.position.vehicle_id
        return self.load.vehicle_id


def find_position(load: Load, positions: Mapping[str, VehiclePosition]) -> Optional[VehiclePosition]:
    """Position for the load's vehicle: by telematics asset id, then by registration."""
    vehicle = load.vehicle
    if vehicle is None:
        return None
    if vehicle.telematics_asset_id and vehicle.telematics_asset_id in positions:
        return positions[vehicle.telematics_asset_id]
    for position in positions.values():
        if position.registration and position.registration == vehicle.vehicle_id:
            return position
    for position in positions.values():
        if position.name and vehicle.vehicle_id and vehicle.vehicle_id in position.name:
            return position
    return None


def _sort_key(load: Load) -> tuple[int, float]:
    loading = load.loading_date.timestamp() if isinstance(load.loading_date, datetime) else float("inf")
    return STATUS_PRIORITY.get(load.status, len(STATUS_PRIORITY)), loading


def select_current_loads(loads: Iterable[Load]) -> set[str]:
    """Ids of the current load per (vehicle, origin) group."""
    groups: dict[tuple[str, str], list[Load]] = defaultdict(list)
    for load in loads:
        if load.status in ACTIVE_STATUSES and load.vehicle_id:
            groups[(load.vehicle_id, load.origin)].append(load)
    return {min(group, key=_sort_key).id for group in groups.values()}


def match_loads(
    loads: Sequence[Load],
    positions: Mapping[str, VehiclePosition],
    depots: Sequence[Depot],
    extra_depots: Sequence[Depot] = (),
) -> list[LoadMatch]:
    """Match every active load; geofence flags are only set on current loads."""
    active = [load for load in loads if load.status in ACTIVE_STATUSES]
    current_ids = select_current_loads(active)

    matches: list[LoadMatch] = []
    for load in active:
        position = find_position(load, positions)
        match = LoadMatch(
            load=load,
            position=position,
            is_current=load.id in current_ids,
            origin_depot=find_depot_by_name(load.origin, depots, extra_depots),
            destination_depot=find_depot_by_name(load.destination, depots, extra_depots),
        )
        if match.is_current and position is not None:
            if match.origin_depot is not None:
                match.is_at_origin = is_within(position.latitude, position.longitude, match.origin_depot)
            if match.destination_depot is not None:
                match.is_at_destination = is_within(position.latitude, position.longitude, match.destination_depot)
        matches.append(match)
    return matches
