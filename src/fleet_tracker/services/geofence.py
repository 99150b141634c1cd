"""Depot geofence membership and lookup."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from ..models.domain import Depot
from .geospatial import distance_m


def distance_to_depot_m(latitude: float, longitude: float, depot: Depot) -> float:
    return distance_m(latitude, longitude, depot.latitude, depot.longitude)


def is_within(latitude: float, longitude: float, depot: Depot) -> bool:
    """True when the point lies inside the depot radius (boundary inclusive)."""
    return distance_to_depot_m(latitude, longitude, depot) <= depot.radius_m


def find_depot_by_name(
    name: Optional[str],
    depots: Iterable[Depot],
    extra_depots: Iterable[Depot] = (),
) -> Optional[Depot]:
    """Look a location name up across the reference depots and custom locations.

    Many destinations are plain client addresses rather than depots, so an
    unmatched name returns None.
    """
    if not name:
        return None
    wanted = name.strip()
    for depot in (*depots, *extra_depots):
        if depot.name.strip() == wanted:
            return depot
    return None


def find_nearest_depot(
    latitude: float, longitude: float, depots: Sequence[Depot]
) -> Optional[tuple[Depot, float]]:
    """Nearest depot and its distance in meters, or None for an empty list."""
    nearest: Optional[tuple[Depot, float]] = None
    for depot in depots:
        distance = distance_to_depot_m(latitude, longitude, depot)
        if nearest is None or distance < nearest[1]:
            nearest = (depot, distance)
    return nearest

