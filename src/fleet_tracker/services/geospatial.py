"""Geospatial helper functions."""

from __future__ import annotations

import math

from shapely.geometry import LineString, Point

EARTH_RADIUS_KM = 6371.0

_DIRECTIONS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def heading_direction(heading: float) -> str:
    """Eight-point compass label for a heading in degrees."""
    return _DIRECTIONS[round((heading % 360) / 45) % 8]


def _local_xy_km(lat: float, lon: float, ref_lat: float, ref_lon: float) -> tuple[float, float]:
    # Equirectangular projection around the reference point.
    x = math.radians(lon - ref_lon) * math.cos(math.radians(ref_lat)) * EARTH_RADIUS_KM
    y = math.radians(lat - ref_lat) * EARTH_RADIUS_KM
    return x, y


def corridor_fraction(
    start: tuple[float, float],
    end: tuple[float, float],
    point: tuple[float, float],
) -> float | None:
    """Fraction (0..1) of the start->end segment reached by projecting ``point`` onto it.

    Returns None when the segment is degenerate.
    """
    ref_lat, ref_lon = start
    end_xy = _local_xy_km(end[0], end[1], ref_lat, ref_lon)
    corridor = LineString([(0.0, 0.0), end_xy])
    if corridor.length == 0:
        return None
    position = Point(_local_xy_km(point[0], point[1], ref_lat, ref_lon))
    return corridor.project(position, normalized=True)
