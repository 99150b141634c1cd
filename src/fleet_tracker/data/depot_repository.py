"""Depot reference data with database-first approach, falling back to an Excel workbook."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from openpyxl import load_workbook

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import Depot

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"Name", "Latitude", "Longitude"}


def _normalize_name(name: Any) -> str:
    return str(name).strip()


def _radius(value: Any) -> float:
    try:
        radius = float(value)
    except (TypeError, ValueError):
        return settings.default_geofence_radius_m
    return radius if radius > 0 else settings.default_geofence_radius_m


def depot_from_row(row: Mapping[str, Any], depot_type: str = "depot") -> Depot:
    """Build a depot from a table row; raises on missing name or coordinates."""
    name = _normalize_name(row["name"])
    if not name:
        raise ValueError("depot name is empty")
    return Depot(
        id=str(row.get("id") or name),
        name=name,
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        radius_m=_radius(row.get("radius_m", row.get("radius"))),
        country=row.get("country"),
        type=row.get("type") or depot_type,
    )


def _depots_from_rows(rows: Iterable[Mapping[str, Any]], depot_type: str) -> tuple[Depot, ...]:
    depots: list[Depot] = []
    for row in rows:
        try:
            depots.append(depot_from_row(row, depot_type))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping invalid {depot_type} row: {e}")
    return tuple(depots)


def _load_depots_from_database(client: Any = None) -> tuple[Depot, ...] | None:
    """Returns None if the database is not available or holds no depots."""
    supabase = client if client is not None else get_supabase_client()
    if not supabase:
        return None
    try:
        response = supabase.table(settings.depots_table).select("*").execute()
    except Exception as e:
        logger.debug(f"Depot query failed, falling back to file: {e}")
        return None
    if not response.data:
        return None
    return _depots_from_rows(response.data, "depot") or None


def _load_depots_from_file(source: Path | None = None) -> tuple[Depot, ...]:
    """Load depots from the workbook: Name/Latitude/Longitude, optional Radius/Id/Country/Type."""
    workbook_path = source or settings.depots_file
    if not workbook_path.exists():
        raise FileNotFoundError(f"Depot workbook not found: {workbook_path}")

    wb = load_workbook(workbook_path, data_only=True, read_only=True)
    try:
        rows = wb.active.iter_rows(min_row=1, values_only=True)
        header = next(rows, None)
        if header is None:
            raise ValueError(f"Depot workbook '{workbook_path}' is empty.")

        header_map = {str(name).strip(): idx for idx, name in enumerate(header) if name is not None}
        missing_columns = REQUIRED_COLUMNS - set(header_map)
        if missing_columns:
            raise ValueError(f"Depot workbook missing columns: {', '.join(sorted(missing_columns))}")

        records = []
        for row in rows:
            record = {column.lower(): row[idx] for column, idx in header_map.items() if idx < len(row)}
            if not record.get("name"):
                continue
            records.append(record)
    finally:
        wb.close()
    return _depots_from_rows(records, "depot")


def get_depots(source: Path | None = None, client: Any = None) -> tuple[Depot, ...]:
    """Static depot list: Supabase first, the workbook when the table is empty or unreachable."""
    db_depots = _load_depots_from_database(client)
    if db_depots:
        return db_depots
    return _load_depots_from_file(source)


def get_custom_locations(client: Any = None) -> tuple[Depot, ...]:
    """User-defined locations, looked up alongside the static depots."""
    supabase = client if client is not None else get_supabase_client()
    if not supabase:
        return ()
    try:
        response = supabase.table(settings.custom_locations_table).select("*").execute()
    except Exception as e:
        logger.warning(f"Could not load custom locations: {e}")
        return ()
    return _depots_from_rows(response.data or [], "custom")


class DepotCatalog:
    """Caches the static depots and refreshes custom locations on demand."""

    def __init__(self, source: Optional[Path] = None, client: Any = None) -> None:
        self.source = source
        self.client = client
        self._depots: tuple[Depot, ...] | None = None

    def depots(self) -> tuple[Depot, ...]:
        if self._depots is None:
            try:
                self._depots = get_depots(self.source, self.client)
            except (FileNotFoundError, ValueError) as e:
                logger.warning(f"No depot reference data available: {e}")
                return ()
            logger.info(f"Loaded {len(self._depots)} depots")
        return self._depots

    def custom_locations(self) -> tuple[Depot, ...]:
        return get_custom_locations(self.client)

    def reload(self) -> None:
        self._depots = None
