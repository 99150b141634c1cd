"""Milestone events and the partial load updates that record them."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from ..models.domain import Load
from .time_window import merge_stored_time_window


class MilestoneAlreadyRecordedError(Exception):
    """The milestone column is already populated and may not be overwritten."""


class MilestoneEvent(str, Enum):
    LOADING_ARRIVAL = "loading_arrival"
    LOADING_DEPARTURE = "loading_departure"
    OFFLOADING_ARRIVAL = "offloading_arrival"
    OFFLOADING_DEPARTURE = "offloading_departure"

    @property
    def column(self) -> str:
        return f"actual_{self.value}"

    @property
    def leg(self) -> str:
        return "origin" if self.value.startswith("loading") else "destination"

    @property
    def is_arrival(self) -> bool:
        return self.value.endswith("arrival")

    @property
    def time_window_field(self) -> str:
        return "actualArrival" if self.is_arrival else "actualDeparture"

    @classmethod
    def for_leg(cls, leg: str, arrival: bool) -> "MilestoneEvent":
        prefix = "loading" if leg == "origin" else "offloading"
        return cls(f"{prefix}_{'arrival' if arrival else 'departure'}")


# Status moves applied when an event is recorded: (statuses it applies to, new status).
# Destination events never complete a delivery; that needs an explicit confirmation.
STATUS_TRANSITIONS: dict[MilestoneEvent, tuple[frozenset[str], str]] = {
    MilestoneEvent.LOADING_ARRIVAL: (frozenset({"pending"}), "scheduled"),
    MilestoneEvent.LOADING_DEPARTURE: (frozenset({"pending", "scheduled"}), "in-transit"),
}


def recorded_time(load: Load, event: MilestoneEvent) -> Optional[datetime]:
    return getattr(load, event.column)


def _may_transition(row: Mapping[str, Any], event: MilestoneEvent) -> bool:
    """A pending load is only scheduled once both a vehicle and a driver are assigned."""
    if event is MilestoneEvent.LOADING_ARRIVAL:
        return bool(row.get("fleet_vehicle_id") and row.get("driver_id"))
    return True


def milestone_fields(
    row: Mapping[str, Any],
    event: MilestoneEvent,
    timestamp: datetime,
    source: str,
    overwrite: bool = False,
) -> dict[str, Any]:
    """Partial update recording ``event`` on the freshly read load ``row``.

    Raises MilestoneAlreadyRecordedError when the column is populated and
    ``overwrite`` is False; only explicit user edits pass ``overwrite=True``.
    Auto-captured times are written unverified, manual entries verified.
    """
    if row.get(event.column) and not overwrite:
        raise MilestoneAlreadyRecordedError(f"{event.column} already recorded for load {row.get('id')}")

    iso_timestamp = timestamp.isoformat()
    fields: dict[str, Any] = {
        event.column: iso_timestamp,
        f"{event.column}_verified": source == "manual",
        f"{event.column}_source": source,
    }
    transition = STATUS_TRANSITIONS.get(event)
    if transition and row.get("status") in transition[0] and _may_transition(row, event):
        fields["status"] = transition[1]
    fields["time_window"] = merge_stored_time_window(
        row.get("time_window"),
        {event.leg: {event.time_window_field: iso_timestamp}},
    )
    return fields
