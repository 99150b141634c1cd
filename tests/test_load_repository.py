import json
from datetime import datetime, timezone

import pytest

from src.fleet_tracker.data.load_repository import (
    LOAD_COLUMNS,
    LoadNotFoundError,
    SupabaseLoadRepository,
    load_from_row,
)
from src.fleet_tracker.models.domain import GeofenceEvent
from src.fleet_tracker.services.milestones import MilestoneAlreadyRecordedError, MilestoneEvent

from conftest import make_row

T0 = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)


class DummyResponse:
    def __init__(self, data):
        self.data = data


class DummyQuery:
    """Records the builder calls and evaluates simple filters against stored rows."""

    def __init__(self, store, log):
        self.store = store
        self.log = log
        self.filters = []
        self.update_fields = None

    def select(self, columns):
        self.log.append(("select", columns))
        return self

    def update(self, fields):
        self.update_fields = fields
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.log.append(("in", column, tuple(values)))
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        self.log.append(("is", column, value))
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def insert(self, row):
        self.log.append(("insert", row))
        self.store[str(len(self.store) + 1)] = dict(row)
        return self

    def order(self, column, desc=False):
        self.log.append(("order", column, desc))
        return self

    def limit(self, count):
        self.log.append(("limit", count))
        return self

    def execute(self):
        rows = [row for row in self.store.values() if all(check(row) for check in self.filters)]
        if self.update_fields is not None:
            for row in rows:
                row.update(self.update_fields)
        return DummyResponse([dict(row) for row in rows])


class DummySupabase:
    def __init__(self, rows, events=()):
        self.store = {row["id"]: row for row in rows}
        self.events = {str(index): dict(row) for index, row in enumerate(events, start=1)}
        self.log = []

    def table(self, name):
        assert name in ("loads", "geofence_events")
        return DummyQuery(self.store if name == "loads" else self.events, self.log)


def test_load_from_row_parses_dates_vehicle_and_time_window() -> None:
    row = make_row(
        "1",
        actual_loading_arrival="2026-03-02T14:00:00Z",
        actual_loading_arrival_source="auto",
        time_window=json.dumps({"origin": {"plannedArrival": "15:00"}}),
    )
    load = load_from_row(row)

    assert load.actual_loading_arrival == T0
    assert load.actual_loading_arrival_verified is False
    assert load.vehicle.telematics_asset_id == "1001"
    assert load.vehicle_id == "T1"
    assert load.loading_date == datetime(2026, 3, 2, tzinfo=timezone.utc)
    assert load.time_window.origin.planned_arrival == "15:00"


def test_load_from_row_tolerates_missing_optional_fields() -> None:
    load = load_from_row({"id": 9, "status": "pending", "time_window": "{broken"})
    assert load.load_id == "9"
    assert load.vehicle is None
    assert load.actual_offloading_departure is None
    assert load.time_window.destination.planned_departure == ""


def test_get_active_loads_selects_join_and_active_statuses() -> None:
    client = DummySupabase([make_row("1"), make_row("2", status="delivered")])
    loads = SupabaseLoadRepository(client=client).get_active_loads()

    assert [load.id for load in loads] == ["1"]
    assert ("select", LOAD_COLUMNS) in client.log
    assert ("in", "status", ("pending", "scheduled", "in-transit")) in client.log


def test_record_milestone_is_conditional_and_merges_time_window() -> None:
    client = DummySupabase([make_row("1", status="pending")])
    repo = SupabaseLoadRepository(client=client)

    load = repo.record_milestone("1", MilestoneEvent.LOADING_ARRIVAL, T0, "auto")

    assert ("is", "actual_loading_arrival", "null") in client.log
    assert load.status == "scheduled"
    assert load.actual_loading_arrival_source == "auto"
    stored = client.store["1"]["time_window"]
    assert stored["origin"] == {"plannedArrival": "15:00", "plannedDeparture": "17:00", "actualArrival": T0.isoformat()}
    assert stored["backload"]["destination"] == "Pretoria"


def test_record_milestone_refuses_populated_field() -> None:
    client = DummySupabase([make_row("1", actual_loading_arrival="2026-03-02T13:00:00+00:00")])
    repo = SupabaseLoadRepository(client=client)

    with pytest.raises(MilestoneAlreadyRecordedError):
        repo.record_milestone("1", MilestoneEvent.LOADING_ARRIVAL, T0, "auto")
    assert client.store["1"]["actual_loading_arrival"] == "2026-03-02T13:00:00+00:00"


def test_manual_overwrite_skips_condition() -> None:
    client = DummySupabase([make_row("1", actual_loading_arrival="2026-03-02T13:00:00+00:00")])
    load = SupabaseLoadRepository(client=client).record_milestone(
        "1", MilestoneEvent.LOADING_ARRIVAL, T0, "manual", overwrite=True
    )

    assert load.actual_loading_arrival == T0
    assert load.actual_loading_arrival_verified is True
    assert not any(entry[0] == "is" for entry in client.log)


def test_missing_load_raises_not_found() -> None:
    repo = SupabaseLoadRepository(client=DummySupabase([]))
    with pytest.raises(LoadNotFoundError):
        repo.get_load("nope")
    with pytest.raises(LoadNotFoundError):
        repo.update_load("nope", {"status": "delivered"})


def test_unconfigured_repository_raises(monkeypatch) -> None:
    from src.fleet_tracker.data import load_repository

    monkeypatch.setattr(load_repository, "get_supabase_client", lambda: None)
    with pytest.raises(ValueError):
        SupabaseLoadRepository()


def test_record_event_inserts_into_event_log() -> None:
    client = DummySupabase([make_row("1")])
    event = GeofenceEvent(
        load_id="1",
        event_type="loading_arrival",
        event_time=T0,
        load_number="LD-1",
        geofence_name="Johannesburg DC",
        telematics_asset_id="1001",
        latitude=-26.2,
        longitude=28.05,
    )

    SupabaseLoadRepository(client=client).record_event(event)

    (stored,) = client.events.values()
    assert stored["event_time"] == T0.isoformat()
    assert stored["geofence_name"] == "Johannesburg DC"
    assert stored["source"] == "auto"
    assert client.store["1"].get("actual_loading_arrival") is None


def test_list_events_orders_newest_first_and_skips_bad_rows() -> None:
    client = DummySupabase(
        [make_row("1")],
        events=[
            {"load_id": "1", "event_type": "loading_arrival", "event_time": "2026-03-02T14:00:00Z", "latitude": "-26.2"},
            {"load_id": "1", "event_type": "loading_departure", "event_time": None},
            {"load_id": "2", "event_type": "loading_arrival", "event_time": "2026-03-02T15:00:00Z"},
        ],
    )

    events = SupabaseLoadRepository(client=client).list_events("1", limit=10)

    assert [(event.event_type, event.event_time) for event in events] == [("loading_arrival", T0)]
    assert events[0].latitude == -26.2
    assert events[0].longitude is None
    assert ("order", "event_time", True) in client.log
    assert ("limit", 10) in client.log


def test_invalid_load_rows_are_skipped_with_a_warning(caplog) -> None:
    client = DummySupabase([make_row("1")])
    client.store["broken"] = {"status": "pending"}

    loads = SupabaseLoadRepository(client=client).get_active_loads()

    assert [load.id for load in loads] == ["1"]
    assert any(
        record.name == "src.fleet_tracker.data.load_repository" and "Skipping invalid load row" in record.message
        for record in caplog.records
    )
