import json

import pytest

from src.fleet_tracker.schemas.time_window import TimeWindowRecord
from src.fleet_tracker.services.time_window import (
    compute_variance,
    merge_stored_time_window,
    merge_time_window,
    parse_time_window,
    parse_time_window_for_form,
    time_to_minutes,
)

STORED = {
    "origin": {"plannedArrival": "15:00", "plannedDeparture": "17:00", "arrivalNote": "gate 3"},
    "destination": {"plannedArrival": "08:00", "plannedDeparture": "11:00", "address": "Bay 4"},
    "backload": {
        "enabled": True,
        "destination": "Pretoria",
        "cargoType": "Packaging",
        "quantities": {"bins": 4, "crates": 2, "pallets": 0},
    },
    "thirdParty": {"customerId": "C-77", "referenceNumber": "PO-1"},
}


@pytest.mark.parametrize("raw", [None, "", "   ", "not json", "[1, 2]", 42, {"origin": "garbage"}])
def test_parse_time_window_never_raises(raw) -> None:
    record = parse_time_window(raw)
    assert record.origin.planned_arrival == ""
    assert record.destination.actual_departure == ""
    assert record.backload is None


def test_parse_time_window_accepts_json_text_and_objects() -> None:
    from_text = parse_time_window(json.dumps(STORED))
    from_dict = parse_time_window(STORED)

    assert from_text == from_dict
    assert from_dict.origin.planned_arrival == "15:00"
    assert from_dict.backload.quantities.bins == 4
    assert from_dict.third_party.customer_id == "C-77"


def test_parse_keeps_valid_sections_when_one_is_malformed() -> None:
    record = parse_time_window({**STORED, "backload": {"enabled": True, "quantities": {"bins": "lots"}}})
    assert record.origin.planned_departure == "17:00"
    assert record.backload is None


def test_unknown_keys_survive_round_trip() -> None:
    document = parse_time_window(STORED).to_document()
    assert document["destination"]["address"] == "Bay 4"
    assert document["origin"]["arrivalNote"] == "gate 3"


def test_merge_leaves_backload_and_destination_untouched() -> None:
    existing = parse_time_window(STORED)
    merged = merge_time_window(existing, {"origin": {"actualArrival": "12:00"}})

    assert merged.origin.actual_arrival == "12:00"
    assert merged.origin.planned_arrival == "15:00"
    assert merged.origin.arrival_note == "gate 3"
    assert merged.destination == existing.destination
    assert merged.backload == existing.backload


def test_merge_with_record_patch_only_applies_set_fields() -> None:
    patch = TimeWindowRecord(destination={"actualDeparture": "10:45"})
    merged = merge_time_window(STORED, patch)

    assert merged.destination.actual_departure == "10:45"
    assert merged.destination.planned_arrival == "08:00"
    assert merged.backload.destination == "Pretoria"


def test_merge_into_empty_value() -> None:
    merged = merge_time_window(None, {"backload": {"enabled": True, "destination": "Polokwane"}})
    assert merged.backload.destination == "Polokwane"
    assert merged.origin.planned_arrival == ""


def test_merge_stored_keeps_storage_form() -> None:
    as_text = merge_stored_time_window(json.dumps(STORED), {"origin": {"actualDeparture": "17:20"}})
    as_object = merge_stored_time_window(STORED, {"origin": {"actualDeparture": "17:20"}})

    assert isinstance(as_text, str)
    assert json.loads(as_text) == as_object
    assert as_object["backload"] == STORED["backload"]
    assert as_object["origin"]["plannedArrival"] == "15:00"


def test_form_defaults_fill_missing_planned_times() -> None:
    values = parse_time_window_for_form({"origin": {"plannedArrival": "06:30"}})
    assert values["origin_planned_arrival"] == "06:30"
    assert values["origin_planned_departure"] == "17:00"
    assert values["destination_planned_arrival"] == "08:00"
    assert values["destination_planned_departure"] == "11:00"
    assert values["backload"] is None


def test_time_to_minutes_reads_both_forms() -> None:
    assert time_to_minutes("14:00") == 840
    assert time_to_minutes("7:05") == 425
    assert time_to_minutes("2026-03-02T15:05:00Z") == 905
    assert time_to_minutes("2026-03-02T13:05:00+00:00", tz="Africa/Johannesburg") == 905
    assert time_to_minutes("25:00") is None
    assert time_to_minutes("soon") is None
    assert time_to_minutes(None) is None


def test_variance_late_arrival() -> None:
    variance = compute_variance("14:00", "15:05")
    assert variance.diff_minutes == 65
    assert variance.is_late is True
    assert variance.label == "1h 5m late"
    assert variance.needs_attention is True


def test_variance_sign_is_symmetric() -> None:
    late = compute_variance("14:00", "15:30")
    early = compute_variance("15:30", "14:00")
    assert late.diff_minutes == -early.diff_minutes
    assert late.is_late is not early.is_late
    assert early.label == "1h 30m early"


def test_variance_on_time_and_missing() -> None:
    on_time = compute_variance("08:00", "2026-03-03T08:00:00")
    assert on_time.diff_minutes == 0
    assert on_time.label == "On time"
    assert compute_variance("", "08:00") is None
    assert compute_variance("08:00", None) is None


def test_early_departure_needs_attention_but_early_arrival_does_not() -> None:
    assert compute_variance("17:00", "16:40", kind="departure").needs_attention is True
    assert compute_variance("15:00", "14:40", kind="arrival").needs_attention is False
    assert compute_variance("15:00", "14:40", kind="arrival").label == "20m early"
