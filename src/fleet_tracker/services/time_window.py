"""Parsing, merging and variance helpers for load time windows.

Every change to a stored time window goes through :func:`merge_time_window`
(or :func:`merge_documents` for raw stored values). Whole-document
replacement would drop backload data and notes written by other flows.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from ..schemas.time_window import (
    BackloadInfo,
    ThirdPartyInfo,
    TimeWindowRecord,
    TimeWindowSection,
)

logger = logging.getLogger(__name__)

VarianceKind = Literal["arrival", "departure"]

FORM_DEFAULTS = {
    "origin_planned_arrival": "15:00",
    "origin_planned_departure": "17:00",
    "destination_planned_arrival": "08:00",
    "destination_planned_departure": "11:00",
}

_HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
_ISO_TIME_PATTERN = re.compile(r"T(\d{2}):(\d{2})")


def _as_document(raw: Any) -> dict[str, Any]:
    """Coerce a stored value (JSON text, dict, record, None) into a plain dict."""
    if isinstance(raw, TimeWindowRecord):
        return raw.to_document()
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return {}
    return dict(raw) if isinstance(raw, Mapping) else {}


def _validate_leniently(document: dict[str, Any]) -> TimeWindowRecord:
    """Validate section by section so one bad sub-object does not empty the rest."""
    values: dict[str, Any] = {}
    for key, model in (
        ("origin", TimeWindowSection),
        ("destination", TimeWindowSection),
        ("backload", BackloadInfo),
        ("thirdParty", ThirdPartyInfo),
    ):
        try:
            if isinstance(document.get(key), Mapping):
                values[key] = model.model_validate(document[key])
        except ValidationError as exc:
            logger.warning(f"Discarding malformed time window section '{key}': {exc.error_count()} error(s)")
    reason = document.get("varianceReason")
    if isinstance(reason, str):
        values["varianceReason"] = reason
    return TimeWindowRecord.model_validate(values)


def parse_time_window(raw: Any) -> TimeWindowRecord:
    """Parse a stored time window (JSON text or object) into a record.

    Never raises: missing or malformed input yields a record with every field
    empty, meaning "nothing planned yet".
    """
    document = _as_document(raw)
    try:
        return TimeWindowRecord.model_validate(document)
    except ValidationError:
        return _validate_leniently(document)


def merge_documents(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``patch`` into ``base``; keys absent from ``patch`` are kept."""
    merged: dict[str, Any] = dict(base)
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_documents(current, value)
        else:
            merged[key] = value
    return merged


def merge_time_window(existing: Any, patch: Any) -> TimeWindowRecord:
    """Merge ``patch`` into ``existing`` field by field per nested section.

    ``patch`` may be a partial camelCase dict or a record; for records only the
    fields explicitly set on it are applied.
    """
    if isinstance(patch, TimeWindowRecord):
        patch_document = patch.model_dump(by_alias=True, exclude_unset=True)
    else:
        patch_document = _as_document(patch)
    return parse_time_window(merge_documents(_as_document(existing), patch_document))


def merge_stored_time_window(stored: Any, patch: Mapping[str, Any]) -> Any:
    """Merge ``patch`` into a raw stored value, keeping its storage form.

    Legacy rows hold JSON text; newer rows hold an object. Unknown keys in the
    stored value are carried through untouched.
    """
    merged = merge_documents(_as_document(stored), patch)
    return json.dumps(merged) if isinstance(stored, str) else merged


def parse_time_window_for_form(raw: Any, defaults: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Planned times for the load edit form, falling back to default times."""
    values = {**FORM_DEFAULTS, **(defaults or {})}
    record = parse_time_window(raw)
    return {
        "origin_planned_arrival": record.origin.planned_arrival or values["origin_planned_arrival"],
        "origin_planned_departure": record.origin.planned_departure or values["origin_planned_departure"],
        "destination_planned_arrival": record.destination.planned_arrival or values["destination_planned_arrival"],
        "destination_planned_departure": record.destination.planned_departure
        or values["destination_planned_departure"],
        "backload": record.backload,
    }


def time_to_minutes(value: Optional[str], tz: Optional[str] = None) -> Optional[int]:
    """Minutes after midnight for ``HH:mm`` or an ISO timestamp, else ``None``.

    ISO timestamps carrying an offset are converted to ``tz`` first when one
    is given; otherwise the wall-clock time as written is used.
    """
    if not value:
        return None
    text = value.strip()
    match = _HHMM_PATTERN.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            return None
        return hours * 60 + minutes

    if tz:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None and parsed.tzinfo is not None:
            try:
                local = parsed.astimezone(ZoneInfo(tz))
            except ZoneInfoNotFoundError:
                logger.warning(f"Unknown timezone '{tz}', reading time as written")
            else:
                return local.hour * 60 + local.minute

    match = _ISO_TIME_PATTERN.search(text)
    if match:
        return int(match.group(1)) * 60 + int(match.group(2))
    return None


@dataclass(frozen=True, slots=True)
class Variance:
    diff_minutes: int
    label: str
    is_late: bool
    needs_attention: bool


def format_offset(minutes: int) -> str:
    hours, mins = divmod(abs(minutes), 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if mins:
        parts.append(f"{mins}m")
    return " ".join(parts)


def compute_variance(
    planned: Optional[str],
    actual: Optional[str],
    kind: VarianceKind = "arrival",
    tz: Optional[str] = None,
) -> Optional[Variance]:
    """Compare an actual time against its plan.

    Returns ``None`` when either side is missing. Positive ``diff_minutes``
    means the actual time is after the plan. Arrivals only need attention when
    late; departures need attention in either direction.
    """
    planned_minutes = time_to_minutes(planned, tz)
    actual_minutes = time_to_minutes(actual, tz)
    if planned_minutes is None or actual_minutes is None:
        return None

    diff = actual_minutes - planned_minutes
    if diff == 0:
        return Variance(diff_minutes=0, label="On time", is_late=False, needs_attention=False)

    tag = "late" if diff > 0 else "early"
    return Variance(
        diff_minutes=diff,
        label=f"{format_offset(diff)} {tag}",
        is_late=diff > 0,
        needs_attention=diff > 0 if kind == "arrival" else True,
    )
