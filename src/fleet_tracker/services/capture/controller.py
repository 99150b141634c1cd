"""Automatic arrival/departure capture from geofence dwell."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ...config import settings
from ...data.load_repository import LoadNotFoundError, LoadRepository
from ...models.domain import Depot, GeofenceEvent, Load
from ..geofence import is_within
from ..matching import LoadMatch
from ..milestones import MilestoneAlreadyRecordedError, MilestoneEvent, recorded_time
from .dwell import DwellTracker

logger = logging.getLogger(__name__)

CaptureKey = tuple[str, MilestoneEvent]


@dataclass(frozen=True, slots=True)
class CaptureResult:
    load_id: str
    event: MilestoneEvent
    timestamp: datetime
    written: bool
    reason: str = ""


def _leg_depot(match: LoadMatch, leg: str) -> Optional[Depot]:
    return match.origin_depot if leg == "origin" else match.destination_depot


def legs_to_watch(load: Load) -> list[str]:
    """Origin while loading is still open, destination once in transit."""
    legs: list[str] = []
    if load.status in ("pending", "scheduled"):
        legs.append("origin")
    elif load.status == "in-transit":
        if load.actual_loading_departure is None:
            legs.append("origin")
        legs.append("destination")
    return legs


class AutoCaptureController:
    """Writes arrival and departure times for the current load of each vehicle.

    Every write is conditional on the target field still being empty, so a
    manual entry always wins and re-running the controller is harmless. A
    detected event whose write fails stays pending with its original
    timestamp and is retried on the next evaluation. Only the stored field
    decides whether an event is recorded, so a field a user clears is
    captured again.
    """

    def __init__(
        self,
        repository: LoadRepository,
        dwell_tracker: DwellTracker | None = None,
        dwell_threshold_minutes: float | None = None,
        departure_speed_kmh: float | None = None,
    ) -> None:
        self.repository = repository
        self.dwell = dwell_tracker or DwellTracker(
            stationary_speed_kmh=settings.stationary_speed_kmh,
            gap_timeout_seconds=settings.gps_gap_timeout_seconds,
        )
        threshold = dwell_threshold_minutes if dwell_threshold_minutes is not None else settings.dwell_threshold_minutes
        self.dwell_threshold_seconds = threshold * 60.0
        self.departure_speed_kmh = (
            departure_speed_kmh if departure_speed_kmh is not None else settings.departure_speed_kmh
        )
        self._pending: dict[CaptureKey, datetime] = {}
        self._lock = threading.Lock()

    def is_recorded(self, load: Load, event: MilestoneEvent) -> bool:
        return recorded_time(load, event) is not None

    def pending(self, load_id: str) -> dict[MilestoneEvent, datetime]:
        with self._lock:
            return {event: ts for (pending_id, event), ts in self._pending.items() if pending_id == load_id}

    def _queue(self, key: CaptureKey, timestamp: datetime) -> None:
        with self._lock:
            self._pending.setdefault(key, timestamp)

    def _settle(self, key: CaptureKey) -> None:
        with self._lock:
            self._pending.pop(key, None)

    def evaluate(self, match: LoadMatch, now: datetime) -> list[CaptureResult]:
        if not match.is_current or match.position is None:
            return []

        results: list[CaptureResult] = []
        load = match.load
        position = match.position
        for leg in legs_to_watch(load):
            depot = _leg_depot(match, leg)
            if depot is None:
                continue
            inside = is_within(position.latitude, position.longitude, depot)
            was_inside, state = self.dwell.observe((load.id, leg), inside, position.speed_kmh, now)

            arrival = MilestoneEvent.for_leg(leg, arrival=True)
            departure = MilestoneEvent.for_leg(leg, arrival=False)

            if inside and state.dwell_seconds >= self.dwell_threshold_seconds and not self.is_recorded(load, arrival):
                logger.debug(f"Load {load.load_id} dwelled {state.dwell_seconds:.0f}s at {depot.name}")
                self._queue((load.id, arrival), state.entered_at or now)

            arrived = self.is_recorded(load, arrival) or (load.id, arrival) in self._pending
            departed = (was_inside and not inside) or (inside and position.speed_kmh > self.departure_speed_kmh)
            if departed and arrived and not self.is_recorded(load, departure):
                self._queue((load.id, departure), now)

            for event in (arrival, departure):
                timestamp = self._pending.get((load.id, event))
                if timestamp is None:
                    continue
                result = self._write(match, depot, event, timestamp)
                if result is None:
                    return results
                results.append(result)
                if (load.id, event) in self._pending:
                    # A departure is never written ahead of a failed arrival.
                    break
        return results

    def _write(
        self, match: LoadMatch, depot: Depot, event: MilestoneEvent, timestamp: datetime
    ) -> Optional[CaptureResult]:
        """Conditional write; returns None when the load is gone."""
        load = match.load
        key = (load.id, event)
        try:
            self.repository.record_milestone(load.id, event, timestamp, source="auto")
        except MilestoneAlreadyRecordedError:
            self._settle(key)
            logger.info(f"{event.value} for load {load.load_id} already recorded, leaving it")
            return CaptureResult(load.id, event, timestamp, written=False, reason="already recorded")
        except LoadNotFoundError:
            logger.warning(f"Load {load.load_id} disappeared, dropping its capture state")
            self.forget(load.id)
            return None
        except Exception as exc:
            logger.warning(f"Failed to record {event.value} for load {load.load_id}, will retry: {exc}")
            return CaptureResult(load.id, event, timestamp, written=False, reason=str(exc))

        self._settle(key)
        logger.info(f"Auto-captured {event.value} for load {load.load_id} at {timestamp.isoformat()}")
        self._log_event(match, depot, event, timestamp)
        return CaptureResult(load.id, event, timestamp, written=True)

    def _log_event(self, match: LoadMatch, depot: Depot, event: MilestoneEvent, timestamp: datetime) -> None:
        load = match.load
        position = match.position
        registration = load.vehicle_id or position.registration or position.name
        try:
            self.repository.record_event(
                GeofenceEvent(
                    load_id=load.id,
                    event_type=event.value,
                    event_time=timestamp,
                    load_number=load.load_id,
                    geofence_name=depot.name,
                    vehicle_registration=registration,
                    telematics_asset_id=position.vehicle_id,
                    latitude=position.latitude,
                    longitude=position.longitude,
                )
            )
        except Exception as exc:
            logger.warning(f"Could not log {event.value} event for load {load.load_id}: {exc}")

    def forget(self, load_id: str) -> None:
        self.dwell.discard(load_id)
        with self._lock:
            self._pending = {key: ts for key, ts in self._pending.items() if key[0] != load_id}

    def prune(self, active_load_ids: set[str]) -> None:
        self.dwell.prune(active_load_ids)
        with self._lock:
            self._pending = {key: ts for key, ts in self._pending.items() if key[0] in active_load_ids}
