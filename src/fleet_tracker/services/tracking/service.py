"""Background tracking loop: poll, match, auto-capture, rebuild display state."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Iterable, Optional, Sequence

from ...config import settings
from ...data.depot_repository import DepotCatalog
from ...data.load_repository import LoadRepository, SupabaseLoadRepository
from ...models.domain import Depot, GeofenceEvent, Load
from ..capture.controller import AutoCaptureController, CaptureResult, legs_to_watch
from ..geofence import find_nearest_depot
from ..geospatial import heading_direction
from ..matching import LoadMatch, match_loads
from ..milestones import MilestoneEvent, recorded_time
from ..phases import PhaseTransitionError, can_advance, derive_phase, next_phase
from ..telemetry.models import (
    TelemetrySnapshot,
    VehiclePosition,
    format_last_connected,
    gps_signal_strength,
    is_stale,
)
from ..telemetry.poller import TelemetryPoller
from ..time_window import Variance, compute_variance, parse_time_window_for_form
from ..trips.progress import EtaEstimate, TripEstimator
from .models import PositionSummary, TrackedLoad, TrackingState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingService:
    """Drives one polling tick at a fixed interval.

    Vehicles are evaluated in parallel; evaluations for the same vehicle are
    serialized by a per-vehicle lock so its dwell counters stay consistent.
    """

    def __init__(
        self,
        repository: LoadRepository,
        poller: TelemetryPoller,
        depots: DepotCatalog | None = None,
        controller: AutoCaptureController | None = None,
        estimator: TripEstimator | None = None,
        poll_interval_seconds: float | None = None,
        max_parallel_vehicles: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.poller = poller
        self.depots = depots or DepotCatalog()
        self.controller = controller or AutoCaptureController(repository)
        self.estimator = estimator or TripEstimator()
        self.poll_interval_seconds = (
            poll_interval_seconds if poll_interval_seconds is not None else settings.poll_interval_seconds
        )
        self.max_parallel_vehicles = max_parallel_vehicles or settings.max_parallel_vehicles
        self._clock = clock

        self._state = TrackingState()
        self._tick_lock = threading.Lock()
        self._vehicle_locks: dict[str, threading.Lock] = {}
        self._vehicle_locks_guard = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_settings(cls) -> "TrackingService":
        return cls(
            repository=SupabaseLoadRepository(),
            poller=TelemetryPoller(),
            estimator=TripEstimator.from_settings(),
        )

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _vehicle_lock(self, vehicle_key: str) -> threading.Lock:
        with self._vehicle_locks_guard:
            return self._vehicle_locks.setdefault(vehicle_key, threading.Lock())

    # Driver loop

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="fleet-tracking", daemon=True)
        self._thread.start()
        logger.info(f"Tracking loop started (every {self.poll_interval_seconds:.0f}s)")

    def stop(self, timeout: float | None = None) -> None:
        """Stop the loop, letting an in-flight tick finish its writes."""
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        thread.join(timeout if timeout is not None else settings.shutdown_timeout_seconds)
        if thread.is_alive():
            logger.warning("Tracking tick still running at shutdown timeout")
        else:
            logger.info("Tracking loop stopped")
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Tracking tick failed")
            self._stop_event.wait(self.poll_interval_seconds)

    # One tick

    def tick(self, now: datetime | None = None) -> TrackingState:
        with self._tick_lock:
            now = now or self._clock()
            snapshot, poll_error = self.poller.poll()

            try:
                loads = self.repository.get_active_loads()
            except Exception as exc:
                logger.warning(f"Could not fetch active loads, skipping tick: {exc}")
                self._state = TrackingState(
                    last_refresh=self._state.last_refresh,
                    tracking_available=False,
                    unauthenticated=snapshot.unauthenticated,
                    last_error=str(exc),
                    loads=self._state.loads,
                )
                return self._state

            depots = self.depots.depots()
            custom_locations = self.depots.custom_locations()
            matches = match_loads(loads, snapshot.positions, depots, custom_locations)

            captures = self._evaluate(matches, snapshot, now)
            self.controller.prune({load.id for load in loads})
            matches = self._refresh_captured(matches, captures)

            self._state = TrackingState(
                last_refresh=now,
                tracking_available=poll_error is None and not snapshot.stale,
                unauthenticated=snapshot.unauthenticated,
                last_error=str(poll_error) if poll_error else None,
                loads=[self._track(match, (*depots, *custom_locations), now) for match in matches],
                last_captures=captures,
            )
            written = sum(1 for capture in captures if capture.written)
            logger.info(
                f"Tick: {len(snapshot.positions)} positions, {len(loads)} active loads, {written} milestones captured"
            )
            return self._state

    def _evaluate(self, matches: Sequence[LoadMatch], snapshot: TelemetrySnapshot, now: datetime) -> list[CaptureResult]:
        by_vehicle: dict[str, list[LoadMatch]] = defaultdict(list)
        for match in matches:
            if match.is_current and match.vehicle_key:
                by_vehicle[match.vehicle_key].append(match)
        if not by_vehicle:
            return []

        captures: list[CaptureResult] = []
        with ThreadPoolExecutor(max_workers=min(self.max_parallel_vehicles, len(by_vehicle))) as pool:
            futures = {
                pool.submit(self._evaluate_vehicle, vehicle_key, group, snapshot.stale, now): vehicle_key
                for vehicle_key, group in by_vehicle.items()
            }
            for future in as_completed(futures):
                try:
                    captures.extend(future.result())
                except Exception:
                    logger.exception(f"Evaluation failed for vehicle {futures[future]}")
        return captures

    def _evaluate_vehicle(
        self, vehicle_key: str, matches: Iterable[LoadMatch], stale: bool, now: datetime
    ) -> list[CaptureResult]:
        results: list[CaptureResult] = []
        with self._vehicle_lock(vehicle_key):
            for match in matches:
                try:
                    if stale or match.position is None:
                        for leg in legs_to_watch(match.load):
                            self.controller.dwell.observe_missing((match.load.id, leg), now)
                        continue
                    results.extend(self.controller.evaluate(match, now))
                except Exception:
                    logger.exception(f"Auto-capture failed for load {match.load.load_id}")
        return results

    def _refresh_captured(self, matches: list[LoadMatch], captures: Sequence[CaptureResult]) -> list[LoadMatch]:
        """Re-read loads that received a write this tick so the display shows it."""
        changed = {capture.load_id for capture in captures if capture.written}
        for match in matches:
            if match.load.id not in changed:
                continue
            try:
                match.load = self.repository.get_load(match.load.id)
            except Exception as exc:
                logger.warning(f"Could not re-read load {match.load.load_id}: {exc}")
        return matches

    # Display state

    def _track(self, match: LoadMatch, depots: Sequence[Depot], now: datetime) -> TrackedLoad:
        load = match.load
        position = match.position

        progress = None
        eta = EtaEstimate.unknown()
        if (
            position is not None
            and match.is_current
            and load.status == "in-transit"
            and match.origin_depot is not None
            and match.destination_depot is not None
        ):
            try:
                progress, eta = self.estimator.estimate(
                    match.origin_depot,
                    match.destination_depot,
                    position.latitude,
                    position.longitude,
                    position.speed_kmh,
                    now,
                )
            except Exception as exc:
                logger.warning(f"Progress estimate failed for load {load.load_id}: {exc}")

        phase = derive_phase(load)
        return TrackedLoad(
            id=load.id,
            load_id=load.load_id,
            origin=load.origin,
            destination=load.destination,
            status=load.status,
            phase=phase,
            next_phase=next_phase(phase),
            is_current=match.is_current,
            vehicle_id=load.vehicle_id,
            driver_id=load.driver_id,
            position=summarize_position(position, depots, now) if position else None,
            progress=progress,
            eta=eta,
            is_at_origin=match.is_at_origin,
            is_at_destination=match.is_at_destination,
            awaiting_delivery_confirmation=(
                load.status == "in-transit" and load.actual_offloading_departure is not None
            ),
            variances=load_variances(load, settings.local_timezone),
        )

    # User actions

    def record_manual_milestone(self, load_id: str, event: MilestoneEvent, timestamp: datetime) -> Load:
        """User-entered time: always written, verified, and never touched by auto-capture after."""
        return self.repository.record_milestone(load_id, event, timestamp, source="manual", overwrite=True)

    def update_time_window(self, load_id: str, patch: dict) -> Load:
        return self.repository.update_load(load_id, {}, time_window_patch=patch)

    def time_window_form(self, load_id: str) -> dict:
        """Planned times for the edit form, with defaults where nothing is planned."""
        return parse_time_window_for_form(self.repository.get_load(load_id).time_window)

    def load_events(self, load_id: str, limit: int = 50) -> list[GeofenceEvent]:
        return self.repository.list_events(load_id, limit)

    def confirm_delivery(self, load_id: str) -> Load:
        phase = derive_phase(self.repository.get_load(load_id))
        if not can_advance(phase, "delivered"):
            raise PhaseTransitionError(f"Load {load_id} is {phase} and cannot be delivered again")
        load = self.repository.update_load(load_id, {"status": "delivered"})
        self.controller.forget(load_id)
        logger.info(f"Delivery confirmed for load {load.load_id}")
        return load


def summarize_position(position: VehiclePosition, depots: Sequence[Depot], now: datetime) -> PositionSummary:
    nearest = find_nearest_depot(position.latitude, position.longitude, depots)
    nearest_depot, distance = nearest if nearest else (None, None)
    return PositionSummary(
        vehicle_id=position.vehicle_id,
        latitude=position.latitude,
        longitude=position.longitude,
        speed_kmh=position.speed_kmh,
        heading_direction=heading_direction(position.heading),
        last_connected=position.last_connected,
        last_connected_label=format_last_connected(position.last_connected, now),
        signal_strength=gps_signal_strength(position, now),
        is_stale=is_stale(position, now, settings.stale_after_minutes),
        nearest_depot=nearest_depot.name if nearest_depot else None,
        nearest_depot_distance_m=distance,
        current_location=nearest_depot.name if nearest_depot and distance <= nearest_depot.radius_m else None,
    )


def load_variances(load: Load, tz: Optional[str] = None) -> dict[str, Variance]:
    """Planned-vs-actual variance for every milestone with both sides known."""
    variances: dict[str, Variance] = {}
    for event in MilestoneEvent:
        section = getattr(load.time_window, event.leg)
        planned = section.planned_arrival if event.is_arrival else section.planned_departure
        actual_time = recorded_time(load, event)
        actual = actual_time.isoformat() if actual_time else (
            section.actual_arrival if event.is_arrival else section.actual_departure
        )
        variance = compute_variance(planned, actual, "arrival" if event.is_arrival else "departure", tz)
        if variance is not None:
            variances[event.value] = variance
    return variances


@lru_cache()
def get_tracking_service() -> TrackingService:
    """Process-wide tracking service built from settings."""
    return TrackingService.from_settings()
