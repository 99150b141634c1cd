"""Per (load, leg) dwell counters fed by consecutive position observations."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

DwellKey = tuple[str, str]


@dataclass(slots=True)
class DwellState:
    inside: bool = False
    entered_at: Optional[datetime] = None
    dwell_seconds: float = 0.0
    qualifying: bool = False
    last_observed_at: Optional[datetime] = None
    interrupted: bool = False

    def reset_dwell(self) -> None:
        self.dwell_seconds = 0.0
        self.qualifying = False


class DwellTracker:
    """Accumulates continuous low-speed time inside a geofence.

    Dwell grows by the time between two consecutive qualifying observations
    (inside and below the stationary speed). Leaving the geofence or moving
    faster resets it. A missing observation pauses the counter; if nothing
    arrives within ``gap_timeout_seconds`` the counter is reset, but the
    "inside" memory is kept so a later exit still reads as a departure.
    """

    def __init__(self, stationary_speed_kmh: float, gap_timeout_seconds: float) -> None:
        self.stationary_speed_kmh = stationary_speed_kmh
        self.gap_timeout_seconds = gap_timeout_seconds
        self._states: dict[DwellKey, DwellState] = {}
        self._lock = threading.Lock()

    def get(self, key: DwellKey) -> DwellState:
        with self._lock:
            return self._states.setdefault(key, DwellState())

    def _gap_exceeded(self, state: DwellState, now: datetime) -> bool:
        if state.last_observed_at is None:
            return False
        return (now - state.last_observed_at).total_seconds() > self.gap_timeout_seconds

    def observe(self, key: DwellKey, inside: bool, speed_kmh: float, now: datetime) -> tuple[bool, DwellState]:
        """Record one observation; returns (inside on the previous observation, new state)."""
        state = self.get(key)
        was_inside = state.inside
        resumed = state.interrupted

        if self._gap_exceeded(state, now):
            logger.debug(f"Dwell for {key} reset after a {self.gap_timeout_seconds:.0f}s position gap")
            state.reset_dwell()
            state.entered_at = now if inside else None

        if not inside:
            state.inside = False
            state.entered_at = None
            state.reset_dwell()
        else:
            if not was_inside or state.entered_at is None:
                state.entered_at = now
            state.inside = True
            if speed_kmh < self.stationary_speed_kmh:
                # Time spent without positions is not counted as dwell.
                if state.qualifying and not resumed and state.last_observed_at is not None:
                    state.dwell_seconds += max(0.0, (now - state.last_observed_at).total_seconds())
                state.qualifying = True
            else:
                state.reset_dwell()

        state.last_observed_at = now
        state.interrupted = False
        return was_inside, state

    def observe_missing(self, key: DwellKey, now: datetime) -> DwellState:
        """No usable position this tick: pause, then reset once the gap persists."""
        state = self.get(key)
        state.interrupted = True
        if self._gap_exceeded(state, now) and state.dwell_seconds:
            logger.debug(f"Dwell for {key} reset: no position for over {self.gap_timeout_seconds:.0f}s")
            state.reset_dwell()
        return state

    def discard(self, load_id: str) -> None:
        with self._lock:
            for key in [key for key in self._states if key[0] == load_id]:
                del self._states[key]

    def prune(self, active_load_ids: Iterable[str]) -> None:
        """Drop state for loads that are no longer active."""
        keep = set(active_load_ids)
        with self._lock:
            for key in [key for key in self._states if key[0] not in keep]:
                del self._states[key]
