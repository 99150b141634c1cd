"""Fine-grained delivery phase derived from status and recorded times."""

from __future__ import annotations

from typing import Literal, Optional

from ..models.domain import Load

Phase = Literal["pending", "scheduled", "at-loading", "in-transit", "at-destination", "delivered"]

PHASE_ORDER: tuple[str, ...] = (
    "pending",
    "scheduled",
    "at-loading",
    "in-transit",
    "at-destination",
    "delivered",
)


def derive_phase(load: Load) -> str:
    """Pure function of the status and the four actual timestamps."""
    if load.status == "delivered":
        return "delivered"
    if load.status == "in-transit":
        if load.actual_offloading_arrival and not load.actual_offloading_departure:
            return "at-destination"
        return "in-transit"
    if load.status == "scheduled":
        if load.actual_loading_arrival and not load.actual_loading_departure:
            return "at-loading"
        return "scheduled"
    return "pending"


def phase_index(phase: str) -> int:
    return PHASE_ORDER.index(phase)


def can_advance(current: str, target: str) -> bool:
    """The stepper only ever moves forward through the phase sequence."""
    return phase_index(target) > phase_index(current)


def next_phase(phase: str) -> Optional[str]:
    index = phase_index(phase)
    return PHASE_ORDER[index + 1] if index + 1 < len(PHASE_ORDER) else None


class PhaseTransitionError(Exception):
    """The requested change would move a load backwards through its phases."""
