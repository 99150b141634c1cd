"""Tracking request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .time_window import BackloadInfo
from ..services.milestones import MilestoneEvent


class PositionModel(BaseModel):
    vehicle_id: str
    latitude: float
    longitude: float
    speed_kmh: float
    heading_direction: str
    last_connected: Optional[datetime] = None
    last_connected_label: str
    signal_strength: str
    is_stale: bool
    nearest_depot: Optional[str] = None
    nearest_depot_distance_m: Optional[float] = None
    current_location: Optional[str] = None


class ProgressModel(BaseModel):
    total_distance_km: float
    distance_traveled_km: float
    distance_remaining_km: float
    progress: float
    is_at_origin: bool
    is_at_destination: bool


class EtaModel(BaseModel):
    eta: Optional[datetime] = None
    eta_formatted: str
    duration_minutes: Optional[int] = None
    duration_formatted: str
    speed_used_kmh: Optional[float] = None
    distance_remaining_km: Optional[float] = None
    distance_remaining_formatted: str


class VarianceModel(BaseModel):
    diff_minutes: int
    label: str
    is_late: bool
    needs_attention: bool


class TrackedLoadModel(BaseModel):
    id: str
    load_id: str
    origin: str
    destination: str
    status: str
    phase: str
    next_phase: Optional[str] = None
    is_current: bool
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    position: Optional[PositionModel] = None
    progress: Optional[ProgressModel] = None
    eta: EtaModel
    is_at_origin: bool
    is_at_destination: bool
    awaiting_delivery_confirmation: bool
    variances: Dict[str, VarianceModel] = Field(default_factory=dict)


class CaptureModel(BaseModel):
    load_id: str
    event: MilestoneEvent
    timestamp: datetime
    written: bool
    reason: str = ""


class TrackingStatusResponse(BaseModel):
    running: bool
    last_refresh: Optional[datetime] = None
    tracking_available: bool
    unauthenticated: bool
    last_error: Optional[str] = None
    load_count: int
    last_captures: List[CaptureModel] = Field(default_factory=list)


class TrackedLoadsResponse(BaseModel):
    last_refresh: Optional[datetime] = None
    tracking_available: bool
    loads: List[TrackedLoadModel]


class ManualMilestoneRequest(BaseModel):
    event: MilestoneEvent
    timestamp: datetime = Field(..., description="Actual time of the event; a time zone offset is required.")


class LoadSummaryModel(BaseModel):
    id: str
    load_id: str
    status: str
    actual_loading_arrival: Optional[datetime] = None
    actual_loading_departure: Optional[datetime] = None
    actual_offloading_arrival: Optional[datetime] = None
    actual_offloading_departure: Optional[datetime] = None


class VarianceRequest(BaseModel):
    planned: Optional[str] = Field(None, description="Planned time as HH:mm or an ISO timestamp.")
    actual: Optional[str] = Field(None, description="Actual time as HH:mm or an ISO timestamp.")
    kind: Literal["arrival", "departure"] = "arrival"
    timezone: Optional[str] = Field(None, description="IANA zone used to read ISO timestamps.")


class VarianceResponse(BaseModel):
    variance: Optional[VarianceModel] = None


class TimeWindowFormResponse(BaseModel):
    origin_planned_arrival: str
    origin_planned_departure: str
    destination_planned_arrival: str
    destination_planned_departure: str
    backload: BackloadInfo


class GeofenceEventModel(BaseModel):
    load_id: str
    event_type: str
    event_time: datetime
    load_number: Optional[str] = None
    geofence_name: Optional[str] = None
    vehicle_registration: Optional[str] = None
    telematics_asset_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: str = "auto"


class GeofenceEventsResponse(BaseModel):
    events: List[GeofenceEventModel]
