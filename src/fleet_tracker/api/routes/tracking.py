"""Tracking endpoints: live load state and user-entered milestones."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...data.load_repository import LoadNotFoundError
from ...models.domain import Load
from ...schemas.tracking import (
    CaptureModel,
    GeofenceEventModel,
    GeofenceEventsResponse,
    LoadSummaryModel,
    ManualMilestoneRequest,
    TimeWindowFormResponse,
    TrackedLoadModel,
    TrackedLoadsResponse,
    TrackingStatusResponse,
    VarianceModel,
    VarianceRequest,
    VarianceResponse,
)
from ...services.phases import PhaseTransitionError
from ...services.time_window import compute_variance
from ...services.tracking.service import TrackingService, get_tracking_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tracking", tags=["tracking"])


def tracking_service() -> TrackingService:
    try:
        return get_tracking_service()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def _load_summary(load: Load) -> LoadSummaryModel:
    return LoadSummaryModel(
        id=load.id,
        load_id=load.load_id,
        status=load.status,
        actual_loading_arrival=load.actual_loading_arrival,
        actual_loading_departure=load.actual_loading_departure,
        actual_offloading_arrival=load.actual_offloading_arrival,
        actual_offloading_departure=load.actual_offloading_departure,
    )


def _status(service: TrackingService) -> TrackingStatusResponse:
    state = service.state
    return TrackingStatusResponse(
        running=service.is_running,
        last_refresh=state.last_refresh,
        tracking_available=state.tracking_available,
        unauthenticated=state.unauthenticated,
        last_error=state.last_error,
        load_count=len(state.loads),
        last_captures=[CaptureModel.model_validate(asdict(capture)) for capture in state.last_captures],
    )


@router.get("/status", response_model=TrackingStatusResponse, status_code=status.HTTP_200_OK)
def tracking_status(service: TrackingService = Depends(tracking_service)) -> TrackingStatusResponse:
    return _status(service)


@router.post("/refresh", response_model=TrackingStatusResponse, status_code=status.HTTP_200_OK)
def refresh(service: TrackingService = Depends(tracking_service)) -> TrackingStatusResponse:
    """Run one tick now instead of waiting for the next interval."""
    service.tick()
    return _status(service)


@router.get("/loads", response_model=TrackedLoadsResponse, status_code=status.HTTP_200_OK)
def tracked_loads(current_only: bool = False, service: TrackingService = Depends(tracking_service)) -> TrackedLoadsResponse:
    state = service.state
    loads = [load for load in state.loads if load.is_current or not current_only]
    return TrackedLoadsResponse(
        last_refresh=state.last_refresh,
        tracking_available=state.tracking_available,
        loads=[TrackedLoadModel.model_validate(asdict(load)) for load in loads],
    )


@router.post("/loads/{load_id}/milestones", response_model=LoadSummaryModel, status_code=status.HTTP_200_OK)
def record_milestone(
    load_id: str,
    payload: ManualMilestoneRequest,
    service: TrackingService = Depends(tracking_service),
) -> LoadSummaryModel:
    timestamp = payload.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    try:
        load = service.record_manual_milestone(load_id, payload.event, timestamp)
    except LoadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(f"Error recording {payload.event.value} for load {load_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record milestone: {exc}",
        ) from exc
    return _load_summary(load)


@router.get("/loads/{load_id}/time-window", response_model=TimeWindowFormResponse, status_code=status.HTTP_200_OK)
def time_window_form(load_id: str, service: TrackingService = Depends(tracking_service)) -> TimeWindowFormResponse:
    try:
        values = service.time_window_form(load_id)
    except LoadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TimeWindowFormResponse(**values)


@router.patch("/loads/{load_id}/time-window", response_model=LoadSummaryModel, status_code=status.HTTP_200_OK)
def update_time_window(
    load_id: str,
    patch: Dict[str, Any],
    service: TrackingService = Depends(tracking_service),
) -> LoadSummaryModel:
    """Merge a partial camelCase time window into the stored one."""
    try:
        load = service.update_time_window(load_id, patch)
    except LoadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _load_summary(load)


@router.post("/loads/{load_id}/confirm-delivery", response_model=LoadSummaryModel, status_code=status.HTTP_200_OK)
def confirm_delivery(load_id: str, service: TrackingService = Depends(tracking_service)) -> LoadSummaryModel:
    try:
        load = service.confirm_delivery(load_id)
    except LoadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PhaseTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _load_summary(load)


@router.get("/loads/{load_id}/events", response_model=GeofenceEventsResponse, status_code=status.HTTP_200_OK)
def load_events(
    load_id: str,
    limit: int = Query(50, ge=1, le=500),
    service: TrackingService = Depends(tracking_service),
) -> GeofenceEventsResponse:
    """Auto-captured geofence events for a load, newest first."""
    events = service.load_events(load_id, limit)
    return GeofenceEventsResponse(events=[GeofenceEventModel.model_validate(asdict(event)) for event in events])


@router.post("/variance", response_model=VarianceResponse, status_code=status.HTTP_200_OK)
def variance(payload: VarianceRequest) -> VarianceResponse:
    result = compute_variance(payload.planned, payload.actual, payload.kind, payload.timezone)
    return VarianceResponse(variance=VarianceModel.model_validate(asdict(result)) if result else None)
