"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_telematics_health_check():
    """Lazy import to avoid startup failures."""
    from ...services.telemetry.client import check_health as telematics_health_check
    return telematics_health_check


@router.get("/health/telematics", status_code=status.HTTP_200_OK)
def health_telematics() -> dict:
    """Check that the telematics provider accepts the configured credentials."""
    try:
        telematics_health_check = _get_telematics_health_check()
        return {"service": "telematics", "healthy": telematics_health_check()}
    except Exception as e:
        return {"service": "telematics", "healthy": False, "error": str(e)}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check the database connection and the loads table."""
    from ...config import settings
    from ...db.supabase import get_supabase_client

    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "message": "Supabase not configured. Set FLEET_SUPABASE_URL and FLEET_SUPABASE_KEY environment variables.",
        }

    try:
        response = supabase.table(settings.loads_table).select("id", count="exact").limit(1).execute()
        return {
            "configured": True,
            "connected": True,
            "loads_count": response.count,
            "message": f"Database connected. Table '{settings.loads_table}' is reachable.",
        }
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
