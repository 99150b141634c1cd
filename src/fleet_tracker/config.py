"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Fleet Geofence Tracker API"
    api_prefix: str = "/api"
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:8080",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )
    loads_table: str = "loads"
    depots_table: str = "depots"
    custom_locations_table: str = "custom_locations"
    events_table: str = "geofence_events"

    # Depot reference data
    depots_file: Path = Field(
        default=Path("data/depots.xlsx"),
        description="Depot workbook with Name/Latitude/Longitude/Radius columns.",
    )
    default_geofence_radius_m: float = Field(default=500.0, gt=0.0)

    # Telematics provider
    telematics_base_url: str = "https://api-emea04.telematics.guru"
    telematics_username: Optional[str] = None
    telematics_password: Optional[str] = None
    telematics_organisation_id: Optional[int] = Field(
        default=None,
        description="Organisation to poll. The first listed organisation is used when unset.",
    )
    telematics_timeout_seconds: float = Field(default=15.0, gt=0.0)
    telematics_max_retries: int = Field(default=1, ge=0)
    telematics_backoff_seconds: float = Field(default=1.0, ge=0.0)

    # Optional road distance lookup
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = "driving"

    # Tracking loop
    tracking_enabled: bool = True
    poll_interval_seconds: float = Field(default=30.0, ge=5.0, le=300.0)
    max_parallel_vehicles: int = Field(default=8, ge=1)
    shutdown_timeout_seconds: float = Field(default=10.0, ge=0.0)

    # Auto-capture thresholds
    dwell_threshold_minutes: float = Field(default=5.0, gt=0.0)
    stationary_speed_kmh: float = Field(default=5.0, ge=0.0)
    departure_speed_kmh: float = Field(default=30.0, ge=0.0)
    gps_gap_timeout_seconds: float = Field(default=180.0, ge=0.0)
    stale_after_minutes: float = Field(default=30.0, gt=0.0)
    eta_floor_speed_kmh: float = Field(default=60.0, gt=0.0)

    local_timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone used to read wall-clock times from ISO timestamps.",
    )

    @field_validator("depots_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
