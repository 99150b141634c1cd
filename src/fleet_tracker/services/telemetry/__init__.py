"""Vehicle telemetry: provider client, polling and position models."""

from .client import TelematicsAuthError, TelematicsClient, TelematicsError
from .models import TelemetrySnapshot, VehiclePosition
from .poller import TelemetryPoller

__all__ = [
    "TelematicsAuthError",
    "TelematicsClient",
    "TelematicsError",
    "TelemetryPoller",
    "TelemetrySnapshot",
    "VehiclePosition",
]
