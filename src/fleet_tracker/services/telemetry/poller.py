"""Batch polling of fleet positions with last-known-snapshot fallback."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ...config import settings
from .client import TelematicsAuthError, TelematicsClient, TelematicsError
from .models import TelemetrySnapshot

logger = logging.getLogger(__name__)


class TelemetryPoller:
    """Fetches one snapshot per call; failures reuse the last snapshot, marked stale."""

    def __init__(
        self,
        client: TelematicsClient | None = None,
        organisation_id: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client or TelematicsClient()
        self.organisation_id = organisation_id if organisation_id is not None else settings.telematics_organisation_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_snapshot = TelemetrySnapshot()

    def _resolve_organisation(self) -> int:
        if self.organisation_id is None:
            organisations = self.client.list_organisations()
            if not organisations:
                raise TelematicsAuthError("No telematics organisation is visible to these credentials.")
            self.organisation_id = organisations[0]
            logger.info(f"Using telematics organisation {self.organisation_id}")
        return self.organisation_id

    def poll(self) -> tuple[TelemetrySnapshot, Optional[Exception]]:
        """Return ``(snapshot, error)``. Never raises; errors are retried next tick."""
        try:
            organisation_id = self._resolve_organisation()
            positions = self.client.get_assets_with_positions(organisation_id)
        except TelematicsAuthError as exc:
            logger.warning(f"Telematics unauthenticated, reusing last snapshot: {exc}")
            self.client.clear_session()
            return self._last_snapshot.mark_stale(unauthenticated=True), exc
        except TelematicsError as exc:
            logger.warning(f"Telematics poll failed, reusing last snapshot: {exc}")
            return self._last_snapshot.mark_stale(), exc
        except Exception as exc:
            logger.exception("Unexpected telematics poll failure, reusing last snapshot")
            return self._last_snapshot.mark_stale(), exc

        self._last_snapshot = TelemetrySnapshot(
            positions={position.vehicle_id: position for position in positions},
            fetched_at=self._clock(),
        )
        logger.debug(f"Fetched {len(positions)} vehicle positions")
        return self._last_snapshot, None
