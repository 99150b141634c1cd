"""Optional road-distance lookups against an OSRM service."""

from __future__ import annotations

import logging
import time

import httpx

from ...config import settings

logger = logging.getLogger(__name__)


class RoadDistanceClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float = 10.0,
        max_retries: int = 1,
        backoff_seconds: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._client = httpx.Client(timeout=httpx.Timeout(timeout, connect=5.0), transport=transport)

    def close(self) -> None:
        self._client.close()

    def distance_km(self, start: tuple[float, float], end: tuple[float, float]) -> float | None:
        """Driving distance between two (lat, lon) points, or None when unavailable."""
        coordinate_str = f"{start[1]},{start[0]};{end[1]},{end[0]}"
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"
        params = {"overview": "false", "steps": "false"}

        attempt = 0
        while True:
            try:
                response = self._client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
                if data.get("code") != "Ok" or not data.get("routes"):
                    logger.debug(f"OSRM route returned no route: {data.get('message', data.get('code'))}")
                    return None
                return float(data["routes"][0]["distance"]) / 1000.0
            except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError) as exc:
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning(f"OSRM route lookup failed after {attempt} attempts: {exc}")
                    return None
                time.sleep(self.backoff_seconds * attempt)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning(f"OSRM route response unusable: {exc}")
                return None
