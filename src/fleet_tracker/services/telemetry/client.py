"""HTTP client for the Telematics Guru vehicle tracking API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from ...config import settings
from .models import VehiclePosition, position_from_asset

# Renew the bearer token this long before the provider says it expires.
TOKEN_EXPIRY_MARGIN_SECONDS = 60.0
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600.0

logger = logging.getLogger(__name__)


class TelematicsError(Exception):
    """The provider could not be reached or returned an unusable response."""


class TelematicsAuthError(TelematicsError):
    """Credentials are missing, rejected, or the session expired."""


@dataclass(slots=True)
class TelematicsSession:
    access_token: str
    expires_at: float

    def is_valid(self, now: float | None = None) -> bool:
        return (now if now is not None else time.monotonic()) < self.expires_at


class TelematicsClient:
    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.telematics_base_url).rstrip("/")
        self.username = username if username is not None else settings.telematics_username
        self.password = password if password is not None else settings.telematics_password
        self.timeout = timeout if timeout is not None else settings.telematics_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.telematics_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.telematics_backoff_seconds
        )
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=transport,
        )
        self._session: TelematicsSession | None = None

    def close(self) -> None:
        self._client.close()

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and self._session.is_valid()

    def clear_session(self) -> None:
        self._session = None

    def authenticate(self, username: str | None = None, password: str | None = None) -> TelematicsSession:
        """Exchange credentials for a bearer token."""
        username = username or self.username
        password = password or self.password
        if not username or not password:
            raise TelematicsAuthError("Telematics credentials are not configured.")

        try:
            response = self._client.post(
                "/v1/user/authenticate",
                data={"Username": username, "Password": password},
            )
        except httpx.HTTPError as exc:
            raise TelematicsError(f"Telematics authentication request failed: {exc}") from exc

        if response.status_code in (400, 401, 403):
            raise TelematicsAuthError(f"Telematics authentication rejected ({response.status_code}).")
        if response.is_error:
            raise TelematicsError(f"Telematics authentication failed ({response.status_code}).")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TelematicsError("Telematics authentication response was not JSON.") from exc
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise TelematicsAuthError("Telematics authentication returned no access token.")

        try:
            lifetime = float(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME_SECONDS
        self._session = TelematicsSession(
            access_token=token,
            expires_at=time.monotonic() + lifetime - TOKEN_EXPIRY_MARGIN_SECONDS,
        )
        logger.info("Authenticated with telematics provider")
        return self._session

    def _ensure_session(self) -> TelematicsSession:
        if self._session is None or not self._session.is_valid():
            return self.authenticate()
        return self._session

    def _get(self, path: str) -> Any:
        """Authenticated GET with retry on transient failures."""
        session = self._ensure_session()
        headers = {"Authorization": f"Bearer {session.access_token}", "Accept": "application/json"}
        attempt = 0
        while True:
            try:
                response = self._client.get(path, headers=headers)
                if response.status_code in (401, 403):
                    self.clear_session()
                    raise TelematicsAuthError(f"Telematics session rejected ({response.status_code}).")
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as exc:
                attempt += 1
                if attempt > self.max_retries or exc.response.status_code < 500:
                    raise TelematicsError(f"Telematics request {path} failed: {exc}") from exc
                time.sleep(self.backoff_seconds * attempt)
            except httpx.TransportError as exc:
                attempt += 1
                if attempt > self.max_retries:
                    raise TelematicsError(f"Telematics service unreachable at {self.base_url}: {exc}") from exc
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(f"Telematics request failed, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {exc}")
                time.sleep(wait_time)
            except httpx.HTTPError as exc:
                raise TelematicsError(f"Telematics request {path} failed: {exc}") from exc
            except ValueError as exc:
                raise TelematicsError(f"Telematics response for {path} was not JSON.") from exc

    def list_organisations(self) -> list[int]:
        data = self._get("/v1/user/organisation")
        organisations = data if isinstance(data, list) else []
        ids: list[int] = []
        for organisation in organisations:
            org_id = organisation.get("id", organisation.get("Id")) if isinstance(organisation, dict) else None
            try:
                ids.append(int(org_id))
            except (TypeError, ValueError):
                logger.debug(f"Skipping organisation with unusable id {org_id!r}")
        return ids

    def get_assets(self, organisation_id: int) -> list[dict]:
        data = self._get(f"/v1/organisation/{organisation_id}/asset")
        return [asset for asset in data if isinstance(asset, dict)] if isinstance(data, list) else []

    def get_assets_with_positions(self, organisation_id: int) -> list[VehiclePosition]:
        """Enabled assets that report both coordinates."""
        positions: list[VehiclePosition] = []
        for asset in self.get_assets(organisation_id):
            if asset.get("isEnabled", asset.get("IsEnabled", True)) is False:
                continue
            position = position_from_asset(asset)
            if position is not None:
                positions.append(position)
        return positions


def check_health(client: TelematicsClient | None = None) -> bool:
    """True when the provider accepts the configured credentials."""
    owned = client is None
    client = client or TelematicsClient()
    try:
        client.authenticate()
        return True
    except TelematicsError:
        return False
    finally:
        if owned:
            client.close()
