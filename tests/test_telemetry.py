from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.fleet_tracker.services.telemetry.client import (
    TelematicsAuthError,
    TelematicsClient,
    TelematicsError,
    check_health,
)
from src.fleet_tracker.services.telemetry.models import (
    format_last_connected,
    gps_signal_strength,
    is_stale,
    position_from_asset,
)
from src.fleet_tracker.services.telemetry.poller import TelemetryPoller

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

ASSETS = [
    {
        "id": 1001,
        "name": "Truck T1",
        "isEnabled": True,
        "lastLatitude": -26.2041,
        "lastLongitude": 28.0473,
        "speedKmH": 42.5,
        "heading": 180,
        "lastConnectedUtc": "2026-03-02T11:58:00",
    },
    {"Id": 1002, "Name": "Truck T2", "LastLatitude": -29.85, "LastLongitude": 31.02, "SpeedKmH": 0},
    {"id": 1003, "name": "No fix", "lastLatitude": None, "lastLongitude": None},
    {"id": 1004, "name": "Disabled", "isEnabled": False, "lastLatitude": 1.0, "lastLongitude": 1.0},
]


class ProviderStub:
    """Minimal stand-in for the provider's REST API."""

    def __init__(self) -> None:
        self.asset_status = 200
        self.asset_error: type[httpx.TransportError] | None = None
        self.auth_status = 200
        self.auth_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/user/authenticate":
            self.auth_calls += 1
            assert b"Username=fleet" in request.content
            if self.auth_status != 200:
                return httpx.Response(self.auth_status)
            return httpx.Response(200, json={"access_token": "token-1", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer token-1"
        if request.url.path == "/v1/user/organisation":
            return httpx.Response(200, json=[{"id": 77, "name": "Fleet Co"}])
        if request.url.path == "/v1/organisation/77/asset":
            if self.asset_error is not None:
                raise self.asset_error("Server disconnected", request=request)
            if self.asset_status != 200:
                return httpx.Response(self.asset_status)
            return httpx.Response(200, json=ASSETS)
        return httpx.Response(404)


def _client(stub: ProviderStub) -> TelematicsClient:
    return TelematicsClient(
        base_url="https://telematics.test",
        username="fleet",
        password="secret",
        max_retries=0,
        backoff_seconds=0,
        transport=httpx.MockTransport(stub),
    )


def test_position_parsing_accepts_both_key_styles() -> None:
    camel = position_from_asset(ASSETS[0])
    pascal = position_from_asset(ASSETS[1])

    assert camel.vehicle_id == "1001"
    assert camel.speed_kmh == 42.5
    assert camel.last_connected == datetime(2026, 3, 2, 11, 58, tzinfo=timezone.utc)
    assert pascal.vehicle_id == "1002"
    assert pascal.latitude == -29.85
    assert position_from_asset(ASSETS[2]) is None


def test_client_authenticates_once_and_filters_assets() -> None:
    stub = ProviderStub()
    client = _client(stub)

    assert client.list_organisations() == [77]
    positions = client.get_assets_with_positions(77)

    assert [position.vehicle_id for position in positions] == ["1001", "1002"]
    assert stub.auth_calls == 1
    assert client.is_authenticated


def test_rejected_credentials_raise_auth_error() -> None:
    stub = ProviderStub()
    stub.auth_status = 401
    with pytest.raises(TelematicsAuthError):
        _client(stub).authenticate()
    assert check_health(_client(stub)) is False


def test_missing_credentials_raise_auth_error() -> None:
    client = TelematicsClient(base_url="https://telematics.test", username="", password="")
    with pytest.raises(TelematicsAuthError):
        client.authenticate()


def test_poller_discovers_organisation_and_builds_snapshot() -> None:
    poller = TelemetryPoller(client=_client(ProviderStub()), organisation_id=None, clock=lambda: NOW)

    snapshot, error = poller.poll()

    assert error is None
    assert poller.organisation_id == 77
    assert set(snapshot.positions) == {"1001", "1002"}
    assert snapshot.fetched_at == NOW
    assert not snapshot.stale


def test_poller_returns_last_snapshot_marked_stale_on_failure() -> None:
    stub = ProviderStub()
    poller = TelemetryPoller(client=_client(stub), organisation_id=77, clock=lambda: NOW)
    first, _ = poller.poll()

    stub.asset_status = 503
    snapshot, error = poller.poll()

    assert error is not None
    assert snapshot.stale
    assert not snapshot.unauthenticated
    assert snapshot.positions == first.positions


def test_poller_flags_unauthenticated_on_rejected_session() -> None:
    stub = ProviderStub()
    poller = TelemetryPoller(client=_client(stub), organisation_id=77, clock=lambda: NOW)
    poller.poll()

    stub.asset_status = 401
    snapshot, error = poller.poll()

    assert isinstance(error, TelematicsAuthError)
    assert snapshot.stale and snapshot.unauthenticated
    assert not poller.client.is_authenticated


def test_display_helpers() -> None:
    position = position_from_asset(ASSETS[0])

    assert format_last_connected(None, NOW) == "Never"
    assert format_last_connected(NOW - timedelta(seconds=20), NOW) == "Just now"
    assert format_last_connected(NOW - timedelta(minutes=12), NOW) == "12m ago"
    assert format_last_connected(NOW - timedelta(hours=3), NOW) == "3h ago"
    assert format_last_connected(NOW - timedelta(days=2), NOW) == "2d ago"
    assert gps_signal_strength(position, NOW) == "strong"
    assert gps_signal_strength(position, NOW + timedelta(minutes=10)) == "medium"
    assert gps_signal_strength(position, NOW + timedelta(minutes=40)) == "weak"
    assert gps_signal_strength(position, NOW + timedelta(hours=2)) == "none"
    assert not is_stale(position, NOW, 30)
    assert is_stale(position, NOW + timedelta(minutes=45), 30)


def test_dropped_connection_marks_snapshot_stale() -> None:
    stub = ProviderStub()
    poller = TelemetryPoller(client=_client(stub), organisation_id=77, clock=lambda: NOW)
    first, _ = poller.poll()

    stub.asset_error = httpx.RemoteProtocolError
    snapshot, error = poller.poll()

    assert isinstance(error, TelematicsError)
    assert snapshot.stale
    assert snapshot.positions == first.positions


def test_non_json_authentication_reply_is_a_provider_error() -> None:
    def maintenance(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client = TelematicsClient(
        base_url="https://telematics.test",
        username="fleet",
        password="secret",
        max_retries=0,
        backoff_seconds=0,
        transport=httpx.MockTransport(maintenance),
    )
    with pytest.raises(TelematicsError):
        client.authenticate()

    snapshot, error = TelemetryPoller(client=client, organisation_id=77, clock=lambda: NOW).poll()
    assert isinstance(error, TelematicsError)
    assert snapshot.stale


def test_organisations_with_unusable_ids_are_skipped() -> None:
    stub = ProviderStub()

    def organisations(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/user/organisation":
            return httpx.Response(200, json=[{"id": "head-office"}, {"name": "No id"}, {"Id": "88"}])
        return stub(request)

    client = TelematicsClient(
        base_url="https://telematics.test",
        username="fleet",
        password="secret",
        max_retries=0,
        backoff_seconds=0,
        transport=httpx.MockTransport(organisations),
    )
    assert client.list_organisations() == [88]
