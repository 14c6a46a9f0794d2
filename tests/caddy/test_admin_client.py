"""Unit tests for the admin API client."""

from __future__ import annotations

import json

import httpx
import pytest
from fake_caddy import FakeCaddy

from devwrap.caddy.admin_client import AdminClient
from devwrap.config import ClientConfig
from devwrap.exceptions import (
    AdminRequestFailed,
    ControlPlaneUnreachable,
    RouteWriteRejected,
    TLSPolicyWriteRejected,
)

ROUTES = "/config/apps/http/servers/devwrap-http/routes"


def _refusing(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _client(handler) -> AdminClient:
    return AdminClient(ClientConfig(base_url="http://caddy.test"), transport=httpx.MockTransport(handler))


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.delays: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.now += seconds


# =============================================================================
# Requests and errors
# =============================================================================


class TestRequests:
    """Tests for raw requests and error wrapping."""

    def test_transport_error_is_wrapped(self) -> None:
        """Connection failures become ControlPlaneUnreachable with method and URL."""
        with _client(_refusing) as client:
            with pytest.raises(ControlPlaneUnreachable) as exc_info:
                client.request("GET", "config/")

        assert exc_info.value.method == "GET"
        assert exc_info.value.url == "http://caddy.test/config/"

    def test_get_json_404_is_none(self) -> None:
        """A missing path reads as None."""
        with _client(lambda r: httpx.Response(404)) as client:
            assert client.get_json("/config/apps/tls", "query") is None

    def test_get_json_error_status_raises(self) -> None:
        """Other error statuses raise with the body."""
        with _client(lambda r: httpx.Response(400, text="bad path\n")) as client:
            with pytest.raises(AdminRequestFailed) as exc_info:
                client.get_json("/config/x", "caddy admin query")

        assert exc_info.value.status_code == 400
        assert exc_info.value.body == "bad path"
        assert "caddy admin query failed" in str(exc_info.value)

    def test_sends_json_body(self) -> None:
        """Payloads are sent as JSON."""
        # Arrange
        seen: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.content)
            return httpx.Response(200)

        # Act
        with _client(handler) as client:
            client.send_json("PUT", "/config/x", {"a": [1]})

        # Assert
        assert [json.loads(body) for body in seen] == [{"a": [1]}]

    def test_stop_rejected_raises(self) -> None:
        """A rejected POST /stop raises AdminRequestFailed."""
        with _client(lambda r: httpx.Response(500, text="no")) as client:
            with pytest.raises(AdminRequestFailed):
                client.stop()


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    """Tests for healthy() and wait_until_ready()."""

    @pytest.mark.parametrize(("status", "healthy"), [(200, True), (404, True), (500, False), (503, False)])
    def test_healthy_by_status(self, status: int, healthy: bool) -> None:
        """Anything below 500 counts as healthy."""
        with _client(lambda r: httpx.Response(status)) as client:
            assert client.healthy() is healthy

    def test_unreachable_is_unhealthy(self) -> None:
        """Transport failures are reported as unhealthy, not raised."""
        with _client(_refusing) as client:
            assert client.healthy() is False

    def test_ready_after_backoff(self) -> None:
        """Polling backs off exponentially until the probe succeeds."""
        # Arrange
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 4:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200)

        clock = FakeClock()

        # Act
        with _client(handler) as client:
            client.wait_until_ready(5.0, sleep=clock.sleep, clock=clock)

        # Assert
        assert clock.delays == pytest.approx([0.1, 0.2, 0.4])

    def test_backoff_is_capped_and_times_out(self) -> None:
        """Delays cap at one second and the budget bounds the wait."""
        # Arrange
        clock = FakeClock()

        # Act
        with _client(_refusing) as client:
            with pytest.raises(ControlPlaneUnreachable, match="did not become ready"):
                client.wait_until_ready(10.0, sleep=clock.sleep, clock=clock)

        # Assert
        assert clock.delays[:6] == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.0, 1.0])
        assert max(clock.delays) <= 1.0
        assert clock.now == pytest.approx(10.0)


# =============================================================================
# Writes
# =============================================================================


class TestWriteWithFallback:
    """Tests for the PATCH then DELETE+PUT write protocol."""

    def test_patch_success(self) -> None:
        """An accepted PATCH is the only request."""
        # Arrange
        fake = FakeCaddy({"devwrap-http": {"listen": [":8080"], "routes": []}})

        # Act
        with _client(fake.handle) as client:
            client.write_with_fallback(ROUTES, [{"@id": "devwrap-api"}])

        # Assert
        assert fake.writes() == [("PATCH", ROUTES)]
        assert fake.routes("devwrap-http") == [{"@id": "devwrap-api"}]

    def test_rejected_patch_recreates(self) -> None:
        """A rejected PATCH is followed by DELETE and PUT."""
        # Arrange
        fake = FakeCaddy({"devwrap-http": {"listen": [":8080"], "routes": [{"old": 1}]}})
        fake.reject_patch = True

        # Act
        with _client(fake.handle) as client:
            client.write_with_fallback(ROUTES, [{"@id": "devwrap-api"}])

        # Assert
        assert fake.writes() == [("PATCH", ROUTES), ("DELETE", ROUTES), ("PUT", ROUTES)]
        assert fake.routes("devwrap-http") == [{"@id": "devwrap-api"}]

    def test_missing_list_is_created(self) -> None:
        """A server without routes gets them through PUT (DELETE 404 is ignored)."""
        # Arrange
        fake = FakeCaddy({"devwrap-http": {"listen": [":8080"]}})

        # Act
        with _client(fake.handle) as client:
            client.write_with_fallback(ROUTES, [])

        # Assert
        assert fake.methods()[-1] == "PUT"
        assert fake.config["apps"]["http"]["servers"]["devwrap-http"]["routes"] == []

    def test_rejected_put_raises(self) -> None:
        """When the PUT fails too, the error carries its status and body."""
        # Arrange
        fake = FakeCaddy({"devwrap-http": {"listen": [":8080"], "routes": []}})
        fake.reject_writes = True

        # Act
        with _client(fake.handle) as client:
            with pytest.raises(RouteWriteRejected) as exc_info:
                client.write_with_fallback(ROUTES, [])

        # Assert
        assert exc_info.value.status_code == 400
        assert exc_info.value.path == ROUTES
        assert "write rejected" in exc_info.value.body

    def test_custom_error_class(self) -> None:
        """Callers choose the exception raised on rejection."""
        fake = FakeCaddy({"devwrap-http": {"listen": [":8080"], "routes": []}})
        fake.reject_writes = True

        with _client(fake.handle) as client:
            with pytest.raises(TLSPolicyWriteRejected, match="TLS policy update failed"):
                client.write_with_fallback(ROUTES, [], TLSPolicyWriteRejected)

    def test_unreachable_during_write(self) -> None:
        """Transport failure of the PATCH propagates."""
        with _client(_refusing) as client:
            with pytest.raises(ControlPlaneUnreachable):
                client.write_with_fallback(ROUTES, [])


# =============================================================================
# PKI
# =============================================================================


class TestRootCertificate:
    """Tests for root_certificate."""

    def test_returns_pem(self) -> None:
        """The PEM of the requested CA is returned."""
        fake = FakeCaddy()
        fake.ca_pem = "-----BEGIN CERTIFICATE-----\n..."

        with _client(fake.handle) as client:
            assert client.root_certificate().startswith("-----BEGIN CERTIFICATE-----")

        assert fake.requests == [("GET", "/pki/ca/local")]

    def test_unknown_ca_raises(self) -> None:
        """A missing CA raises AdminRequestFailed."""
        with _client(FakeCaddy().handle) as client:
            with pytest.raises(AdminRequestFailed):
                client.root_certificate()
