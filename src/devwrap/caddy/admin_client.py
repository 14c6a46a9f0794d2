"""Client for the Caddy admin API (the control plane).

Every call is bounded by the client timeout from ClientConfig. Transport
failures are wrapped into ControlPlaneUnreachable with the method and
path; HTTP error statuses are returned to the caller, which decides
whether they are fatal.

Tests substitute a fake control plane by passing an httpx.MockTransport.
"""

from __future__ import annotations

__all__ = ["AdminClient"]

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from devwrap.config import ClientConfig
from devwrap.constants import (
    ADMIN_READY_INITIAL_DELAY_SECONDS,
    ADMIN_READY_MAX_DELAY_SECONDS,
    APP_NAME,
    DEFAULT_CA_ID,
)
from devwrap.exceptions import (
    AdminRequestFailed,
    ControlPlaneUnreachable,
    RouteWriteRejected,
)
from devwrap.models import DevwrapEvent
from devwrap.utils.logging.log_config import log_event

_logger = logging.getLogger(f"{APP_NAME}.caddy")

# Sentinel for "send no body" (None is a valid JSON payload)
_NO_BODY: Any = object()


def _body_text(response: httpx.Response) -> str:
    return response.text.strip()


class AdminClient:
    """Synchronous admin API client.

    Usable as a context manager; close() releases the connection pool.

    Attributes:
        config: Base URL and timeout.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    def __enter__(self) -> "AdminClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # =========================================================================
    # Raw requests
    # =========================================================================

    def request(self, method: str, path: str, payload: Any = _NO_BODY) -> httpx.Response:
        """Send a request.

        Args:
            method: HTTP method.
            path: Admin API path (leading slash optional).
            payload: JSON body; omitted when not given.

        Returns:
            The response, whatever its status.

        Raises:
            ControlPlaneUnreachable: On connection errors and timeouts.
        """
        if not path.startswith("/"):
            path = "/" + path
        try:
            if payload is _NO_BODY:
                return self._client.request(method, path)
            return self._client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise ControlPlaneUnreachable(method, f"{self.config.base_url}{path}", e) from e

    def get_json(self, path: str, what: str) -> Any | None:
        """GET a config value.

        Args:
            path: Admin API path.
            what: Operation name for error messages.

        Returns:
            Decoded JSON, or None if the path does not exist (404).

        Raises:
            ControlPlaneUnreachable: On transport failure.
            AdminRequestFailed: On any other non-2xx status.
        """
        response = self.request("GET", path)
        if response.status_code == 404:
            return None
        if response.status_code >= 300:
            raise AdminRequestFailed(what, path, response.status_code, _body_text(response))
        if not response.content:
            return None
        return response.json()

    # =========================================================================
    # Health
    # =========================================================================

    def healthy(self) -> bool:
        """Liveness probe: any status below 500 counts as healthy."""
        try:
            response = self.request("GET", "/config/")
        except ControlPlaneUnreachable:
            return False
        return response.status_code < 500

    def wait_until_ready(
        self,
        max_wait: float,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Poll the liveness probe with exponential backoff.

        Delays start at 100ms and double up to 1s, bounded by max_wait.

        Args:
            max_wait: Total time budget in seconds.
            sleep: Sleep function (injectable for tests).
            clock: Monotonic clock (injectable for tests).

        Raises:
            ControlPlaneUnreachable: If not healthy within max_wait.
        """
        deadline = clock() + max_wait
        delay = ADMIN_READY_INITIAL_DELAY_SECONDS
        while True:
            if self.healthy():
                return
            remaining = deadline - clock()
            if remaining <= 0:
                raise ControlPlaneUnreachable(
                    "GET", f"{self.config.base_url}/config/", "caddy admin did not become ready"
                )
            sleep(min(delay, remaining))
            delay = min(delay * 2, ADMIN_READY_MAX_DELAY_SECONDS)

    # =========================================================================
    # Writes
    # =========================================================================

    def write_with_fallback(
        self,
        path: str,
        payload: Any,
        error_cls: type[RouteWriteRejected] = RouteWriteRejected,
    ) -> None:
        """Replace the value at path, recreating it if PATCH is rejected.

        Protocol:
            1. PATCH path with payload.
            2. On non-2xx: DELETE path (result ignored), then PUT payload.

        Args:
            path: Admin API path of the list being replaced.
            payload: New value.
            error_cls: Exception raised if the PUT is also rejected.

        Raises:
            ControlPlaneUnreachable: On transport failure of PATCH or PUT.
            RouteWriteRejected: (or error_cls) if the PUT is rejected.
        """
        response = self.send_json("PATCH", path, payload)
        if response.status_code < 300:
            return

        log_event(
            _logger,
            logging.DEBUG,
            DevwrapEvent(
                event="routes_patch_rejected",
                message=f"PATCH {path} rejected, recreating",
                path=path,
                status_code=response.status_code,
                error_message=_body_text(response),
            ),
        )

        try:
            self.delete(path)
        except ControlPlaneUnreachable as e:
            # The PUT below reports the failure if the control plane is really gone
            log_event(
                _logger,
                logging.DEBUG,
                DevwrapEvent(
                    event="routes_delete_failed",
                    message=f"DELETE {path} failed before recreate",
                    path=path,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )

        created = self.send_json("PUT", path, payload)
        if created.status_code >= 300:
            raise error_cls(path, created.status_code, _body_text(created))

        log_event(
            _logger,
            logging.INFO,
            DevwrapEvent(
                event="routes_recreated",
                message=f"Recreated {path} after rejected PATCH",
                path=path,
            ),
        )

    def send_json(self, method: str, path: str, payload: Any) -> httpx.Response:
        """Send a JSON body with PATCH, PUT or POST."""
        return self.request(method, path, payload)

    def delete(self, path: str) -> httpx.Response:
        return self.request("DELETE", path)

    def stop(self) -> None:
        """Ask the control plane instance to exit (POST /stop).

        Raises:
            ControlPlaneUnreachable: On transport failure.
            AdminRequestFailed: If the stop request is rejected.
        """
        response = self.request("POST", "/stop")
        if response.status_code >= 300:
            raise AdminRequestFailed("caddy stop", "/stop", response.status_code, _body_text(response))

    # =========================================================================
    # PKI
    # =========================================================================

    def root_certificate(self, ca_id: str = DEFAULT_CA_ID) -> str:
        """Fetch the PEM root certificate of a CA.

        Args:
            ca_id: CA identifier ("local" for the internal issuer).

        Returns:
            PEM-encoded root certificate.

        Raises:
            ControlPlaneUnreachable: On transport failure.
            AdminRequestFailed: If the CA is unknown or the response is malformed.
        """
        path = f"/pki/ca/{ca_id or DEFAULT_CA_ID}"
        data = self.get_json(path, "caddy CA query")
        if not isinstance(data, dict) or not isinstance(data.get("root_certificate"), str):
            raise AdminRequestFailed("caddy CA query", path, 404, "no root certificate")
        return data["root_certificate"]
