"""Shared fixtures: lease-manager wiring over an in-memory admin API."""

from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest

from devwrap.caddy.admin_client import AdminClient
from devwrap.config import ClientConfig, RuntimePaths
from devwrap.lease import LeaseManager
from devwrap.state.store import StateStore
from fake_caddy import FAKE_ADMIN_URL, FakeCaddy, managed_servers

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def paths(tmp_path) -> RuntimePaths:
    """Runtime file layout under a temporary state directory."""
    return RuntimePaths(tmp_path / "state")


@pytest.fixture
def store(paths: RuntimePaths) -> StateStore:
    """State store backed by the temporary state directory."""
    return StateStore(paths)


@pytest.fixture
def fake_caddy() -> FakeCaddy:
    """A self-managed proxy on 8080/8443 with the default TLS policy."""
    return FakeCaddy(
        servers=managed_servers(),
        tls={"automation": {"policies": [{"issuers": [{"module": "internal"}]}]}},
    )


@pytest.fixture
def client(fake_caddy: FakeCaddy) -> Iterator[AdminClient]:
    """AdminClient talking to fake_caddy."""
    admin = AdminClient(
        ClientConfig(base_url=FAKE_ADMIN_URL, timeout_seconds=1.0),
        transport=httpx.MockTransport(fake_caddy.handle),
    )
    yield admin
    admin.close()


@pytest.fixture
def alive_pids() -> set[int]:
    """PIDs the fake liveness check reports as running. Mutate to kill owners."""
    return {100, 200, 300}


@pytest.fixture
def manager(store: StateStore, client: AdminClient, alive_pids: set[int]) -> LeaseManager:
    """Lease manager with every port free and the CA untrusted."""
    return LeaseManager(
        store,
        client,
        is_alive=lambda pid: pid in alive_pids,
        port_probe=lambda port: True,
        trust_check=lambda: False,
        clock=lambda: "2026-10-19T10:00:00Z",
    )
