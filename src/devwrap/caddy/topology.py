"""Server topology discovery.

Decides which Caddy HTTP servers carry plain HTTP and TLS traffic and on
which ports, from a snapshot of /config/apps/http/servers.

Resolution rules:
    1. If the reserved "devwrap-http" server exists, the proxy is
       self-managed: "devwrap-http" (and "devwrap-https" if present) are
       the targets, regardless of any other servers.
    2. Otherwise servers are visited in name order. A server is TLS if it
       declares tls_connection_policies or listens on 443. The first TLS
       and the first plain server are the targets; a missing side reuses
       the other side's server.
    3. A target's port is the port of its first listen address, falling
       back to 80 (HTTP) / 443 (HTTPS).
"""

from __future__ import annotations

__all__ = [
    "SERVERS_PATH",
    "ServerTopology",
    "fetch_servers",
    "inspect_topology",
    "listen_port",
    "resolve_topology",
]

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from devwrap.constants import (
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    MANAGED_HTTP_SERVER,
    MANAGED_HTTPS_SERVER,
)
from devwrap.exceptions import TopologyUnresolved
from devwrap.models import CaddySource

if TYPE_CHECKING:
    from devwrap.caddy.admin_client import AdminClient

SERVERS_PATH = "/config/apps/http/servers"


@dataclass(frozen=True)
class ServerTopology:
    """Resolved HTTP/HTTPS targets.

    Attributes:
        http_server: Server name carrying plain HTTP.
        https_server: Server name carrying TLS, or None (self-managed
            topology without an HTTPS server).
        http_port: HTTP listener port.
        https_port: HTTPS listener port.
        source: MANAGED when the reserved server names are present.
        servers: The snapshot the topology was resolved from.
    """

    http_server: str
    https_server: str | None
    http_port: int
    https_port: int
    source: CaddySource
    servers: dict[str, dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def route_targets(self) -> list[str]:
        """Distinct server names to reconcile, HTTP first."""
        targets = [self.http_server]
        if self.https_server and self.https_server != self.http_server:
            targets.append(self.https_server)
        return targets

    def live_routes(self, server_name: str) -> Any:
        """Raw route list of a server in the snapshot (None if unset)."""
        return self.servers.get(server_name, {}).get("routes")


def listen_port(address: Any) -> int:
    """Port of a Caddy listen address (":443", "127.0.0.1:8080"), 0 if none."""
    if not isinstance(address, str):
        return 0
    _, _, port = address.rpartition(":")
    try:
        return int(port)
    except ValueError:
        return 0


def _listen_addresses(server: dict[str, Any]) -> list[Any]:
    listen = server.get("listen")
    return listen if isinstance(listen, list) else []


def _first_listen_port(server: dict[str, Any]) -> int:
    addresses = _listen_addresses(server)
    return listen_port(addresses[0]) if addresses else 0


def _is_tls_server(server: dict[str, Any]) -> bool:
    policies = server.get("tls_connection_policies")
    if isinstance(policies, list) and policies:
        return True
    return any(listen_port(a) == DEFAULT_HTTPS_PORT for a in _listen_addresses(server))


def resolve_topology(servers: dict[str, dict[str, Any]]) -> ServerTopology:
    """Resolve targets from a servers snapshot.

    Args:
        servers: Mapping of server name to server config.

    Returns:
        ServerTopology: Selected servers, ports and source.

    Raises:
        TopologyUnresolved: If no server can be classified.
    """
    if MANAGED_HTTP_SERVER in servers:
        http_port = _first_listen_port(servers[MANAGED_HTTP_SERVER]) or DEFAULT_HTTP_PORT
        https_server = MANAGED_HTTPS_SERVER if MANAGED_HTTPS_SERVER in servers else None
        if https_server is None:
            https_port = http_port
        else:
            https_port = _first_listen_port(servers[https_server]) or DEFAULT_HTTPS_PORT
        return ServerTopology(
            http_server=MANAGED_HTTP_SERVER,
            https_server=https_server,
            http_port=http_port,
            https_port=https_port,
            source=CaddySource.MANAGED,
            servers=servers,
        )

    http_name: str | None = None
    https_name: str | None = None
    http_port = DEFAULT_HTTP_PORT
    https_port = DEFAULT_HTTPS_PORT

    for name in sorted(servers):
        server = servers[name]
        port = _first_listen_port(server)
        if _is_tls_server(server):
            if https_name is None:
                https_name = name
                https_port = port or https_port
            continue
        if http_name is None:
            http_name = name
            http_port = port or http_port

    if http_name is None and https_name is None:
        raise TopologyUnresolved("unable to determine caddy server ports")

    return ServerTopology(
        http_server=http_name or https_name,  # type: ignore[arg-type]
        https_server=https_name or http_name,
        http_port=http_port,
        https_port=https_port,
        source=CaddySource.UNMANAGED,
        servers=servers,
    )


def fetch_servers(client: "AdminClient") -> dict[str, dict[str, Any]]:
    """Read the HTTP servers snapshot.

    Non-object entries are skipped.

    Raises:
        ControlPlaneUnreachable: On transport failure.
        AdminRequestFailed: If the admin API answers with an error.
        TopologyUnresolved: If no HTTP servers are configured.
    """
    raw = client.get_json(SERVERS_PATH, "caddy admin query")
    servers = {}
    if isinstance(raw, dict):
        servers = {name: value for name, value in raw.items() if isinstance(value, dict)}
    if not servers:
        raise TopologyUnresolved("caddy has no HTTP servers configured")
    return servers


def inspect_topology(client: "AdminClient") -> ServerTopology:
    """Fetch the servers snapshot and resolve it."""
    return resolve_topology(fetch_servers(client))
