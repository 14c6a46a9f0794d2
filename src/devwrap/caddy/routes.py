"""Route reconciliation.

Owned routes are rebuilt from the tracked leases on every reconcile and
merged into each target server's live route list:

    live:    [foreign A, devwrap-old, foreign B]
    desired: [devwrap-api, devwrap-web]
    merged:  [foreign A, foreign B, devwrap-api, devwrap-web]

Foreign entries keep their content and relative order; every owned entry
is dropped and replaced by the name-sorted desired set.
"""

from __future__ import annotations

__all__ = [
    "RouteReconciler",
    "build_owned_routes",
    "merge_routes",
    "routes_path",
]

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from devwrap.caddy.admin_client import AdminClient
from devwrap.caddy.models import (
    ForeignEntry,
    Route,
    RouteEntry,
    entry_to_wire,
    parse_routes,
)
from devwrap.caddy.topology import SERVERS_PATH, ServerTopology
from devwrap.constants import APP_NAME
from devwrap.exceptions import RouteWriteRejected
from devwrap.models import AppLease, DevwrapEvent
from devwrap.utils.logging.log_config import log_event

_logger = logging.getLogger(f"{APP_NAME}.caddy")


def routes_path(server_name: str) -> str:
    """Admin API path of a server's route list."""
    return f"{SERVERS_PATH}/{quote(server_name, safe='')}/routes"


def build_owned_routes(apps: Mapping[str, AppLease]) -> list[Route]:
    """One owned route per app, sorted by app name."""
    return [Route.for_app(apps[name]) for name in sorted(apps)]


def merge_routes(live: list[RouteEntry], desired: list[Route]) -> list[RouteEntry]:
    """Drop owned entries from live and append the desired routes.

    Args:
        live: Parsed live route list.
        desired: Owned routes to install, already in final order.

    Returns:
        Foreign entries in original order followed by desired.
    """
    merged: list[RouteEntry] = [entry for entry in live if isinstance(entry, ForeignEntry)]
    merged.extend(desired)
    return merged


class RouteReconciler:
    """Writes the owned route set to every target server."""

    def __init__(self, client: AdminClient) -> None:
        self.client = client

    def reconcile(self, topology: ServerTopology, apps: Mapping[str, AppLease]) -> None:
        """Merge owned routes into each target server of the topology.

        Each server is written independently with the PATCH then
        DELETE+PUT protocol. A failure on one server stops the reconcile.

        Args:
            topology: Resolved targets with their live route snapshot.
            apps: Live leases.

        Raises:
            ControlPlaneUnreachable: On transport failure.
            RouteWriteRejected: If a server rejects both PATCH and PUT.
        """
        desired = build_owned_routes(apps)
        for server_name in topology.route_targets:
            live = parse_routes(topology.live_routes(server_name))
            merged = merge_routes(live, desired)
            payload: list[Any] = [entry_to_wire(entry) for entry in merged]
            self.client.write_with_fallback(routes_path(server_name), payload, RouteWriteRejected)

        log_event(
            _logger,
            logging.DEBUG,
            DevwrapEvent(
                event="routes_reconciled",
                message=f"Reconciled {len(desired)} owned route(s)",
                details={"servers": topology.route_targets, "apps": [r.app_name for r in desired]},
            ),
        )
