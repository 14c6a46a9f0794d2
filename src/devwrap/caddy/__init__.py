"""Caddy control plane: admin API client, topology, routes and TLS policy."""

from devwrap.caddy.admin_client import AdminClient
from devwrap.caddy.routes import RouteReconciler
from devwrap.caddy.tls_policy import TLSPolicySynchronizer
from devwrap.caddy.topology import ServerTopology, inspect_topology, resolve_topology

__all__ = [
    "AdminClient",
    "RouteReconciler",
    "ServerTopology",
    "TLSPolicySynchronizer",
    "inspect_topology",
    "resolve_topology",
]
