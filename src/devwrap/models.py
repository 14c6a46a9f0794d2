"""Pydantic models for devwrap state and results.

This module contains three categories of models:

Persisted Models (mutable, written by the state store only):
- AppLease: One tracked application
- ProxyState: The state document

Result Models (FrozenModel-based, handed to the CLI):
- Lease: Result of a successful acquisition
- ProxyStatus: Aggregate status snapshot

Logging Models:
- DevwrapEvent: Structured log entries
"""

from __future__ import annotations

__all__ = [
    # Persisted Models
    "AppLease",
    "CaddySource",
    "ProxyState",
    # Result Models
    "FrozenModel",
    "Lease",
    "ProxyStatus",
    # Logging Models
    "DevwrapEvent",
    # Helpers
    "url_for",
]

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from devwrap.constants import (
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    STATE_SCHEMA_VERSION,
)

# Values written by older releases
_LEGACY_SOURCES: dict[str, str] = {
    "": "unmanaged",
    "existing": "unmanaged",
    "spawned": "managed",
}


def url_for(scheme: str, host: str, port: int) -> str:
    """Build a URL for host, omitting the scheme's default port.

    Args:
        scheme: "http" or "https".
        host: Hostname.
        port: Listener port.

    Returns:
        URL such as "https://api.localhost" or "https://api.localhost:8443".
    """
    default = DEFAULT_HTTPS_PORT if scheme == "https" else DEFAULT_HTTP_PORT
    if port == default:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


# =============================================================================
# Persisted Models
# =============================================================================


class CaddySource(str, Enum):
    """Who owns the proxy process lifecycle."""

    MANAGED = "managed"
    UNMANAGED = "unmanaged"


class AppLease(BaseModel):
    """One tracked application.

    Attributes:
        name: Unique app name (lowercase alphanumeric/dash).
        host: Fully-qualified local hostname routed to the app.
        port: Exclusively allocated local app port.
        pid: Process ID of the invocation holding the lease.
        started_at: RFC 3339 timestamp of the last acquisition.
    """

    name: str
    host: str
    port: int
    pid: int
    started_at: str = ""

    model_config = ConfigDict(extra="ignore")

    def https_url(self, https_port: int) -> str:
        """URL of this app through the HTTPS server."""
        return url_for("https", self.host, https_port)

    def http_url(self, http_port: int) -> str:
        """URL of this app through the HTTP server."""
        return url_for("http", self.host, http_port)


class ProxyState(BaseModel):
    """The persisted state document.

    Attributes:
        version: Schema version.
        caddy_source: Whether the proxy is self-managed.
        root: True when listening on the privileged 80/443 pair.
        http_port: Last known HTTP listener port.
        https_port: Last known HTTPS listener port.
        apps: Tracked leases keyed by app name.
    """

    version: int = STATE_SCHEMA_VERSION
    caddy_source: CaddySource = CaddySource.UNMANAGED
    root: bool = False
    http_port: int = DEFAULT_HTTP_PORT
    https_port: int = DEFAULT_HTTPS_PORT
    apps: Dict[str, AppLease] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")  # Ignore unknown fields for forward compat

    @field_validator("caddy_source", mode="before")
    @classmethod
    def _migrate_source(cls, value: Any) -> Any:
        if value is None:
            return CaddySource.UNMANAGED
        if isinstance(value, str):
            return _LEGACY_SOURCES.get(value, value)
        return value

    @field_validator("apps", mode="before")
    @classmethod
    def _default_apps(cls, value: Any) -> Any:
        return {} if value is None else value

    def used_ports(self) -> set[int]:
        """Ports recorded by tracked leases."""
        return {app.port for app in self.apps.values()}

    def set_listener_ports(self, http_port: int, https_port: int) -> None:
        """Record listener ports and derive the root flag."""
        self.http_port = http_port
        self.https_port = https_port
        self.root = http_port == DEFAULT_HTTP_PORT and https_port == DEFAULT_HTTPS_PORT


# =============================================================================
# Result Models
# =============================================================================


class FrozenModel(BaseModel):
    """Base class for immutable result models."""

    model_config = ConfigDict(frozen=True)


class Lease(FrozenModel):
    """Result of a successful lease acquisition.

    Attributes:
        name: App name.
        host: Routed hostname.
        port: Allocated app port.
        http_url: URL through the HTTP server.
        https_url: URL through the HTTPS server.
        trusted: Whether the proxy's local CA is in the system trust store.
    """

    name: str
    host: str
    port: int
    http_url: str
    https_url: str
    trusted: bool


class ProxyStatus(FrozenModel):
    """Aggregate status snapshot.

    Attributes:
        running: Whether the control plane answered.
        caddy_source: Self-managed or externally owned proxy.
        root: True when listening on 80/443.
        http_port: HTTP listener port.
        https_port: HTTPS listener port.
        trusted: Whether the local CA is trusted.
        pid: Daemon PID for a self-managed proxy, 0 otherwise.
        apps: Live leases sorted by name.
    """

    running: bool
    caddy_source: CaddySource
    root: bool
    http_port: int
    https_port: int
    trusted: bool
    pid: int = 0
    apps: list[AppLease] = Field(default_factory=list)


# =============================================================================
# Logging Models
# =============================================================================


class DevwrapEvent(BaseModel):
    """Structured log entry.

    Note: 'time' is None when created, populated by ISO8601Formatter during logging.
    """

    # --- core ---
    time: Optional[str] = Field(
        None,
        description="ISO 8601 timestamp (UTC), added by formatter during serialization",
    )
    event: Optional[str] = Field(
        None,
        description="Machine-friendly event name, e.g. 'lease_acquired', 'routes_recreated'",
    )
    message: str = Field(description="Human-readable log message")

    # --- lease context ---
    app_name: Optional[str] = Field(None, description="Affected app name")
    pid: Optional[int] = Field(None, description="Process ID involved")
    port: Optional[int] = Field(None, description="App or listener port")

    # --- control plane context ---
    path: Optional[str] = Field(None, description="Admin API path or file path")
    status_code: Optional[int] = Field(None, description="Admin API response status")

    # --- error details ---
    error_type: Optional[str] = Field(None, description="Exception class name")
    error_message: Optional[str] = Field(None, description="Short error text from exception")

    # --- additional structured details ---
    details: Optional[Dict[str, Any]] = Field(None, description="Additional context as key-value pairs")

    model_config = ConfigDict(extra="allow")
