"""Custom exceptions for devwrap.

This module contains all custom exceptions used throughout the package.
Every exception derives from DevwrapError so the CLI can map any of them
to a single error output path.

Fatal to the current operation:
    - LockAcquisitionFailure: State lock file cannot be opened or locked
    - PortExhaustion: No free app port in the allocation range
    - ControlPlaneUnreachable: Admin API call failed at the transport level
    - AdminRequestFailed: Admin API read answered with an error status
    - TopologyUnresolved: No HTTP server can be classified
    - RouteWriteRejected: PATCH and the DELETE+PUT fallback both failed
    - StateCorruptError / StateVersionError: State document unusable
    - NoPortsAvailable: No listener port pair free for the daemon

Non-fatal (reported, never blocks running an app):
    - TrustUnavailable: CA fetch, verification or installation failed

Child process:
    - ChildStartError: The wrapped command could not be executed (exit 127)

Usage:
    from devwrap.exceptions import PortExhaustion, RouteWriteRejected
"""

from __future__ import annotations

__all__ = [
    "AdminRequestFailed",
    "ChildStartError",
    "ConfigurationError",
    "ControlPlaneUnreachable",
    "DaemonError",
    "DevwrapError",
    "InvalidHostError",
    "InvalidNameError",
    "LockAcquisitionFailure",
    "NoPortsAvailable",
    "PortExhaustion",
    "RouteWriteRejected",
    "StateCorruptError",
    "StateVersionError",
    "TLSPolicyWriteRejected",
    "TopologyUnresolved",
    "TrustUnavailable",
]

from pathlib import Path


class DevwrapError(Exception):
    """Base exception for all devwrap failures.

    Attributes:
        exit_code: Process exit code used by the CLI.
    """

    exit_code: int = 1


# =============================================================================
# Validation
# =============================================================================


class InvalidNameError(DevwrapError, ValueError):
    """App name is not lowercase alphanumeric/dash."""


class InvalidHostError(DevwrapError, ValueError):
    """Custom hostname failed validation."""


class ConfigurationError(DevwrapError):
    """Configuration file is unreadable or invalid (strict loading only)."""


# =============================================================================
# State Store
# =============================================================================


class LockAcquisitionFailure(DevwrapError):
    """The cross-process state lock could not be acquired.

    Raised for I/O or permission errors on the lock file. Never raised
    for contention: acquisition blocks until the lock is free.
    """

    def __init__(self, path: Path, cause: OSError) -> None:
        super().__init__(f"acquire state lock {path}: {cause}")
        self.path = path
        self.cause = cause


class StateCorruptError(DevwrapError):
    """The state document exists but cannot be parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(
            f"state file {path} is corrupt ({reason}).\n"
            "Run 'devwrap doctor --repair' to move it aside and start fresh."
        )
        self.path = path
        self.reason = reason


class StateVersionError(DevwrapError):
    """The state document has a schema version with no migration path."""

    def __init__(self, path: Path, found: object, expected: int) -> None:
        super().__init__(
            f"state file {path} has schema version {found!r}, expected {expected}.\n"
            "Upgrade devwrap or run 'devwrap doctor --repair' to start fresh."
        )
        self.path = path
        self.found = found
        self.expected = expected


class PortExhaustion(DevwrapError):
    """No free app port in the allocation range."""

    def __init__(self, low: int, high: int) -> None:
        super().__init__(f"no free ports in range {low}-{high}")
        self.low = low
        self.high = high


# =============================================================================
# Control Plane
# =============================================================================


class ControlPlaneUnreachable(DevwrapError):
    """An admin API call failed before a response was received."""

    def __init__(self, method: str, url: str, cause: Exception | str) -> None:
        super().__init__(f"caddy admin {method} {url} failed: {cause}")
        self.method = method
        self.url = url
        self.cause = cause


class AdminRequestFailed(DevwrapError):
    """The control plane answered a read with an error status."""

    def __init__(self, what: str, path: str, status_code: int, body: str) -> None:
        super().__init__(f"{what} failed ({path}, {status_code}): {body}")
        self.path = path
        self.status_code = status_code
        self.body = body


class TopologyUnresolved(DevwrapError):
    """The control plane has no classifiable HTTP servers."""


class RouteWriteRejected(DevwrapError):
    """Both the PATCH and the DELETE+PUT fallback were rejected.

    Attributes:
        path: Admin API path that was written.
        status_code: Status of the last rejected request (None if it never completed).
        body: Error body returned by the control plane.
    """

    what: str = "caddy routes update"

    def __init__(self, path: str, status_code: int | None, body: str) -> None:
        super().__init__(f"{self.what} failed ({path}): {body}")
        self.path = path
        self.status_code = status_code
        self.body = body


class TLSPolicyWriteRejected(RouteWriteRejected):
    """TLS automation policy write was rejected."""

    what = "caddy TLS policy update"


class TrustUnavailable(DevwrapError):
    """Local CA could not be fetched, verified or installed."""


# =============================================================================
# Child Process
# =============================================================================


class ChildStartError(DevwrapError):
    """The wrapped command could not be started."""

    exit_code = 127


# =============================================================================
# Daemon
# =============================================================================


class NoPortsAvailable(DevwrapError):
    """None of the candidate listener port pairs are free."""

    def __init__(self, pairs: tuple[tuple[int, int], ...]) -> None:
        tried = " and ".join(f"{http}/{https}" for http, https in pairs)
        super().__init__(f"no available proxy ports: {tried} are in use")
        self.pairs = pairs


class DaemonError(DevwrapError):
    """The self-managed proxy could not be started or stopped."""

    def __init__(self, message: str, log_path: Path | None = None) -> None:
        if log_path is not None:
            message = f"{message} (see {log_path})"
        super().__init__(message)
        self.log_path = log_path
