"""App name and hostname validation.

All validation runs before any lease state is touched, so a rejected
name or host never allocates a port.
"""

from __future__ import annotations

__all__ = [
    "host_for_app",
    "normalize_host",
    "tls_subject_for_host",
    "validate_name",
]

import re

from devwrap.exceptions import InvalidHostError, InvalidNameError

_NAME_CHARS = re.compile(r"^[a-z0-9-]+$")
_LABEL_CHARS = re.compile(r"^[a-z0-9-]+$")


def validate_name(name: str) -> None:
    """Validate an app name.

    Rules:
    - Non-empty
    - Only lowercase letters, digits and dashes
    - Cannot start or end with a dash

    Args:
        name: App name to validate.

    Raises:
        InvalidNameError: If name is invalid, with descriptive message.
    """
    if not name:
        raise InvalidNameError("app name cannot be empty")
    if not _NAME_CHARS.match(name):
        raise InvalidNameError("app name must use lowercase letters, numbers, or dashes")
    if name.startswith("-") or name.endswith("-"):
        raise InvalidNameError("app name cannot start or end with a dash")


def normalize_host(raw: str) -> str:
    """Normalize and validate a custom hostname.

    Args:
        raw: User-supplied hostname.

    Returns:
        Lowercased, trimmed hostname.

    Raises:
        InvalidHostError: If the host has a scheme, path or port, or any
            label is empty, starts/ends with a dash, or has other characters.
    """
    host = raw.strip().lower()
    if not host:
        raise InvalidHostError("host cannot be empty")
    if "://" in host:
        raise InvalidHostError("host must be a hostname without scheme")
    if "/" in host:
        raise InvalidHostError("host must not include a path")
    if ":" in host:
        raise InvalidHostError("host must not include a port")
    if host.startswith(".") or host.endswith(".") or ".." in host:
        raise InvalidHostError("host format is invalid")

    for label in host.split("."):
        if label.startswith("-") or label.endswith("-"):
            raise InvalidHostError("host labels cannot start or end with '-'")
        if not _LABEL_CHARS.match(label):
            raise InvalidHostError("host can use lowercase letters, numbers, dots, and dashes")
    return host


def host_for_app(name: str, custom_host: str | None = None) -> str:
    """Resolve the hostname routed to an app.

    Args:
        name: Validated app name.
        custom_host: Optional custom hostname.

    Returns:
        "<name>.localhost" without a custom host, else the normalized custom host.
    """
    if not custom_host:
        return f"{name}.localhost"
    return normalize_host(custom_host)


def tls_subject_for_host(host: str) -> str:
    """Generalize a host to the wildcard subject covering it.

    Examples:
        api.localhost  -> *.localhost
        web.dev.test   -> *.dev.test
        localhost      -> localhost
    """
    h = host.strip().lower()
    first_dot = h.find(".")
    if 0 < first_dot < len(h) - 1:
        return "*." + h[first_dot + 1 :]
    return h
