"""Configuration for devwrap.

Defines the configuration model, where it is read from, and the runtime
file layout derived from it.

Sources, lowest to highest precedence:
    1. Model defaults
    2. config.json in the OS-appropriate app directory
    3. DEVWRAP_* environment variables

Example usage:
    config = load_config()
    paths = RuntimePaths.from_config(config)
    client_config = config.client_config()
"""

from __future__ import annotations

__all__ = [
    "ClientConfig",
    "DevwrapConfig",
    "ENV_OVERRIDES",
    "RuntimePaths",
    "get_config_path",
    "load_config",
    "load_config_strict",
]

import json
import logging
import os
import pwd
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Mapping
from urllib.parse import urlsplit

import click
from platformdirs import user_state_dir
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from devwrap.constants import (
    APP_NAME,
    DAEMON_CONFIG_FILE_NAME,
    DAEMON_LOG_FILE_NAME,
    DAEMON_PID_FILE_NAME,
    DEFAULT_ADMIN_TIMEOUT_SECONDS,
    DEFAULT_ADMIN_URL,
    EVENT_LOG_FILE_NAME,
    MAX_ADMIN_TIMEOUT_SECONDS,
    MIN_ADMIN_TIMEOUT_SECONDS,
    STATE_FILE_NAME,
    STATE_LOCK_FILE_NAME,
)
from devwrap.exceptions import ConfigurationError

_logger = logging.getLogger(f"{APP_NAME}.config")

# Environment variable -> config field
ENV_OVERRIDES: dict[str, str] = {
    "DEVWRAP_ADMIN_URL": "admin_url",
    "DEVWRAP_ADMIN_TIMEOUT": "admin_timeout_seconds",
    "DEVWRAP_STATE_DIR": "state_dir",
    "DEVWRAP_CADDY_BIN": "caddy_bin",
    "DEVWRAP_CADDY_DATA_DIR": "caddy_data_dir",
    "DEVWRAP_LOG_LEVEL": "log_level",
}


def _invoking_user_home() -> Path:
    """Home directory of the user who invoked devwrap.

    Under sudo this is SUDO_USER's home, so a privileged daemon shares
    state and certificates with unprivileged runs.
    """
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user and os.geteuid() == 0:
        try:
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except KeyError:
            pass
    return Path.home()


def _default_state_dir() -> str:
    """Get the default state directory.

    Returns:
        $XDG_STATE_HOME/devwrap on Linux (~/.local/state/devwrap),
        the platform equivalent elsewhere. Under sudo, the invoking
        user's ~/.local/state/devwrap.
    """
    home = _invoking_user_home()
    if home != Path.home():
        return str(home / ".local" / "state" / APP_NAME)
    return user_state_dir(APP_NAME)


def _default_caddy_data_dir() -> str:
    """Get the directory Caddy uses for certificates and its local CA.

    Returns:
        CADDY_DATA_DIR if set, otherwise Caddy's own per-platform default
        so an externally started Caddy and the self-managed one share a CA.

    Platform conventions:
        - macOS: ~/Library/Application Support/Caddy
        - Windows: ~/AppData/Roaming/Caddy
        - Linux: $XDG_DATA_HOME/caddy (~/.local/share/caddy)
    """
    if env_dir := os.environ.get("CADDY_DATA_DIR"):
        return env_dir
    home = _invoking_user_home()
    if sys.platform == "darwin":
        return str(home / "Library" / "Application Support" / "Caddy")
    elif sys.platform == "win32":
        return str(home / "AppData" / "Roaming" / "Caddy")
    data_home = os.environ.get("XDG_DATA_HOME") or str(home / ".local" / "share")
    return str(Path(data_home) / "caddy")


class ClientConfig(BaseModel):
    """Control-plane client settings.

    Attributes:
        base_url: Admin API base URL.
        timeout_seconds: Per-request timeout.
    """

    base_url: str = DEFAULT_ADMIN_URL
    timeout_seconds: float = DEFAULT_ADMIN_TIMEOUT_SECONDS

    model_config = ConfigDict(frozen=True)


class DevwrapConfig(BaseModel):
    """devwrap configuration.

    Attributes:
        admin_url: Caddy admin API base URL.
        admin_timeout_seconds: Timeout for every admin API call.
        state_dir: Directory holding state, lock, pid and log files.
        caddy_bin: Caddy executable used for the self-managed proxy and trust.
        caddy_data_dir: Caddy storage root (certificates, local CA).
        log_level: Level for the JSONL event log.
    """

    admin_url: str = Field(
        default=DEFAULT_ADMIN_URL,
        min_length=1,
        description="Caddy admin API base URL",
    )
    admin_timeout_seconds: float = Field(
        default=DEFAULT_ADMIN_TIMEOUT_SECONDS,
        ge=MIN_ADMIN_TIMEOUT_SECONDS,
        le=MAX_ADMIN_TIMEOUT_SECONDS,
        description="Client-side timeout for admin API calls",
    )
    state_dir: str = Field(
        default_factory=_default_state_dir,
        min_length=1,
        description="Directory for state.json, state.lock, daemon.pid and logs",
    )
    caddy_bin: str = Field(
        default="caddy",
        min_length=1,
        description="Caddy executable",
    )
    caddy_data_dir: str = Field(
        default_factory=_default_caddy_data_dir,
        min_length=1,
        description="Caddy storage root",
    )
    log_level: Literal["INFO", "DEBUG"] = Field(
        default="INFO",
        description="Event log level",
    )

    model_config = ConfigDict(extra="ignore")  # Ignore unknown fields for forward compat

    def client_config(self) -> ClientConfig:
        """Build the control-plane client settings."""
        return ClientConfig(
            base_url=self.admin_url.rstrip("/"),
            timeout_seconds=self.admin_timeout_seconds,
        )

    @property
    def admin_listen(self) -> str:
        """host:port the admin API listens on (for the self-managed proxy)."""
        parts = urlsplit(self.admin_url)
        return parts.netloc or "127.0.0.1:2019"


@dataclass(frozen=True)
class RuntimePaths:
    """File layout under the state directory."""

    state_dir: Path

    @classmethod
    def from_config(cls, config: DevwrapConfig) -> "RuntimePaths":
        return cls(Path(config.state_dir).expanduser())

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE_NAME

    @property
    def lock_file(self) -> Path:
        return self.state_dir / STATE_LOCK_FILE_NAME

    @property
    def pid_file(self) -> Path:
        return self.state_dir / DAEMON_PID_FILE_NAME

    @property
    def daemon_log(self) -> Path:
        return self.state_dir / DAEMON_LOG_FILE_NAME

    @property
    def daemon_config(self) -> Path:
        return self.state_dir / DAEMON_CONFIG_FILE_NAME

    @property
    def event_log(self) -> Path:
        return self.state_dir / EVENT_LOG_FILE_NAME

    def ensure(self) -> None:
        """Create the state directory if needed."""
        self.state_dir.mkdir(parents=True, exist_ok=True)


def get_config_path() -> Path:
    """Get the full path to the config file.

    Uses click.get_app_dir() which returns:
    - macOS: ~/Library/Application Support/devwrap
    - Linux: ~/.config/devwrap (XDG compliant)
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\devwrap

    Returns:
        Path to config.json in the config directory.
    """
    return Path(click.get_app_dir(APP_NAME)) / "config.json"


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    return {field: environ[var] for var, field in ENV_OVERRIDES.items() if environ.get(var)}


def _read_config_file(config_path: Path) -> dict[str, Any]:
    with config_path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("top-level value must be an object")
    return data


def load_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> DevwrapConfig:
    """Load configuration from file and environment.

    If the config file doesn't exist, defaults are used. Invalid JSON or
    validation errors fall back to defaults with a warning.

    Args:
        config_path: Config file (defaults to get_config_path()).
        environ: Environment mapping (defaults to os.environ).

    Returns:
        DevwrapConfig: Loaded or default configuration.
    """
    config_path = config_path or get_config_path()
    env = _env_overrides(os.environ if environ is None else environ)

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            data = _read_config_file(config_path)
        except (json.JSONDecodeError, ValueError) as e:
            _logger.warning(
                {
                    "event": "config_invalid_json",
                    "message": f"Invalid JSON in config, using defaults: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": {"config_path": str(config_path)},
                }
            )
        except OSError as e:
            _logger.warning(
                {
                    "event": "config_read_failed",
                    "message": f"Failed to read config file, using defaults: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": {"config_path": str(config_path)},
                }
            )

    try:
        return DevwrapConfig.model_validate({**data, **env})
    except ValidationError as e:
        _logger.warning(
            {
                "event": "config_validation_failed",
                "message": f"Invalid config values, using defaults: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(config_path)},
            }
        )
        return DevwrapConfig()


def load_config_strict(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> DevwrapConfig:
    """Load configuration, raising on any error.

    Unlike load_config(), an unreadable or invalid file is an error.
    A missing file still yields defaults.

    Raises:
        ConfigurationError: If the file or an override is invalid.
    """
    config_path = config_path or get_config_path()
    env = _env_overrides(os.environ if environ is None else environ)

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            data = _read_config_file(config_path)
        except (json.JSONDecodeError, ValueError) as e:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    try:
        return DevwrapConfig.model_validate({**data, **env})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config in {config_path}: {e}") from e
