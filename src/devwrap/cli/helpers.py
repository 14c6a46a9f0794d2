"""Shared CLI helpers.

Provides the per-invocation runtime (config, paths, admin client, lease
manager), JSON output, and the mapping of DevwrapError to CLI errors.
"""

from __future__ import annotations

__all__ = [
    "CommandError",
    "Runtime",
    "build_runtime",
    "command_errors",
    "emit_json",
]

import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import IO, Any, Iterator

import click

from devwrap.caddy.admin_client import AdminClient
from devwrap.config import DevwrapConfig, RuntimePaths, load_config
from devwrap.exceptions import DevwrapError
from devwrap.lease import LeaseManager
from devwrap.state.store import StateStore

from .styling import style_error


def emit_json(payload: Any) -> None:
    """Write one JSON document to stdout."""
    click.echo(json.dumps(payload, default=str))


class CommandError(click.ClickException):
    """CLI failure, rendered as styled text or as a JSON error object."""

    def __init__(self, message: str, as_json: bool = False, exit_code: int = 1) -> None:
        super().__init__(message)
        self.as_json = as_json
        self.exit_code = exit_code

    def show(self, file: IO[Any] | None = None) -> None:
        if self.as_json:
            emit_json({"ok": False, "error": self.format_message()})
            return
        click.echo(style_error(self.format_message()), err=True)


@contextmanager
def command_errors(as_json: bool) -> Iterator[None]:
    """Convert DevwrapError raised inside the block into CommandError."""
    try:
        yield
    except DevwrapError as e:
        raise CommandError(str(e), as_json=as_json, exit_code=e.exit_code) from e


@dataclass
class Runtime:
    """Collaborators for one CLI invocation."""

    config: DevwrapConfig
    paths: RuntimePaths
    client: AdminClient
    store: StateStore
    manager: LeaseManager

    def __enter__(self) -> "Runtime":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.client.close()


def build_runtime(config: DevwrapConfig | None = None) -> Runtime:
    """Wire up the runtime from configuration.

    Args:
        config: Loaded configuration (loads it if not given).
    """
    config = config or load_config()
    paths = RuntimePaths.from_config(config)
    client = AdminClient(config.client_config())
    store = StateStore(paths)
    return Runtime(
        config=config,
        paths=paths,
        client=client,
        store=store,
        manager=LeaseManager(store, client),
    )
