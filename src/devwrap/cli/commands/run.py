"""Run command for devwrap CLI.

Acquires a lease for the app, runs the wrapped command, and releases the
lease once the command exits.
"""

from __future__ import annotations

__all__ = ["run"]

import os
import sys

import click

from devwrap.config import DevwrapConfig
from devwrap.daemon.lifecycle import ensure_control_plane, is_daemon_reachable
from devwrap.exceptions import DevwrapError
from devwrap.host import host_for_app, validate_name
from devwrap.models import Lease
from devwrap.runner import normalize_host_url, run_child

from ..helpers import CommandError, build_runtime, command_errors, emit_json
from ..styling import style_dim, style_warning

UNTRUSTED_WARNINGS = [
    "HTTPS cert is issued by Caddy Local Authority and is not trusted yet",
    "run: devwrap proxy trust",
    "or: sudo devwrap proxy trust",
]


def _print_lease(lease: Lease, as_json: bool) -> None:
    if as_json:
        payload = {
            "ok": True,
            "action": "run",
            "name": lease.name,
            "port": lease.port,
            "https_url": lease.https_url,
            "http_url": lease.http_url,
            "trusted": lease.trusted,
        }
        if not lease.trusted:
            payload["warnings"] = UNTRUSTED_WARNINGS
        emit_json(payload)
        return

    if not lease.trusted:
        click.echo(style_warning(UNTRUSTED_WARNINGS[0]))
        for hint in UNTRUSTED_WARNINGS[1:]:
            click.echo(f"  {hint}")
    click.echo(f"{lease.name} -> {lease.https_url}")
    click.echo(style_dim(f"http fallback: {lease.http_url}"))


@click.command(context_settings={"ignore_unknown_options": True})
@click.option("--name", "-n", required=True, help="App route name (e.g. myapp)")
@click.option("--host", default=None, help="Custom hostname (default: <name>.localhost)")
@click.option(
    "--privileged",
    "-p",
    is_flag=True,
    help="Use sudo to spawn the proxy if Caddy is not already running",
)
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_obj
def run(
    config: DevwrapConfig | None,
    name: str,
    host: str | None,
    privileged: bool,
    as_json: bool,
    command: tuple[str, ...],
) -> None:
    """Run COMMAND behind the proxy.

    The command gets PORT, DEVWRAP_APP and DEVWRAP_HOST in its environment;
    @PORT in its arguments is replaced by the allocated port.

    Examples:
        devwrap run --name api -- uvicorn app:app --port @PORT
        devwrap run --name web --host web.dev.test -- pnpm dev
    """
    with command_errors(as_json):
        validate_name(name)
        host_for_app(name, host)

    pid = os.getpid()
    with build_runtime(config) as runtime:
        with command_errors(as_json):
            ensure_control_plane(runtime.config, runtime.paths, runtime.client, privileged)
            try:
                lease = runtime.manager.acquire(name, host, pid)
            except DevwrapError as e:
                if is_daemon_reachable(runtime.paths, runtime.client):
                    raise CommandError(
                        f"{e} (logs: {runtime.paths.daemon_log})",
                        as_json=as_json,
                        exit_code=e.exit_code,
                    ) from e
                raise

        _print_lease(lease, as_json)

        with command_errors(as_json):
            code = run_child(
                name,
                command,
                lease.port,
                normalize_host_url(lease.https_url),
                release=lambda: runtime.manager.release(name, pid),
            )
    sys.exit(code)
