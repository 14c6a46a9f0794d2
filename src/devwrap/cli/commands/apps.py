"""App commands for devwrap CLI.

Provides:
- ls: List tracked apps
- rm: Remove an app route regardless of which run owns it
"""

from __future__ import annotations

__all__ = ["ls", "rm"]

import click

from devwrap.config import DevwrapConfig
from devwrap.host import validate_name

from ..helpers import CommandError, build_runtime, command_errors, emit_json
from ..styling import style_dim, style_success


@click.command("ls")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def ls(config: DevwrapConfig | None, as_json: bool) -> None:
    """List registered apps."""
    with build_runtime(config) as runtime, command_errors(as_json):
        status = runtime.manager.status()

    if not status.running:
        if as_json:
            emit_json({"ok": True, "apps": []})
        else:
            click.echo(style_dim("no apps registered (proxy not running)"))
        return

    if as_json:
        emit_json(
            {
                "ok": True,
                "apps": [app.model_dump(mode="json") for app in status.apps],
                "https_port": status.https_port,
            }
        )
        return

    if not status.apps:
        click.echo(style_dim("no apps registered"))
        return
    for app in status.apps:
        click.echo(f"{app.name} -> {app.https_url(status.https_port)} (port {app.port}, pid {app.pid})")


@click.command("rm")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def rm(config: DevwrapConfig | None, name: str, as_json: bool) -> None:
    """Remove the route for NAME."""
    with command_errors(as_json):
        validate_name(name)

    with build_runtime(config) as runtime:
        if not runtime.client.healthy():
            raise CommandError("proxy is not running", as_json=as_json)
        with command_errors(as_json):
            removed = runtime.manager.remove(name)

    if as_json:
        emit_json({"ok": True, "action": "remove", "name": name, "removed": removed})
    elif removed:
        click.echo(style_success(f"removed route for '{name}'"))
    else:
        click.echo(style_dim(f"no app named '{name}'"))
