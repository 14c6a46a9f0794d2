"""Proxy command group for devwrap CLI.

Provides commands to control the proxy:
- start: Start the self-managed proxy if no Caddy is running
- stop: Stop the self-managed proxy
- status: Show proxy status and tracked apps
- trust: Install the local CA into the system trust store
- logs: Show the self-managed proxy log
- daemon: Internal command run by the spawned daemon
"""

from __future__ import annotations

__all__ = ["proxy"]

import sys

import click

from devwrap.caddy.pki import trust_local_ca
from devwrap.caddy.topology import inspect_topology
from devwrap.config import DevwrapConfig
from devwrap.daemon.lifecycle import ensure_control_plane, start_proxy, stop_proxy
from devwrap.daemon.supervisor import DaemonSupervisor
from devwrap.exceptions import DevwrapError
from devwrap.models import CaddySource, ProxyStatus

from ..helpers import build_runtime, command_errors, emit_json
from ..styling import style_dim, style_error, style_label, style_success, style_warning


@click.group()
def proxy() -> None:
    """Manage the proxy lifecycle.

    devwrap uses any Caddy answering on the admin address. If none is
    running, it starts and manages its own.
    """
    pass


@proxy.command("start")
@click.option("--privileged", "-p", is_flag=True, help="Spawn the proxy with sudo (ports 80/443)")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def start(config: DevwrapConfig | None, privileged: bool, as_json: bool) -> None:
    """Start the proxy if needed (managed mode)."""
    with build_runtime(config) as runtime, command_errors(as_json):
        result = start_proxy(runtime.config, runtime.paths, runtime.client, privileged)

    if as_json:
        payload = {"ok": True, "action": "proxy_start", "result": result}
        if result == "using_unmanaged":
            payload["admin"] = runtime.config.admin_url
        if result == "started":
            payload["privileged"] = privileged
        emit_json(payload)
        return

    if result == "already_running":
        click.echo(style_dim("proxy is already running"))
    elif result == "using_unmanaged":
        click.echo(f"unmanaged caddy is already running at {runtime.config.admin_listen}")
        click.echo("devwrap will use it directly with file-based state")
    else:
        click.echo(style_success("proxy started (privileged)" if privileged else "proxy started"))


@proxy.command("stop")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def stop(config: DevwrapConfig | None, as_json: bool) -> None:
    """Stop the devwrap-managed proxy."""
    with build_runtime(config) as runtime, command_errors(as_json):
        result, pid = stop_proxy(runtime.paths, runtime.client)

    if as_json:
        payload = {"ok": True, "action": "proxy_stop", "result": result}
        if result == "signaled":
            payload["pid"] = pid
        emit_json(payload)
        return

    if result in ("stopped", "signaled"):
        click.echo(style_success("proxy stopped"))
    elif result == "using_unmanaged":
        click.echo(style_dim("using unmanaged caddy; nothing for devwrap to stop"))
    else:
        click.echo(style_dim("proxy is not running"))


def _print_status(status: ProxyStatus) -> None:
    owner = "managed caddy" if status.caddy_source is CaddySource.MANAGED else "unmanaged caddy"
    if status.caddy_source is CaddySource.MANAGED:
        mode = "sudo" if status.root else "unprivileged"
        pid = str(status.pid) if status.pid > 0 else "-"
        click.echo(style_success(f"proxy running (pid {pid}, {mode}, {owner})"))
    else:
        click.echo(style_success(f"proxy running ({owner})"))
    click.echo(style_label("http") + f" {status.http_port}, " + style_label("https") + f" {status.https_port}")
    click.echo(style_label("ca trusted") + f" {status.trusted}")
    if not status.apps:
        click.echo(style_label("apps") + " none")
        return
    click.echo(style_label("apps"))
    for app in status.apps:
        click.echo(
            f"- {app.name} -> {app.https_url(status.https_port)} (port {app.port}, pid {app.pid})"
        )


@proxy.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def status(config: DevwrapConfig | None, as_json: bool) -> None:
    """Show proxy status."""
    with build_runtime(config) as runtime, command_errors(as_json):
        snapshot = runtime.manager.status()

    if not snapshot.running:
        if as_json:
            emit_json({"ok": True, "running": False})
        else:
            click.echo(style_dim("proxy is not running"))
        return

    if as_json:
        owner = "managed caddy" if snapshot.caddy_source is CaddySource.MANAGED else "unmanaged caddy"
        emit_json(
            {"ok": True, "running": True, "status": snapshot.model_dump(mode="json"), "owner": owner}
        )
        return
    _print_status(snapshot)


@proxy.command("trust")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def trust(config: DevwrapConfig | None, as_json: bool) -> None:
    """Trust the Caddy local CA."""
    with build_runtime(config) as runtime, command_errors(as_json):
        ensure_control_plane(runtime.config, runtime.paths, runtime.client)
        installed = trust_local_ca(runtime.client, runtime.config)

    if as_json:
        emit_json({"ok": True, "action": "proxy_trust", "trusted": True, "installed": installed})
    elif installed:
        click.echo(style_success("trust complete"))
    else:
        click.echo(style_dim("local CA is already trusted"))


@proxy.command("logs")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def logs(config: DevwrapConfig | None, as_json: bool) -> None:
    """Show logs of the self-managed proxy."""
    with build_runtime(config) as runtime:
        managed = False
        if runtime.client.healthy():
            try:
                managed = inspect_topology(runtime.client).source is CaddySource.MANAGED
            except DevwrapError:
                managed = False
        log_path = runtime.paths.daemon_log

    if not managed:
        if as_json:
            emit_json({"ok": True, "managed": False, "log_file": "", "content": ""})
        else:
            click.echo(style_dim("no managed caddy logs (currently using unmanaged caddy)"))
        return

    try:
        content = log_path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        content = None

    if as_json:
        emit_json({"ok": True, "managed": True, "log_file": str(log_path), "content": content or ""})
        return
    if content is None:
        click.echo(style_dim(f"no daemon logs yet ({log_path})"))
        return
    click.echo(style_label("log file") + f" {log_path}")
    if not content:
        click.echo(style_dim("(empty)"))
        return
    click.echo(content, nl=False)


@proxy.command("daemon", hidden=True)
@click.pass_obj
def daemon(config: DevwrapConfig | None) -> None:
    """Internal command to run the proxy daemon (spawned by start)."""
    with build_runtime(config) as runtime:
        supervisor = DaemonSupervisor(runtime.config, runtime.paths, runtime.client, runtime.manager)
        try:
            supervisor.run()
        except DevwrapError as e:
            # Output goes to daemon.log
            click.echo(style_error(f"proxy daemon error: {e}"), err=True)
            sys.exit(e.exit_code)
