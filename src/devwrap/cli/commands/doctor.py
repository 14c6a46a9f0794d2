"""Doctor command for devwrap CLI.

Shows file locations, control plane health, and state health. With
--repair, moves an unusable state file aside.
"""

from __future__ import annotations

__all__ = ["doctor"]

from typing import Any

import click

from devwrap.caddy.pki import is_cert_trusted
from devwrap.caddy.topology import inspect_topology
from devwrap.config import DevwrapConfig
from devwrap.exceptions import DevwrapError

from ..helpers import Runtime, build_runtime, command_errors, emit_json
from ..styling import style_label, style_success, style_warning


def _collect(runtime: Runtime) -> dict[str, Any]:
    paths = runtime.paths
    report: dict[str, Any] = {
        "ok": True,
        "state_dir": str(paths.state_dir),
        "state_file": str(paths.state_file),
        "state_lock": str(paths.lock_file),
        "pid_file": str(paths.pid_file),
        "log_file": str(paths.daemon_log),
        "event_log": str(paths.event_log),
        "storage_dir": runtime.config.caddy_data_dir,
        "admin_url": runtime.config.admin_url,
        "caddy_admin": runtime.client.healthy(),
    }

    if report["caddy_admin"]:
        try:
            topology = inspect_topology(runtime.client)
            report["caddy_source"] = topology.source.value
            report["http_port"] = topology.http_port
            report["https_port"] = topology.https_port
        except DevwrapError as e:
            report["caddy_inspect_error"] = str(e)
        report["trusted"] = is_cert_trusted(runtime.client)
    else:
        report["trusted"] = False

    try:
        report["tracked_apps"] = len(runtime.manager.status().apps)
    except DevwrapError as e:
        report["tracked_apps_error"] = str(e)
    return report


def _print_report(report: dict[str, Any]) -> None:
    click.echo(style_label("state dir") + f" {report['state_dir']}")
    click.echo(style_label("state file") + f" {report['state_file']}")
    click.echo(style_label("state lock") + f" {report['state_lock']}")
    click.echo(style_label("pid file") + f" {report['pid_file']}")
    click.echo(style_label("log file") + f" {report['log_file']}")
    click.echo(style_label("event log") + f" {report['event_log']}")
    click.echo(style_label("storage dir") + f" {report['storage_dir']}")
    click.echo(style_label("caddy admin") + f" {report['caddy_admin']} ({report['admin_url']})")
    if "caddy_source" in report:
        click.echo(style_label("caddy source") + f" {report['caddy_source']}")
        click.echo(style_label("http/https") + f" {report['http_port']}/{report['https_port']}")
    if "caddy_inspect_error" in report:
        click.echo(style_warning(f"caddy inspect error: {report['caddy_inspect_error']}"))
    click.echo(style_label("trust (local CA)") + f" {report['trusted']}")
    if "tracked_apps" in report:
        click.echo(style_label("tracked apps") + f" {report['tracked_apps']}")
    else:
        click.echo(style_warning(f"tracked apps unknown: {report['tracked_apps_error']}"))


@click.command()
@click.option("--repair", is_flag=True, help="Move an unreadable state file aside")
@click.option("--json", "as_json", is_flag=True, help="Output JSON for scripting")
@click.pass_obj
def doctor(config: DevwrapConfig | None, repair: bool, as_json: bool) -> None:
    """Show environment and health diagnostics."""
    with build_runtime(config) as runtime:
        backup = None
        if repair:
            with command_errors(as_json):
                backup = runtime.store.backup_corrupt()
        report = _collect(runtime)

    if repair:
        report["state_backup"] = str(backup) if backup else None

    if as_json:
        emit_json(report)
        return

    click.echo(style_label("devwrap doctor"))
    _print_report(report)
    if repair:
        if backup:
            click.echo(style_success(f"moved unusable state file to {backup}"))
        else:
            click.echo(style_success("state file is healthy, nothing to repair"))
