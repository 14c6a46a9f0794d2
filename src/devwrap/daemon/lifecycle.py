"""Self-managed proxy lifecycle helpers.

Synchronous helpers used by the CLI to find, start and stop the daemon
(`devwrap proxy daemon`, which runs DaemonSupervisor).

Handles:
- PID file read/cleanup
- Daemon reachability (PID alive, admin healthy, self-managed topology)
- Spawning the daemon detached, optionally through sudo
- Starting the control plane on demand before a run
"""

from __future__ import annotations

__all__ = [
    "StartResult",
    "StopResult",
    "clear_daemon_pid_file",
    "ensure_control_plane",
    "is_daemon_reachable",
    "read_daemon_pid",
    "spawn_daemon",
    "start_proxy",
    "stop_proxy",
]

import logging
import os
import shutil
import signal
import subprocess
import sys
from typing import Literal

from devwrap.caddy.admin_client import AdminClient
from devwrap.caddy.topology import inspect_topology
from devwrap.config import DevwrapConfig, RuntimePaths
from devwrap.constants import APP_NAME, PROXY_START_TIMEOUT_SECONDS
from devwrap.exceptions import (
    AdminRequestFailed,
    ControlPlaneUnreachable,
    DaemonError,
    TopologyUnresolved,
)
from devwrap.models import CaddySource, DevwrapEvent
from devwrap.utils.logging.log_config import log_event
from devwrap.utils.process import process_alive, read_pid_file

_logger = logging.getLogger(f"{APP_NAME}.daemon")

StartResult = Literal["already_running", "using_unmanaged", "started"]
StopResult = Literal["stopped", "signaled", "using_unmanaged", "not_running"]

# Variables a privileged daemon needs to share state with the invoking user
_PRESERVED_ENV = (
    "XDG_STATE_HOME",
    "DEVWRAP_STATE_DIR",
    "DEVWRAP_CADDY_DATA_DIR",
    "DEVWRAP_ADMIN_URL",
    "DEVWRAP_CADDY_BIN",
    "CADDY_DATA_DIR",
)


def read_daemon_pid(paths: RuntimePaths) -> int | None:
    """PID recorded by the daemon, or None if there is no valid PID file."""
    return read_pid_file(paths.pid_file)


def clear_daemon_pid_file(paths: RuntimePaths) -> None:
    """Remove the PID file if it exists."""
    paths.pid_file.unlink(missing_ok=True)


def _is_self_managed(client: AdminClient) -> bool:
    try:
        return inspect_topology(client).source is CaddySource.MANAGED
    except (ControlPlaneUnreachable, AdminRequestFailed, TopologyUnresolved):
        return False


def is_daemon_reachable(paths: RuntimePaths, client: AdminClient) -> bool:
    """Check if our daemon is running and serving the control plane.

    A stale PID file (dead process, or a control plane that is not
    self-managed) is removed.

    Returns:
        True if the PID is alive, the admin API is healthy and the
        topology is self-managed.
    """
    pid = read_daemon_pid(paths)
    if pid is None:
        return False
    if not process_alive(pid):
        clear_daemon_pid_file(paths)
        return False
    if not client.healthy():
        return False
    if not _is_self_managed(client):
        clear_daemon_pid_file(paths)
        return False
    return True


def _devwrap_command() -> list[str]:
    devwrap_path = shutil.which(APP_NAME)
    if devwrap_path is None:
        # Fall back to python -m devwrap.cli
        return [sys.executable, "-m", "devwrap.cli"]
    return [devwrap_path]


def spawn_daemon(config: DevwrapConfig, paths: RuntimePaths, privileged: bool = False) -> int:
    """Spawn `devwrap proxy daemon` detached, output appended to daemon.log.

    Args:
        config: Configuration passed down through the environment.
        paths: Runtime file layout.
        privileged: Run through sudo so the daemon can bind 80/443. stdin
            is inherited so sudo can prompt for a password.

    Returns:
        PID of the spawned process (sudo's PID when privileged).

    Raises:
        DaemonError: If the process cannot be spawned.
    """
    paths.ensure()
    cmd = _devwrap_command() + ["proxy", "daemon"]
    if privileged:
        cmd = ["sudo", f"--preserve-env={','.join(_PRESERVED_ENV)}"] + cmd

    env = dict(os.environ)
    env["DEVWRAP_STATE_DIR"] = str(paths.state_dir)
    env["DEVWRAP_CADDY_DATA_DIR"] = config.caddy_data_dir
    env["DEVWRAP_ADMIN_URL"] = config.admin_url
    env["DEVWRAP_CADDY_BIN"] = config.caddy_bin

    try:
        with open(paths.daemon_log, "ab") as log_file:
            if privileged:
                process = subprocess.Popen(
                    cmd, stdout=log_file, stderr=log_file, env=env, process_group=0
                )
            else:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=log_file,
                    env=env,
                    start_new_session=True,
                )
    except OSError as e:
        raise DaemonError(f"failed to spawn proxy daemon: {e}", paths.daemon_log) from e

    log_event(
        _logger,
        logging.DEBUG,
        DevwrapEvent(
            event="daemon_spawned",
            message=f"Spawned proxy daemon (pid {process.pid})",
            pid=process.pid,
            details={"privileged": privileged},
        ),
    )
    return process.pid


def start_proxy(
    config: DevwrapConfig,
    paths: RuntimePaths,
    client: AdminClient,
    privileged: bool = False,
) -> StartResult:
    """Start the self-managed proxy unless a control plane is already up.

    Returns:
        "already_running" if our daemon is up, "using_unmanaged" if another
        caddy answers on the admin address, "started" otherwise.

    Raises:
        DaemonError: If run privileged as root, or the daemon does not
            become ready in time.
    """
    if privileged and os.geteuid() == 0:
        raise DaemonError(
            "do not run `devwrap proxy start --privileged` under sudo; "
            "run it as your normal user"
        )

    if is_daemon_reachable(paths, client):
        return "already_running"
    if client.healthy():
        return "using_unmanaged"

    spawn_daemon(config, paths, privileged)
    try:
        client.wait_until_ready(PROXY_START_TIMEOUT_SECONDS)
    except ControlPlaneUnreachable as e:
        raise DaemonError(f"proxy failed to start: {e}", paths.daemon_log) from e
    return "started"


def stop_proxy(paths: RuntimePaths, client: AdminClient) -> tuple[StopResult, int]:
    """Stop the self-managed proxy.

    A self-managed caddy is stopped through the admin API. Otherwise a
    live daemon PID is sent SIGTERM. An unmanaged caddy is never stopped.

    Returns:
        (result, pid) where pid is the signaled PID or 0.

    Raises:
        ControlPlaneUnreachable / AdminRequestFailed: If the admin stop fails.
        DaemonError: If the daemon cannot be signaled.
    """
    healthy = client.healthy()
    if healthy and _is_self_managed(client):
        client.stop()
        return "stopped", 0

    pid = read_daemon_pid(paths)
    if pid is None or not process_alive(pid):
        return ("using_unmanaged" if healthy else "not_running"), 0

    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as e:
        raise DaemonError(f"stop failed: {e}") from e
    return "signaled", pid


def ensure_control_plane(
    config: DevwrapConfig,
    paths: RuntimePaths,
    client: AdminClient,
    privileged: bool = False,
) -> bool:
    """Make sure some control plane answers, starting the daemon if needed.

    Returns:
        True if the daemon had to be started.

    Raises:
        DaemonError: If the daemon cannot be started.
        ControlPlaneUnreachable: If the admin API is still down afterwards.
    """
    if client.healthy():
        return False
    start_proxy(config, paths, client, privileged)
    if not client.healthy():
        raise ControlPlaneUnreachable(
            "GET", f"{client.config.base_url}/config/", "caddy admin is still unavailable"
        )
    return True
