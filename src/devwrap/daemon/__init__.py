"""Self-managed proxy: supervisor and lifecycle helpers."""

from devwrap.daemon.lifecycle import (
    ensure_control_plane,
    is_daemon_reachable,
    read_daemon_pid,
    start_proxy,
    stop_proxy,
)
from devwrap.daemon.supervisor import DaemonSupervisor, build_caddy_config, choose_proxy_ports

__all__ = [
    "DaemonSupervisor",
    "build_caddy_config",
    "choose_proxy_ports",
    "ensure_control_plane",
    "is_daemon_reachable",
    "read_daemon_pid",
    "start_proxy",
    "stop_proxy",
]
