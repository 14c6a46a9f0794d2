"""Self-managed proxy supervisor.

Runs only when no control plane is reachable. It starts
`caddy run --config <state_dir>/caddy.json` as a child process, marks the
state as self-managed, re-applies routes for leases that survived, and
blocks until SIGINT/SIGTERM or until caddy exits. On the way out it stops
caddy and reverts the state to unmanaged.

Route programming stays with the lease manager; the supervisor only brings
the control plane into existence.
"""

from __future__ import annotations

__all__ = [
    "DaemonSupervisor",
    "build_caddy_config",
    "choose_proxy_ports",
]

import json
import logging
import os
import signal
import subprocess
import threading
from collections.abc import Callable
from typing import IO, Any

from devwrap.caddy.admin_client import AdminClient
from devwrap.config import DevwrapConfig, RuntimePaths
from devwrap.constants import (
    APP_NAME,
    DAEMON_POLL_INTERVAL_SECONDS,
    DAEMON_READY_TIMEOUT_SECONDS,
    DAEMON_STOP_TIMEOUT_SECONDS,
    INTERNAL_ISSUER_MODULE,
    MANAGED_HTTP_SERVER,
    MANAGED_HTTPS_SERVER,
    PRIVILEGED_PORT_PAIRS,
    UNPRIVILEGED_PORT_PAIRS,
)
from devwrap.exceptions import ControlPlaneUnreachable, DaemonError, DevwrapError, NoPortsAvailable
from devwrap.lease import LeaseManager
from devwrap.models import CaddySource, DevwrapEvent
from devwrap.utils.logging.log_config import log_event
from devwrap.utils.process import can_bind

_logger = logging.getLogger(f"{APP_NAME}.daemon")


def _port_free(port: int) -> bool:
    return can_bind("", port)


def choose_proxy_ports(
    is_root: bool,
    probe: Callable[[int], bool] = _port_free,
) -> tuple[int, int]:
    """Pick the first free (http, https) listener pair.

    Candidates:
        root:     80/443, then 8080/8443
        non-root: 8080/8443, then 9080/9443

    Raises:
        NoPortsAvailable: If no pair has both ports free.
    """
    pairs = PRIVILEGED_PORT_PAIRS if is_root else UNPRIVILEGED_PORT_PAIRS
    for http_port, https_port in pairs:
        if probe(http_port) and probe(https_port):
            return http_port, https_port
    raise NoPortsAvailable(pairs)


def build_caddy_config(config: DevwrapConfig, http_port: int, https_port: int) -> dict[str, Any]:
    """Caddy JSON config for the self-managed proxy.

    Both servers start with no routes; the HTTPS server has one empty TLS
    connection policy so certificates come from TLS automation, whose
    default policy uses the internal issuer.
    """
    return {
        "admin": {"listen": config.admin_listen},
        "storage": {"module": "file_system", "root": config.caddy_data_dir},
        "apps": {
            "http": {
                "servers": {
                    MANAGED_HTTP_SERVER: {
                        "listen": [f":{http_port}"],
                        "routes": [],
                    },
                    MANAGED_HTTPS_SERVER: {
                        "listen": [f":{https_port}"],
                        "tls_connection_policies": [{}],
                        "routes": [],
                    },
                }
            },
            "tls": {
                "automation": {
                    "policies": [{"issuers": [{"module": INTERNAL_ISSUER_MODULE}]}],
                }
            },
        },
    }


class DaemonSupervisor:
    """Owns one self-managed caddy process for its whole lifetime.

    Attributes:
        config: devwrap configuration.
        paths: Runtime file layout.
        client: Admin client pointed at the caddy being supervised.
        manager: Lease manager used to re-apply surviving routes.
    """

    def __init__(
        self,
        config: DevwrapConfig,
        paths: RuntimePaths,
        client: AdminClient,
        manager: LeaseManager,
        popen: Callable[..., subprocess.Popen[bytes]] = subprocess.Popen,
        is_root: bool | None = None,
    ) -> None:
        self.config = config
        self.paths = paths
        self.client = client
        self.manager = manager
        self._popen = popen
        self._is_root = os.geteuid() == 0 if is_root is None else is_root
        self._process: subprocess.Popen[bytes] | None = None
        self._log_file: IO[bytes] | None = None
        self._shutdown = threading.Event()

    # =========================================================================
    # Start
    # =========================================================================

    def start(self) -> tuple[int, int]:
        """Start caddy and take over the state as self-managed.

        Returns:
            The (http, https) listener ports.

        Raises:
            DaemonError: If a control plane is already running or caddy
                cannot be started or does not become ready.
            NoPortsAvailable: If no listener pair is free.
        """
        if self.client.healthy():
            raise DaemonError("caddy admin already running; daemon not needed")

        http_port, https_port = choose_proxy_ports(self._is_root)
        self.paths.ensure()
        self.paths.daemon_config.write_text(
            json.dumps(build_caddy_config(self.config, http_port, https_port), indent=2),
            encoding="utf-8",
        )

        self._log_file = open(self.paths.daemon_log, "ab")
        cmd = [self.config.caddy_bin, "run", "--config", str(self.paths.daemon_config)]
        try:
            self._process = self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=self._log_file,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            self._close_log()
            raise DaemonError(f"cannot start {self.config.caddy_bin}: {e}", self.paths.daemon_log) from e

        try:
            self.client.wait_until_ready(DAEMON_READY_TIMEOUT_SECONDS)
            self._take_over(http_port, https_port)
        except DevwrapError as e:
            self._terminate(graceful=False)
            self._close_log()
            if isinstance(e, ControlPlaneUnreachable):
                raise DaemonError(
                    "caddy started but admin API is unavailable", self.paths.daemon_log
                ) from e
            raise

        self.paths.pid_file.write_text(str(os.getpid()), encoding="utf-8")
        log_event(
            _logger,
            logging.INFO,
            DevwrapEvent(
                event="daemon_started",
                message=f"Proxy started on ports {http_port}/{https_port}",
                pid=os.getpid(),
                details={
                    "http_port": http_port,
                    "https_port": https_port,
                    "caddy_pid": self._process.pid,
                },
            ),
        )
        return http_port, https_port

    def _take_over(self, http_port: int, https_port: int) -> None:
        store = self.manager.store
        with store.lock():
            state = store.load()
            store.evict_dead(state, self.manager.is_alive)
            state.caddy_source = CaddySource.MANAGED
            state.set_listener_ports(http_port, https_port)
            store.save(state)
            self.manager.reconcile()

    # =========================================================================
    # Wait / Stop
    # =========================================================================

    def request_shutdown(self, signum: int | None = None, frame: Any = None) -> None:
        """Signal handler: ask wait() to return."""
        self._shutdown.set()

    def wait(self) -> None:
        """Block until a shutdown is requested or caddy exits."""
        while not self._shutdown.wait(DAEMON_POLL_INTERVAL_SECONDS):
            if self._process is not None and self._process.poll() is not None:
                log_event(
                    _logger,
                    logging.WARNING,
                    DevwrapEvent(
                        event="caddy_exited",
                        message=f"caddy exited unexpectedly with code {self._process.returncode}",
                        details={"returncode": self._process.returncode},
                    ),
                )
                return

    def stop(self) -> None:
        """Stop caddy, remove the PID file and revert the state to unmanaged."""
        if self._process is not None and self._process.poll() is None:
            try:
                self.client.stop()
            except DevwrapError as e:
                log_event(
                    _logger,
                    logging.WARNING,
                    DevwrapEvent(
                        event="caddy_stop_failed",
                        message=f"Admin stop failed, terminating caddy: {e}",
                        error_type=type(e).__name__,
                        error_message=str(e),
                    ),
                )
            self._terminate()
        self._close_log()

        self.paths.pid_file.unlink(missing_ok=True)
        store = self.manager.store
        with store.lock():
            state = store.load()
            state.caddy_source = CaddySource.UNMANAGED
            store.save(state)

        log_event(
            _logger,
            logging.INFO,
            DevwrapEvent(event="daemon_stopped", message="Proxy stopped", pid=os.getpid()),
        )

    def run(self) -> None:
        """Start, block until shutdown, then stop."""
        previous = {
            sig: signal.signal(sig, self.request_shutdown) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            self.start()
            try:
                self.wait()
            finally:
                self.stop()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    def _terminate(self, graceful: bool = True) -> None:
        """Wait for caddy to exit, escalating to SIGTERM then SIGKILL."""
        process = self._process
        if process is None:
            return
        if graceful:
            try:
                process.wait(timeout=DAEMON_STOP_TIMEOUT_SECONDS)
                return
            except subprocess.TimeoutExpired:
                pass
        process.terminate()
        try:
            process.wait(timeout=DAEMON_STOP_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _close_log(self) -> None:
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None
