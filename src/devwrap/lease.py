"""Lease manager: atomic acquire/release/remove/status operations.

Every operation runs as one unit under the state lock:

    load -> evict dead owners -> mutate -> inspect topology
         -> reconcile routes -> sync TLS policy -> save

State is saved only after the control plane accepted the new routes, so
a failed acquisition leaves the state document untouched.

Example usage:
    manager = LeaseManager(StateStore(paths), AdminClient(config.client_config()))
    lease = manager.acquire("api", host=None, pid=os.getpid())
    ...
    manager.release("api", os.getpid())
"""

from __future__ import annotations

__all__ = ["LeaseManager"]

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from devwrap.caddy.admin_client import AdminClient
from devwrap.caddy.pki import is_cert_trusted
from devwrap.caddy.routes import RouteReconciler
from devwrap.caddy.tls_policy import TLSPolicySynchronizer
from devwrap.caddy.topology import ServerTopology, inspect_topology
from devwrap.constants import APP_NAME, DEFAULT_HTTP_PORT, DEFAULT_HTTPS_PORT, LOOPBACK_HOST
from devwrap.exceptions import (
    AdminRequestFailed,
    ControlPlaneUnreachable,
    DevwrapError,
    TopologyUnresolved,
)
from devwrap.host import host_for_app, validate_name
from devwrap.models import (
    AppLease,
    CaddySource,
    DevwrapEvent,
    Lease,
    ProxyState,
    ProxyStatus,
)
from devwrap.state.ports import allocate_port
from devwrap.state.store import StateStore
from devwrap.utils.logging.log_config import log_event
from devwrap.utils.process import can_bind, process_alive, read_pid_file

_logger = logging.getLogger(f"{APP_NAME}.lease")


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class LeaseManager:
    """Composes the state store and the control plane into lease operations.

    Collaborators are injected so tests can substitute a fake control
    plane, a fake liveness check and a fake port probe.

    Attributes:
        store: State store (owns the lock and the document).
        client: Admin API client.
    """

    def __init__(
        self,
        store: StateStore,
        client: AdminClient,
        is_alive: Callable[[int], bool] = process_alive,
        port_probe: Callable[[int], bool] | None = None,
        trust_check: Callable[[], bool] | None = None,
        clock: Callable[[], str] = _utc_timestamp,
    ) -> None:
        self.store = store
        self.client = client
        self.is_alive = is_alive
        self.port_probe = port_probe or (lambda port: can_bind(LOOPBACK_HOST, port))
        self.trust_check = trust_check or (lambda: is_cert_trusted(client))
        self.clock = clock
        self._routes = RouteReconciler(client)
        self._tls = TLSPolicySynchronizer(client)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def _apply(self, state: ProxyState) -> ServerTopology:
        """Program the control plane for state.apps and record the topology.

        Raises:
            ControlPlaneUnreachable, AdminRequestFailed, TopologyUnresolved,
            RouteWriteRejected: From the control plane.
        """
        topology = inspect_topology(self.client)
        self._routes.reconcile(topology, state.apps)
        self._tls.sync(state.apps)
        state.caddy_source = topology.source
        state.set_listener_ports(topology.http_port, topology.https_port)
        return topology

    def reconcile(self) -> ProxyState:
        """Evict dead leases and re-apply routes for the survivors.

        Used when a control plane comes up with routes missing.

        Returns:
            The saved state.
        """
        with self.store.lock():
            state = self.store.load()
            self.store.evict_dead(state, self.is_alive)
            self._apply(state)
            self.store.save(state)
            return state

    # =========================================================================
    # Operations
    # =========================================================================

    def acquire(self, name: str, host: str | None, pid: int) -> Lease:
        """Acquire (or re-acquire) the lease for an app.

        Args:
            name: App name.
            host: Custom hostname, or None/"" for "<name>.localhost".
            pid: PID of the process that will own the lease.

        Returns:
            Lease: Name, host, port, URLs and trust flag.

        Raises:
            InvalidNameError / InvalidHostError: Before any state is touched.
            LockAcquisitionFailure: If the state lock cannot be taken.
            PortExhaustion: If no app port is free.
            ControlPlaneUnreachable, AdminRequestFailed, TopologyUnresolved,
            RouteWriteRejected: If the control plane cannot be programmed.
        """
        validate_name(name)
        resolved_host = host_for_app(name, host)

        with self.store.lock():
            state = self.store.load()
            self.store.evict_dead(state, self.is_alive)

            app = state.apps.get(name)
            if app is not None:
                app.pid = pid
                app.host = resolved_host
                app.started_at = self.clock()
                reacquired = True
            else:
                port = allocate_port(state.used_ports(), probe=self.port_probe)
                app = AppLease(
                    name=name,
                    host=resolved_host,
                    port=port,
                    pid=pid,
                    started_at=self.clock(),
                )
                state.apps[name] = app
                reacquired = False

            self._apply(state)
            self.store.save(state)
            http_port, https_port = state.http_port, state.https_port

        log_event(
            _logger,
            logging.INFO,
            DevwrapEvent(
                event="lease_acquired",
                message=f"{'Re-acquired' if reacquired else 'Acquired'} '{name}' on port {app.port}",
                app_name=name,
                pid=pid,
                port=app.port,
                details={"host": app.host, "reacquired": reacquired},
            ),
        )

        return Lease(
            name=app.name,
            host=app.host,
            port=app.port,
            http_url=app.http_url(http_port),
            https_url=app.https_url(https_port),
            trusted=self.trust_check(),
        )

    def release(self, name: str, pid: int) -> bool:
        """Release a lease held by pid. Best-effort: never raises.

        A release whose pid does not match the recorded owner is ignored
        (the name was re-acquired by another run) and logged as
        stale_release_ignored. A pid of 0 skips the owner check.

        Returns:
            True if the lease was removed.
        """
        released = False
        try:
            with self.store.lock():
                state = self.store.load()
                evicted = self.store.evict_dead(state, self.is_alive)
                app = state.apps.get(name)
                if app is not None and pid > 0 and app.pid != pid:
                    log_event(
                        _logger,
                        logging.DEBUG,
                        DevwrapEvent(
                            event="stale_release_ignored",
                            message=f"Release of '{name}' by {pid} ignored, owned by {app.pid}",
                            app_name=name,
                            pid=pid,
                            details={"owner_pid": app.pid},
                        ),
                    )
                elif app is not None:
                    del state.apps[name]
                    released = True

                if not released and not evicted:
                    return False
                self._apply(state)
                self.store.save(state)
        except (DevwrapError, OSError) as e:
            log_event(
                _logger,
                logging.WARNING,
                DevwrapEvent(
                    event="release_failed",
                    message=f"Failed to release '{name}': {e}",
                    app_name=name,
                    pid=pid,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )
            return False

        if released:
            log_event(
                _logger,
                logging.INFO,
                DevwrapEvent(
                    event="lease_released",
                    message=f"Released '{name}'",
                    app_name=name,
                    pid=pid,
                ),
            )
        return released

    def remove(self, name: str) -> bool:
        """Remove a lease regardless of its owner.

        Returns:
            True if the app was tracked.

        Raises:
            LockAcquisitionFailure: If the state lock cannot be taken.
            ControlPlaneUnreachable, AdminRequestFailed, TopologyUnresolved,
            RouteWriteRejected: If the control plane cannot be programmed.
        """
        with self.store.lock():
            state = self.store.load()
            evicted = self.store.evict_dead(state, self.is_alive)
            existed = state.apps.pop(name, None) is not None
            if not existed and not evicted:
                return False
            self._apply(state)
            self.store.save(state)

        if existed:
            log_event(
                _logger,
                logging.INFO,
                DevwrapEvent(event="lease_removed", message=f"Removed '{name}'", app_name=name),
            )
        return existed

    def status(self) -> ProxyStatus:
        """Aggregate status.

        Dead leases are evicted (and routes reconciled) as a side effect.
        An unreachable or unclassifiable control plane is reported as
        not running rather than raised.

        Raises:
            LockAcquisitionFailure: If the state lock cannot be taken.
            StateCorruptError / StateVersionError: If the state is unusable.
        """
        with self.store.lock():
            state = self.store.load()
            evicted = self.store.evict_dead(state, self.is_alive)
            if evicted:
                self.store.save(state)
            try:
                topology = inspect_topology(self.client)
            except (ControlPlaneUnreachable, AdminRequestFailed, TopologyUnresolved) as e:
                log_event(
                    _logger,
                    logging.DEBUG,
                    DevwrapEvent(
                        event="proxy_not_running",
                        message=f"Control plane not available: {e}",
                        error_type=type(e).__name__,
                        error_message=str(e),
                    ),
                )
                return ProxyStatus(
                    running=False,
                    caddy_source=state.caddy_source,
                    root=state.root,
                    http_port=state.http_port,
                    https_port=state.https_port,
                    trusted=False,
                )

            if evicted:
                try:
                    self._apply(state)
                except DevwrapError as e:
                    log_event(
                        _logger,
                        logging.WARNING,
                        DevwrapEvent(
                            event="status_reconcile_failed",
                            message=f"Failed to drop routes of evicted apps: {e}",
                            error_type=type(e).__name__,
                            error_message=str(e),
                        ),
                    )
                self.store.save(state)
            apps = [state.apps[name] for name in sorted(state.apps)]

        pid = 0
        if topology.source is CaddySource.MANAGED:
            daemon_pid = read_pid_file(self.store.paths.pid_file)
            if daemon_pid is not None and self.is_alive(daemon_pid):
                pid = daemon_pid

        return ProxyStatus(
            running=True,
            caddy_source=topology.source,
            root=topology.http_port == DEFAULT_HTTP_PORT and topology.https_port == DEFAULT_HTTPS_PORT,
            http_port=topology.http_port,
            https_port=topology.https_port,
            trusted=self.trust_check(),
            pid=pid,
            apps=apps,
        )
