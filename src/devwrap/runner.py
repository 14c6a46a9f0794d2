"""Run the wrapped command with its lease.

The child inherits stdio and gets PORT, DEVWRAP_APP and DEVWRAP_HOST in
its environment. Termination signals received by devwrap are forwarded
to the child; devwrap itself keeps running until the child exits so the
lease is always released.
"""

from __future__ import annotations

__all__ = [
    "FORWARDED_SIGNALS",
    "apply_templates",
    "normalize_host_url",
    "run_child",
]

import os
import signal
import subprocess
from collections.abc import Callable, Mapping, Sequence
from urllib.parse import urlsplit

from devwrap.constants import ENV_APP, ENV_HOST, ENV_PORT, PORT_TEMPLATE
from devwrap.exceptions import ChildStartError

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP, signal.SIGQUIT)


def apply_templates(args: Sequence[str], port: int) -> list[str]:
    """Replace every @PORT in args with the allocated port."""
    return [arg.replace(PORT_TEMPLATE, str(port)) for arg in args]


def normalize_host_url(raw: str) -> str:
    """Drop default ports (80/443) and any path from a URL.

    Unparseable input is returned unchanged.
    """
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return raw
    if not parts.scheme or not parts.hostname:
        return raw
    if port is None or port in (80, 443):
        return f"{parts.scheme}://{parts.hostname}"
    return f"{parts.scheme}://{parts.hostname}:{port}"


def _child_env(name: str, port: int, host_url: str, base: Mapping[str, str]) -> dict[str, str]:
    env = dict(base)
    env[ENV_PORT] = str(port)
    env[ENV_APP] = name
    if host_url:
        env[ENV_HOST] = host_url
    return env


def _exit_code(returncode: int) -> int:
    # Popen reports death by signal N as -N
    if returncode < 0:
        return 128 - returncode
    return returncode


def run_child(
    name: str,
    args: Sequence[str],
    port: int,
    host_url: str,
    release: Callable[[], object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    """Run the command until it exits, then release the lease.

    Args:
        name: App name (DEVWRAP_APP).
        args: Command and arguments; @PORT is substituted.
        port: Allocated app port (PORT).
        host_url: Public URL of the app (DEVWRAP_HOST).
        release: Called exactly once after the child exits, or if it
            cannot be started.
        environ: Base environment (defaults to os.environ).

    Returns:
        The child's exit code, or 128 + signal number if it was killed.

    Raises:
        ChildStartError: If the command cannot be executed.
    """
    cmd = apply_templates(args, port)
    env = _child_env(name, port, host_url, os.environ if environ is None else environ)

    previous: dict[int, object] = {}
    try:
        try:
            child = subprocess.Popen(cmd, env=env)
        except OSError as e:
            raise ChildStartError(f"cannot run {cmd[0] if cmd else '<empty>'}: {e}") from e

        def forward(signum: int, frame: object) -> None:
            if child.poll() is None:
                child.send_signal(signum)

        for sig in FORWARDED_SIGNALS:
            previous[sig] = signal.signal(sig, forward)

        return _exit_code(child.wait())
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]
        if release is not None:
            release()
