"""Process, PID file and socket probes shared by the lease manager and daemon."""

from __future__ import annotations

__all__ = [
    "can_bind",
    "process_alive",
    "read_pid_file",
]

import errno
import os
import socket
from pathlib import Path


def process_alive(pid: int) -> bool:
    """Check whether a process exists.

    Args:
        pid: Process ID. Non-positive values are never alive.

    Returns:
        True if the process exists (even if owned by another user).
    """
    if pid <= 0:
        return False
    try:
        # Signal 0 = existence check only
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as e:
        return e.errno != errno.ESRCH
    return True


def can_bind(host: str, port: int) -> bool:
    """Check whether a TCP listener can bind host:port right now.

    SO_REUSEADDR is set so ports in TIME_WAIT count as free. The test
    listener is closed immediately; nothing stays reserved.

    Args:
        host: Address to bind ("" for all interfaces).
        port: TCP port.

    Returns:
        True if the bind succeeded.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((host, port))
            s.listen(1)
        except OSError:
            return False
    return True


def read_pid_file(path: Path) -> int | None:
    """Read a PID file.

    Returns:
        The PID, or None if the file is missing or does not hold a
        positive integer.
    """
    try:
        pid = int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None
    return pid if pid > 0 else None
