"""App port allocation.

Ports are scanned in ascending order. A candidate is taken when it is not
recorded by a live lease and a loopback test listener can bind it.

Known gap: the test listener is released before the app binds, so an
unrelated process can still grab the port in between.
"""

from __future__ import annotations

__all__ = ["allocate_port"]

from collections.abc import Callable, Collection

from devwrap.constants import APP_PORT_MAX, APP_PORT_MIN, LOOPBACK_HOST
from devwrap.exceptions import PortExhaustion
from devwrap.utils.process import can_bind


def _loopback_bindable(port: int) -> bool:
    return can_bind(LOOPBACK_HOST, port)


def allocate_port(
    used: Collection[int],
    probe: Callable[[int], bool] = _loopback_bindable,
    low: int = APP_PORT_MIN,
    high: int = APP_PORT_MAX,
) -> int:
    """Pick the lowest free app port.

    Args:
        used: Ports already recorded by live leases.
        probe: Returns True if the port can be bound now.
        low: First port of the range (inclusive).
        high: Last port of the range (inclusive).

    Returns:
        The allocated port.

    Raises:
        PortExhaustion: If no candidate in range binds.
    """
    for port in range(low, high + 1):
        if port in used:
            continue
        if probe(port):
            return port
    raise PortExhaustion(low, high)
