"""Local lease state: the state document, its lock, and port allocation.

- store.py: StateStore (load/save/evict under the cross-process lock)
- lock.py: StateLock (re-entrant fcntl lock)
- ports.py: allocate_port
"""

from .lock import StateLock
from .ports import allocate_port
from .store import StateStore

__all__ = [
    "StateLock",
    "StateStore",
    "allocate_port",
]
