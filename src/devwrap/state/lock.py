"""Cross-process exclusive lock on the state lock file.

Uses fcntl.flock on a dedicated lock file. Acquisition blocks until the
lock is free; there is no timeout. The lock is re-entrant within one
process: nested holds only bump a depth counter, so a helper that takes
the lock can be called from code already holding it.
"""

from __future__ import annotations

__all__ = ["StateLock"]

import fcntl
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from devwrap.exceptions import LockAcquisitionFailure


class StateLock:
    """Re-entrant exclusive file lock.

    Attributes:
        path: Lock file path (created if missing).
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._mutex = threading.RLock()
        self._file: IO[str] | None = None
        self._depth = 0

    @property
    def held(self) -> bool:
        """Whether this process currently holds the lock."""
        return self._depth > 0

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold the lock for the duration of the context.

        Yields:
            None when lock is acquired.

        Raises:
            LockAcquisitionFailure: If the lock file cannot be opened or locked.
        """
        with self._mutex:
            if self._depth == 0:
                self._acquire()
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release()

    def _acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(self.path, "a")
        except OSError as e:
            raise LockAcquisitionFailure(self.path, e) from e
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        except OSError as e:
            lock_file.close()
            raise LockAcquisitionFailure(self.path, e) from e
        self._file = lock_file

    def _release(self) -> None:
        lock_file, self._file = self._file, None
        if lock_file is None:
            return
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError:
            pass  # Closing the descriptor drops the lock anyway
        lock_file.close()
