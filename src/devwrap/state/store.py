"""File-backed state store.

The state store exclusively owns state.json. Every mutating sequence runs
inside StateStore.lock(); writes go to a sibling temp file that is then
renamed over the canonical path, so readers never see a half-written
document.

Loading rules:
- Missing file: default empty state
- Unknown fields: ignored
- Legacy caddy_source values: migrated (see ProxyState)
- Unparseable document: StateCorruptError (see backup_corrupt())
- Unknown schema version: StateVersionError
"""

from __future__ import annotations

__all__ = ["StateStore"]

import json
import logging
import os
from contextlib import AbstractContextManager
from datetime import datetime
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from devwrap.config import RuntimePaths
from devwrap.constants import APP_NAME, STATE_SCHEMA_VERSION
from devwrap.exceptions import StateCorruptError, StateVersionError
from devwrap.models import DevwrapEvent, ProxyState
from devwrap.state.lock import StateLock
from devwrap.utils.logging.log_config import log_event

_logger = logging.getLogger(f"{APP_NAME}.state")

# Pattern for backups: state.broken.2026-10-19_101500.json
_BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"


class StateStore:
    """Reads and writes the state document under a cross-process lock."""

    def __init__(self, paths: RuntimePaths) -> None:
        self.paths = paths
        self._lock = StateLock(paths.lock_file)

    @property
    def path(self) -> Path:
        return self.paths.state_file

    def lock(self) -> AbstractContextManager[None]:
        """Exclusive, re-entrant lock around a load/mutate/save sequence.

        Raises:
            LockAcquisitionFailure: On I/O or permission errors.
        """
        return self._lock.hold()

    def load(self) -> ProxyState:
        """Load the state document.

        Returns:
            ProxyState: Loaded state, or a default state if no file exists.

        Raises:
            StateCorruptError: If the file is not a valid state document.
            StateVersionError: If the schema version is unknown.
            OSError: If the file exists but cannot be read.
        """
        self.paths.ensure()
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ProxyState()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateCorruptError(self.path, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StateCorruptError(self.path, "top-level value is not an object")

        # Only a missing key means "current"; bool is an int subclass
        version = data.get("version", STATE_SCHEMA_VERSION)
        if isinstance(version, bool) or version != STATE_SCHEMA_VERSION:
            raise StateVersionError(self.path, version, STATE_SCHEMA_VERSION)

        try:
            return ProxyState.model_validate(data)
        except ValidationError as e:
            raise StateCorruptError(self.path, f"{e.error_count()} invalid field(s)") from e

    def save(self, state: ProxyState) -> None:
        """Atomically replace the state document.

        Args:
            state: State to persist.

        Raises:
            OSError: If the temp file cannot be written or renamed.
        """
        self.paths.ensure()
        state.version = STATE_SCHEMA_VERSION
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        payload = json.dumps(state.model_dump(mode="json"), indent=2)
        with tmp_path.open("w", encoding="utf-8") as f:
            f.write(payload)
            f.write("\n")
        os.replace(tmp_path, self.path)

    def backup_corrupt(self) -> Path | None:
        """Move an unusable state document aside.

        Does nothing if the current document loads cleanly.

        Returns:
            Path of the backup, or None if no backup was needed.
        """
        with self.lock():
            if not self.path.exists():
                return None
            try:
                self.load()
                return None
            except (StateCorruptError, StateVersionError):
                pass

            stamp = datetime.now().strftime(_BACKUP_TIMESTAMP_FORMAT)
            backup = self.path.with_name(f"{self.path.stem}.broken.{stamp}{self.path.suffix}")
            os.replace(self.path, backup)

        log_event(
            _logger,
            logging.WARNING,
            DevwrapEvent(
                event="state_backup_created",
                message=f"Moved unusable state file to {backup}",
                path=str(backup),
            ),
        )
        return backup

    @staticmethod
    def evict_dead(state: ProxyState, is_alive: Callable[[int], bool]) -> list[str]:
        """Drop leases whose owner process is gone.

        Args:
            state: State to mutate in place.
            is_alive: Liveness check for a PID.

        Returns:
            Sorted names of evicted apps.
        """
        evicted = sorted(name for name, app in state.apps.items() if not is_alive(app.pid))
        for name in evicted:
            app = state.apps.pop(name)
            log_event(
                _logger,
                logging.INFO,
                DevwrapEvent(
                    event="lease_evicted",
                    message=f"Evicted '{name}': owner process {app.pid} is gone",
                    app_name=name,
                    pid=app.pid,
                    port=app.port,
                ),
            )
        return evicted
