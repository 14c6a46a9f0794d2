"""Unit tests for the state store and its lock."""

from __future__ import annotations

import json
import multiprocessing
import os
from pathlib import Path

import pytest

from devwrap.config import RuntimePaths
from devwrap.exceptions import LockAcquisitionFailure, StateCorruptError, StateVersionError
from devwrap.models import AppLease, CaddySource, ProxyState
from devwrap.state.lock import StateLock
from devwrap.state.ports import allocate_port
from devwrap.state.store import StateStore


def _state_with(*apps: AppLease) -> ProxyState:
    return ProxyState(apps={app.name: app for app in apps})


def _lease_in_child(state_dir: str, name: str) -> None:
    """Lock, load, allocate, save: one acquisition as a separate process does it."""
    store = StateStore(RuntimePaths(Path(state_dir)))
    with store.lock():
        state = store.load()
        port = allocate_port(state.used_ports(), probe=lambda port: True)
        state.apps[name] = AppLease(name=name, host=f"{name}.localhost", port=port, pid=os.getpid())
        store.save(state)


@pytest.fixture
def api_lease() -> AppLease:
    """A lease for 'api' owned by pid 100."""
    return AppLease(name="api", host="api.localhost", port=11000, pid=100, started_at="2026-10-19T10:00:00Z")


# =============================================================================
# Load / Save
# =============================================================================


class TestLoadSave:
    """Tests for StateStore.load and StateStore.save."""

    def test_missing_file_yields_default_state(self, store: StateStore) -> None:
        """No state file means an empty, unmanaged state."""
        # Act
        state = store.load()

        # Assert
        assert state == ProxyState()
        assert store.paths.state_dir.is_dir()

    def test_round_trip(self, store: StateStore, api_lease: AppLease) -> None:
        """save(load()) keeps the app set and ports."""
        # Arrange
        original = _state_with(api_lease)
        original.caddy_source = CaddySource.MANAGED
        original.set_listener_ports(8080, 8443)
        store.save(original)

        # Act
        store.save(store.load())
        reloaded = store.load()

        # Assert
        assert reloaded.apps == original.apps
        assert reloaded.used_ports() == {11000}
        assert (reloaded.http_port, reloaded.https_port) == (8080, 8443)
        assert reloaded.caddy_source is CaddySource.MANAGED

    def test_save_writes_json_object_with_version(self, store: StateStore, api_lease: AppLease) -> None:
        """The document carries the schema version and apps keyed by name."""
        store.save(_state_with(api_lease))

        data = json.loads(store.path.read_text())

        assert data["version"] == 1
        assert data["caddy_source"] == "unmanaged"
        assert data["apps"]["api"]["port"] == 11000

    def test_save_leaves_no_temp_file(self, store: StateStore, api_lease: AppLease) -> None:
        """The temp file is renamed over the canonical path."""
        store.save(_state_with(api_lease))

        assert sorted(p.name for p in store.paths.state_dir.iterdir()) == ["state.json"]

    def test_legacy_document_is_migrated(self, store: StateStore) -> None:
        """Old source values and null apps load cleanly."""
        # Arrange
        store.paths.ensure()
        store.path.write_text(json.dumps({"caddy_source": "spawned", "apps": None, "extra": 1}))

        # Act
        state = store.load()

        # Assert
        assert state.caddy_source is CaddySource.MANAGED
        assert state.apps == {}

    def test_missing_version_is_current(self, store: StateStore) -> None:
        """Documents written before versioning load as the current version."""
        store.paths.ensure()
        store.path.write_text(json.dumps({"apps": {}}))

        assert store.load().version == 1

    @pytest.mark.parametrize("content", ["{broken", "[]", '{"apps": {"api": {"name": "api"}}}'])
    def test_corrupt_document_raises(self, store: StateStore, content: str) -> None:
        """Unparseable documents are never treated as empty."""
        store.paths.ensure()
        store.path.write_text(content)

        with pytest.raises(StateCorruptError, match="doctor --repair"):
            store.load()

    @pytest.mark.parametrize("version", [99, 0, True, False, None, "1"])
    def test_unknown_version_raises(self, store: StateStore, version: object) -> None:
        """Any version other than the current one is refused, falsy ones included."""
        # Arrange
        store.paths.ensure()
        store.path.write_text(json.dumps({"version": version, "apps": {}}))

        # Act
        with pytest.raises(StateVersionError) as exc_info:
            store.load()

        # Assert
        assert exc_info.value.found == version

    def test_refused_version_is_not_overwritten(self, store: StateStore) -> None:
        """A refused document stays on disk unchanged."""
        store.paths.ensure()
        original = json.dumps({"version": 0, "apps": {}})
        store.path.write_text(original)

        with pytest.raises(StateVersionError):
            store.load()

        assert store.path.read_text() == original


# =============================================================================
# Repair
# =============================================================================


class TestBackupCorrupt:
    """Tests for StateStore.backup_corrupt."""

    def test_moves_corrupt_file_aside(self, store: StateStore) -> None:
        """A corrupt document is renamed and loading starts fresh."""
        # Arrange
        store.paths.ensure()
        store.path.write_text("{broken")

        # Act
        backup = store.backup_corrupt()

        # Assert
        assert backup is not None
        assert backup.name.startswith("state.broken.")
        assert backup.read_text() == "{broken"
        assert not store.path.exists()
        assert store.load() == ProxyState()

    def test_healthy_file_is_untouched(self, store: StateStore, api_lease: AppLease) -> None:
        """Nothing is moved when the document loads."""
        store.save(_state_with(api_lease))

        assert store.backup_corrupt() is None
        assert store.load().apps["api"].port == 11000

    def test_missing_file_needs_no_backup(self, store: StateStore) -> None:
        """No file, no backup."""
        assert store.backup_corrupt() is None


# =============================================================================
# Eviction
# =============================================================================


class TestEvictDead:
    """Tests for StateStore.evict_dead."""

    def test_drops_dead_owners_only(self, api_lease: AppLease) -> None:
        """Leases whose owner is gone are removed and reported."""
        # Arrange
        web = AppLease(name="web", host="web.localhost", port=11001, pid=200)
        state = _state_with(api_lease, web)

        # Act
        evicted = StateStore.evict_dead(state, lambda pid: pid == 200)

        # Assert
        assert evicted == ["api"]
        assert list(state.apps) == ["web"]

    def test_nothing_to_evict(self, api_lease: AppLease) -> None:
        """All owners alive means no change."""
        state = _state_with(api_lease)

        assert StateStore.evict_dead(state, lambda pid: True) == []
        assert "api" in state.apps


# =============================================================================
# Lock
# =============================================================================


class TestStateLock:
    """Tests for StateLock."""

    def test_lock_is_reentrant(self, paths: RuntimePaths) -> None:
        """Nested holds in one process do not deadlock."""
        # Arrange
        lock = StateLock(paths.lock_file)

        # Act / Assert
        with lock.hold():
            with lock.hold():
                assert lock.held
            assert lock.held
        assert not lock.held

    def test_lock_file_is_created(self, paths: RuntimePaths) -> None:
        """The lock file and its directory are created on demand."""
        lock = StateLock(paths.lock_file)

        with lock.hold():
            assert paths.lock_file.exists()

    def test_released_after_exception(self, paths: RuntimePaths) -> None:
        """An exception inside the block still releases the lock."""
        lock = StateLock(paths.lock_file)

        with pytest.raises(RuntimeError):
            with lock.hold():
                raise RuntimeError("boom")

        assert not lock.held

    def test_unopenable_lock_file_raises(self, tmp_path) -> None:
        """I/O errors surface as LockAcquisitionFailure."""
        # Arrange: the lock path's parent is a regular file
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        lock = StateLock(blocker / "state.lock")

        # Act / Assert
        with pytest.raises(LockAcquisitionFailure):
            with lock.hold():
                pass

    def test_store_lock_nests_with_operations(self, store: StateStore, api_lease: AppLease) -> None:
        """Store helpers that lock can run inside an outer hold."""
        store.save(_state_with(api_lease))

        with store.lock():
            assert store.backup_corrupt() is None

    def test_excludes_other_processes(self, store: StateStore) -> None:
        """Concurrent acquisitions from separate processes never share a port."""
        # Arrange
        ctx = multiprocessing.get_context("spawn")
        names = [f"app{i}" for i in range(8)]
        workers = [
            ctx.Process(target=_lease_in_child, args=(str(store.paths.state_dir), name)) for name in names
        ]

        # Act
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=60)

        # Assert
        assert [worker.exitcode for worker in workers] == [0] * len(names)
        apps = store.load().apps
        assert sorted(apps) == sorted(names)
        assert sorted(app.port for app in apps.values()) == list(range(11000, 11000 + len(names)))
