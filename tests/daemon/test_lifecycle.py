"""Tests for the self-managed proxy lifecycle helpers used by the CLI."""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest
from fake_caddy import FakeCaddy

from devwrap.caddy.admin_client import AdminClient
from devwrap.config import DevwrapConfig, RuntimePaths
from devwrap.daemon.lifecycle import (
    ensure_control_plane,
    is_daemon_reachable,
    spawn_daemon,
    start_proxy,
    stop_proxy,
)
from devwrap.exceptions import ControlPlaneUnreachable, DaemonError

# A PID that is certainly not running
DEAD_PID = 2**22 + 12345


@pytest.fixture
def devwrap_config(paths: RuntimePaths) -> DevwrapConfig:
    """Configuration pointing at the temporary state directory."""
    return DevwrapConfig(state_dir=str(paths.state_dir), caddy_data_dir="/data/caddy")


def _write_pid(paths: RuntimePaths, pid: int) -> None:
    paths.ensure()
    paths.pid_file.write_text(str(pid))


class TestIsDaemonReachable:
    """Tests for is_daemon_reachable."""

    def test_no_pid_file(self, paths: RuntimePaths, client: AdminClient) -> None:
        """Without a PID file the daemon is not ours."""
        assert is_daemon_reachable(paths, client) is False

    def test_dead_pid_is_cleaned_up(self, paths: RuntimePaths, client: AdminClient) -> None:
        """A stale PID file is removed."""
        _write_pid(paths, DEAD_PID)

        assert is_daemon_reachable(paths, client) is False
        assert not paths.pid_file.exists()

    def test_live_pid_with_managed_topology(self, paths: RuntimePaths, client: AdminClient) -> None:
        """A live PID and a self-managed control plane are reachable."""
        _write_pid(paths, os.getpid())

        assert is_daemon_reachable(paths, client) is True

    def test_unmanaged_topology_clears_pid(
        self, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy
    ) -> None:
        """A live PID serving a foreign caddy is not our daemon."""
        # Arrange
        _write_pid(paths, os.getpid())
        fake_caddy.config["apps"]["http"]["servers"] = {"srv0": {"listen": [":443"]}}

        # Act / Assert
        assert is_daemon_reachable(paths, client) is False
        assert not paths.pid_file.exists()


class TestStartProxy:
    """Tests for start_proxy."""

    def test_already_running(
        self, devwrap_config: DevwrapConfig, paths: RuntimePaths, client: AdminClient
    ) -> None:
        """Our live daemon means nothing to start."""
        _write_pid(paths, os.getpid())

        assert start_proxy(devwrap_config, paths, client) == "already_running"

    def test_unmanaged_caddy_is_used(
        self, devwrap_config: DevwrapConfig, paths: RuntimePaths, client: AdminClient
    ) -> None:
        """A healthy admin API without our daemon is used as-is."""
        with patch("devwrap.daemon.lifecycle.spawn_daemon") as mock_spawn:
            result = start_proxy(devwrap_config, paths, client)

        assert result == "using_unmanaged"
        mock_spawn.assert_not_called()

    def test_spawns_when_nothing_runs(
        self, devwrap_config: DevwrapConfig, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy
    ) -> None:
        """With no control plane, the daemon is spawned and awaited."""
        # Arrange
        fake_caddy.down = True

        def spawn(config, runtime_paths, privileged):
            fake_caddy.down = False
            return 4242

        # Act
        with patch("devwrap.daemon.lifecycle.spawn_daemon", side_effect=spawn) as mock_spawn:
            result = start_proxy(devwrap_config, paths, client, privileged=False)

        # Assert
        assert result == "started"
        mock_spawn.assert_called_once_with(devwrap_config, paths, False)

    def test_daemon_never_ready(
        self, devwrap_config: DevwrapConfig, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy
    ) -> None:
        """A daemon that does not come up is reported with its log path."""
        # Arrange
        fake_caddy.down = True
        unreachable = ControlPlaneUnreachable("GET", "/config/", "timeout")

        # Act / Assert
        with (
            patch("devwrap.daemon.lifecycle.spawn_daemon", return_value=4242),
            patch.object(client, "wait_until_ready", side_effect=unreachable),
        ):
            with pytest.raises(DaemonError, match="daemon.log"):
                start_proxy(devwrap_config, paths, client)

    def test_privileged_as_root_refused(
        self, devwrap_config: DevwrapConfig, paths: RuntimePaths, client: AdminClient
    ) -> None:
        """--privileged under sudo is refused."""
        with patch("devwrap.daemon.lifecycle.os.geteuid", return_value=0):
            with pytest.raises(DaemonError, match="under sudo"):
                start_proxy(devwrap_config, paths, client, privileged=True)


class TestStopProxy:
    """Tests for stop_proxy."""

    def test_managed_caddy_stopped_through_admin(
        self, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy
    ) -> None:
        """A self-managed caddy is asked to stop."""
        result = stop_proxy(paths, client)

        assert result == ("stopped", 0)
        assert ("POST", "/stop") in fake_caddy.requests

    def test_unmanaged_caddy_left_alone(
        self, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy
    ) -> None:
        """A user-run caddy is never stopped."""
        fake_caddy.config["apps"]["http"]["servers"] = {"srv0": {"listen": [":443"]}}

        assert stop_proxy(paths, client) == ("using_unmanaged", 0)
        assert ("POST", "/stop") not in fake_caddy.requests

    def test_nothing_running(self, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy) -> None:
        """No control plane and no daemon."""
        fake_caddy.down = True

        assert stop_proxy(paths, client) == ("not_running", 0)

    def test_signals_live_daemon(self, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy) -> None:
        """A live daemon whose caddy is unreachable is sent SIGTERM."""
        # Arrange
        fake_caddy.down = True
        _write_pid(paths, 4242)

        # Act
        with (
            patch("devwrap.daemon.lifecycle.process_alive", return_value=True),
            patch("devwrap.daemon.lifecycle.os.kill") as mock_kill,
        ):
            result = stop_proxy(paths, client)

        # Assert
        assert result == ("signaled", 4242)
        mock_kill.assert_called_once()


class TestSpawnDaemon:
    """Tests for spawn_daemon."""

    def test_unprivileged_spawn_is_detached(self, devwrap_config: DevwrapConfig, paths: RuntimePaths) -> None:
        """The daemon runs in a new session with its environment pinned."""
        # Arrange
        process = MagicMock(pid=555)

        # Act
        with patch("devwrap.daemon.lifecycle.subprocess.Popen", return_value=process) as mock_popen:
            pid = spawn_daemon(devwrap_config, paths)

        # Assert
        assert pid == 555
        cmd = mock_popen.call_args.args[0]
        assert cmd[-2:] == ["proxy", "daemon"]
        kwargs = mock_popen.call_args.kwargs
        assert kwargs["start_new_session"] is True
        assert kwargs["env"]["DEVWRAP_STATE_DIR"] == str(paths.state_dir)
        assert kwargs["env"]["DEVWRAP_CADDY_DATA_DIR"] == "/data/caddy"

    def test_privileged_spawn_uses_sudo(self, devwrap_config: DevwrapConfig, paths: RuntimePaths) -> None:
        """Privileged spawns go through sudo and keep the devwrap environment."""
        with patch("devwrap.daemon.lifecycle.subprocess.Popen", return_value=MagicMock(pid=1)) as mock_popen:
            spawn_daemon(devwrap_config, paths, privileged=True)

        cmd = mock_popen.call_args.args[0]
        assert cmd[0] == "sudo"
        assert cmd[1].startswith("--preserve-env=")
        assert "DEVWRAP_STATE_DIR" in cmd[1]

    def test_spawn_failure_raises(self, devwrap_config: DevwrapConfig, paths: RuntimePaths) -> None:
        """OS errors spawning the daemon raise DaemonError."""
        with patch("devwrap.daemon.lifecycle.subprocess.Popen", side_effect=OSError("no exec")):
            with pytest.raises(DaemonError, match="failed to spawn"):
                spawn_daemon(devwrap_config, paths)


class TestEnsureControlPlane:
    """Tests for ensure_control_plane."""

    def test_healthy_needs_nothing(
        self, devwrap_config: DevwrapConfig, paths: RuntimePaths, client: AdminClient
    ) -> None:
        """A healthy admin API is used directly."""
        with patch("devwrap.daemon.lifecycle.start_proxy") as mock_start:
            assert ensure_control_plane(devwrap_config, paths, client) is False

        mock_start.assert_not_called()

    def test_still_down_after_start_raises(
        self, devwrap_config: DevwrapConfig, paths: RuntimePaths, client: AdminClient, fake_caddy: FakeCaddy
    ) -> None:
        """If the admin API stays down, the run cannot proceed."""
        fake_caddy.down = True

        with patch("devwrap.daemon.lifecycle.start_proxy", return_value="started"):
            with pytest.raises(ControlPlaneUnreachable, match="still unavailable"):
                ensure_control_plane(devwrap_config, paths, client)
