"""Unit tests for process, PID file and socket probes."""

from __future__ import annotations

import os
import socket
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from devwrap.utils.process import can_bind, process_alive, read_pid_file


class TestProcessAlive:
    """Tests for process_alive."""

    def test_current_process_is_alive(self) -> None:
        assert process_alive(os.getpid()) is True

    @pytest.mark.parametrize("pid", [0, -1])
    def test_non_positive_pids_are_dead(self, pid: int) -> None:
        """0 and negative PIDs would address process groups; never alive."""
        assert process_alive(pid) is False

    def test_unknown_pid_is_dead(self) -> None:
        """A PID above the kernel maximum does not exist."""
        assert process_alive(2**22 + 12345) is False


class TestCanBind:
    """Tests for can_bind."""

    def test_port_in_use(self) -> None:
        """A listening port cannot be bound again."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
            holder.bind(("127.0.0.1", 0))
            holder.listen(1)
            port = holder.getsockname()[1]

            assert can_bind("127.0.0.1", port) is False

    def test_free_port(self) -> None:
        """A port released by the OS can be bound."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind(("127.0.0.1", 0))
            port = probe.getsockname()[1]

        assert can_bind("127.0.0.1", port) is True

    def test_reuse_address_set_before_bind(self) -> None:
        """Ports lingering in TIME_WAIT are not skipped."""
        # Arrange
        sock = MagicMock()
        sock.__enter__.return_value = sock

        # Act
        with patch("devwrap.utils.process.socket.socket", return_value=sock):
            result = can_bind("127.0.0.1", 11000)

        # Assert
        assert result is True
        assert [c for c in sock.mock_calls if c[0] in ("setsockopt", "bind")] == [
            call.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1),
            call.bind(("127.0.0.1", 11000)),
        ]


class TestReadPidFile:
    """Tests for read_pid_file."""

    def test_valid_pid(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "daemon.pid"
        pid_file.write_text("4242\n")

        assert read_pid_file(pid_file) == 4242

    @pytest.mark.parametrize("content", ["", "abc", "0", "-5"])
    def test_invalid_content(self, tmp_path: Path, content: str) -> None:
        """Anything but a positive integer reads as no PID."""
        pid_file = tmp_path / "daemon.pid"
        pid_file.write_text(content)

        assert read_pid_file(pid_file) is None

    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_pid_file(tmp_path / "missing.pid") is None
