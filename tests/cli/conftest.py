"""CLI test fixtures.

Commands build their collaborators through build_runtime(); tests patch
it in the command module with a MagicMock runtime so no admin API, state
file or caddy process is touched.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from devwrap.config import DevwrapConfig, RuntimePaths


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI runner for testing."""
    return CliRunner()


@pytest.fixture
def devwrap_config(tmp_path: Path) -> DevwrapConfig:
    """Configuration rooted in a temporary directory."""
    return DevwrapConfig(state_dir=str(tmp_path / "state"), caddy_data_dir=str(tmp_path / "caddy"))


@pytest.fixture(autouse=True)
def isolated_cli(devwrap_config: DevwrapConfig) -> Iterator[None]:
    """Keep the group callback away from the real config file and log handlers."""
    with (
        patch("devwrap.cli.main.load_config", return_value=devwrap_config),
        patch("devwrap.cli.main.configure_logging"),
    ):
        yield


@pytest.fixture
def runtime(devwrap_config: DevwrapConfig) -> MagicMock:
    """Mock runtime usable as a context manager."""
    mock = MagicMock()
    mock.__enter__.return_value = mock
    mock.config = devwrap_config
    mock.paths = RuntimePaths.from_config(devwrap_config)
    return mock
