"""Root pytest configuration for all tests."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from langclient.config import reset_config
from langclient.logging import reset_logging
from tests.utils import ScriptedServer

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def fake_server():
    """Scripted in-memory server; every spawn in the test talks to it."""
    server = ScriptedServer()
    with patch("asyncio.create_subprocess_exec", new=server.create_subprocess_exec):
        yield server


@pytest.fixture(autouse=True)
def _isolate_global_state(monkeypatch, tmp_path):
    """Keep user config files and LANGCLIENT_* variables out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("LANGCLIENT_LOG", raising=False)
    monkeypatch.delenv("LANGCLIENT_LOG_LEVEL", raising=False)
    with patch("langclient.config.paths.get_system_config_path", return_value=None):
        yield
    reset_config()
    reset_logging()
