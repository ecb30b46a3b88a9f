"""Tests for the settings watcher."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any

from langclient.config import Config, SettingsWatcher, load_config
from tests.utils import wait_until


class Subscriber:
    def __init__(self, section: str | None = "vapour.lsp") -> None:
        self.configuration_section = section
        self.changes: list[tuple[str, Any]] = []

    async def configuration_changed(self, section: str, values: Any) -> None:
        self.changes.append((section, values))


def _config(settings: dict[str, Any]) -> Config:
    return Config(settings=settings)


class TestDispatch:
    async def test_changed_section_is_sent(self) -> None:
        watcher = SettingsWatcher()
        subscriber = Subscriber()
        watcher.subscribe(subscriber, _config({"vapour": {"lsp": {"when": ["open"]}}}))

        await watcher.dispatch(_config({"vapour": {"lsp": {"when": ["save"]}}}))

        assert subscriber.changes == [("vapour.lsp", {"when": ["save"]})]

    async def test_unchanged_section_is_not_sent(self) -> None:
        watcher = SettingsWatcher()
        subscriber = Subscriber()
        settings = {"vapour": {"lsp": {"when": ["open"]}}, "python": {"x": 1}}
        watcher.subscribe(subscriber, _config(settings))

        await watcher.dispatch(_config({**settings, "python": {"x": 2}}))

        assert subscriber.changes == []

    async def test_subscriber_without_section_is_skipped(self) -> None:
        watcher = SettingsWatcher()
        subscriber = Subscriber(section=None)
        watcher.subscribe(subscriber)
        await watcher.dispatch(_config({"vapour": {"lsp": {}}}))
        assert subscriber.changes == []

    async def test_unsubscribe(self) -> None:
        watcher = SettingsWatcher()
        subscriber = Subscriber()
        watcher.subscribe(subscriber)
        watcher.unsubscribe(subscriber)
        await watcher.dispatch(_config({"vapour": {"lsp": {"when": []}}}))
        assert subscriber.changes == []


class TestPolling:
    async def test_file_edit_reaches_subscriber(self, tmp_path: Path) -> None:
        config_dir = tmp_path / ".langclient"
        config_dir.mkdir()
        config_file = config_dir / "config.yaml"
        config_file.write_text("settings:\n  vapour:\n    lsp:\n      when: [open]\n")

        subscriber = Subscriber()
        watcher = SettingsWatcher(root=str(tmp_path), poll_interval=0.01)
        watcher.subscribe(subscriber, load_config(root=str(tmp_path)))

        async with watcher:
            await asyncio.sleep(0.05)
            config_file.write_text("settings:\n  vapour:\n    lsp:\n      when: [save]\n")
            stat = config_file.stat()
            os.utime(config_file, (stat.st_atime, stat.st_mtime + 10))
            await wait_until(lambda: subscriber.changes)

        assert subscriber.changes == [("vapour.lsp", {"when": ["save"]})]
