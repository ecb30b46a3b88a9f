"""Settings watcher that forwards config file edits to running clients.

Uses polling of config file modification times for cross-platform
compatibility without additional dependencies. When a file changes the
config is reloaded and every subscribed client whose settings section
changed receives a configuration-changed event.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, Protocol

from langclient.config.loader import reload_config
from langclient.config.merge import get_section
from langclient.config.paths import get_config_paths
from langclient.config.schema import Config

_log = logging.getLogger("langclient.config.watcher")

DEFAULT_POLL_INTERVAL = 2.0


class ConfigurationSubscriber(Protocol):
    """Anything that accepts configuration-changed events (LanguageClient)."""

    @property
    def configuration_section(self) -> str | None: ...

    def configuration_changed(self, section: str, values: Any) -> Awaitable[None]: ...


class SettingsWatcher:
    """Watches config files and pushes changed settings sections to clients."""

    def __init__(
        self,
        root: str | None = None,
        config_file: Path | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._root = root
        self._config_file = config_file
        self._poll_interval = poll_interval
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._mtimes: dict[Path, float] = {}
        self._subscribers: list[ConfigurationSubscriber] = []
        self._last_values: dict[str, Any] = {}

    def subscribe(self, subscriber: ConfigurationSubscriber, config: Config | None = None) -> None:
        """Register a client. ``config`` seeds the last known values."""
        self._subscribers.append(subscriber)
        section = subscriber.configuration_section
        if section and config is not None:
            self._last_values[section] = get_section(config.settings, section)

    def unsubscribe(self, subscriber: ConfigurationSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def _snapshot(self) -> dict[Path, float]:
        """mtime of every config file that currently exists."""
        paths = get_config_paths(self._root)
        if self._config_file is not None:
            paths.append(self._config_file)
        mtimes: dict[Path, float] = {}
        for path in paths:
            with contextlib.suppress(OSError):
                mtimes[path] = path.stat().st_mtime
        return mtimes

    async def dispatch(self, config: Config) -> None:
        """Send each subscriber its section if it differs from the last seen."""
        for subscriber in list(self._subscribers):
            section = subscriber.configuration_section
            if not section:
                continue
            values = get_section(config.settings, section)
            if section in self._last_values and self._last_values[section] == values:
                continue
            self._last_values[section] = values
            _log.info("Settings section %r changed", section)
            await subscriber.configuration_changed(section, values)

    async def _poll_loop(self) -> None:
        self._mtimes = self._snapshot()
        while self._running:
            await asyncio.sleep(self._poll_interval)
            current = self._snapshot()
            if current == self._mtimes:
                continue
            changed = sorted(
                str(p)
                for p in current.keys() | self._mtimes.keys()
                if current.get(p) != self._mtimes.get(p)
            )
            self._mtimes = current
            _log.info("Config changed: %s", changed)
            try:
                config = reload_config(root=self._root, config_file=self._config_file)
            except (OSError, ValueError) as e:
                _log.error("Error reloading config: %s", e)
                continue
            await self.dispatch(config)

    def start(self) -> None:
        """Start polling. Must be called from within a running event loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        _log.debug("Settings watcher started (interval=%.1fs)", self._poll_interval)

    def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None
        _log.debug("Settings watcher stopped")

    async def __aenter__(self) -> SettingsWatcher:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        self.stop()
