"""Reading, merging and caching of config.yaml files.

The merged dict is turned into the typed ``Config`` here; the global
(root-less) config is cached until reload_config() or reset_config().
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from langclient.config.merge import merge_configs
from langclient.config.paths import get_config_paths
from langclient.config.schema import (
    ClientConfig,
    Config,
    DocumentFilterConfig,
    LoggingConfig,
    RestartConfig,
    ServerConfig,
    StderrMode,
    TimeoutConfig,
)

# handlers may not be installed yet when config is first read
_log = logging.getLogger("langclient.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Parse one config file. Missing, unreadable or non-mapping files give {}."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        _log.warning("Cannot read config %s: %s", path, e)
        return {}

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    if data is not None and not isinstance(data, dict):
        _log.warning("Ignoring %s: top level is not a mapping", path)
        return {}
    return data or {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    LANGCLIENT_LOG sets the log file, LANGCLIENT_LOG_LEVEL the level.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("LANGCLIENT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    log_level = os.environ.get("LANGCLIENT_LOG_LEVEL")
    if log_level:
        overrides.setdefault("logging", {})["level"] = log_level

    return overrides


def _optional_float(value: Any, default: float | None) -> float | None:
    if value is None:
        return default
    return float(value)


def _parse_server(data: dict[str, Any]) -> ServerConfig:
    defaults = ServerConfig()
    args = data.get("args", defaults.args)
    if isinstance(args, str):
        args = shlex.split(args)
    return ServerConfig(
        command=data.get("command", defaults.command),
        args=[str(a) for a in args],
        cwd=data.get("cwd"),
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        stderr=StderrMode(data.get("stderr", defaults.stderr.value)),
    )


def _parse_timeouts(data: dict[str, Any]) -> TimeoutConfig:
    defaults = TimeoutConfig()
    return TimeoutConfig(
        initialize=_optional_float(data.get("initialize"), defaults.initialize),
        request=_optional_float(data.get("request"), defaults.request),
        shutdown=float(data.get("shutdown", defaults.shutdown)),
        exit=float(data.get("exit", defaults.exit)),
        terminate=float(data.get("terminate", defaults.terminate)),
    )


def _parse_client(data: dict[str, Any]) -> ClientConfig:
    defaults = ClientConfig()

    selector_data = data.get("document_selector")
    if selector_data is None:
        selector = defaults.document_selector
    else:
        selector = [
            DocumentFilterConfig(
                scheme=f.get("scheme"),
                language=f.get("language"),
                pattern=f.get("pattern"),
            )
            for f in selector_data
            if isinstance(f, dict)
        ]

    restart_data = data.get("restart", {})
    restart = RestartConfig(
        max_restarts=int(restart_data.get("max_restarts", 0)),
        initial_delay=float(restart_data.get("initial_delay", 1.0)),
        max_delay=float(restart_data.get("max_delay", 30.0)),
    )

    return ClientConfig(
        id=str(data.get("id", defaults.id)),
        name=data.get("name", defaults.name),
        server=_parse_server(data.get("server", {})),
        document_selector=selector,
        configuration_section=data.get("configuration_section", defaults.configuration_section),
        initialization_options=data.get("initialization_options"),
        trace=data.get("trace", defaults.trace),
        timeouts=_parse_timeouts(data.get("timeouts", {})),
        queue_limit=int(data.get("queue_limit", defaults.queue_limit)),
        restart=restart,
    )


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    An empty or missing ``clients`` list falls back to the default
    Vapour client.
    """
    log_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    clients = [
        _parse_client(c) for c in data.get("clients", []) if isinstance(c, dict)
    ]
    if not clients:
        clients = [ClientConfig()]

    settings = data.get("settings", {})
    if not isinstance(settings, dict):
        _log.warning("Ignoring non-mapping 'settings' section")
        settings = {}

    known_keys = {"logging", "clients", "settings"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        logging=logging_config,
        clients=clients,
        settings=settings,
        extra=extra,
    )


def load_config(
    root: str | None = None,
    reload: bool = False,
    config_file: Path | None = None,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit config_file (e.g. from --config)
    3. Project config (<root>/.langclient/config.yaml)
    4. User config
    5. System config

    Only the plain global config (no root, no explicit file) is cached.
    """
    global _cached_config

    cacheable = root is None and config_file is None
    if cacheable and _cached_config is not None and not reload:
        return _cached_config

    configs: list[dict[str, Any]] = []

    paths = get_config_paths(root)
    if config_file is not None:
        paths.append(config_file)

    for path in paths:
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    if cacheable:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing or forcing a reload."""
    global _cached_config
    _cached_config = None


def reload_config(root: str | None = None, config_file: Path | None = None) -> Config:
    """Reload config from files and notify callbacks."""
    config = load_config(root=root, reload=True, config_file=config_file)

    for callback in list(_reload_callbacks):
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback to be called when config is reloaded.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
