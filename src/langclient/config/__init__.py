"""Client configuration for langclient.

config.yaml files are read from the system, user and project layers (see
``paths``), deep-merged in that order, and finally overridden by
LANGCLIENT_* environment variables. Each entry under ``clients`` describes
one language server: how to launch it, which documents it serves and which
settings section it receives.

    from langclient.config import load_config

    config = load_config(root="/path/to/project")
    vp = config.get_client("vp")
    print(vp.server.command, vp.server.args)
"""

from langclient.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from langclient.config.merge import deep_merge, get_section, merge_configs, nest_section
from langclient.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
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
from langclient.config.watcher import SettingsWatcher

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    # Schema types
    "ClientConfig",
    "DocumentFilterConfig",
    "LoggingConfig",
    "RestartConfig",
    "ServerConfig",
    "StderrMode",
    "TimeoutConfig",
    # Settings helpers
    "deep_merge",
    "merge_configs",
    "get_section",
    "nest_section",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
    # Watcher
    "SettingsWatcher",
]
