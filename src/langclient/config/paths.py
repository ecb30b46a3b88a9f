"""Where langclient looks for config.yaml.

Three layers, merged lowest first:

    system   /etc/langclient/            %PROGRAMDATA%\\langclient\\
    user     $XDG_CONFIG_HOME/langclient/ (else ~/.config/langclient/,
             else ~/.langclient/)        %APPDATA%\\langclient\\
    project  <root>/.langclient/
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "langclient"
PROJECT_DIR = ".langclient"


def _windows_path(env_var: str) -> Path | None:
    base = os.environ.get(env_var)
    return Path(base, APP_NAME, CONFIG_FILENAME) if base else None


def get_system_config_path() -> Path | None:
    if sys.platform == "win32":
        return _windows_path("PROGRAMDATA")
    return Path("/etc", APP_NAME, CONFIG_FILENAME)


def get_user_config_path() -> Path | None:
    """User config file. Its existence is not checked."""
    if sys.platform == "win32":
        return _windows_path("APPDATA")

    base = os.environ.get("XDG_CONFIG_HOME")
    if base:
        return Path(base, APP_NAME, CONFIG_FILENAME)
    dot_config = Path.home() / ".config"
    if dot_config.exists():
        return dot_config / APP_NAME / CONFIG_FILENAME
    return Path.home() / PROJECT_DIR / CONFIG_FILENAME


def get_project_config_path(root: str) -> Path:
    return Path(root, PROJECT_DIR, CONFIG_FILENAME)


def get_config_paths(root: str | None = None) -> list[Path]:
    """Candidate config files, lowest priority first.

    Args:
        root: Project directory; without it the project layer is skipped.
    """
    candidates = [get_system_config_path(), get_user_config_path()]
    if root:
        candidates.append(get_project_config_path(root))
    return [path for path in candidates if path is not None]
