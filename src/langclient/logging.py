"""Logging configuration for langclient.

Everything logs under the "langclient" logger tree; each component takes a
child ("langclient.session", "langclient.transport", ...). Two extra levels
sit around the standard ones: TRACE carries the raw wire traffic of every
session and VERBOSE the lifecycle details between DEBUG and INFO.

Output goes to the configured file (or LANGCLIENT_LOG). Without one, stderr
is used only when it is a terminal: a host that launched us may own our
stdio.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from langclient.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_ENV_VAR = "LANGCLIENT_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s]: %(message)s"
DATE_FORMAT = "%H:%M:%S"

logger = logging.getLogger("langclient")

_initialized = False

# --verbose N, from quietest to noisiest
_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_ALIASES = {"WARN": logging.WARNING}

# LSP MessageType (window/logMessage, window/showMessage) to log level
MESSAGE_TYPE_LEVELS = {
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
    5: logging.DEBUG,
}


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def _level_by_name(name: str) -> int | None:
    name = name.upper()
    if name in _ALIASES:
        return _ALIASES[name]
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else None


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level of ``config``: ``verbose`` wins over ``level``, INFO by default."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(_VERBOSITY) - 1)
        return _VERBOSITY[index]
    if config.level:
        level = _level_by_name(config.level)
        if level is not None:
            return level
    return logging.INFO


def _attach(handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(config: LoggingConfig | None = None, *, force_stderr: bool = False) -> None:
    """Install handlers on the langclient logger. Only the first call has effect.

    Args:
        config: Level, verbosity and file settings.
        force_stderr: Log to stderr even when it is not a terminal (the CLI).
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)
    use_stderr = force_stderr or sys.stderr.isatty()

    path = (config.file if config else None) or os.environ.get(LOG_ENV_VAR)
    if not path:
        if use_stderr:
            _attach(logging.StreamHandler(sys.stderr), level)
        return

    try:
        handler = logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
    except OSError as e:
        if use_stderr:
            print(f"[langclient] Failed to open log file: {e}", file=sys.stderr)
            _attach(logging.StreamHandler(sys.stderr), level)
        return
    _attach(handler, level)


def reset_logging() -> None:
    """Drop installed handlers so setup_logging() can run again."""
    global _initialized
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _initialized = False


def get_logger(name: str | None = None) -> logging.Logger:
    """The langclient logger, or its child ``name`` (e.g. "session")."""
    return logger.getChild(name) if name else logger
