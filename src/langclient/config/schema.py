"""Configuration schema dataclasses for langclient.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StderrMode(Enum):
    """What to do with the server's standard error stream.

    - INHERIT: share the host's stderr
    - LOG: forward each line to the langclient log at debug level
    - DISCARD: send it to the null device
    """

    INHERIT = "inherit"
    LOG = "log"
    DISCARD = "discard"


@dataclass
class ServerConfig:
    """How to launch the language server process.

    Example config.yaml:
        clients:
          - id: vp
            server:
              command: vapour
              args: ["-lsp"]
              env:
                R_LIBS: "${HOME}/R"
    """

    command: str = "vapour"
    args: list[str] = field(default_factory=lambda: ["-lsp"])
    cwd: str | None = None  # Defaults to the host's working directory
    env: dict[str, str] = field(default_factory=dict)  # Supports ${VAR}
    stderr: StderrMode = StderrMode.INHERIT


@dataclass
class DocumentFilterConfig:
    """One entry of a document selector. None or "*" matches anything."""

    scheme: str | None = None
    language: str | None = None
    pattern: str | None = None  # Glob over the document path


@dataclass
class TimeoutConfig:
    """Timeouts in seconds. None disables the bound."""

    initialize: float | None = 30.0
    request: float | None = None  # Default deadline for host requests
    shutdown: float = 2.0  # Grace for the shutdown response
    exit: float = 1.0  # Wait for a voluntary exit after the exit notification
    terminate: float = 3.0  # Wait after SIGTERM before killing


@dataclass
class RestartConfig:
    """Automatic restart after an unsolicited crash.

    max_restarts=0 keeps restarts manual: the host calls start() again.
    """

    max_restarts: int = 0
    initial_delay: float = 1.0
    max_delay: float = 30.0


@dataclass
class ClientConfig:
    """One language client: a server launch plus the documents it serves."""

    id: str = "vp"
    name: str = "Vapour Language Server"
    server: ServerConfig = field(default_factory=ServerConfig)
    document_selector: list[DocumentFilterConfig] = field(
        default_factory=lambda: [DocumentFilterConfig(scheme="file", language="vapour")]
    )
    configuration_section: str | None = "vapour.lsp"
    initialization_options: dict[str, Any] | None = None
    trace: str = "off"  # "off", "messages" or "verbose"
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    queue_limit: int = 256  # Editor events held until the handshake completes
    restart: RestartConfig = field(default_factory=RestartConfig)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, wins over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    ``settings`` holds the editor-side settings tree; each client subscribes
    to one dotted section of it (e.g. "vapour.lsp").

    Example config.yaml:
        settings:
          vapour:
            lsp:
              when: [open, save, close, text]
              severity: [fatal, warn, info, hint]
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    clients: list[ClientConfig] = field(default_factory=lambda: [ClientConfig()])
    settings: dict[str, Any] = field(default_factory=dict)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)

    def get_client(self, client_id: str | None = None) -> ClientConfig:
        """Return the client with the given id, or the first one.

        Raises:
            KeyError: If no client has that id.
        """
        if client_id is None:
            return self.clients[0]
        for client in self.clients:
            if client.id == client_id:
                return client
        raise KeyError(f"No client configured with id {client_id!r}")
