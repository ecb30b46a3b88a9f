"""Owns the language server process: spawn, monitor, terminate."""

from __future__ import annotations

import asyncio
import os
import platform
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from langclient.config.schema import ServerConfig, StderrMode, TimeoutConfig
from langclient.errors import SpawnError
from langclient.logging import get_logger
from langclient.transport.stream import Transport

_log = get_logger("supervisor")

# Windows-specific subprocess creation flags
_WINDOWS = platform.system() == "Windows"
_CREATE_NEW_PROCESS_GROUP = 0x00000200 if _WINDOWS else 0

_ENV_REF = re.compile(r"\$\{([^}]+)\}")


class ProcessStatus(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITING = "exiting"
    EXITED = "exited"


@dataclass
class ServerProcess:
    """Observable state of the spawned server."""

    command: str
    args: list[str]
    pid: int | None = None
    status: ProcessStatus = ProcessStatus.NOT_STARTED
    exit_code: int | None = None
    exit_reason: str | None = None
    started_at: float = field(default_factory=time.time)

    def __repr__(self) -> str:
        if self.status is ProcessStatus.EXITED:
            return f"ServerProcess({self.command!r}, pid={self.pid}, exited={self.exit_code})"
        return f"ServerProcess({self.command!r}, pid={self.pid}, {self.status.value})"


def expand_env(env: dict[str, str]) -> dict[str, str]:
    """Expand ${VAR} references against the current environment."""
    return {
        key: _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
        for key, value in env.items()
    }


def _send_terminate(process: asyncio.subprocess.Process) -> None:
    """SIGTERM on Unix, TerminateProcess on Windows."""
    try:
        process.terminate()
    except ProcessLookupError:
        pass


class ProcessSupervisor:
    """Spawns one server process and watches it until it exits.

    A supervisor is single use: one spawn, one exit. The raw process handle
    never leaves this class; other components reach the pipes only through
    open_transport().

    Args:
        config: Launch command, arguments, cwd, env and stderr handling.
        timeouts: exit/terminate grace periods used by terminate().
        on_exit: Awaited with the final ServerProcess once the process exits.
    """

    def __init__(
        self,
        config: ServerConfig,
        *,
        timeouts: TimeoutConfig | None = None,
        on_exit: Callable[[ServerProcess], Awaitable[None]] | None = None,
    ) -> None:
        self._config = config
        self._timeouts = timeouts or TimeoutConfig()
        self._on_exit = on_exit
        self._process: asyncio.subprocess.Process | None = None
        self._info = ServerProcess(command=config.command, args=list(config.args))
        self._exited = asyncio.Event()
        self._monitor_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._terminate_task: asyncio.Task[None] | None = None

    @property
    def info(self) -> ServerProcess:
        return self._info

    @property
    def status(self) -> ProcessStatus:
        return self._info.status

    async def spawn(self) -> ServerProcess:
        """Start the server with the configured command and arguments.

        Raises:
            SpawnError: Missing binary, permission denied, or any other OS
                refusal. Never retried here.
        """
        if self._info.status is not ProcessStatus.NOT_STARTED:
            raise SpawnError(self._config.command, "supervisor already spawned a process")

        env = None
        if self._config.env:
            env = dict(os.environ)
            env.update(expand_env(self._config.env))

        stderr: int | None = None
        if self._config.stderr is StderrMode.LOG:
            stderr = asyncio.subprocess.PIPE
        elif self._config.stderr is StderrMode.DISCARD:
            stderr = asyncio.subprocess.DEVNULL

        _log.info("Spawning %s %s", self._config.command, " ".join(self._config.args))
        try:
            process = await asyncio.create_subprocess_exec(
                self._config.command,
                *self._config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                cwd=self._config.cwd,
                env=env,
                creationflags=_CREATE_NEW_PROCESS_GROUP,
            )
        except FileNotFoundError as e:
            self._mark_failed(str(e))
            raise SpawnError(self._config.command, "command not found") from e
        except PermissionError as e:
            self._mark_failed(str(e))
            raise SpawnError(self._config.command, "permission denied") from e
        except OSError as e:
            self._mark_failed(str(e))
            raise SpawnError(self._config.command, str(e)) from e

        self._process = process
        self._info.pid = process.pid
        self._info.status = ProcessStatus.RUNNING
        self._info.started_at = time.time()
        _log.debug("Server pid %d started", process.pid)

        self._monitor_task = asyncio.create_task(self._monitor(process))
        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._forward_stderr(process.stderr))
        return self._info

    def open_transport(self) -> Transport:
        """Wrap the process pipes in a fresh Transport."""
        if self._process is None or self._process.stdin is None or self._process.stdout is None:
            raise RuntimeError("Server process is not running")
        return Transport(self._process.stdout, self._process.stdin, name=self._config.command)

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the process to exit.

        Returns:
            The exit code, or None if the timeout elapsed first.
        """
        try:
            await asyncio.wait_for(self._exited.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._info.exit_code

    async def terminate(self, *, graceful: bool = True) -> None:
        """Stop the process: wait for a voluntary exit, then SIGTERM, then kill.

        Idempotent: concurrent and repeated calls share a single attempt, and a
        process that never started or already exited is left alone.

        Args:
            graceful: Give the process ``timeouts.exit`` seconds to leave on its
                own (after an exit notification) before signalling it.
        """
        if self._process is None or self._info.status is ProcessStatus.EXITED:
            return
        if self._terminate_task is None:
            self._terminate_task = asyncio.create_task(self._terminate(self._process, graceful))
        await asyncio.shield(self._terminate_task)

    async def _terminate(self, process: asyncio.subprocess.Process, graceful: bool) -> None:
        self._info.status = ProcessStatus.EXITING

        if graceful and await self.wait(self._timeouts.exit) is not None:
            return

        _log.debug("Sending terminate to pid %d", process.pid)
        _send_terminate(process)
        if await self.wait(self._timeouts.terminate) is not None:
            return

        _log.warning("Server pid %d ignored terminate; killing", process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await self._exited.wait()

    async def _monitor(self, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()
        requested = self._info.status is ProcessStatus.EXITING
        self._info.status = ProcessStatus.EXITED
        self._info.exit_code = code
        self._info.exit_reason = "terminated" if requested else "exited"
        self._exited.set()
        log = _log.info if requested or code == 0 else _log.warning
        log("Server pid %d %s with code %s", process.pid, self._info.exit_reason, code)

        if self._on_exit is not None:
            try:
                await self._on_exit(self._info)
            except Exception:
                _log.exception("Process exit handler failed")

    async def _forward_stderr(self, stream: asyncio.StreamReader) -> None:
        name = self._config.command
        while True:
            line = await stream.readline()
            if not line:
                return
            _log.debug("[%s stderr] %s", name, line.decode("utf-8", "replace").rstrip())

    def _mark_failed(self, reason: str) -> None:
        self._info.status = ProcessStatus.EXITED
        self._info.exit_reason = reason
        self._exited.set()
