"""Test utilities: in-memory streams and a scripted language server."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from langclient.config.schema import ClientConfig, ServerConfig, TimeoutConfig
from langclient.transport.framing import (
    HEADER_SEPARATOR,
    content_length,
    encode_frame,
    parse_header,
)

FIXTURES = Path(__file__).parent / "fixtures"
FAKE_SERVER_SCRIPT = FIXTURES / "fake_server.py"

DEFAULT_INITIALIZE_RESULT = {
    "capabilities": {"textDocumentSync": 1},
    "serverInfo": {"name": "fake-server", "version": "1.0"},
}


def fast_timeouts(**overrides: Any) -> TimeoutConfig:
    values: dict[str, Any] = {
        "initialize": 2.0,
        "request": None,
        "shutdown": 0.5,
        "exit": 0.2,
        "terminate": 0.2,
    }
    values.update(overrides)
    return TimeoutConfig(**values)


def make_client_config(
    command: str = "langsrv",
    args: list[str] | None = None,
    **overrides: Any,
) -> ClientConfig:
    """ClientConfig with short timeouts for tests."""
    overrides.setdefault("timeouts", fast_timeouts())
    return ClientConfig(
        server=ServerConfig(command=command, args=["-lsp"] if args is None else args),
        **overrides,
    )


def real_server_config(*flags: str, **overrides: Any) -> ClientConfig:
    """ClientConfig launching tests/fixtures/fake_server.py with this interpreter."""
    overrides.setdefault("timeouts", fast_timeouts(initialize=10.0, exit=2.0, terminate=2.0))
    return make_client_config(sys.executable, [str(FAKE_SERVER_SCRIPT), *flags], **overrides)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


def split_frames(data: bytes) -> tuple[list[bytes], bytes]:
    """Split complete frames off the front of ``data``.

    Returns:
        (payloads, remaining bytes)
    """
    payloads: list[bytes] = []
    while True:
        end = data.find(HEADER_SEPARATOR)
        if end == -1:
            return payloads, data
        length = content_length(parse_header(data[:end]))
        start = end + len(HEADER_SEPARATOR)
        if len(data) < start + length:
            return payloads, data
        payloads.append(data[start : start + length])
        data = data[start + length :]


class MemoryWriter:
    """StreamWriter stand-in that records everything written."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.broken = False
        self._closing = False

    def write(self, data: bytes) -> None:
        if self.broken:
            raise BrokenPipeError("pipe closed")
        self.data.extend(data)

    async def drain(self) -> None:
        if self.broken:
            raise ConnectionResetError("pipe closed")

    def close(self) -> None:
        self._closing = True

    def is_closing(self) -> bool:
        return self._closing

    async def wait_closed(self) -> None:
        return None

    def messages(self) -> list[dict[str, Any]]:
        payloads, _ = split_frames(bytes(self.data))
        return [json.loads(p) for p in payloads]


class FakeServerStdin(MemoryWriter):
    """Client-to-server pipe: complete frames go to the scripted server."""

    def __init__(self, server: ScriptedServer) -> None:
        super().__init__()
        self._server = server
        self._buffer = b""

    def write(self, data: bytes) -> None:
        super().write(data)
        payloads, self._buffer = split_frames(self._buffer + data)
        for payload in payloads:
            self._server.handle(json.loads(payload))


class FakeProcess:
    """asyncio.subprocess.Process stand-in driven by a ScriptedServer."""

    def __init__(self, server: ScriptedServer, pid: int) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdin = FakeServerStdin(server)
        self.stdout = asyncio.StreamReader()
        self.stderr = None
        self.signals: list[str] = []
        self._server = server
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self._exited.set()

    def terminate(self) -> None:
        self.signals.append("terminate")
        if not self._server.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.signals.append("kill")
        self.exit(-9)


class ScriptedServer:
    """In-memory language server answering from a script.

    Requests are answered from ``results`` (or ``errors``); methods listed in
    ``held`` stay unanswered until respond() is called. The exit
    notification ends the process with code 0.
    """

    def __init__(self) -> None:
        self.received: list[dict[str, Any]] = []
        self.spawned: list[tuple[str, tuple[str, ...], dict[str, Any]]] = []
        self.results: dict[str, Any] = {
            "initialize": DEFAULT_INITIALIZE_RESULT,
            "shutdown": None,
        }
        self.errors: dict[str, dict[str, Any]] = {}
        self.held: set[str] = set()
        self.pending: dict[str, list[int]] = {}
        self.ignore_terminate = False
        self.exit_on_exit = True
        self.on_notification: dict[str, Callable[[Any], None]] = {}
        self.process: FakeProcess | None = None
        self._next_pid = 40000

    async def create_subprocess_exec(self, program: str, *args: str, **kwargs: Any) -> FakeProcess:
        self.spawned.append((program, args, kwargs))
        self._next_pid += 1
        self.process = FakeProcess(self, self._next_pid)
        return self.process

    def handle(self, message: dict[str, Any]) -> None:
        self.received.append(message)
        method = message.get("method")
        if method is None:
            return
        if "id" not in message:
            handler = self.on_notification.get(method)
            if handler is not None:
                handler(message.get("params"))
            if method == "exit" and self.exit_on_exit and self.process is not None:
                self.process.exit(0)
            return
        if method in self.held:
            self.pending.setdefault(method, []).append(message["id"])
            return
        if method in self.errors:
            self.send({"jsonrpc": "2.0", "id": message["id"], "error": self.errors[method]})
            return
        self.send({"jsonrpc": "2.0", "id": message["id"], "result": self.results.get(method)})

    def send(self, message: dict[str, Any]) -> None:
        assert self.process is not None
        self.process.stdout.feed_data(encode_frame(json.dumps(message).encode("utf-8")))

    def notify(self, method: str, params: Any = None) -> None:
        self.send({"jsonrpc": "2.0", "method": method, "params": params})

    def request(self, request_id: int | str, method: str, params: Any = None) -> None:
        self.send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})

    def respond(self, method: str, result: Any = None) -> None:
        request_id = self.pending[method].pop(0)
        self.send({"jsonrpc": "2.0", "id": request_id, "result": result})

    def crash(self, code: int = 1) -> None:
        assert self.process is not None
        self.process.exit(code)

    def methods(self) -> list[str]:
        return [m["method"] for m in self.received if "method" in m]

    def params_of(self, method: str) -> list[Any]:
        return [m.get("params") for m in self.received if m.get("method") == method]

    def responses(self) -> list[dict[str, Any]]:
        return [m for m in self.received if "method" not in m]
