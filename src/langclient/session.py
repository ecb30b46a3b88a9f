"""One connection to one server process: handshake, routing, shutdown."""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from langclient.config.merge import nest_section
from langclient.config.schema import ClientConfig
from langclient.correlator import RequestCorrelator
from langclient.diagnostics import DiagnosticStore
from langclient.errors import (
    ErrorCodes,
    HandshakeError,
    LanguageClientError,
    ProtocolStateError,
    ResponseError,
    ServerCrashedError,
    SpawnError,
    TransportError,
)
from langclient.logging import MESSAGE_TYPE_LEVELS, TRACE, get_logger
from langclient.router import DocumentSelector, SelectorRouter
from langclient.state import CONTROL_METHODS, ProtocolState, ProtocolStateMachine
from langclient.supervisor import ProcessSupervisor, ServerProcess
from langclient.transport.message import JsonRpcMessage, MessageKind
from langclient.transport.stream import Transport
from langclient.types import (
    ClientInfo,
    ConfigurationParams,
    DidChangeConfigurationParams,
    InitializeParams,
    InitializeResult,
    LogMessageParams,
    PublishDiagnosticsParams,
    SetTraceParams,
    ShowMessageParams,
    WorkspaceFolder,
)
from langclient.version import __version__

_log = get_logger("session")

CLIENT_NAME = "langclient"

# Wait for an exit code after the server closes its stream unasked
EOF_EXIT_GRACE = 0.5

CLIENT_CAPABILITIES: dict[str, Any] = {
    "textDocument": {
        "synchronization": {
            "dynamicRegistration": False,
            "didSave": True,
            "willSave": False,
            "willSaveWaitUntil": False,
        },
        "publishDiagnostics": {"relatedInformation": False, "versionSupport": True},
    },
    "workspace": {
        "configuration": True,
        "didChangeConfiguration": {"dynamicRegistration": False},
        "workspaceFolders": True,
    },
    "window": {"workDoneProgress": True, "showMessage": {}},
}

# Server -> client notifications and their handlers
NOTIFICATION_HANDLERS: dict[str, str] = {
    "textDocument/publishDiagnostics": "_on_publish_diagnostics",
    "window/showMessage": "_on_show_message",
    "window/logMessage": "_on_log_message",
    "$/logTrace": "_on_log_trace",
    "$/progress": "_on_progress",
    "telemetry/event": "_on_telemetry",
}

# Server -> client requests and their handlers (return the result)
REQUEST_HANDLERS: dict[str, str] = {
    "workspace/configuration": "_on_configuration",
    "workspace/workspaceFolders": "_on_workspace_folders",
    "client/registerCapability": "_answer_null",
    "client/unregisterCapability": "_answer_null",
    "window/workDoneProgress/create": "_answer_null",
    "window/showMessageRequest": "_answer_null",
}


class SessionEventKind(Enum):
    STATE_CHANGED = "state_changed"
    CRASHED = "crashed"
    DIAGNOSTICS = "diagnostics"
    MESSAGE = "message"


@dataclass
class SessionEvent:
    """Something the host may want to react to.

    payload is PublishDiagnosticsParams for DIAGNOSTICS, ShowMessageParams or
    LogMessageParams for MESSAGE, and (previous, current) for STATE_CHANGED.
    """

    kind: SessionEventKind
    session_id: str
    state: ProtocolState
    error: LanguageClientError | None = None
    payload: Any = None


SessionListener = Callable[[SessionEvent], None]


class ClientSession:
    """Drives one server process through its protocol lifecycle.

    Single use: after STOPPED or CRASHED a new session is needed (the
    LanguageClient facade creates one per start()).

    Args:
        config: Client configuration (server launch, selector, timeouts).
        settings: Current values of the subscribed settings section.
        root_path: Workspace root sent in the initialize request.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        settings: Any = None,
        root_path: str | Path | None = None,
    ) -> None:
        self.id = f"{config.id}-{uuid.uuid4().hex[:8]}"
        self.config = config
        self.created_at = time.time()
        self.selector = DocumentSelector.from_config(config.document_selector)
        self.configuration_section = config.configuration_section
        self.root_path = Path(root_path).resolve() if root_path is not None else None

        self._timeouts = config.timeouts
        self._state = ProtocolStateMachine(on_transition=self._on_transition)
        self._supervisor = ProcessSupervisor(
            config.server, timeouts=config.timeouts, on_exit=self._on_process_exit
        )
        self._transport: Transport | None = None
        self._correlator: RequestCorrelator | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self.router = SelectorRouter(
            self.selector,
            self.configuration_section,
            self._forward,
            queue_limit=config.queue_limit,
            settings=settings,
        )
        self.diagnostics = DiagnosticStore()
        self.server_capabilities: dict[str, Any] = {}
        self.server_info: dict[str, Any] | None = None

        self._listeners: list[SessionListener] = []
        self._failure: LanguageClientError | None = None
        self._starting = False
        self._stop_task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"ClientSession({self.id!r}, {self._state.current.value})"

    # --- Observable state ---

    @property
    def state(self) -> ProtocolState:
        return self._state.current

    @property
    def process(self) -> ServerProcess:
        return self._supervisor.info

    @property
    def failure(self) -> LanguageClientError | None:
        """The session-level error that crashed this session, if any."""
        return self._failure

    @property
    def pending_requests(self) -> int:
        return len(self._correlator.pending) if self._correlator is not None else 0

    def on_event(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for session events.

        Returns:
            A function that unregisters the listener.
        """
        self._listeners.append(listener)

        def unregister() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unregister

    def _emit(
        self,
        kind: SessionEventKind,
        *,
        error: LanguageClientError | None = None,
        payload: Any = None,
    ) -> None:
        event = SessionEvent(kind, self.id, self._state.current, error=error, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _log.exception("Session event listener failed")

    def _on_transition(self, previous: ProtocolState, current: ProtocolState) -> None:
        _log.info("Session %s: %s -> %s", self.id, previous.value, current.value)
        self._emit(SessionEventKind.STATE_CHANGED, payload=(previous, current))

    # --- Lifecycle ---

    async def start(self) -> InitializeResult:
        """Spawn the server and complete the initialize handshake.

        Returns:
            The server's validated InitializeResult.

        Raises:
            ProtocolStateError: If the session was already started.
            SpawnError: If the server process could not be started.
            HandshakeError: If the handshake failed or stop() abandoned it.
        """
        self._state.require(ProtocolState.UNINITIALIZED, action="start")
        if self._starting:
            raise ProtocolStateError(f"Session {self.id} is already starting")
        self._starting = True
        try:
            return await self._start()
        finally:
            self._starting = False

    async def _start(self) -> InitializeResult:
        try:
            await self._supervisor.spawn()
        except SpawnError as e:
            await self._crash(e)
            raise

        if self._state.current is not ProtocolState.UNINITIALIZED:
            # stop() ran while the spawn was in flight
            await self._supervisor.terminate(graceful=False)
            raise HandshakeError("Handshake abandoned: session stopped during spawn")

        self._transport = self._supervisor.open_transport()
        self._correlator = RequestCorrelator(
            self._transport.send, self._route, may_send=self._state.can_send
        )
        self._state.transition(ProtocolState.INITIALIZING)
        self._reader_task = asyncio.create_task(self._read_loop(self._transport))

        params = self._initialize_params()
        try:
            raw = await self._correlator.request(
                "initialize", params.to_params(), timeout=self._timeouts.initialize
            )
        except LanguageClientError as e:
            raise await self._handshake_failed(e) from e

        if self._state.current is not ProtocolState.INITIALIZING:
            raise await self._handshake_failed(None)

        try:
            result = InitializeResult.model_validate(raw)
        except ValidationError as e:
            raise await self._handshake_failed(
                HandshakeError(f"Invalid initialize result: {e.error_count()} error(s)")
            ) from e

        self.server_capabilities = result.capabilities
        self.server_info = result.server_info.model_dump() if result.server_info else None
        self._state.transition(ProtocolState.INITIALIZED)

        try:
            await self._correlator.send_notification("initialized", {})
            pushed = self.router.settings
            section = self.configuration_section
            sent = False
            # stop() may have begun the shutdown exchange while "initialized" drained
            if self._state.current is ProtocolState.INITIALIZED and section and pushed is not None:
                settings = DidChangeConfigurationParams(settings=nest_section(section, pushed))
                await self._correlator.send_notification(
                    "workspace/didChangeConfiguration", settings.to_params()
                )
                sent = True
            await self.router.activate(settings_sent=sent and self.router.settings is pushed)
        except TransportError as e:
            raise await self._handshake_failed(e) from e

        if self._state.current is not ProtocolState.INITIALIZED:
            raise await self._handshake_failed(None)

        name = result.server_info.name if result.server_info else self.config.server.command
        _log.info("Session %s ready (%s)", self.id, name)
        return result

    async def _handshake_failed(self, cause: BaseException | None) -> LanguageClientError:
        """Settle the session after a failed handshake; returns what start() raises."""
        current = self._state.current
        if current in (ProtocolState.SHUTTING_DOWN, ProtocolState.STOPPED):
            # stop() owns the teardown; let its shutdown exchange finish
            if self._stop_task is not None:
                await asyncio.shield(self._stop_task)
            return HandshakeError("Handshake abandoned: session stopped")
        if current is ProtocolState.CRASHED:
            if isinstance(self._failure, HandshakeError):
                return self._failure
            return HandshakeError(f"Server failed during handshake: {self._failure}")

        if isinstance(cause, HandshakeError):
            error = cause
        else:
            error = HandshakeError(f"Handshake failed: {cause}")
        await self._crash(error)
        return error

    def _initialize_params(self) -> InitializeParams:
        root_uri = None
        folders = None
        if self.root_path is not None:
            root_uri = self.root_path.as_uri()
            folders = [WorkspaceFolder(uri=root_uri, name=self.root_path.name)]
        return InitializeParams(
            process_id=os.getpid(),
            client_info=ClientInfo(name=CLIENT_NAME, version=__version__),
            root_path=str(self.root_path) if self.root_path is not None else None,
            root_uri=root_uri,
            capabilities=CLIENT_CAPABILITIES,
            initialization_options=self.config.initialization_options,
            trace=self.config.trace,
            workspace_folders=folders,
        )

    async def stop(self) -> None:
        """Shut the session down.

        From INITIALIZED this is the graceful shutdown/exit exchange; during
        the handshake the server is terminated directly. A no-op when never
        started or already finished; concurrent calls share one sequence.
        """
        if self._stop_task is None:
            current = self._state.current
            if current is ProtocolState.UNINITIALIZED and not self._starting:
                return
            if current.is_terminal:
                await self._supervisor.terminate(graceful=False)
                return
            if current in (ProtocolState.UNINITIALIZED, ProtocolState.INITIALIZING):
                self._abort()
                self._stop_task = asyncio.create_task(self._finish_abort())
            else:
                self._stop_task = asyncio.create_task(self._shutdown())
        await asyncio.shield(self._stop_task)

    def _abort(self) -> None:
        self._state.transition(ProtocolState.STOPPED)
        if self._correlator is not None:
            self._correlator.cancel_all("session stopped during handshake")
        self.router.deactivate()

    async def _finish_abort(self) -> None:
        if self._transport is not None:
            await self._transport.close()
        await self._supervisor.terminate(graceful=False)
        self._cancel_reader()

    async def _shutdown(self) -> None:
        assert self._correlator is not None and self._transport is not None
        self._state.transition(ProtocolState.SHUTTING_DOWN)
        self._correlator.cancel_all("session stopped")
        self.router.deactivate()

        try:
            await self._correlator.request("shutdown", timeout=self._timeouts.shutdown)
        except LanguageClientError as e:
            _log.warning("Shutdown request failed: %s", e)

        if self._state.current is ProtocolState.SHUTTING_DOWN:
            try:
                await self._correlator.send_notification("exit")
            except TransportError as e:
                _log.debug("Could not send exit: %s", e)

        await self._transport.close()
        await self._supervisor.terminate(graceful=True)
        await self._correlator.drain_background()
        self._cancel_reader()
        if self._state.current is ProtocolState.SHUTTING_DOWN:
            self._state.transition(ProtocolState.STOPPED)

    async def _crash(self, error: LanguageClientError) -> None:
        if self._state.current.is_terminal:
            return
        self._failure = error
        self._state.transition(ProtocolState.CRASHED)
        if self._correlator is not None:
            self._correlator.cancel_all(f"server crashed: {error}")
        self.router.deactivate()
        _log.error("Session %s crashed: %s", self.id, error)
        if not self._starting:
            self._emit(SessionEventKind.CRASHED, error=error)

        self._cancel_reader()
        if self._transport is not None:
            await self._transport.close()
        await self._supervisor.terminate(graceful=False)

    def _cancel_reader(self) -> None:
        task = self._reader_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _unexpected_exit(self, message: str, code: int | None) -> LanguageClientError:
        if self._state.current is ProtocolState.INITIALIZING:
            return HandshakeError(f"{message} during handshake (exit code {code})")
        return ServerCrashedError(f"{message} (exit code {code})", exit_code=code)

    async def _on_process_exit(self, info: ServerProcess) -> None:
        current = self._state.current
        if current is ProtocolState.SHUTTING_DOWN:
            if self._correlator is not None:
                self._correlator.cancel_all("server exited")
            return
        if current.is_terminal or current is ProtocolState.UNINITIALIZED:
            return
        await self._crash(self._unexpected_exit("Server exited", info.exit_code))

    # --- Inbound ---

    async def _read_loop(self, transport: Transport) -> None:
        try:
            await transport.pump(self._deliver)
        except TransportError as e:
            if self._state.current is ProtocolState.SHUTTING_DOWN:
                _log.debug("Stream error during shutdown: %s", e)
                if self._correlator is not None:
                    self._correlator.cancel_all("stream failed during shutdown")
                return
            if self._state.current is ProtocolState.INITIALIZING:
                await self._crash(HandshakeError(f"Stream failed during handshake: {e}"))
            else:
                await self._crash(e)
            return
        except Exception as e:
            _log.exception("Dispatch of inbound message failed")
            await self._crash(TransportError(f"Inbound dispatch failed: {e}"))
            return

        current = self._state.current
        if current is ProtocolState.SHUTTING_DOWN:
            if self._correlator is not None:
                self._correlator.cancel_all("server closed its stream")
            return
        if current.is_terminal:
            return

        code = await self._supervisor.wait(EOF_EXIT_GRACE)
        await self._crash(self._unexpected_exit("Server closed its output stream", code))

    async def _deliver(self, payload: bytes) -> None:
        if self._state.current.is_terminal:
            _log.warning(
                "Discarding message received while %s: %.200s",
                self._state.current.value,
                payload.decode("utf-8", "replace"),
            )
            return
        assert self._correlator is not None
        await self._correlator.on_message(payload)

    async def _route(self, message: JsonRpcMessage) -> None:
        """Dispatch a server-initiated request or notification."""
        method = message.method or ""
        if message.kind is MessageKind.NOTIFICATION:
            handler_name = NOTIFICATION_HANDLERS.get(method)
            if handler_name is None:
                _log.debug("Ignoring notification %s", method)
                return
            try:
                await getattr(self, handler_name)(message.params)
            except ValidationError as e:
                _log.warning("Invalid %s params: %s", method, e)
            return

        handler_name = REQUEST_HANDLERS.get(method)
        result: Any = None
        error: ResponseError | None = None
        if handler_name is None:
            _log.warning("Server request %s not supported", method)
            error = ResponseError(ErrorCodes.METHOD_NOT_FOUND, f"Unhandled method {method}")
        else:
            try:
                result = await getattr(self, handler_name)(message.params)
            except ValidationError as e:
                error = ResponseError(ErrorCodes.INVALID_PARAMS, str(e))
            except ResponseError as e:
                error = e

        if not self._state.can_respond():
            _log.debug("Not answering %s while %s", method, self._state.current.value)
            return
        assert self._correlator is not None and message.id is not None
        await self._correlator.send_response(message.id, result, error)

    async def _on_publish_diagnostics(self, params: Any) -> None:
        published = PublishDiagnosticsParams.model_validate(params)
        self.diagnostics.publish(published)
        _log.debug("%d diagnostic(s) for %s", len(published.diagnostics), published.uri)
        self._emit(SessionEventKind.DIAGNOSTICS, payload=published)

    async def _on_show_message(self, params: Any) -> None:
        shown = ShowMessageParams.model_validate(params)
        _log.log(MESSAGE_TYPE_LEVELS.get(shown.type, TRACE), "[%s] %s", self.id, shown.message)
        self._emit(SessionEventKind.MESSAGE, payload=shown)

    async def _on_log_message(self, params: Any) -> None:
        logged = LogMessageParams.model_validate(params)
        level = MESSAGE_TYPE_LEVELS.get(logged.type, TRACE)
        _log.log(level, "[%s log] %s", self.id, logged.message)
        self._emit(SessionEventKind.MESSAGE, payload=logged)

    async def _on_log_trace(self, params: Any) -> None:
        _log.log(TRACE, "[%s trace] %s", self.id, (params or {}).get("message", ""))

    async def _on_progress(self, params: Any) -> None:
        _log.debug("[%s progress] %s", self.id, params)

    async def _on_telemetry(self, params: Any) -> None:
        _log.debug("[%s telemetry] %s", self.id, params)

    async def _on_configuration(self, params: Any) -> list[Any]:
        request = ConfigurationParams.model_validate(params)
        return [self.router.configuration_for(item.section) for item in request.items]

    async def _on_workspace_folders(self, params: Any) -> list[dict[str, Any]] | None:
        if self.root_path is None:
            return None
        folder = WorkspaceFolder(uri=self.root_path.as_uri(), name=self.root_path.name)
        return [folder.to_params()]

    async def _answer_null(self, params: Any) -> None:
        return None

    # --- Outbound (host) ---

    def _require_ready(self, method: str) -> None:
        if method in CONTROL_METHODS:
            raise ProtocolStateError(f"{method} is sent by the session itself")
        self._state.require(ProtocolState.INITIALIZED, action=f"send {method}")

    async def send_request(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a request to the server and wait for its result.

        Raises:
            ProtocolStateError: Unless the session is INITIALIZED.
            ResponseError: The server answered with an error.
            RequestTimeoutError: ``timeout`` (or the configured default) elapsed.
            RequestCancelledError: The session stopped or crashed first.
        """
        self._require_ready(method)
        assert self._correlator is not None
        if timeout is None:
            timeout = self._timeouts.request
        return await self._correlator.request(method, params, timeout=timeout)

    async def send_notification(self, method: str, params: Any = None) -> None:
        self._require_ready(method)
        assert self._correlator is not None
        await self._correlator.send_notification(method, params)

    async def set_trace(self, value: str) -> None:
        """Change the server's trace level ("off", "messages", "verbose")."""
        await self.send_notification("$/setTrace", SetTraceParams(value=value).to_params())

    async def _forward(self, method: str, params: Any) -> None:
        # Router output; gated so nothing leaks outside INITIALIZED
        if self._correlator is None or not self._state.can_send(method):
            _log.debug("Dropping %s while %s", method, self._state.current.value)
            return
        try:
            await self._correlator.send_notification(method, params)
        except TransportError as e:
            _log.warning("Could not send %s: %s", method, e)

    async def __aenter__(self) -> ClientSession:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()
