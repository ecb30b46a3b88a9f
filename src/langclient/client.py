"""Host-facing facade: start/stop a language client and feed it editor events."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from langclient.config.merge import get_section
from langclient.config.schema import ClientConfig
from langclient.errors import HandshakeError, LanguageClientError
from langclient.logging import get_logger
from langclient.router import DocumentSelector, TextDocument
from langclient.session import ClientSession, SessionEvent, SessionEventKind, SessionListener
from langclient.state import ProtocolState
from langclient.types import InitializeResult, TextDocumentContentChangeEvent

_log = get_logger("client")


@dataclass
class StartResult:
    """Outcome of one start() attempt: a ready session or the error."""

    session: ClientSession | None = None
    result: InitializeResult | None = None
    error: LanguageClientError | None = None

    @property
    def ready(self) -> bool:
        return self.error is None and self.session is not None


class LanguageClient:
    """Owns the current ClientSession of one configured language server.

    Tracks the host's open matching documents and the subscribed settings
    section, so each new session (first start, manual restart, or automatic
    restart) is brought up to date before it starts forwarding.

    Args:
        config: Client configuration.
        settings: The host's full settings tree; the client reads its
            ``configuration_section`` from it.
        root_path: Workspace root sent to the server.

    Example:
        client = LanguageClient(config.get_client(), settings=config.settings)
        result = await client.start()
        if result.ready:
            await client.did_open(TextDocument.from_path("main.vp"))
        await client.stop()
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        settings: dict[str, Any] | None = None,
        root_path: str | Path | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.selector = DocumentSelector.from_config(self.config.document_selector)
        self._root_path = root_path
        self._section_values: Any = None
        if settings and self.config.configuration_section:
            self._section_values = get_section(settings, self.config.configuration_section)

        self._session: ClientSession | None = None
        self._detach: Callable[[], None] | None = None
        self._open_documents: dict[str, TextDocument] = {}
        self._listeners: list[SessionListener] = []

        self._start_task: asyncio.Task[StartResult] | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._restarts = 0
        self._stopping = False

    def __repr__(self) -> str:
        return f"LanguageClient({self.config.id!r}, {self.state.value})"

    @property
    def session(self) -> ClientSession | None:
        return self._session

    @property
    def state(self) -> ProtocolState:
        if self._session is None:
            return ProtocolState.UNINITIALIZED
        return self._session.state

    @property
    def is_ready(self) -> bool:
        return self.state is ProtocolState.INITIALIZED

    @property
    def configuration_section(self) -> str | None:
        return self.config.configuration_section

    @property
    def open_documents(self) -> list[TextDocument]:
        return list(self._open_documents.values())

    def on_event(self, listener: SessionListener) -> Callable[[], None]:
        """Receive events of the current and all future sessions.

        Returns:
            A function that unregisters the listener.
        """
        self._listeners.append(listener)

        def unregister() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unregister

    # --- Lifecycle ---

    async def start(self) -> StartResult:
        """Start the server, or return the running session.

        A start already in progress is shared rather than duplicated. Errors
        never raise: they are reported in StartResult.error.
        """
        self._restarts = 0
        return await self._launch()

    async def _launch(self) -> StartResult:
        if self._start_task is not None and not self._start_task.done():
            return await asyncio.shield(self._start_task)
        session = self._session
        if session is not None and session.state is ProtocolState.INITIALIZED:
            return StartResult(session=session)

        self._stopping = False
        self._start_task = asyncio.create_task(self._start_session())
        return await asyncio.shield(self._start_task)

    async def _start_session(self) -> StartResult:
        if self._stopping:
            return StartResult(error=HandshakeError("Client stopped before the session started"))

        session = ClientSession(
            self.config, settings=self._section_values, root_path=self._root_path
        )
        self._attach(session)
        for document in self._open_documents.values():
            await session.router.on_document_opened(document)

        try:
            result = await session.start()
        except LanguageClientError as e:
            _log.error("Could not start %s: %s", self.config.name, e)
            return StartResult(session=session, error=e)
        return StartResult(session=session, result=result)

    async def stop(self) -> None:
        """Stop the current session. Idempotent; never raises for "not running"."""
        self._stopping = True
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None
        if self._session is not None:
            await self._session.stop()
        if self._start_task is not None and not self._start_task.done():
            await asyncio.shield(self._start_task)

    def _attach(self, session: ClientSession) -> None:
        if self._detach is not None:
            self._detach()
        self._session = session
        self._detach = session.on_event(self._on_session_event)

    def _on_session_event(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _log.exception("Client event listener failed")
        if event.kind is SessionEventKind.CRASHED:
            self._schedule_restart()

    def _schedule_restart(self) -> None:
        policy = self.config.restart
        if policy.max_restarts <= 0 or self._stopping:
            return
        if self._restarts >= policy.max_restarts:
            _log.error("%s crashed %d time(s); not restarting", self.config.name, self._restarts)
            return
        delay = min(policy.initial_delay * 2**self._restarts, policy.max_delay)
        self._restarts += 1
        _log.warning(
            "Restarting %s in %.1fs (attempt %d of %d)",
            self.config.name,
            delay,
            self._restarts,
            policy.max_restarts,
        )
        self._restart_task = asyncio.create_task(self._restart_after(delay))

    async def _restart_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._stopping:
            return
        result = await self._launch()
        if result.error is not None and not self._stopping:
            # A failed start surfaces no CRASHED event
            self._schedule_restart()

    # --- Host events ---

    async def did_open(self, document: TextDocument) -> None:
        if not self.selector.matches(document):
            return
        self._open_documents[document.uri] = document
        if self._session is not None:
            await self._session.router.on_document_opened(document)

    async def did_change(
        self,
        document: TextDocument,
        changes: list[TextDocumentContentChangeEvent] | None = None,
    ) -> None:
        if not self.selector.matches(document):
            return
        self._open_documents[document.uri] = document
        if self._session is not None:
            await self._session.router.on_document_changed(document, changes)

    async def did_save(self, document: TextDocument) -> None:
        if not self.selector.matches(document):
            return
        if document.uri in self._open_documents:
            self._open_documents[document.uri] = document
        if self._session is not None:
            await self._session.router.on_document_saved(document)

    async def did_close(self, document: TextDocument) -> None:
        if not self.selector.matches(document):
            return
        self._open_documents.pop(document.uri, None)
        if self._session is not None:
            await self._session.router.on_document_closed(document)

    async def configuration_changed(self, section: str, values: Any) -> None:
        """Settings of ``section`` changed; forwarded only for the subscribed one."""
        if section != self.configuration_section:
            return
        self._section_values = values
        if self._session is not None:
            await self._session.router.on_configuration_changed(section, values)

    async def __aenter__(self) -> LanguageClient:
        result = await self.start()
        if result.error is not None:
            await self.stop()
            raise result.error
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()
