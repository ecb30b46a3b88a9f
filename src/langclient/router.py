"""Document selector matching and forwarding of editor events to a session."""

from __future__ import annotations

import fnmatch
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from langclient.config.merge import nest_section
from langclient.config.schema import DocumentFilterConfig
from langclient.logging import VERBOSE, get_logger
from langclient.types import (
    DidChangeConfigurationParams,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveTextDocumentParams,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
)

_log = get_logger("router")

DEFAULT_QUEUE_LIMIT = 256

# File extension to LSP language identifier
LANGUAGE_IDS: dict[str, str] = {
    ".vp": "vapour",
    ".r": "r",
    ".py": "python",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
    ".txt": "plaintext",
}

Notify = Callable[[str, Any], Awaitable[None]]


@dataclass
class TextDocument:
    """Host-side view of an editor buffer."""

    uri: str
    language_id: str
    version: int = 0
    text: str = ""

    @property
    def scheme(self) -> str:
        return urlparse(self.uri).scheme

    @property
    def path(self) -> str:
        return unquote(urlparse(self.uri).path)

    @classmethod
    def from_path(
        cls,
        path: str | Path,
        *,
        language_id: str | None = None,
        text: str | None = None,
        version: int = 0,
    ) -> TextDocument:
        """Describe a file on disk, reading its text unless given."""
        path = Path(path).resolve()
        if text is None:
            text = path.read_text(encoding="utf-8")
        if language_id is None:
            language_id = LANGUAGE_IDS.get(path.suffix.lower(), "plaintext")
        return cls(uri=path.as_uri(), language_id=language_id, version=version, text=text)


@dataclass
class DocumentFilter:
    """Matches documents by scheme, language and path glob."""

    scheme: str | None = None
    language: str | None = None
    pattern: str | None = None

    @staticmethod
    def _field_matches(expected: str | None, actual: str) -> bool:
        return expected is None or expected == "*" or expected == actual

    def matches(self, document: TextDocument) -> bool:
        if not self._field_matches(self.scheme, document.scheme):
            return False
        if not self._field_matches(self.language, document.language_id):
            return False
        if self.pattern and not fnmatch.fnmatch(document.path, self.pattern):
            return False
        return True


@dataclass
class DocumentSelector:
    """A document matches the selector when any of its filters matches."""

    filters: list[DocumentFilter] = field(default_factory=list)

    @classmethod
    def from_config(cls, filters: list[DocumentFilterConfig]) -> DocumentSelector:
        return cls([DocumentFilter(f.scheme, f.language, f.pattern) for f in filters])

    def matches(self, document: TextDocument) -> bool:
        return any(f.matches(document) for f in self.filters)

    def describe(self) -> str:
        return ", ".join(
            f"{f.scheme or '*'}:{f.language or '*'}{':' + f.pattern if f.pattern else ''}"
            for f in self.filters
        )


@dataclass
class DocumentBinding:
    """A matching document currently open on the server."""

    uri: str
    language_id: str
    version: int
    opened_at: float = field(default_factory=time.time)


class EventKind(Enum):
    OPENED = "opened"
    CHANGED = "changed"
    SAVED = "saved"
    CLOSED = "closed"
    CONFIGURATION = "configuration"


@dataclass
class _QueuedEvent:
    kind: EventKind
    document: TextDocument | None = None
    changes: list[TextDocumentContentChangeEvent] | None = None
    section: str | None = None
    values: Any = None


class RouterState(Enum):
    PENDING = "pending"  # Handshake not done; events are queued
    ACTIVE = "active"  # Events are forwarded
    CLOSED = "closed"  # Session over; events are dropped


class SelectorRouter:
    """Filters editor events through a document selector into notifications.

    Owns the per-document bindings of one session. Until activate() is
    called, events are held in a bounded queue (the oldest is dropped when
    full) and replayed in arrival order on activation.

    Args:
        selector: Which documents this session serves.
        section: Dotted settings section the session subscribes to.
        notify: Sends one notification (ClientSession.send_notification).
        queue_limit: Events held before activation.
        settings: Initial values of ``section``.
    """

    def __init__(
        self,
        selector: DocumentSelector,
        section: str | None,
        notify: Notify,
        *,
        queue_limit: int = DEFAULT_QUEUE_LIMIT,
        settings: Any = None,
    ) -> None:
        self.selector = selector
        self.section = section
        self._notify = notify
        self._state = RouterState.PENDING
        self._queue: deque[_QueuedEvent] = deque(maxlen=max(queue_limit, 1))
        self._bindings: dict[str, DocumentBinding] = {}
        self._settings: Any = settings

    @property
    def state(self) -> RouterState:
        return self._state

    @property
    def settings(self) -> Any:
        """Last known values of the subscribed section."""
        return self._settings

    @property
    def bindings(self) -> dict[str, DocumentBinding]:
        return dict(self._bindings)

    @property
    def queued(self) -> int:
        return len(self._queue)

    def matches(self, document: TextDocument) -> bool:
        return self.selector.matches(document)

    async def activate(self, *, settings_sent: bool = False) -> int:
        """Start forwarding and flush queued events in arrival order.

        Args:
            settings_sent: The current settings already reached the server,
                so queued configuration events are dropped instead of replayed.

        Returns:
            Number of events replayed.
        """
        if self._state is not RouterState.PENDING:
            return 0
        self._state = RouterState.ACTIVE
        if settings_sent:
            self._queue = deque(
                (e for e in self._queue if e.kind is not EventKind.CONFIGURATION),
                maxlen=self._queue.maxlen,
            )
        replayed = 0
        while self._queue and self._state is RouterState.ACTIVE:
            await self._dispatch(self._queue.popleft())
            replayed += 1
        if replayed:
            _log.log(VERBOSE, "Replayed %d queued event(s)", replayed)
        return replayed

    def deactivate(self) -> None:
        """Drop bindings and queued events; later events are ignored."""
        self._state = RouterState.CLOSED
        self._queue.clear()
        self._bindings.clear()

    async def on_document_opened(self, document: TextDocument) -> None:
        if self.matches(document):
            await self._submit(_QueuedEvent(EventKind.OPENED, document))

    async def on_document_changed(
        self,
        document: TextDocument,
        changes: list[TextDocumentContentChangeEvent] | None = None,
    ) -> None:
        if self.matches(document):
            await self._submit(_QueuedEvent(EventKind.CHANGED, document, changes))

    async def on_document_saved(self, document: TextDocument) -> None:
        if self.matches(document):
            await self._submit(_QueuedEvent(EventKind.SAVED, document))

    async def on_document_closed(self, document: TextDocument) -> None:
        if self.matches(document):
            await self._submit(_QueuedEvent(EventKind.CLOSED, document))

    async def on_configuration_changed(self, section: str, values: Any) -> None:
        """Forward a settings change when ``section`` is the subscribed one."""
        if not self.section or section != self.section:
            return
        await self._submit(_QueuedEvent(EventKind.CONFIGURATION, section=section, values=values))

    def configuration_for(self, section: str | None) -> Any:
        """Answer one item of a workspace/configuration request."""
        if section is None:
            if self.section is None:
                return None
            return nest_section(self.section, self._settings)
        if section == self.section:
            return self._settings
        if self.section and section.startswith(self.section + "."):
            node = self._settings
            for part in section[len(self.section) + 1 :].split("."):
                if not isinstance(node, dict) or part not in node:
                    return None
                node = node[part]
            return node
        return None

    async def _submit(self, event: _QueuedEvent) -> None:
        if self._state is RouterState.CLOSED:
            _log.debug("Router closed; dropping %s event", event.kind.value)
            return
        if self._state is RouterState.PENDING:
            if len(self._queue) == self._queue.maxlen:
                dropped = self._queue[0]
                _log.warning(
                    "Event queue full (%d); dropping oldest %s event",
                    self._queue.maxlen,
                    dropped.kind.value,
                )
            if event.kind is EventKind.CONFIGURATION:
                self._settings = event.values
            self._queue.append(event)
            return
        await self._dispatch(event)

    async def _dispatch(self, event: _QueuedEvent) -> None:
        if event.kind is EventKind.CONFIGURATION:
            self._settings = event.values
            assert event.section is not None
            params = DidChangeConfigurationParams(
                settings=nest_section(event.section, event.values)
            )
            await self._notify("workspace/didChangeConfiguration", params.to_params())
            return

        document = event.document
        assert document is not None
        if event.kind is EventKind.OPENED:
            await self._open(document)
        elif event.kind is EventKind.CHANGED:
            await self._change(document, event.changes)
        elif event.kind is EventKind.SAVED:
            await self._save(document)
        elif event.kind is EventKind.CLOSED:
            await self._close(document)

    async def _open(self, document: TextDocument) -> None:
        if document.uri in self._bindings:
            _log.debug("%s already open; ignoring", document.uri)
            return
        self._bindings[document.uri] = DocumentBinding(
            uri=document.uri, language_id=document.language_id, version=document.version
        )
        params = DidOpenTextDocumentParams(
            text_document=TextDocumentItem(
                uri=document.uri,
                language_id=document.language_id,
                version=document.version,
                text=document.text,
            )
        )
        await self._notify("textDocument/didOpen", params.to_params())

    async def _change(
        self,
        document: TextDocument,
        changes: list[TextDocumentContentChangeEvent] | None,
    ) -> None:
        binding = self._bindings.get(document.uri)
        if binding is None:
            await self._open(document)
            return
        binding.version = document.version
        params = DidChangeTextDocumentParams(
            text_document=VersionedTextDocumentIdentifier(
                uri=document.uri, version=document.version
            ),
            content_changes=changes or [TextDocumentContentChangeEvent(text=document.text)],
        )
        await self._notify("textDocument/didChange", params.to_params())

    async def _save(self, document: TextDocument) -> None:
        if document.uri not in self._bindings:
            _log.debug("Save of unopened %s; ignoring", document.uri)
            return
        params = DidSaveTextDocumentParams(
            text_document=TextDocumentIdentifier(uri=document.uri), text=document.text
        )
        await self._notify("textDocument/didSave", params.to_params())

    async def _close(self, document: TextDocument) -> None:
        if self._bindings.pop(document.uri, None) is None:
            _log.debug("Close of unopened %s; ignoring", document.uri)
            return
        params = DidCloseTextDocumentParams(text_document=TextDocumentIdentifier(uri=document.uri))
        await self._notify("textDocument/didClose", params.to_params())
