"""Common LSP structures shared across requests and notifications."""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field


class LspModel(BaseModel):
    """Base model for LSP types with populate_by_name enabled."""

    model_config = ConfigDict(populate_by_name=True)

    def to_params(self) -> dict:
        """Serialise for the wire: camelCase keys, unset optionals dropped."""
        return self.model_dump(by_alias=True, exclude_none=True)


class DiagnosticSeverity(IntEnum):
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


class MessageType(IntEnum):
    ERROR = 1
    WARNING = 2
    INFO = 3
    LOG = 4
    DEBUG = 5


class Position(LspModel):
    """Zero-based line and UTF-16 character offset."""

    line: int
    character: int


class Range(LspModel):
    start: Position
    end: Position


class Diagnostic(LspModel):
    """A problem reported by the server for a range of a document."""

    range: Range
    message: str
    severity: int | None = None  # Kept loose: some servers send 0 for fatal
    code: int | str | None = None
    source: str | None = None


class TextDocumentIdentifier(LspModel):
    uri: str


class VersionedTextDocumentIdentifier(LspModel):
    uri: str
    version: int


class TextDocumentItem(LspModel):
    """Full document transferred on didOpen."""

    uri: str
    language_id: str = Field(alias="languageId")
    version: int
    text: str


class TextDocumentContentChangeEvent(LspModel):
    """A change to a document; without a range it replaces the whole text."""

    text: str
    range: Range | None = None


class WorkspaceFolder(LspModel):
    uri: str
    name: str


class ClientInfo(LspModel):
    name: str
    version: str | None = None


class ServerInfo(LspModel):
    name: str
    version: str | None = None
