"""LSP notification parameter types."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from langclient.types.common import (
    Diagnostic,
    LspModel,
    MessageType,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
)

# === Text document synchronization (client -> server) ===


class DidOpenTextDocumentParams(LspModel):
    text_document: TextDocumentItem = Field(alias="textDocument")


class DidChangeTextDocumentParams(LspModel):
    text_document: VersionedTextDocumentIdentifier = Field(alias="textDocument")
    content_changes: list[TextDocumentContentChangeEvent] = Field(alias="contentChanges")


class DidSaveTextDocumentParams(LspModel):
    text_document: TextDocumentIdentifier = Field(alias="textDocument")
    text: str | None = None


class DidCloseTextDocumentParams(LspModel):
    text_document: TextDocumentIdentifier = Field(alias="textDocument")


class DidChangeConfigurationParams(LspModel):
    settings: Any = None

    def to_params(self) -> dict:
        # settings is required even when null
        return {"settings": self.settings}


class SetTraceParams(LspModel):
    value: str


class CancelParams(LspModel):
    id: int | str


# === Server -> client ===


class PublishDiagnosticsParams(LspModel):
    uri: str
    version: int | None = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)


class ShowMessageParams(LspModel):
    type: MessageType
    message: str


class LogMessageParams(LspModel):
    type: MessageType
    message: str
