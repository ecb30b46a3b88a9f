"""Typed LSP payloads (pydantic models with camelCase aliases)."""

from langclient.types.common import (
    ClientInfo,
    Diagnostic,
    DiagnosticSeverity,
    LspModel,
    MessageType,
    Position,
    Range,
    ServerInfo,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
    WorkspaceFolder,
)
from langclient.types.notifications import (
    CancelParams,
    DidChangeConfigurationParams,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveTextDocumentParams,
    LogMessageParams,
    PublishDiagnosticsParams,
    SetTraceParams,
    ShowMessageParams,
)
from langclient.types.requests import (
    ConfigurationItem,
    ConfigurationParams,
    InitializeParams,
    InitializeResult,
)

__all__ = [
    "CancelParams",
    "ClientInfo",
    "ConfigurationItem",
    "ConfigurationParams",
    "Diagnostic",
    "DiagnosticSeverity",
    "DidChangeConfigurationParams",
    "DidChangeTextDocumentParams",
    "DidCloseTextDocumentParams",
    "DidOpenTextDocumentParams",
    "DidSaveTextDocumentParams",
    "InitializeParams",
    "InitializeResult",
    "LogMessageParams",
    "LspModel",
    "MessageType",
    "Position",
    "PublishDiagnosticsParams",
    "Range",
    "ServerInfo",
    "SetTraceParams",
    "ShowMessageParams",
    "TextDocumentContentChangeEvent",
    "TextDocumentIdentifier",
    "TextDocumentItem",
    "VersionedTextDocumentIdentifier",
    "WorkspaceFolder",
]
