"""Latest diagnostics published by the server, per document."""

from __future__ import annotations

from langclient.types import Diagnostic, DiagnosticSeverity, PublishDiagnosticsParams


def is_error(diagnostic: Diagnostic) -> bool:
    # Severity 0 is the Vapour server's "fatal"
    return diagnostic.severity is not None and diagnostic.severity <= DiagnosticSeverity.ERROR


class DiagnosticStore:
    """Each publish replaces the previous list for that URI."""

    def __init__(self) -> None:
        self._by_uri: dict[str, list[Diagnostic]] = {}

    def publish(self, params: PublishDiagnosticsParams) -> None:
        if params.diagnostics:
            self._by_uri[params.uri] = list(params.diagnostics)
        else:
            self._by_uri.pop(params.uri, None)

    def get(self, uri: str) -> list[Diagnostic]:
        return list(self._by_uri.get(uri, []))

    def error_count(self, uri: str | None = None) -> int:
        uris = [uri] if uri is not None else list(self._by_uri)
        return sum(1 for u in uris for d in self._by_uri.get(u, []) if is_error(d))

    def clear(self) -> None:
        self._by_uri.clear()

    def __len__(self) -> int:
        return sum(len(items) for items in self._by_uri.values())
