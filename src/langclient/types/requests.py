"""LSP request parameter and result types."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from langclient.types.common import ClientInfo, LspModel, ServerInfo, WorkspaceFolder

# === Client -> server ===


class InitializeParams(LspModel):
    """Parameters of the initialize request."""

    process_id: int | None = Field(alias="processId")
    client_info: ClientInfo | None = Field(default=None, alias="clientInfo")
    root_path: str | None = Field(default=None, alias="rootPath")
    root_uri: str | None = Field(alias="rootUri")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    initialization_options: Any = Field(default=None, alias="initializationOptions")
    trace: str | None = None
    workspace_folders: list[WorkspaceFolder] | None = Field(
        default=None, alias="workspaceFolders"
    )

    def to_params(self) -> dict:
        # processId and rootUri are nullable but required members
        params = super().to_params()
        params.setdefault("processId", None)
        params.setdefault("rootUri", None)
        return params


class InitializeResult(LspModel):
    """Result of the initialize request."""

    capabilities: dict[str, Any]
    server_info: ServerInfo | None = Field(default=None, alias="serverInfo")


# === Server -> client ===


class ConfigurationItem(LspModel):
    scope_uri: str | None = Field(default=None, alias="scopeUri")
    section: str | None = None


class ConfigurationParams(LspModel):
    """Parameters of workspace/configuration."""

    items: list[ConfigurationItem] = Field(default_factory=list)
