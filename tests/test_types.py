"""Tests for the typed LSP payloads."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from langclient.types import (
    DidChangeConfigurationParams,
    DidOpenTextDocumentParams,
    InitializeParams,
    InitializeResult,
    MessageType,
    ShowMessageParams,
    TextDocumentItem,
)


class TestSerialisation:
    def test_camel_case_aliases(self) -> None:
        item = TextDocumentItem(uri="file:///a.vp", language_id="vapour", version=0, text="")
        params = DidOpenTextDocumentParams(text_document=item)
        assert params.to_params() == {
            "textDocument": {
                "uri": "file:///a.vp",
                "languageId": "vapour",
                "version": 0,
                "text": "",
            }
        }

    def test_nullable_initialize_members_are_kept(self) -> None:
        params = InitializeParams(process_id=None, root_uri=None).to_params()
        assert params["processId"] is None
        assert params["rootUri"] is None
        assert "rootPath" not in params
        assert "initializationOptions" not in params

    def test_settings_is_sent_even_when_null(self) -> None:
        assert DidChangeConfigurationParams().to_params() == {"settings": None}


class TestParsing:
    def test_initialize_result(self) -> None:
        result = InitializeResult.model_validate(
            {"capabilities": {"hoverProvider": True}, "serverInfo": {"name": "vapour"}}
        )
        assert result.server_info is not None
        assert result.server_info.name == "vapour"
        assert result.capabilities == {"hoverProvider": True}

    def test_initialize_result_requires_capabilities(self) -> None:
        with pytest.raises(ValidationError):
            InitializeResult.model_validate({"serverInfo": {"name": "vapour"}})

    def test_message_type(self) -> None:
        shown = ShowMessageParams.model_validate({"type": 2, "message": "careful"})
        assert shown.type is MessageType.WARNING

    def test_unknown_fields_are_ignored(self) -> None:
        shown = ShowMessageParams.model_validate({"type": 3, "message": "m", "extra": 1})
        assert shown.message == "m"
