"""Tests for the langclient command line."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

from langclient.cli import create_parser, run_cli
from tests.utils import FAKE_SERVER_SCRIPT


@pytest.fixture
def fake_config(tmp_path: Path) -> Path:
    """Config file pointing the "fake" client at tests/fixtures/fake_server.py."""
    path = tmp_path / "langclient.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "clients": [
                    {
                        "id": "fake",
                        "name": "Fake",
                        "server": {"command": sys.executable, "args": [str(FAKE_SERVER_SCRIPT)]},
                        "timeouts": {"initialize": 10, "shutdown": 2, "exit": 1, "terminate": 1},
                    }
                ],
                "settings": {"vapour": {"lsp": {"when": ["open"]}}},
            }
        )
    )
    return path


def _check(config: Path, root: Path, *files: Path) -> int:
    return run_cli(
        ["-q", "--config", str(config), "--root", str(root), "check", *map(str, files)]
    )


class TestParser:
    def test_check_arguments(self) -> None:
        parsed = create_parser().parse_args(["-vv", "check", "a.vp", "b.vp", "--timeout", "3"])
        assert parsed.command == "check"
        assert parsed.verbose == 2
        assert [p.name for p in parsed.files] == ["a.vp", "b.vp"]
        assert parsed.timeout == 3.0

    def test_no_command_prints_help(self, capsys) -> None:
        assert run_cli([]) == 1
        assert "usage" in capsys.readouterr().out


class TestConfigCommand:
    def test_prints_effective_config(self, fake_config: Path, tmp_path: Path, capsys) -> None:
        assert run_cli(["--config", str(fake_config), "--root", str(tmp_path), "config"]) == 0

        printed = yaml.safe_load(capsys.readouterr().out)
        client = printed["clients"][0]
        assert client["id"] == "fake"
        assert client["server"]["stderr"] == "inherit"
        assert printed["settings"] == {"vapour": {"lsp": {"when": ["open"]}}}


class TestCheckCommand:
    def test_clean_file(self, fake_config: Path, tmp_path: Path) -> None:
        source = tmp_path / "ok.vp"
        source.write_text("let x: int = 1\n", encoding="utf-8")
        assert _check(fake_config, tmp_path, source) == 0

    def test_file_with_errors(self, fake_config: Path, tmp_path: Path) -> None:
        source = tmp_path / "bad.vp"
        source.write_text("let x: int = 1\nthis is an error\n", encoding="utf-8")
        assert _check(fake_config, tmp_path, source) == 1

    def test_non_matching_files_are_skipped(self, fake_config: Path, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("an error, but not vapour\n", encoding="utf-8")
        assert _check(fake_config, tmp_path, notes) == 0

    def test_unreadable_file(self, fake_config: Path, tmp_path: Path) -> None:
        assert _check(fake_config, tmp_path, tmp_path / "missing.vp") == 2

    def test_missing_server_binary(self, tmp_path: Path) -> None:
        config = tmp_path / "broken.yaml"
        config.write_text(
            yaml.safe_dump({"clients": [{"id": "vp", "server": {"command": "no-such-vapour"}}]})
        )
        source = tmp_path / "main.vp"
        source.write_text("let x = 1\n", encoding="utf-8")
        assert _check(config, tmp_path, source) == 1

    def test_unknown_client(self, fake_config: Path, tmp_path: Path) -> None:
        source = tmp_path / "main.vp"
        source.write_text("", encoding="utf-8")
        args = ["-q", "--config", str(fake_config), "--client", "python", "check", str(source)]
        assert run_cli(args) == 2
