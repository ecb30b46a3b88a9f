"""Command-line interface for langclient."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.table import Table

from langclient.client import LanguageClient
from langclient.config import ClientConfig, Config, load_config
from langclient.diagnostics import is_error
from langclient.logging import setup_logging
from langclient.router import TextDocument
from langclient.session import SessionEvent, SessionEventKind
from langclient.types import Diagnostic
from langclient.version import __version__

console = Console(stderr=True)

DEFAULT_CHECK_TIMEOUT = 10.0

# Vapour reports fatal problems with severity 0
SEVERITY_LABELS = {
    0: ("fatal", "bold red"),
    1: ("error", "red"),
    2: ("warning", "yellow"),
    3: ("info", "cyan"),
    4: ("hint", "dim"),
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="langclient",
        description="Language Server Protocol client - run a language server over files",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-error output",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Extra config file merged over the standard ones",
    )
    parser.add_argument(
        "--root",
        type=Path,
        help="Workspace root (default: current directory)",
    )
    parser.add_argument(
        "--client",
        help="Id of the configured client to use (default: the first one)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    check_parser = subparsers.add_parser(
        "check",
        help="Open files in the language server and report its diagnostics",
    )
    check_parser.add_argument("files", nargs="+", type=Path, help="Files to check")
    check_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_CHECK_TIMEOUT,
        help=f"Seconds to wait for diagnostics (default: {DEFAULT_CHECK_TIMEOUT:g})",
    )

    subparsers.add_parser(
        "config",
        help="Print the effective configuration",
    )

    return parser


def _plain(value: Any) -> Any:
    """Dataclass tree to YAML-safe builtins."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def run_config(config: Config) -> int:
    print(yaml.safe_dump(_plain(config), sort_keys=False), end="")
    return 0


def _diagnostics_table(results: dict[str, list[Diagnostic]]) -> Table:
    table = Table(title="Diagnostics")
    table.add_column("File", style="bold")
    table.add_column("Line", justify="right")
    table.add_column("Severity")
    table.add_column("Message")

    for uri, diagnostics in results.items():
        name = TextDocument(uri=uri, language_id="").path
        for diagnostic in diagnostics:
            severity = 1 if diagnostic.severity is None else diagnostic.severity
            label, style = SEVERITY_LABELS.get(severity, ("error", "red"))
            table.add_row(
                name,
                str(diagnostic.range.start.line + 1),
                f"[{style}]{label}[/{style}]",
                diagnostic.message,
            )
    return table


async def run_check(
    config: Config,
    client_config: ClientConfig,
    files: list[Path],
    *,
    root: Path,
    timeout: float,
    quiet: bool = False,
) -> int:
    """Start the client, open ``files``, wait for diagnostics and report them.

    Returns:
        Exit code: 0 clean, 1 on error diagnostics or a failed start, 2 on
        unreadable input.
    """
    documents: list[TextDocument] = []
    for path in files:
        try:
            documents.append(TextDocument.from_path(path))
        except OSError as e:
            console.print(f"[red]Cannot read {path}: {e}[/red]")
            return 2

    client = LanguageClient(client_config, settings=config.settings, root_path=root)
    matching = [d for d in documents if client.selector.matches(d)]
    for document in documents:
        if document not in matching and not quiet:
            console.print(
                f"[yellow]Skipping {document.path}: not a {client_config.name} document[/yellow]"
            )

    waiting = {d.uri for d in matching}
    done = asyncio.Event()
    if not waiting:
        done.set()

    def on_event(event: SessionEvent) -> None:
        if event.kind is SessionEventKind.DIAGNOSTICS:
            waiting.discard(event.payload.uri)
            if not waiting:
                done.set()
        elif event.kind is SessionEventKind.MESSAGE and not quiet:
            console.print(f"[dim]{client_config.id}: {event.payload.message}[/dim]")

    client.on_event(on_event)

    result = await client.start()
    if result.error is not None:
        console.print(f"[red]Failed to start {client_config.name}: {result.error}[/red]")
        await client.stop()
        return 1

    results: dict[str, list[Diagnostic]] = {}
    try:
        for document in matching:
            await client.did_open(document)
        try:
            await asyncio.wait_for(done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            if not quiet:
                console.print(
                    f"[yellow]No diagnostics within {timeout:g}s "
                    f"for {len(waiting)} file(s)[/yellow]"
                )
        session = client.session
        if session is not None:
            results = {d.uri: session.diagnostics.get(d.uri) for d in matching}
    finally:
        await client.stop()

    errors = sum(1 for items in results.values() for d in items if is_error(d))
    if any(results.values()):
        console.print(_diagnostics_table(results))
    elif not quiet:
        console.print("[green]No problems found[/green]")
    return 1 if errors else 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    root = (parsed.root or Path.cwd()).resolve()
    config = load_config(root=str(root), config_file=parsed.config)

    # -v raises from warnings; -q keeps errors only
    logging_config = config.logging
    if parsed.quiet:
        logging_config = dataclasses.replace(logging_config, verbose=0)
    elif parsed.verbose:
        logging_config = dataclasses.replace(logging_config, verbose=min(1 + parsed.verbose, 4))
    setup_logging(logging_config, force_stderr=True)

    if parsed.command == "config":
        return run_config(config)

    try:
        client_config = config.get_client(parsed.client)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        return 2

    if parsed.command == "check":
        return asyncio.run(
            run_check(
                config,
                client_config,
                parsed.files,
                root=root,
                timeout=parsed.timeout,
                quiet=parsed.quiet,
            )
        )
    parser.print_help()
    return 1
