"""CLI entry point for langclient."""

import sys


def main() -> int:
    """Main entry point for the langclient CLI."""
    from langclient.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
