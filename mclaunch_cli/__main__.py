"""
Main entry point for the mclaunch-cli application.
This module handles top-level setup, exception handling, and CLI invocation.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from mclaunch_cli.cli.app import app
from mclaunch_cli.cli.formatters import format_error_with_suggestions
from mclaunch_cli.exceptions import EXIT_GENERIC, McLaunchError

EXIT_INTERRUPTED = 130


def main() -> None:
    """Main entry point function."""
    if os.name == "nt":
        try:
            sys.stdout.reconfigure(encoding="utf-8")
            sys.stderr.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass

    log = logging.getLogger("mclaunch_cli")
    console = Console(stderr=True)

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Operation cancelled by user.[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except McLaunchError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(e.exit_code)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(EXIT_GENERIC)


if __name__ == "__main__":
    main()
