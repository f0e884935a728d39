"""
Console entry point for feedvault, used by the `feedvault` script and by
`python -m feedvault`.

Errors that escape a command are rendered with suggestions instead of a
traceback; the traceback is still logged at DEBUG level (`-v`).
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from feedvault.cli.app import app
from feedvault.cli.formatters import format_error_with_suggestions
from feedvault.exceptions import FeedVaultError

log = logging.getLogger("feedvault")


def _use_utf8_streams() -> None:
    """Progress bars and status glyphs need UTF-8 on Windows consoles."""
    if os.name != "nt":
        return
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass


def main() -> None:
    _use_utf8_streams()
    console = Console(stderr=True)

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]○ Interrupted. Unfinished syncs keep their archived items.[/yellow]")
        sys.exit(130)
    except FeedVaultError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Unhandled error in feedvault command:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
