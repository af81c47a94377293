"""Shared CLI utilities: console, logging setup, context factory."""
from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _context():
    # imported lazily to keep `tipster --help` fast
    from tipster.context import AppContext
    return AppContext.from_settings()
