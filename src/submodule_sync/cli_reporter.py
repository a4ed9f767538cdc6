"""
CLI-specific implementation of the reporter interface.
"""

from __future__ import annotations

import logging
from rich.console import Console

from .reporter_interface import UpdateReporter


logger = logging.getLogger(__name__)


class ConsoleReporter(UpdateReporter):
    """Write update output with rich: results to stdout, diagnostics to stderr."""

    def __init__(self, console: Console = None, err_console: Console = None, quiet: bool = False):
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.quiet = quiet

    def info(self, message: str) -> None:
        logger.info(message)
        if self.quiet or not message:
            return
        # Paths and oids may contain brackets; never interpret them as markup
        self.console.print(message, markup=False, highlight=False, soft_wrap=True)

    def warning(self, message: str) -> None:
        logger.warning(message)
        self.err_console.print(message, style="yellow", markup=False, highlight=False, soft_wrap=True)

    def error_line(self, message: str) -> None:
        logger.error(message)
        self.err_console.print(message, style="bold red", markup=False, highlight=False, soft_wrap=True)
