"""
Collection of non-fatal failures across one batch of submodule updates.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Tuple

from .reporter_interface import UpdateReporter


logger = logging.getLogger(__name__)


class ErrorAggregator:
    """Ordered list of soft failure messages, reported once the batch is done.

    Duplicates are kept: two submodules failing with the same text are two
    failures.
    """

    def __init__(self) -> None:
        self._entries: List[str] = []

    def add(self, message: str) -> None:
        logger.debug(f"Recording deferred error: {message}")
        self._entries.append(message)

    @property
    def entries(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._entries))

    def flush(self, reporter: UpdateReporter) -> None:
        """Write every recorded message, in order, to the diagnostic stream."""
        entries = self.entries
        logger.info(f"Reporting {len(entries)} deferred error(s)")
        for message in entries:
            reporter.error_line(message)
