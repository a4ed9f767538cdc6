"""
UI-agnostic reporting interface for update progress and diagnostics.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class UpdateReporter(ABC):
    """Abstract sink for messages produced while updating submodules."""

    @abstractmethod
    def info(self, message: str) -> None:
        """
        Relay an informational message (e.g. the result of a checkout).

        Args:
            message: Text to show on the standard output channel
        """
        pass

    @abstractmethod
    def warning(self, message: str) -> None:
        """
        Report a condition that does not change the exit status.

        Args:
            message: Text to show on the diagnostic channel
        """
        pass

    @abstractmethod
    def error_line(self, message: str) -> None:
        """
        Write one line to the diagnostic channel.

        Used for aggregated failures and for the message of a fatal abort.

        Args:
            message: Complete line, including any severity marker
        """
        pass


class NoOpReporter(UpdateReporter):
    """Reporter that discards everything."""

    def info(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def error_line(self, message: str) -> None:
        pass
