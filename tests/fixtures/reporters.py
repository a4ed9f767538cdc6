"""
Reporter that records messages for assertions.
"""

from typing import List, Tuple

from submodule_sync.reporter_interface import UpdateReporter


class RecordingReporter(UpdateReporter):
    """Reporter that keeps every message in order, tagged by channel."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error_line(self, message: str) -> None:
        self.messages.append(("error", message))

    @property
    def infos(self) -> List[str]:
        return [m for channel, m in self.messages if channel == "info"]

    @property
    def warnings(self) -> List[str]:
        return [m for channel, m in self.messages if channel == "warning"]

    @property
    def errors(self) -> List[str]:
        return [m for channel, m in self.messages if channel == "error"]
