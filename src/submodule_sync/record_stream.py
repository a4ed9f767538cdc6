"""
Line protocol between the clone phase and the update loop.

Each ordinary line reads ``<marker> <oid> <just_created> <path>``. The clone
phase ends early with a single ``#unmatched <status>`` line, which the reader
turns into :class:`UnmatchedPathError`.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from .models import RecordFormatError, STATUS_SOFT_FAILURE, SubmoduleRecord, UnmatchedPathError


logger = logging.getLogger(__name__)

RECORD_MARKER = "-"
UNMATCHED_MARKER = "#unmatched"


def format_record(oid: str, just_created: bool, path: str) -> str:
    return f"{RECORD_MARKER} {oid} {1 if just_created else 0} {path}\n"


def format_unmatched(status: int) -> str:
    return f"{UNMATCHED_MARKER} {status}\n"


def parse_status(token: str) -> int:
    """Parse the status of a terminal line; a missing status means 1."""
    if not token:
        return STATUS_SOFT_FAILURE
    try:
        return int(token)
    except ValueError as e:
        raise RecordFormatError(f"invalid status in clone phase output: '{token}'") from e


def parse_line(line: str) -> SubmoduleRecord:
    """Parse one ordinary record line."""
    fields = line.rstrip("\r\n").split(" ", 3)
    if len(fields) != 4 or not fields[3]:
        raise RecordFormatError(f"malformed clone phase line: '{line.rstrip()}'")
    _marker, oid, flag, path = fields
    if flag not in ("0", "1"):
        raise RecordFormatError(f"invalid just-created flag '{flag}' for '{path}'")
    return SubmoduleRecord(path=path, target_oid=oid, just_created=flag == "1")


def read_records(lines: Iterable[str]) -> Iterator[SubmoduleRecord]:
    """Yield records one at a time as the producer emits them.

    Nothing is buffered: the caller can process the first submodule while the
    producer is still working on the next ones.
    """
    for line in lines:
        if not line.strip():
            continue
        if line.startswith(UNMATCHED_MARKER):
            _, _, status = line.strip().partition(" ")
            status_code = parse_status(status.strip())
            logger.debug(f"Clone phase terminated with status {status_code}")
            raise UnmatchedPathError(status_code)
        record = parse_line(line)
        logger.debug(f"Read record for {record.path} (just created: {record.just_created})")
        yield record
