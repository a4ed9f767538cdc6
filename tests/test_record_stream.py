"""
Tests for the clone phase line protocol.
"""

import pytest

from submodule_sync.models import RecordFormatError, UnmatchedPathError
from submodule_sync.record_stream import (
    format_record,
    format_unmatched,
    parse_line,
    read_records,
)

OID = "0123456789abcdef0123456789abcdef01234567"


class TestReadRecords:
    """Test the streaming reader."""

    def test_reads_records_in_order(self):
        lines = [format_record(OID, False, "a"), format_record(OID, True, "b")]
        records = list(read_records(lines))
        assert [r.path for r in records] == ["a", "b"]
        assert [r.just_created for r in records] == [False, True]
        assert records[0].target_oid == OID

    def test_path_with_spaces(self):
        record = parse_line(f"dummy {OID} 0 docs/my module\n")
        assert record.path == "docs/my module"

    def test_any_marker_is_accepted(self):
        assert parse_line(f"dummy {OID} 1 a").just_created is True

    def test_unmatched_terminator(self):
        with pytest.raises(UnmatchedPathError) as exc_info:
            list(read_records([format_unmatched(17)]))
        assert exc_info.value.status == 17

    def test_unmatched_without_status(self):
        with pytest.raises(UnmatchedPathError) as exc_info:
            list(read_records(["#unmatched\n"]))
        assert exc_info.value.status == 1

    def test_terminator_after_records(self):
        reader = read_records([format_record(OID, False, "a"), format_unmatched(1)])
        assert next(reader).path == "a"
        with pytest.raises(UnmatchedPathError):
            next(reader)

    def test_blank_lines_skipped(self):
        records = list(read_records(["\n", format_record(OID, False, "a")]))
        assert len(records) == 1

    def test_reader_is_lazy(self):
        """The first record is available before the producer finishes."""
        produced = []

        def producer():
            for path in ("a", "b"):
                produced.append(path)
                yield format_record(OID, False, path)

        reader = read_records(producer())
        assert next(reader).path == "a"
        assert produced == ["a"]

    @pytest.mark.parametrize("line", [
        f"- {OID} 0",
        f"- {OID} 2 a",
        "#unmatched abc",
    ])
    def test_malformed_lines(self, line):
        with pytest.raises(RecordFormatError):
            list(read_records([line]))
