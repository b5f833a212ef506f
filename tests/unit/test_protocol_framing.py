"""Test line reassembly from notification fragments."""

from __future__ import annotations

import pytest

from lorabridge.protocol.framing import LineDemuxer

TRANSCRIPT = (
    b"FILES_START\nFILE:a.txt:10\nFILE:caf\xc3\xa9.txt:2048\n"
    b"FILES_END\nTX_STATUS:25/100:0\n"
)
EXPECTED = [
    "FILES_START",
    "FILE:a.txt:10",
    "FILE:café.txt:2048",
    "FILES_END",
    "TX_STATUS:25/100:0",
]


class TestLineDemuxer:

    def test_whole_transcript(self):
        assert LineDemuxer().feed(TRANSCRIPT) == EXPECTED

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 20, 64])
    def test_any_fragmentation_gives_same_lines(self, size):
        """Splitting the byte stream anywhere yields the same lines."""
        demuxer = LineDemuxer()
        lines: list[str] = []
        for start in range(0, len(TRANSCRIPT), size):
            lines.extend(demuxer.feed(TRANSCRIPT[start:start + size]))

        assert lines == EXPECTED
        assert demuxer.pending_bytes == 0

    def test_line_waits_for_terminator(self):
        demuxer = LineDemuxer()
        assert demuxer.feed(b"OK:DEL") == []
        assert demuxer.pending_bytes == 6
        assert demuxer.feed(b"ETED") == []
        assert demuxer.feed(b"\nFILES") == ["OK:DELETED"]
        assert demuxer.pending_bytes == 5

    def test_whitespace_and_blank_lines(self):
        """CRLF and padding are stripped; empty lines are dropped."""
        assert LineDemuxer().feed(b"  OK:DELETED \r\n\n\r\nFILES_END\n") == [
            "OK:DELETED",
            "FILES_END",
        ]

    def test_reset_drops_partial_line(self):
        demuxer = LineDemuxer()
        demuxer.feed(b"CHUNK:0:AAA")
        demuxer.reset()
        assert demuxer.pending_bytes == 0
        assert demuxer.feed(b"A\n") == ["A"]

    def test_invalid_utf8_is_replaced(self):
        assert LineDemuxer().feed(b"RX_FAILED:\xff\n") == ["RX_FAILED:\ufffd"]
