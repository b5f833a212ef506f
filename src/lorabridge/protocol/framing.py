"""Line framing for data characteristic notifications."""

from __future__ import annotations

import logging

_LOGGER = logging.getLogger(__name__)


class LineDemuxer:
    """Reassembles newline-terminated lines from notification fragments.

    Notifications are cut at MTU boundaries, so one line may span several
    notifications and one notification may carry several lines. A line is
    only emitted once its terminator arrives; any unterminated remainder is
    kept for the next feed.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[str]:
        """Append notification bytes and return all completed lines.

        Lines are decoded as UTF-8 after splitting, so multi-byte characters
        cut across notifications survive. Surrounding whitespace is stripped
        and empty lines are dropped.
        """
        self._buffer.extend(data)

        lines: list[str] = []
        while True:
            end = self._buffer.find(b"\n")
            if end < 0:
                break
            raw = bytes(self._buffer[:end])
            del self._buffer[:end + 1]

            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)

        return lines

    def reset(self) -> None:
        """Drop any partial line (link (re)entered READY)."""
        if self._buffer:
            _LOGGER.debug("Discarding %d buffered bytes", len(self._buffer))
        self._buffer.clear()

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes not yet terminated by a newline."""
        return len(self._buffer)
