"""Upload and download session state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .enums import DownloadState, UploadState

if TYPE_CHECKING:
    from ..protocol.chunking import ChunkAssembler


def chunk_count(size: int, chunk_size: int) -> int:
    """Number of chunks needed for ``size`` bytes (ceiling division)."""
    return -(-size // chunk_size)


@dataclass(slots=True)
class UploadSession:
    """State of the single upload a link may run at a time."""

    name: str
    total_size: int
    chunk_size: int
    chunks_sent: int = 0
    bytes_sent: int = 0
    state: UploadState = UploadState.ANNOUNCED
    error: Exception | None = None

    @property
    def total_chunks(self) -> int:
        return chunk_count(self.total_size, self.chunk_size)

    @property
    def is_terminal(self) -> bool:
        return self.state in (UploadState.FINISHED, UploadState.FAILED)

    @property
    def percent(self) -> int:
        if self.total_size == 0:
            return 100 if self.state is UploadState.FINISHED else 0
        return self.bytes_sent * 100 // self.total_size

    def fail(self, error: Exception) -> None:
        self.state = UploadState.FAILED
        self.error = error


@dataclass(slots=True)
class DownloadSession:
    """State of the single download a link may run at a time.

    Chunk storage and reassembly live in the attached ChunkAssembler.
    """

    name: str
    assembler: ChunkAssembler
    state: DownloadState = DownloadState.ANNOUNCED
    error: Exception | None = None

    @property
    def expected_size(self) -> int:
        return self.assembler.expected_size

    @property
    def expected_chunks(self) -> int:
        return self.assembler.expected_chunks

    @property
    def bytes_received(self) -> int:
        return self.assembler.bytes_received

    @property
    def is_terminal(self) -> bool:
        return self.state in (DownloadState.COMPLETED, DownloadState.FAILED)

    @property
    def percent(self) -> int:
        if self.expected_size <= 0:
            return 0
        return min(100, self.bytes_received * 100 // self.expected_size)

    def fail(self, error: Exception) -> None:
        self.state = DownloadState.FAILED
        self.error = error
        self.assembler.clear()
