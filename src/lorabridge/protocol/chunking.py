"""Chunk splitting for uploads and chunk assembly for downloads."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterator
from typing import BinaryIO

from ..exceptions import CorruptPayloadError, InvalidResponseError, OutOfOrderError
from ..models.session import chunk_count
from .commands import CHUNK_SIZE


def read_chunks(reader: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield consecutive chunks of exactly ``chunk_size`` bytes from reader.

    Only the last chunk may be shorter. Short reads (pipes, sockets) are
    topped up until the chunk is full or the reader hits EOF.

    Raises:
        OSError: Propagated from the reader
    """
    while True:
        chunk = bytearray()
        while len(chunk) < chunk_size:
            data = reader.read(chunk_size - len(chunk))
            if not data:
                break
            chunk.extend(data)

        if not chunk:
            return

        yield bytes(chunk)

        if len(chunk) < chunk_size:
            return


class ChunkAssembler:
    """Assembles a download from indexed base-64 CHUNK lines.

    The gateway sends ``CHUNK:<n>:<base64>`` lines with a zero-based index.
    Chunks are stored by index and concatenated in index order, so arrival
    order does not matter unless ``strict_order`` is set.
    """

    def __init__(
            self,
            expected_size: int,
            chunk_size: int = CHUNK_SIZE,
            strict_order: bool = False,
    ):
        """Initialize chunk assembler.

        Args:
            expected_size: Size announced in DOWNLOAD_START
            chunk_size: Plaintext bytes per chunk (default: 200)
            strict_order: Reject chunks that do not arrive as 0, 1, 2, ...
        """
        self.expected_size = expected_size
        self.chunk_size = chunk_size
        self.strict_order = strict_order
        self.chunks: dict[int, bytes] = {}
        self.bytes_received = 0

    @property
    def expected_chunks(self) -> int:
        return chunk_count(self.expected_size, self.chunk_size)

    @property
    def max_bytes(self) -> int:
        """Upper bound on received bytes (last chunk may be short)."""
        return self.expected_size + self.chunk_size - 1

    def add_chunk(self, index: int, payload: str) -> int:
        """Decode and store one chunk.

        Args:
            index: Chunk index supplied by the gateway
            payload: Base-64 text of the chunk

        Returns:
            Number of decoded bytes

        Raises:
            CorruptPayloadError: If payload is not valid base-64
            OutOfOrderError: If strict_order is set and index is not the next one
            InvalidResponseError: If index repeats or the size bound is exceeded
        """
        if index < 0:
            raise InvalidResponseError(f"Negative chunk index: {index}")

        if index in self.chunks:
            raise InvalidResponseError(f"Duplicate chunk index: {index}")

        if self.strict_order and index != len(self.chunks):
            raise OutOfOrderError(
                f"Chunk out of order: expected {len(self.chunks)}, got {index}"
            )

        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CorruptPayloadError(f"Chunk {index} is not valid base-64: {e}") from e

        if len(data) > self.chunk_size:
            raise InvalidResponseError(
                f"Chunk {index} carries {len(data)} bytes (max {self.chunk_size})"
            )

        if self.bytes_received + len(data) > self.max_bytes:
            raise InvalidResponseError(
                f"Download exceeds announced size: {self.bytes_received + len(data)} "
                f"> {self.expected_size}"
            )

        self.chunks[index] = data
        self.bytes_received += len(data)
        return len(data)

    def get_assembled_data(self) -> bytes:
        """Concatenate all received chunks in index order."""
        return b"".join(self.chunks[index] for index in sorted(self.chunks))

    def clear(self) -> None:
        self.chunks.clear()
        self.bytes_received = 0

    @property
    def chunks_received(self) -> int:
        return len(self.chunks)

    @property
    def missing_chunks(self) -> list[int]:
        """Indices below expected_chunks that never arrived."""
        return [i for i in range(self.expected_chunks) if i not in self.chunks]
