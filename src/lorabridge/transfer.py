"""Upload and download sessions on top of the line protocol."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import BinaryIO

from .exceptions import (
    BLEConnectionError,
    BusyError,
    InvalidResponseError,
    LoRaBridgeError,
    ReadError,
    TransferCancelledError,
)
from .models.enums import DownloadState, UploadState
from .models.files import ArtifactRef
from .models.session import DownloadSession, UploadSession
from .protocol import (
    CHUNK_SIZE,
    ChunkAssembler,
    build_upload_chunk_command,
    build_upload_start_command,
    read_chunks,
)
from .protocol.events import Chunk, DownloadEnd, DownloadStart
from .settings import LinkSettings
from .sink import ArtifactSink

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class TransferEngine:
    """Runs the single upload and single download a link may carry.

    Uploads are driven from here: announce, grace period, paced chunks,
    then a short wait for the gateway's confirmation. Downloads are driven
    by inbound events the protocol engine forwards to the ``on_download_*``
    methods.
    """

    def __init__(
            self,
            send: Callable[[str], Awaitable[bool]],
            sink: ArtifactSink,
            settings: LinkSettings,
    ):
        """Initialize transfer engine.

        Args:
            send: Queues one command line; the awaitable resolves to False
                if the line was dropped
            sink: Destination for completed downloads
            settings: Transfer timings and limits
        """
        self._send = send
        self.sink = sink
        self.settings = settings
        self.upload_session: UploadSession | None = None
        self.download_session: DownloadSession | None = None

    @property
    def upload_active(self) -> bool:
        return self.upload_session is not None and not self.upload_session.is_terminal

    @property
    def download_active(self) -> bool:
        return self.download_session is not None and not self.download_session.is_terminal

    # === Upload ===

    async def run_upload(
            self,
            name: str,
            reader: BinaryIO,
            size: int,
            completion: asyncio.Future[bool],
            progress: ProgressCallback | None = None,
    ) -> UploadSession:
        """Stream ``size`` bytes from reader to the gateway as ``name``.

        ``completion`` is resolved by the protocol engine when
        OK:UPLOAD_COMPLETE arrives, or failed on ERROR / disconnect.

        Raises:
            ValueError: If name or size is invalid
            BusyError: If another upload is still running
            ReadError: If reading the source fails
            PeerError: If the gateway rejects the upload
            TransferCancelledError: If the upload is cancelled
        """
        start_line = build_upload_start_command(name, size)
        if self.upload_active:
            raise BusyError(f"Upload of {self.upload_session.name} still running")

        session = UploadSession(name=name, total_size=size, chunk_size=CHUNK_SIZE)
        self.upload_session = session
        _LOGGER.info(
            "Uploading %s (%d bytes, %d chunks)", name, size, session.total_chunks
        )

        try:
            if not await self._send(start_line):
                self._check_upload(session, completion)
                raise BLEConnectionError("UPLOAD_START was not written")

            # Gateway opens the destination file before accepting chunks
            await asyncio.sleep(self.settings.upload_start_grace)
            self._check_upload(session, completion)

            session.state = UploadState.STREAMING
            writes = await self._stream_chunks(session, reader, completion, progress)

            # Wait until the pacer has written the last chunk
            if writes:
                written = await asyncio.gather(*writes)
                dropped = written.count(False)
                if dropped:
                    # Disconnect or link loss drops queued chunks; report that cause
                    self._check_upload(session, completion)
                    raise BLEConnectionError(f"{dropped} upload chunks were not written")
            self._check_upload(session, completion)

            session.state = UploadState.AWAITING_COMPLETION
            await self._await_confirmation(session, completion)
        except asyncio.CancelledError:
            if not session.is_terminal:
                session.fail(TransferCancelledError(f"Upload of {name} cancelled"))
            raise
        except LoRaBridgeError as e:
            if not session.is_terminal:
                session.fail(e)
            _LOGGER.error("Upload of %s failed: %s", name, e)
            raise

        session.state = UploadState.FINISHED
        if progress:
            progress(session.percent)
        _LOGGER.info("Upload of %s complete", name)
        return session

    async def _stream_chunks(
            self,
            session: UploadSession,
            reader: BinaryIO,
            completion: asyncio.Future[bool],
            progress: ProgressCallback | None,
    ) -> list[Awaitable[bool]]:
        writes: list[Awaitable[bool]] = []
        chunks = read_chunks(reader, session.chunk_size)

        while True:
            try:
                chunk = next(chunks, None)
            except OSError as e:
                raise ReadError(f"Failed to read {session.name}: {e}") from e
            if chunk is None:
                break

            if session.bytes_sent + len(chunk) > session.total_size:
                raise ReadError(
                    f"Source for {session.name} is larger than announced "
                    f"({session.total_size} bytes)"
                )

            self._check_upload(session, completion)
            writes.append(asyncio.ensure_future(self._send(build_upload_chunk_command(chunk))))
            session.chunks_sent += 1
            session.bytes_sent += len(chunk)
            _LOGGER.debug(
                "Queued chunk %d/%d (%d bytes)",
                session.chunks_sent,
                session.total_chunks,
                len(chunk),
            )
            if progress:
                progress(session.percent)

            await asyncio.sleep(self.settings.chunk_interval)

        if session.bytes_sent < session.total_size:
            raise ReadError(
                f"Source for {session.name} ended after {session.bytes_sent} "
                f"of {session.total_size} bytes"
            )
        return writes

    async def _await_confirmation(
            self, session: UploadSession, completion: asyncio.Future[bool]
    ) -> None:
        if not completion.done():
            await asyncio.wait({completion}, timeout=self.settings.upload_complete_wait)

        if completion.done():
            self._check_upload(session, completion)
            _LOGGER.debug("Gateway confirmed %s", session.name)
        else:
            # The gateway may confirm late; the data is already on its flash
            _LOGGER.warning(
                "No OK:UPLOAD_COMPLETE for %s within %.1fs",
                session.name,
                self.settings.upload_complete_wait,
            )

    @staticmethod
    def _check_upload(session: UploadSession, completion: asyncio.Future[bool]) -> None:
        """Raise if the upload was cancelled or the gateway reported an error."""
        if completion.cancelled():
            raise TransferCancelledError(f"Upload of {session.name} cancelled")
        if completion.done() and completion.exception() is not None:
            raise completion.exception()
        if session.state is UploadState.FAILED and session.error is not None:
            raise session.error

    def cancel_upload(self, error: LoRaBridgeError) -> bool:
        """Mark the running upload FAILED; the runner stops at its next step."""
        if not self.upload_active:
            return False
        self.upload_session.fail(error)
        _LOGGER.info("Upload of %s cancelled: %s", self.upload_session.name, error)
        return True

    # === Download ===

    def on_download_start(self, event: DownloadStart, requested: str | None) -> DownloadSession:
        """Create the download session announced by DOWNLOAD_START.

        Raises:
            InvalidResponseError: If a download is already receiving
        """
        if self.download_active:
            raise InvalidResponseError(
                f"DOWNLOAD_START for {event.name!r} while "
                f"{self.download_session.name!r} is still receiving"
            )

        name = event.name or requested or "download.bin"
        if requested and event.name and event.name != requested:
            _LOGGER.warning("Requested %s but gateway sends %s", requested, event.name)

        assembler = ChunkAssembler(
            event.size,
            chunk_size=CHUNK_SIZE,
            strict_order=self.settings.strict_chunk_order,
        )
        session = DownloadSession(name=name, assembler=assembler, state=DownloadState.RECEIVING)
        self.download_session = session
        _LOGGER.info(
            "Receiving %s (%d bytes, %d chunks)", name, event.size, session.expected_chunks
        )
        return session

    def on_chunk(self, event: Chunk) -> DownloadSession | None:
        """Store one CHUNK line; returns None if no session is receiving.

        Raises:
            CorruptPayloadError: If the payload is not valid base-64
            OutOfOrderError: If strict ordering is enabled and violated
            InvalidResponseError: If index or size bounds are violated
        """
        session = self.download_session
        if session is None or session.state is not DownloadState.RECEIVING:
            _LOGGER.warning("Ignoring CHUNK:%d without an active download", event.index)
            return None

        try:
            size = session.assembler.add_chunk(event.index, event.payload)
        except LoRaBridgeError as e:
            session.fail(e)
            _LOGGER.error("Download of %s failed: %s", session.name, e)
            raise

        _LOGGER.debug(
            "Chunk %d of %s (%d bytes, %d/%d)",
            event.index,
            session.name,
            size,
            session.bytes_received,
            session.expected_size,
        )
        return session

    def on_download_end(self, event: DownloadEnd) -> ArtifactRef | None:
        """Reassemble the download in index order and hand it to the sink.

        Returns:
            The stored artifact, or None if no session is receiving

        Raises:
            OSError: Propagated from the sink
        """
        session = self.download_session
        if session is None or session.state is not DownloadState.RECEIVING:
            _LOGGER.warning("Ignoring DOWNLOAD_END:%s without an active download", event.name)
            return None

        missing = session.assembler.missing_chunks
        if missing:
            _LOGGER.warning("Download of %s is missing chunks %s", session.name, missing)

        data = session.assembler.get_assembled_data()
        if len(data) != session.expected_size:
            _LOGGER.warning(
                "Size mismatch for %s: expected %d bytes, received %d",
                session.name,
                session.expected_size,
                len(data),
            )

        try:
            writer = self.sink.create(session.name)
            try:
                writer.write(data)
            finally:
                artifact = self.sink.finalise(writer)
        except OSError as e:
            session.fail(e)
            _LOGGER.error("Could not store %s: %s", session.name, e)
            raise

        session.state = DownloadState.COMPLETED
        session.assembler.clear()
        _LOGGER.info("Download of %s complete (%d bytes)", session.name, len(data))
        return replace(artifact, expected_size=session.expected_size)

    def cancel_download(self, error: LoRaBridgeError) -> bool:
        """Mark the receiving download FAILED; later chunks are ignored."""
        if not self.download_active:
            return False
        self.download_session.fail(error)
        _LOGGER.info("Download of %s cancelled: %s", self.download_session.name, error)
        return True

    def abort(self, error: LoRaBridgeError) -> None:
        """Fail both sessions (disconnect)."""
        self.cancel_upload(error)
        self.cancel_download(error)
