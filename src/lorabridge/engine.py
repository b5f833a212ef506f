"""Protocol engine: inbound dispatch and the awaitable operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Protocol

from .exceptions import (
    BLEConnectionError,
    BusyError,
    InvalidResponseError,
    LoRaBridgeError,
    NotReadyError,
    PeerError,
    RadioTransferError,
    TransferCancelledError,
)
from .models.enums import OperationKind, RadioDirection, RadioPhase
from .models.files import ArtifactRef, FileRecord
from .models.radio import RadioConfig, RadioTransferState, TxSummary
from .models.session import DownloadSession, UploadSession
from .protocol import (
    DATA_CHAR_UUID,
    PROGRESS_CHAR_UUID,
    LineDemuxer,
    build_delete_command,
    build_download_command,
    build_get_radio_config_command,
    build_list_command,
    build_set_radio_config_command,
    build_tx_file_command,
    parse_line,
    parse_progress,
)
from .protocol.events import (
    Ack,
    Chunk,
    Deleted,
    DownloadEnd,
    DownloadStart,
    Event,
    FileEntry,
    FilesEnd,
    FilesStart,
    PeerErrorEvent,
    RadioConfigApplied,
    RadioConfigReport,
    RxComplete,
    RxEvent,
    RxFailed,
    RxStart,
    RxStatus,
    TxComplete,
    TxFailed,
    TxStarting,
    TxStatus,
    UploadComplete,
)
from .settings import LinkSettings
from .sink import ArtifactSink, DirectorySink
from .transfer import ProgressCallback, TransferEngine

_LOGGER = logging.getLogger(__name__)

# Line prefix -> operation failed by a malformed line of that family
_PREFIX_OPERATIONS: tuple[tuple[str, OperationKind], ...] = (
    ("FILE", OperationKind.LIST),
    ("DOWNLOAD_START:", OperationKind.DOWNLOAD),
    ("CHUNK:", OperationKind.DOWNLOAD),
    ("LORA_CONFIG:", OperationKind.GET_RADIO_CONFIG),
    ("TX_", OperationKind.RADIO_TX),
)


class CommandLink(Protocol):
    """What the engine needs from a link: readiness and paced writes."""

    @property
    def is_ready(self) -> bool:
        ...

    def write_command(self, line: str) -> asyncio.Future[bool]:
        ...


@dataclass
class PendingOperation:
    """An operation waiting for its reply line."""

    kind: OperationKind
    future: asyncio.Future[Any]
    progress: ProgressCallback | None = None
    files: list[FileRecord] = field(default_factory=list)
    requested: Any = None


class ProtocolEngine:
    """Parses gateway lines into events and resolves pending operations.

    At most one operation of each kind is pending; starting a second one
    raises BusyError. ``ERROR:<code>`` fails the most recently started
    pending operation.
    """

    def __init__(
            self,
            link: CommandLink,
            sink: ArtifactSink | None = None,
            settings: LinkSettings | None = None,
    ):
        """Initialize protocol engine.

        Args:
            link: Link used to write command lines
            sink: Destination for downloads (default: DirectorySink())
            settings: Transfer timings and limits (default: LinkSettings())
        """
        self.link = link
        self.settings = settings or LinkSettings()
        self.transfers = TransferEngine(
            self._enqueue, sink if sink is not None else DirectorySink(), self.settings
        )

        self._demuxer = LineDemuxer()
        self._pending: dict[OperationKind, PendingOperation] = {}
        self._rx_subscribers: set[asyncio.Queue[RxEvent]] = set()
        self._progress_listeners: list[Callable[[int], None]] = []

        self.radio_config: RadioConfig | None = None
        self.files: list[FileRecord] | None = None
        self.tx_state = RadioTransferState(RadioDirection.TX)
        self.rx_state = RadioTransferState(RadioDirection.RX)

        self.on_error: Callable[[LoRaBridgeError], None] | None = None

        self._handlers: dict[type[Event], Callable[[Any], None]] = {
            FilesStart: self._on_files_start,
            FileEntry: self._on_file_entry,
            FilesEnd: self._on_files_end,
            Deleted: self._on_deleted,
            UploadComplete: self._on_upload_complete,
            Ack: self._on_ack,
            PeerErrorEvent: self._on_peer_error,
            DownloadStart: self._on_download_start,
            Chunk: self._on_chunk,
            DownloadEnd: self._on_download_end,
            RadioConfigReport: self._on_radio_config,
            RadioConfigApplied: self._on_radio_config_applied,
            TxStarting: self._on_tx_starting,
            TxStatus: self._on_tx_status,
            TxComplete: self._on_tx_complete,
            TxFailed: self._on_tx_failed,
            RxStart: self._on_rx_event,
            RxStatus: self._on_rx_event,
            RxComplete: self._on_rx_event,
            RxFailed: self._on_rx_event,
        }

    @property
    def upload_session(self) -> UploadSession | None:
        return self.transfers.upload_session

    @property
    def download_session(self) -> DownloadSession | None:
        return self.transfers.download_session

    def pending_operations(self) -> list[OperationKind]:
        """Kinds of the pending operations, oldest first."""
        return list(self._pending)

    # === Link events ===

    def feed_notification(self, characteristic_uuid: str, payload: bytes) -> None:
        """Entry point for GATT notifications."""
        uuid = characteristic_uuid.lower()
        if uuid == DATA_CHAR_UUID:
            self.feed_data(payload)
        elif uuid == PROGRESS_CHAR_UUID:
            self.feed_progress(payload)
        else:
            _LOGGER.debug("Notification from unexpected characteristic %s", uuid)

    def feed_data(self, payload: bytes) -> None:
        for line in self._demuxer.feed(payload):
            self.handle_line(line)

    def feed_progress(self, payload: bytes) -> None:
        try:
            percent = parse_progress(payload)
        except InvalidResponseError as e:
            _LOGGER.warning("Bad progress notification %s: %s", payload.hex(), e)
            return

        _LOGGER.debug("Progress %d%%", percent)
        for listener in list(self._progress_listeners):
            listener(percent)

    def add_progress_listener(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """Register a listener for progress characteristic values.

        Returns:
            Callable that removes the listener
        """
        self._progress_listeners.append(listener)

        def remove() -> None:
            if listener in self._progress_listeners:
                self._progress_listeners.remove(listener)

        return remove

    def handle_link_ready(self) -> None:
        """Link (re)entered READY; drop any partial line."""
        self._demuxer.reset()

    def handle_link_down(self, error: LoRaBridgeError) -> None:
        """Link dropped; nothing in flight survives."""
        self.cancel_all(error)
        self._demuxer.reset()

    def cancel_all(self, error: LoRaBridgeError) -> None:
        """Fail every pending operation and session with ``error``."""
        for pending in list(self._pending.values()):
            self._fail(pending, error)
        self._pending.clear()
        self.transfers.abort(error)

        for state in (self.tx_state, self.rx_state):
            if state.phase in (RadioPhase.STARTING, RadioPhase.IN_PROGRESS):
                state.phase = RadioPhase.FAILED

    # === Dispatch ===

    def handle_line(self, line: str) -> None:
        """Parse and dispatch one complete line."""
        _LOGGER.debug("<- %s", line)
        try:
            event = parse_line(line)
        except InvalidResponseError as e:
            self._protocol_violation(line, e)
            return

        if event is None:
            _LOGGER.warning("Discarding unknown line: %r", line)
            return

        try:
            self._handlers[type(event)](event)
        except LoRaBridgeError as e:
            self._protocol_violation(line, e)
        except OSError as e:
            _LOGGER.error("Local I/O failure handling %r: %s", line, e)
            pending = self._pending.get(OperationKind.DOWNLOAD)
            if pending:
                self._fail(pending, e)

    def _protocol_violation(self, line: str, error: LoRaBridgeError) -> None:
        _LOGGER.warning("Protocol violation on %r: %s", line, error)

        for prefix, kind in _PREFIX_OPERATIONS:
            if line.startswith(prefix):
                if kind is OperationKind.DOWNLOAD:
                    self.transfers.cancel_download(error)
                pending = self._pending.get(kind)
                if pending:
                    self._fail(pending, error)
                break

        if self.on_error:
            self.on_error(error)

    # === Pending operations ===

    def _begin(
            self,
            kind: OperationKind,
            progress: ProgressCallback | None = None,
            requested: Any = None,
    ) -> PendingOperation:
        if not self.link.is_ready:
            raise NotReadyError(f"Cannot start {kind.value}: link not ready")
        if kind in self._pending:
            raise BusyError(f"A {kind.value} operation is already pending")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        pending = PendingOperation(kind, future, progress=progress, requested=requested)
        self._pending[kind] = pending

        # Caller cancelled the await
        future.add_done_callback(lambda _: self._release(pending))
        return pending

    def _enqueue(self, line: str) -> asyncio.Future[bool]:
        _LOGGER.debug("-> %s", line)
        return self.link.write_command(line)

    async def _request(self, pending: PendingOperation, line: str) -> Any:
        """Write the command of ``pending`` and wait for its reply."""
        try:
            written = await self._enqueue(line)
        except LoRaBridgeError:
            self._abandon(pending)
            raise

        if not written and not pending.future.done():
            self._fail(pending, BLEConnectionError(f"Command not written: {line}"))
        return await pending.future

    def _release(self, pending: PendingOperation) -> None:
        if self._pending.get(pending.kind) is pending:
            del self._pending[pending.kind]

    def _abandon(self, pending: PendingOperation) -> None:
        self._release(pending)
        if not pending.future.done():
            pending.future.cancel()

    def _resolve(self, pending: PendingOperation, result: Any) -> None:
        self._release(pending)
        if not pending.future.done():
            pending.future.set_result(result)

    def _fail(self, pending: PendingOperation, error: BaseException) -> None:
        self._release(pending)
        if not pending.future.done():
            pending.future.set_exception(error)

    # === Operations ===

    async def list_files(self) -> list[FileRecord]:
        """List files stored on the gateway.

        Raises:
            NotReadyError: If the link is not ready
            BusyError: If a listing is already pending
            PeerError: If the gateway answers with ERROR
        """
        pending = self._begin(OperationKind.LIST)
        return await self._request(pending, build_list_command())

    async def delete(self, name: str) -> None:
        """Delete ``name`` on the gateway.

        Raises:
            PeerError: e.g. FILE_NOT_FOUND or DELETE_FAILED
        """
        line = build_delete_command(name)
        pending = self._begin(OperationKind.DELETE)
        await self._request(pending, line)
        _LOGGER.info("Deleted %s", name)

    async def upload(
            self,
            name: str,
            reader: BinaryIO,
            size: int,
            progress: ProgressCallback | None = None,
    ) -> UploadSession:
        """Upload ``size`` bytes read from ``reader`` as ``name``.

        Args:
            name: Remote file name (no ':' or line breaks)
            reader: Binary file-like object positioned at the data
            size: Number of bytes to upload
            progress: Optional callback receiving 0-100

        Raises:
            ValueError: If name is invalid or size exceeds max_upload_size
            NotReadyError: If the link is not ready
            BusyError: If an upload is already running
            ReadError: If reading from ``reader`` fails
            PeerError: If the gateway rejects the upload
            TransferCancelledError: If cancelled or disconnected
        """
        if size < 0:
            raise ValueError(f"Upload size must not be negative: {size}")
        if size > self.settings.max_upload_size:
            raise ValueError(
                f"{name} is {size} bytes; the gateway accepts at most "
                f"{self.settings.max_upload_size} bytes"
            )
        if self.transfers.upload_active:
            raise BusyError(f"Upload of {self.transfers.upload_session.name} still running")

        pending = self._begin(OperationKind.UPLOAD, progress)
        try:
            session = await self.transfers.run_upload(
                name, reader, size, pending.future, progress
            )
        finally:
            self._abandon(pending)
        self._invalidate_files()
        return session

    async def download(
            self,
            name: str,
            progress: ProgressCallback | None = None,
    ) -> ArtifactRef:
        """Download ``name`` into the artifact sink.

        Raises:
            NotReadyError: If the link is not ready
            BusyError: If a download is already running
            CorruptPayloadError: If a chunk is not valid base-64
            PeerError: e.g. FILE_NOT_FOUND
            TransferCancelledError: If cancelled or disconnected
        """
        line = build_download_command(name)
        if self.transfers.download_active:
            raise BusyError(f"Download of {self.transfers.download_session.name} still running")

        pending = self._begin(OperationKind.DOWNLOAD, progress, requested=name)
        return await self._request(pending, line)

    async def get_radio_config(self) -> RadioConfig:
        """Read the gateway's radio configuration (also cached)."""
        pending = self._begin(OperationKind.GET_RADIO_CONFIG)
        return await self._request(pending, build_get_radio_config_command())

    async def set_radio_config(self, config: RadioConfig) -> None:
        """Apply ``config``; the cache changes only once the gateway confirms."""
        line = build_set_radio_config_command(config)
        pending = self._begin(OperationKind.SET_RADIO_CONFIG, requested=config)
        await self._request(pending, line)

    async def transmit_over_radio(
            self,
            name: str,
            progress: ProgressCallback | None = None,
    ) -> TxSummary:
        """Ask the gateway to send stored file ``name`` over LoRa.

        Args:
            name: File on the gateway
            progress: Optional callback receiving fragment progress 0-100

        Raises:
            RadioTransferError: If the gateway reports TX_FAILED
            PeerError: If the gateway rejects the request
        """
        line = build_tx_file_command(name)
        pending = self._begin(OperationKind.RADIO_TX, progress, requested=name)
        self.tx_state.reset()
        self.tx_state.file_name = name
        return await self._request(pending, line)

    async def radio_rx_events(self) -> AsyncIterator[RxEvent]:
        """Yield RX_* events as the gateway receives files over LoRa.

        Each iteration registers its own subscriber; events arriving before
        the first ``__anext__`` are not seen.
        """
        queue: asyncio.Queue[RxEvent] = asyncio.Queue()
        self._rx_subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._rx_subscribers.discard(queue)

    def cancel_upload(self) -> bool:
        """Cancel the running upload; returns False if none is running."""
        error = TransferCancelledError("Upload cancelled")
        cancelled = self.transfers.cancel_upload(error)
        pending = self._pending.get(OperationKind.UPLOAD)
        if pending:
            self._fail(pending, error)
            cancelled = True
        return cancelled

    def cancel_download(self) -> bool:
        """Cancel the running download; returns False if none is running."""
        error = TransferCancelledError("Download cancelled")
        cancelled = self.transfers.cancel_download(error)
        pending = self._pending.get(OperationKind.DOWNLOAD)
        if pending:
            self._fail(pending, error)
            cancelled = True
        return cancelled

    def _invalidate_files(self) -> None:
        """The gateway's file set changed; the cached listing is stale."""
        if self.files is not None:
            _LOGGER.debug("File listing invalidated")
        self.files = None

    # === Event handlers ===

    def _on_files_start(self, event: FilesStart) -> None:
        pending = self._pending.get(OperationKind.LIST)
        if pending:
            pending.files.clear()

    def _on_file_entry(self, event: FileEntry) -> None:
        pending = self._pending.get(OperationKind.LIST)
        if pending is None:
            _LOGGER.debug("Ignoring FILE:%s outside a listing", event.name)
            return
        pending.files.append(FileRecord(event.name, event.size))

    def _on_files_end(self, event: FilesEnd) -> None:
        pending = self._pending.get(OperationKind.LIST)
        if pending is None:
            _LOGGER.debug("Ignoring FILES_END outside a listing")
            return
        self.files = list(pending.files)
        _LOGGER.info("Gateway lists %d files", len(self.files))
        self._resolve(pending, self.files)

    def _on_deleted(self, event: Deleted) -> None:
        self._invalidate_files()
        pending = self._pending.get(OperationKind.DELETE)
        if pending is None:
            _LOGGER.debug("Ignoring unsolicited OK:DELETED")
            return
        self._resolve(pending, None)

    def _on_upload_complete(self, event: UploadComplete) -> None:
        self._invalidate_files()
        pending = self._pending.get(OperationKind.UPLOAD)
        if pending is None:
            _LOGGER.debug("Ignoring late OK:UPLOAD_COMPLETE")
            return
        self._resolve(pending, True)

    def _on_ack(self, event: Ack) -> None:
        _LOGGER.debug("ACK:%s", event.detail)

    def _on_peer_error(self, event: PeerErrorEvent) -> None:
        error = PeerError(event.code)
        if not self._pending:
            _LOGGER.warning("Gateway error with nothing pending: %s", error)
            if self.on_error:
                self.on_error(error)
            return

        # Most recently started operation
        pending = next(reversed(self._pending.values()))
        _LOGGER.error("Gateway rejected %s: %s", pending.kind.value, error)
        if pending.kind is OperationKind.DOWNLOAD:
            self.transfers.cancel_download(error)
        elif pending.kind is OperationKind.UPLOAD:
            self.transfers.cancel_upload(error)
        elif pending.kind is OperationKind.RADIO_TX:
            self.tx_state.phase = RadioPhase.FAILED
        self._fail(pending, error)

    def _on_download_start(self, event: DownloadStart) -> None:
        pending = self._pending.get(OperationKind.DOWNLOAD)
        self.transfers.on_download_start(event, pending.requested if pending else None)
        if pending and pending.progress:
            pending.progress(0)

    def _on_chunk(self, event: Chunk) -> None:
        session = self.transfers.on_chunk(event)
        pending = self._pending.get(OperationKind.DOWNLOAD)
        if session is not None and pending and pending.progress:
            pending.progress(session.percent)

    def _on_download_end(self, event: DownloadEnd) -> None:
        artifact = self.transfers.on_download_end(event)
        if artifact is None:
            return
        pending = self._pending.get(OperationKind.DOWNLOAD)
        if pending is None:
            _LOGGER.info("Stored unsolicited download %s", artifact.name)
            return
        if pending.progress:
            pending.progress(100)
        self._resolve(pending, artifact)

    def _on_radio_config(self, event: RadioConfigReport) -> None:
        try:
            config = RadioConfig.from_json(event.json, base=self.radio_config)
        except ValueError as e:
            raise InvalidResponseError(f"Bad radio config {event.json!r}: {e}") from e

        self.radio_config = config
        _LOGGER.info("Radio config: %s", config)
        pending = self._pending.get(OperationKind.GET_RADIO_CONFIG)
        if pending:
            self._resolve(pending, config)

    def _on_radio_config_applied(self, event: RadioConfigApplied) -> None:
        pending = self._pending.get(OperationKind.SET_RADIO_CONFIG)
        if pending is None:
            _LOGGER.debug("Ignoring unsolicited OK:LORA_CONFIG_SET")
            return
        self.radio_config = pending.requested
        _LOGGER.info("Radio config applied: %s", self.radio_config)
        self._resolve(pending, None)

    def _on_tx_starting(self, event: TxStarting) -> None:
        self.tx_state.phase = RadioPhase.STARTING

    def _on_tx_status(self, event: TxStatus) -> None:
        state = self.tx_state
        state.phase = RadioPhase.IN_PROGRESS
        state.fragments_done = event.done
        state.fragments_total = event.total
        state.retries = event.retries
        _LOGGER.debug("TX %d/%d (retries %d)", event.done, event.total, event.retries)

        pending = self._pending.get(OperationKind.RADIO_TX)
        if pending and pending.progress:
            pending.progress(state.percent)

    def _on_tx_complete(self, event: TxComplete) -> None:
        state = self.tx_state
        state.phase = RadioPhase.COMPLETED
        state.fragments_done = state.fragments_total
        summary = TxSummary(size=event.size, seconds=event.seconds, kbps=event.kbps)
        _LOGGER.info(
            "Radio TX complete: %d bytes in %gs (%g kbps)",
            summary.size,
            summary.seconds,
            summary.kbps,
        )

        pending = self._pending.get(OperationKind.RADIO_TX)
        if pending is None:
            return
        if pending.progress:
            pending.progress(100)
        self._resolve(pending, summary)

    def _on_tx_failed(self, event: TxFailed) -> None:
        self.tx_state.phase = RadioPhase.FAILED
        error = RadioTransferError(event.reason)
        _LOGGER.error("%s", error)
        pending = self._pending.get(OperationKind.RADIO_TX)
        if pending:
            self._fail(pending, error)

    def _on_rx_event(self, event: RxEvent) -> None:
        state = self.rx_state
        if isinstance(event, RxStart):
            state.reset(RadioPhase.IN_PROGRESS)
            state.file_name = event.name
            _LOGGER.info("Radio RX started: %s (%d bytes)", event.name, event.size)
        elif isinstance(event, RxStatus):
            state.phase = RadioPhase.IN_PROGRESS
            state.fragments_done = event.done
            state.fragments_total = event.total
        elif isinstance(event, RxComplete):
            state.phase = RadioPhase.COMPLETED
            state.fragments_done = state.fragments_total
            _LOGGER.info("Radio RX complete: %s (%d bytes)", event.name, event.size)
            self._invalidate_files()
        else:
            state.phase = RadioPhase.FAILED
            _LOGGER.warning("Radio RX failed: %s", event.reason)

        for queue in self._rx_subscribers:
            queue.put_nowait(event)
