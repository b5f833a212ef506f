"""Main LoRa gateway BLE device class."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from .engine import ProtocolEngine
from .exceptions import ConnectionLostError, LoRaBridgeError, ReadError, TransferCancelledError
from .models.enums import GatewayRole, LinkState, detect_gateway_role
from .models.files import ArtifactRef, FileRecord
from .models.radio import RadioConfig, RadioTransferState, TxSummary
from .models.session import DownloadSession, UploadSession
from .protocol.events import RxEvent
from .settings import LinkSettings
from .sink import ArtifactSink
from .transfer import ProgressCallback
from .transport import BLEConnection

if TYPE_CHECKING:
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)


class LoRaGateway:
    """LoRa file gateway reachable over BLE.

    Main API for managing files on a gateway and driving its radio.

    Usage:
        async with LoRaGateway("AA:BB:CC:DD:EE:FF") as gateway:
            for record in await gateway.list_files():
                print(record.name, record.size)
            await gateway.upload_file("photo.jpg")
            summary = await gateway.transmit_over_radio("photo.jpg")

        # Listen on a receiver gateway
        async with LoRaGateway(mac) as gateway:
            async for event in gateway.radio_rx_events():
                print(event)
    """

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            sink: ArtifactSink | None = None,
            settings: LinkSettings | None = None,
            refresh_on_connect: bool = False,
    ):
        """Initialize LoRa gateway.

        Args:
            mac_address: Device MAC address (or CoreBluetooth UUID)
            ble_device: Optional BLEDevice from a previous scan
            sink: Destination for downloads (default: ./LoRaDownloads)
            settings: Link timings and limits (default: LinkSettings())
            refresh_on_connect: Fetch file list and radio config after connect
        """
        self.mac_address = mac_address
        self.settings = settings or LinkSettings()
        self.refresh_on_connect = refresh_on_connect

        self._connection = BLEConnection(mac_address, ble_device, self.settings)
        self._engine = ProtocolEngine(self._connection, sink, self.settings)

        self.on_error: Callable[[LoRaBridgeError], None] | None = None
        self.on_disconnected: Callable[[], None] | None = None

        self._connection.on_ready = self._engine.handle_link_ready
        self._connection.on_notification = self._engine.feed_notification
        self._connection.on_disconnected = self._handle_disconnected
        self._connection.on_error = self._handle_error
        self._engine.on_error = self._handle_error

    async def __aenter__(self) -> LoRaGateway:
        """Connect and optionally refresh cached state."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from gateway."""
        await self.disconnect()

    async def connect(self) -> None:
        """Connect and wait until the link is ready.

        Raises:
            AddressInvalidError, BluetoothUnavailableError,
            PermissionDeniedError, AlreadyActiveError, BLEConnectionError,
            BLETimeoutError
        """
        await self._connection.connect()
        if self.refresh_on_connect:
            await self.refresh()

    async def disconnect(self) -> None:
        """Cancel everything in flight and close the link."""
        self._engine.cancel_all(TransferCancelledError("Disconnected"))
        await self._connection.disconnect()

    async def refresh(self) -> None:
        """Fetch the file list and radio config into the caches."""
        files = await self.list_files()
        config = await self.get_radio_config()
        _LOGGER.info("%s: %d files, %s", self.mac_address, len(files), config)

    def _handle_disconnected(self) -> None:
        self._engine.handle_link_down(
            ConnectionLostError(f"Connection to {self.mac_address} lost")
        )
        if self.on_disconnected:
            self.on_disconnected()

    def _handle_error(self, error: LoRaBridgeError) -> None:
        if self.on_error:
            self.on_error(error)

    @property
    def state(self) -> LinkState:
        return self._connection.state

    @property
    def is_ready(self) -> bool:
        """True when operations can be started."""
        return self._connection.is_ready

    @property
    def mtu(self) -> int | None:
        """Effective ATT MTU reported after connect."""
        return self._connection.mtu

    @property
    def role(self) -> GatewayRole | None:
        """Transmitter or receiver, guessed from the advertised name."""
        return detect_gateway_role(self._connection.device_name)

    @property
    def files(self) -> list[FileRecord] | None:
        """Files from the last listing; None after a delete, upload or radio RX."""
        return self._engine.files

    @property
    def radio_config(self) -> RadioConfig | None:
        """Last radio configuration reported or confirmed by the gateway."""
        return self._engine.radio_config

    @property
    def tx_state(self) -> RadioTransferState:
        return self._engine.tx_state

    @property
    def rx_state(self) -> RadioTransferState:
        return self._engine.rx_state

    @property
    def upload_session(self) -> UploadSession | None:
        return self._engine.upload_session

    @property
    def download_session(self) -> DownloadSession | None:
        return self._engine.download_session

    def add_progress_listener(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """Receive gateway progress notifications (0-100)."""
        return self._engine.add_progress_listener(listener)

    async def list_files(self) -> list[FileRecord]:
        return await self._engine.list_files()

    async def delete(self, name: str) -> None:
        await self._engine.delete(name)

    async def upload(
            self,
            name: str,
            reader: BinaryIO,
            size: int,
            progress: ProgressCallback | None = None,
    ) -> UploadSession:
        """Upload ``size`` bytes from ``reader`` as ``name``."""
        return await self._engine.upload(name, reader, size, progress)

    async def upload_file(
            self,
            path: str | Path,
            name: str | None = None,
            progress: ProgressCallback | None = None,
    ) -> UploadSession:
        """Upload a local file; the remote name defaults to the file name.

        Raises:
            ReadError: If the file cannot be opened or read
            ValueError: If the file exceeds the gateway's upload limit
        """
        path = Path(path)
        try:
            size = path.stat().st_size
            reader = path.open("rb")
        except OSError as e:
            raise ReadError(f"Cannot open {path}: {e}") from e

        with reader:
            return await self._engine.upload(name or path.name, reader, size, progress)

    async def download(
            self,
            name: str,
            progress: ProgressCallback | None = None,
    ) -> ArtifactRef:
        """Download ``name`` into the artifact sink."""
        return await self._engine.download(name, progress)

    async def get_radio_config(self) -> RadioConfig:
        return await self._engine.get_radio_config()

    async def set_radio_config(self, config: RadioConfig) -> None:
        await self._engine.set_radio_config(config)

    async def transmit_over_radio(
            self,
            name: str,
            progress: ProgressCallback | None = None,
    ) -> TxSummary:
        """Send stored file ``name`` over LoRa and wait for TX_COMPLETE."""
        return await self._engine.transmit_over_radio(name, progress)

    def radio_rx_events(self) -> AsyncIterator[RxEvent]:
        """Async iterator of RX_START/RX_STATUS/RX_COMPLETE/RX_FAILED events."""
        return self._engine.radio_rx_events()

    def cancel_upload(self) -> bool:
        return self._engine.cancel_upload()

    def cancel_download(self) -> bool:
        return self._engine.cancel_download()
