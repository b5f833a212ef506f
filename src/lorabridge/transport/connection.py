"""BLE connection management."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakDBusError, BleakError
from bleak_retry_connector import BleakClientWithServiceCache, establish_connection

from ..exceptions import (
    AddressInvalidError,
    AlreadyActiveError,
    BLEConnectionError,
    BLETimeoutError,
    BluetoothUnavailableError,
    ConnectionLostError,
    LoRaBridgeError,
    NotReadyError,
    PermissionDeniedError,
)
from ..models.enums import LinkState
from ..protocol.commands import (
    COMMAND_CHAR_UUID,
    DATA_CHAR_UUID,
    PROGRESS_CHAR_UUID,
    REQUESTED_MTU,
    SERVICE_UUID,
)
from ..settings import LinkSettings
from .pacer import WritePacer

if TYPE_CHECKING:
    from bleak.backends.characteristic import BleakGATTCharacteristic
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)

# MAC on Linux/Windows, CoreBluetooth UUID on macOS
_ADDRESS_RE = re.compile(
    r"^(?:[0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5}"
    r"|[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12})$"
)

_PERMISSION_DBUS_ERRORS = {
    "org.freedesktop.DBus.Error.AccessDenied",
    "org.bluez.Error.NotPermitted",
    "org.bluez.Error.NotAuthorized",
}
_UNAVAILABLE_DBUS_ERRORS = {
    "org.bluez.Error.NotReady",
    "org.freedesktop.DBus.Error.ServiceUnknown",
}


def validate_address(address: str) -> None:
    """Check that address is a BLE MAC or a CoreBluetooth UUID.

    Raises:
        AddressInvalidError: If address has neither format
    """
    if not _ADDRESS_RE.match(address or ""):
        raise AddressInvalidError(f"Invalid BLE address: {address!r}")


def _translate_platform_error(error: Exception) -> BLEConnectionError:
    """Map adapter/permission failures onto the link error taxonomy."""
    if isinstance(error, PermissionError):
        return PermissionDeniedError(f"Bluetooth permission denied: {error}")

    if isinstance(error, BleakDBusError):
        if error.dbus_error in _PERMISSION_DBUS_ERRORS:
            return PermissionDeniedError(f"Bluetooth permission denied: {error}")
        if error.dbus_error in _UNAVAILABLE_DBUS_ERRORS:
            return BluetoothUnavailableError(f"Bluetooth unavailable: {error}")

    if isinstance(error, BleakError) and "adapter" in str(error).lower():
        return BluetoothUnavailableError(f"Bluetooth unavailable: {error}")

    return BLEConnectionError(f"Failed to connect: {error}")


class BLEConnection:
    """Manages the BLE GATT link to a LoRa gateway.

    Features:
    - Connection retries and service caching via bleak-retry-connector
    - Link state machine (DISCONNECTED -> CONNECTING -> NEGOTIATING -> READY)
    - Paced command writes through a WritePacer
    - Reconnect policy after unintended disconnects
    - Hooks for ready, disconnect, notification and error events

    Hooks are plain callables invoked on the event loop:
    - on_ready()
    - on_disconnected()
    - on_notification(characteristic_uuid, payload)
    - on_error(exc)
    """

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            settings: LinkSettings | None = None,
    ):
        """Initialize BLE connection manager.

        Args:
            mac_address: Device MAC address (or CoreBluetooth UUID)
            ble_device: Optional BLEDevice from a previous scan
            settings: Link timings and retry policy (default: LinkSettings())
        """
        self.mac_address = mac_address
        self.ble_device = ble_device
        self.settings = settings or LinkSettings()

        self._client: BleakClient | None = None
        self._state = LinkState.DISCONNECTED
        self._command_characteristic: BleakGATTCharacteristic | None = None
        self._closing = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self._pacer = WritePacer(self._write_raw, self.settings.write_delay)
        self.mtu: int | None = None

        self.on_ready: Callable[[], None] | None = None
        self.on_disconnected: Callable[[], None] | None = None
        self.on_notification: Callable[[str, bytes], None] | None = None
        self.on_error: Callable[[LoRaBridgeError], None] | None = None

    async def __aenter__(self) -> BLEConnection:
        """Connect to device (context manager entry)."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device (context manager exit)."""
        await self.disconnect()

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_ready(self) -> bool:
        """True when commands can be written and notifications flow."""
        return self._state is LinkState.READY

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._client is not None and self._client.is_connected

    @property
    def device_name(self) -> str | None:
        """Advertised name of the resolved device, if known."""
        return self.ble_device.name if self.ble_device else None

    def _set_state(self, state: LinkState) -> None:
        if state is not self._state:
            _LOGGER.debug("Link %s: %s -> %s", self.mac_address, self._state.name, state.name)
            self._state = state

    async def connect(self) -> None:
        """Establish the link and wait until it is READY.

        Raises:
            AlreadyActiveError: If the link is not DISCONNECTED
            AddressInvalidError: If mac_address is malformed
            BluetoothUnavailableError: If no adapter is usable
            PermissionDeniedError: If the platform refuses access
            ConnectionLostError: If connecting kept failing after every retry
            BLEConnectionError: If negotiation fails
            BLETimeoutError: If connection times out and retries are disabled
        """
        if self._state is not LinkState.DISCONNECTED:
            raise AlreadyActiveError(
                f"Link to {self.mac_address} is {self._state.name.lower()}"
            )

        if self.ble_device is None:
            validate_address(self.mac_address)

        self._closing = False
        await self._open_with_retries()
        await self._setup()

    async def _establish(self) -> None:
        await self._open()
        await self._setup()

    async def _open_with_retries(self) -> None:
        """Open the GATT link, retrying drops and timeouts while connecting.

        Adapter and permission failures are not retried.
        """
        attempts = self.settings.reconnect_attempts
        attempt = 0
        while True:
            try:
                await self._open()
                return
            except (PermissionDeniedError, BluetoothUnavailableError):
                raise
            except (BLEConnectionError, BLETimeoutError) as e:
                if attempt >= attempts:
                    if attempts == 0:
                        raise
                    _LOGGER.error(
                        "Giving up on %s after %d connect retries", self.mac_address, attempts
                    )
                    raise ConnectionLostError(
                        f"Connection to {self.mac_address} failed after "
                        f"{attempts} retries: {e}"
                    ) from e
                attempt += 1
                _LOGGER.warning(
                    "Connect to %s failed (%s); retry %d/%d",
                    self.mac_address,
                    e,
                    attempt,
                    attempts,
                )

            await asyncio.sleep(self.settings.reconnect_delay)
            if self._closing:
                raise BLEConnectionError(f"Connect to {self.mac_address} aborted")

    async def _open(self) -> None:
        self._set_state(LinkState.CONNECTING)

        try:
            _LOGGER.debug(
                "Connecting to %s with bleak-retry-connector (max_attempts=%d)",
                self.mac_address,
                self.settings.max_attempts,
            )

            # Resolve MAC to BLEDevice if not provided
            if self.ble_device:
                device = self.ble_device
            else:
                device = await BleakScanner.find_device_by_address(
                    self.mac_address,
                    timeout=self.settings.timeout,
                )
                if device is None:
                    raise BLEConnectionError(
                        f"Device {self.mac_address} not found during scan"
                    )
                self.ble_device = device

            self._client = await establish_connection(
                client_class=BleakClientWithServiceCache,
                device=device,
                name=device.name or self.mac_address,
                disconnected_callback=self._on_link_down,
                max_attempts=self.settings.max_attempts,
                use_services_cache=self.settings.use_services_cache,
                timeout=self.settings.timeout,
            )

        except asyncio.TimeoutError as e:
            self._set_state(LinkState.DISCONNECTED)
            raise BLETimeoutError(
                f"Connection timeout after {self.settings.timeout}s"
            ) from e
        except BLEConnectionError:
            self._set_state(LinkState.DISCONNECTED)
            raise
        except Exception as e:
            self._set_state(LinkState.DISCONNECTED)
            raise _translate_platform_error(e) from e

        _LOGGER.debug("Connected to %s", self.mac_address)

    async def _setup(self) -> None:
        self._set_state(LinkState.NEGOTIATING)

        try:
            await self._negotiate()
            if self._client is None:
                raise BLEConnectionError("Link dropped during negotiation")
        except BLEConnectionError as e:
            _LOGGER.error("Negotiation with %s failed: %s", self.mac_address, e)
            await self._close_client()
            self._set_state(LinkState.DISCONNECTED)
            self._emit_error(e)
            raise

        self._set_state(LinkState.READY)
        _LOGGER.info("Link to %s ready (MTU %s)", self.mac_address, self.mtu)
        if self.on_ready:
            self.on_ready()

    async def _negotiate(self) -> None:
        """Check MTU, find the gateway service and enable notifications.

        Raises:
            BLEConnectionError: If service/characteristic not found or a
                notification descriptor cannot be written
        """
        client = self._client
        if not client or not client.is_connected:
            raise BLEConnectionError("Not connected")

        # The platform negotiates the MTU during connect; we only report it.
        self.mtu = client.mtu_size
        if self.mtu < REQUESTED_MTU:
            _LOGGER.debug("MTU %d below requested %d", self.mtu, REQUESTED_MTU)

        service = client.services.get_service(SERVICE_UUID)
        if not service:
            raise BLEConnectionError(f"Service {SERVICE_UUID} not found")

        command = service.get_characteristic(COMMAND_CHAR_UUID)
        data = service.get_characteristic(DATA_CHAR_UUID)
        progress = service.get_characteristic(PROGRESS_CHAR_UUID)

        if command is None or data is None:
            raise BLEConnectionError(
                "Command or data characteristic not found "
                f"({COMMAND_CHAR_UUID}, {DATA_CHAR_UUID})"
            )

        self._command_characteristic = command

        try:
            await client.start_notify(data, self._data_callback)
            if progress is not None:
                await client.start_notify(progress, self._progress_callback)
            else:
                _LOGGER.warning("Progress characteristic missing; progress updates disabled")
        except BleakError as e:
            raise BLEConnectionError(f"Failed to enable notifications: {e}") from e

        _LOGGER.debug("Notifications started")

    def _data_callback(self, sender, data: bytearray) -> None:
        if self.on_notification:
            self.on_notification(DATA_CHAR_UUID, bytes(data))

    def _progress_callback(self, sender, data: bytearray) -> None:
        if self.on_notification:
            self.on_notification(PROGRESS_CHAR_UUID, bytes(data))

    def _on_link_down(self, client: BleakClient) -> None:
        """bleak disconnected callback; runs on the event loop."""
        if self._closing or self._state is LinkState.DISCONNECTED:
            return

        was_ready = self._state is LinkState.READY
        _LOGGER.warning("Link to %s dropped (state %s)", self.mac_address, self._state.name)

        self._client = None
        self._command_characteristic = None
        self._pacer.drain()
        self._set_state(LinkState.DISCONNECTED)

        if was_ready and self.on_disconnected:
            self.on_disconnected()

        if was_ready:
            self._start_reconnect()

    def _start_reconnect(self) -> None:
        if self.settings.reconnect_attempts <= 0:
            self._emit_error(ConnectionLostError(f"Connection to {self.mac_address} lost"))
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        attempts = self.settings.reconnect_attempts
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self.settings.reconnect_delay)
            if self._closing or self._state is not LinkState.DISCONNECTED:
                return

            _LOGGER.info("Reconnecting to %s (%d/%d)", self.mac_address, attempt, attempts)
            try:
                await self._establish()
            except LoRaBridgeError as e:
                _LOGGER.warning("Reconnect %d/%d failed: %s", attempt, attempts, e)
            else:
                return

        _LOGGER.error("Giving up on %s after %d reconnects", self.mac_address, attempts)
        self._emit_error(
            ConnectionLostError(
                f"Connection to {self.mac_address} lost after {attempts} reconnects"
            )
        )

    def _emit_error(self, error: LoRaBridgeError) -> None:
        if self.on_error:
            self.on_error(error)

    async def disconnect(self) -> None:
        """Disconnect from device; safe to call repeatedly."""
        self._closing = True

        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None

        if self._state is LinkState.DISCONNECTED and self._client is None:
            await self._pacer.stop()
            return

        self._set_state(LinkState.CLOSING)
        await self._pacer.stop()
        await self._close_client()
        self._set_state(LinkState.DISCONNECTED)

    async def _close_client(self) -> None:
        if self._client and self._client.is_connected:
            try:
                _LOGGER.debug("Disconnecting from %s", self.mac_address)
                await self._client.disconnect()
            except BleakError as e:
                _LOGGER.warning("Error during disconnect: %s", e)
        self._client = None
        self._command_characteristic = None

    def write_command(self, line: str) -> asyncio.Future[bool]:
        """Queue one command line on the write pacer.

        Returns:
            Future resolving to True when written, False when dropped

        Raises:
            NotReadyError: If the link is not READY
        """
        if not self.is_ready:
            raise NotReadyError(f"Link not ready ({self._state.name.lower()})")
        return self._pacer.enqueue(line)

    async def _write_raw(self, data: bytes) -> None:
        """Write bytes to the command characteristic (pacer only).

        Raises:
            BLEConnectionError: If not connected or write fails
        """
        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Not connected")

        if not self._command_characteristic:
            raise BLEConnectionError("Command characteristic not resolved")

        try:
            await self._client.write_gatt_char(
                self._command_characteristic,
                data,
                response=False,
            )
        except Exception as e:
            raise BLEConnectionError(f"Write failed: {e}") from e
