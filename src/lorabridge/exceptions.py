"""Exceptions raised by lorabridge."""

from __future__ import annotations

from .models.enums import PeerErrorCode


class LoRaBridgeError(Exception):
    """Base exception for all lorabridge errors."""


class BLEConnectionError(LoRaBridgeError):
    """BLE link could not be established or is not usable."""


class BluetoothUnavailableError(BLEConnectionError):
    """No usable Bluetooth adapter on this host."""


class PermissionDeniedError(BLEConnectionError):
    """The platform refused Bluetooth access."""


class AddressInvalidError(BLEConnectionError):
    """The device address is not a valid BLE address."""


class AlreadyActiveError(BLEConnectionError):
    """connect() called while a link is already up or being established."""


class ConnectionLostError(BLEConnectionError):
    """Link dropped and the reconnect policy gave up."""


class BLETimeoutError(LoRaBridgeError):
    """BLE operation timed out."""


class NotReadyError(LoRaBridgeError):
    """Operation issued before the link reached the READY state."""


class BusyError(LoRaBridgeError):
    """An operation or session of the same kind is already in flight."""


class ProtocolError(LoRaBridgeError):
    """Protocol-level error in communication with the gateway."""


class InvalidResponseError(ProtocolError):
    """Malformed line or event that does not fit the current state."""


class OutOfOrderError(ProtocolError):
    """Download chunk index broke strict monotonic ordering."""


class CorruptPayloadError(ProtocolError):
    """Base-64 payload of a download chunk could not be decoded."""


class PeerError(LoRaBridgeError):
    """Gateway answered with ERROR:<code>."""

    def __init__(self, code: str):
        self.code = code
        try:
            self.known_code: PeerErrorCode | None = PeerErrorCode(code)
        except ValueError:
            self.known_code = None

        if self.known_code is not None:
            super().__init__(f"{code}: {self.known_code.description}")
        else:
            super().__init__(code)


class TransferCancelledError(LoRaBridgeError):
    """Operation cancelled explicitly or by disconnect."""


class ReadError(LoRaBridgeError):
    """Local I/O failure while reading an upload source."""


class RadioTransferError(LoRaBridgeError):
    """Gateway reported TX_FAILED for a radio transmission."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Radio transmission failed: {reason}")
