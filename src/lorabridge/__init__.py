"""LoRa Bridge BLE Protocol Package.

  Pure Python package for managing files on LoRa gateways over BLE.
  """

from .device import LoRaGateway
from .engine import ProtocolEngine
from .exceptions import (
    AddressInvalidError,
    AlreadyActiveError,
    BLEConnectionError,
    BLETimeoutError,
    BluetoothUnavailableError,
    BusyError,
    ConnectionLostError,
    CorruptPayloadError,
    InvalidResponseError,
    LoRaBridgeError,
    NotReadyError,
    OutOfOrderError,
    PeerError,
    PermissionDeniedError,
    ProtocolError,
    RadioTransferError,
    ReadError,
    TransferCancelledError,
)
from .models import (
    ArtifactRef,
    DownloadState,
    FileRecord,
    GatewayRole,
    LinkState,
    PeerErrorCode,
    RadioConfig,
    RadioDirection,
    RadioPhase,
    RadioTransferState,
    TxSummary,
    UploadState,
    detect_gateway_role,
    format_file_size,
)
from .protocol import SERVICE_UUID
from .protocol.events import RxComplete, RxFailed, RxStart, RxStatus
from .settings import LinkSettings
from .sink import ArtifactSink, DirectorySink, MemorySink

__version__ = "0.1.0"

__all__ = [
    # Main API
    "LoRaGateway",
    "ProtocolEngine",
    "LinkSettings",
    # Sinks
    "ArtifactSink",
    "DirectorySink",
    "MemorySink",
    # Exceptions
    "LoRaBridgeError",
    "BLEConnectionError",
    "BluetoothUnavailableError",
    "PermissionDeniedError",
    "AddressInvalidError",
    "AlreadyActiveError",
    "ConnectionLostError",
    "BLETimeoutError",
    "NotReadyError",
    "BusyError",
    "ProtocolError",
    "InvalidResponseError",
    "OutOfOrderError",
    "CorruptPayloadError",
    "PeerError",
    "TransferCancelledError",
    "ReadError",
    "RadioTransferError",
    # Models
    "ArtifactRef",
    "FileRecord",
    "RadioConfig",
    "RadioTransferState",
    "TxSummary",
    # Radio RX events
    "RxStart",
    "RxStatus",
    "RxComplete",
    "RxFailed",
    # Enums
    "DownloadState",
    "GatewayRole",
    "LinkState",
    "PeerErrorCode",
    "RadioDirection",
    "RadioPhase",
    "UploadState",
    # Utilities
    "detect_gateway_role",
    "format_file_size",
    # Constants
    "SERVICE_UUID",
]
