from __future__ import annotations

from enum import Enum
from typing import Final


class LinkState(Enum):
    """BLE link lifecycle states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    NEGOTIATING = "negotiating"   # MTU + service discovery + notifications
    READY = "ready"
    CLOSING = "closing"


class UploadState(Enum):
    """Upload session states."""
    ANNOUNCED = "announced"
    STREAMING = "streaming"
    AWAITING_COMPLETION = "awaiting_completion"
    FINISHED = "finished"
    FAILED = "failed"


class DownloadState(Enum):
    """Download session states."""
    ANNOUNCED = "announced"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    FAILED = "failed"


class RadioDirection(Enum):
    """Direction of a long-range radio transfer."""
    TX = "tx"
    RX = "rx"


class RadioPhase(Enum):
    """Phase of a long-range radio transfer."""
    IDLE = "idle"
    STARTING = "starting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class GatewayRole(Enum):
    """Radio role a gateway firmware was built for."""
    TX = "tx"
    RX = "rx"


def detect_gateway_role(device_name: str | None) -> GatewayRole | None:
    """Guess the gateway role from its advertised name.

    Transmitter firmware advertises a name containing "TX"; anything else
    is treated as a receiver. Returns None when the name is unknown.
    """
    if not device_name:
        return None
    return GatewayRole.TX if "TX" in device_name.upper() else GatewayRole.RX


class OperationKind(Enum):
    """Single-reply operations the protocol engine can have pending."""
    LIST = "list"
    DELETE = "delete"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    GET_RADIO_CONFIG = "get_radio_config"
    SET_RADIO_CONFIG = "set_radio_config"
    RADIO_TX = "radio_tx"


class PeerErrorCode(str, Enum):
    """Error codes the gateway firmware sends as ERROR:<code>."""
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    NO_SPACE = "NO_SPACE"
    FILE_IN_USE = "FILE_IN_USE"
    DELETE_FAILED = "DELETE_FAILED"

    @property
    def description(self) -> str:
        return PEER_ERROR_DESCRIPTIONS[self]


PEER_ERROR_DESCRIPTIONS: Final[dict[PeerErrorCode, str]] = {
    PeerErrorCode.FILE_NOT_FOUND: "File not found",
    PeerErrorCode.NO_SPACE: "No space left on the gateway",
    PeerErrorCode.FILE_IN_USE: "File in use",
    PeerErrorCode.DELETE_FAILED: "Could not delete file",
}
