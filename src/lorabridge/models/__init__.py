"""Data models for LoRa gateways."""

from .enums import (
    DownloadState,
    GatewayRole,
    LinkState,
    OperationKind,
    PeerErrorCode,
    RadioDirection,
    RadioPhase,
    UploadState,
    detect_gateway_role,
)
from .files import ArtifactRef, FileRecord, format_file_size
from .radio import RadioConfig, RadioTransferState, TxSummary
from .session import DownloadSession, UploadSession, chunk_count

__all__ = [
    "ArtifactRef",
    "DownloadSession",
    "DownloadState",
    "FileRecord",
    "GatewayRole",
    "LinkState",
    "OperationKind",
    "PeerErrorCode",
    "RadioConfig",
    "RadioDirection",
    "RadioPhase",
    "RadioTransferState",
    "TxSummary",
    "UploadSession",
    "UploadState",
    "chunk_count",
    "detect_gateway_role",
    "format_file_size",
]
