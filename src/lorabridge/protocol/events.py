"""Typed events parsed from gateway response lines.

Each inbound line maps to exactly one event. Radio reception events
(RxStart, RxStatus, RxComplete, RxFailed) are also what
``LoRaGateway.radio_rx_events()`` yields.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Event:
    """Base class for all inbound events."""


# === File listing ===

@dataclass(frozen=True)
class FilesStart(Event):
    """FILES_START: a listing follows."""


@dataclass(frozen=True)
class FileEntry(Event):
    """FILE:<name>:<size>"""
    name: str
    size: int


@dataclass(frozen=True)
class FilesEnd(Event):
    """FILES_END...: listing finished (firmware may append a summary)."""
    detail: str = ""


# === Single-reply confirmations ===

@dataclass(frozen=True)
class Deleted(Event):
    """OK:DELETED"""


@dataclass(frozen=True)
class UploadComplete(Event):
    """OK:UPLOAD_COMPLETE"""


@dataclass(frozen=True)
class Ack(Event):
    """ACK:<...>, reserved for flow control and ignored."""
    detail: str


@dataclass(frozen=True)
class PeerErrorEvent(Event):
    """ERROR:<code>"""
    code: str


# === Download stream ===

@dataclass(frozen=True)
class DownloadStart(Event):
    """DOWNLOAD_START:<name>:<size>"""
    name: str
    size: int


@dataclass(frozen=True)
class Chunk(Event):
    """CHUNK:<n>:<base64>; payload is still encoded."""
    index: int
    payload: str


@dataclass(frozen=True)
class DownloadEnd(Event):
    """DOWNLOAD_END:<name> (name may be empty)."""
    name: str = ""


# === Radio configuration ===

@dataclass(frozen=True)
class RadioConfigReport(Event):
    """LORA_CONFIG:<json>; json is parsed later against the cached config."""
    json: str


@dataclass(frozen=True)
class RadioConfigApplied(Event):
    """OK:LORA_CONFIG_SET"""


# === Radio transmit ===

@dataclass(frozen=True)
class TxStarting(Event):
    """OK:TX_STARTING"""


@dataclass(frozen=True)
class TxStatus(Event):
    """TX_STATUS:<done>/<total>:<retries>"""
    done: int
    total: int
    retries: int = 0


@dataclass(frozen=True)
class TxComplete(Event):
    """TX_COMPLETE:<size>:<seconds>:<kbps>"""
    size: int
    seconds: float
    kbps: float


@dataclass(frozen=True)
class TxFailed(Event):
    """TX_FAILED:<reason>"""
    reason: str


# === Radio receive ===

@dataclass(frozen=True)
class RxStart(Event):
    """RX_START:<name>:<size>"""
    name: str
    size: int


@dataclass(frozen=True)
class RxStatus(Event):
    """RX_STATUS:<done>/<total>"""
    done: int
    total: int

    @property
    def percent(self) -> int:
        return self.done * 100 // self.total if self.total > 0 else 0


@dataclass(frozen=True)
class RxComplete(Event):
    """RX_COMPLETE:<name>:<size>:<seconds>"""
    name: str
    size: int
    seconds: float


@dataclass(frozen=True)
class RxFailed(Event):
    """RX_FAILED:<reason>"""
    reason: str


RxEvent = RxStart | RxStatus | RxComplete | RxFailed
