"""Outbound command lines for the LoRa gateway line protocol."""

from __future__ import annotations

import base64
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models.radio import RadioConfig


class Command(str, Enum):
    """Command verbs understood by the gateway firmware."""

    LIST = "LIST"                         # List files on flash
    DELETE = "DELETE"                     # Delete one file
    DOWNLOAD = "DOWNLOAD"                 # Stream a file back as CHUNK lines
    UPLOAD_START = "UPLOAD_START"         # Open destination file
    UPLOAD_CHUNK = "UPLOAD_CHUNK"         # Append base-64 chunk
    GET_LORA_CONFIG = "GET_LORA_CONFIG"   # Read radio parameters
    SET_LORA_CONFIG = "SET_LORA_CONFIG"   # Write radio parameters
    TX_FILE = "TX_FILE"                   # Send a stored file over LoRa


# GATT identifiers
SERVICE_UUID = "4fafc201-1fb5-459e-8fcc-c5c9c331914b"
COMMAND_CHAR_UUID = "beb5483e-36e1-4688-b7f5-ea07361b26a8"   # write, no response
DATA_CHAR_UUID = "beb5483e-36e1-4688-b7f5-ea07361b26a9"      # notify, text lines
PROGRESS_CHAR_UUID = "beb5483e-36e1-4688-b7f5-ea07361b26aa"  # notify, 1 byte 0-100

COMMAND_PREFIX = "CMD:"
LINE_TERMINATOR = "\n"

# Link constants
REQUESTED_MTU = 517
WRITE_DELAY = 0.05  # seconds between two writes
RECONNECT_ATTEMPTS = 3
RECONNECT_DELAY = 3.0

# Transfer constants
CHUNK_SIZE = 200  # plaintext bytes per UPLOAD_CHUNK / CHUNK line
CHUNK_INTERVAL = 0.1  # pause between two upload chunks
UPLOAD_START_GRACE = 0.5  # let the gateway open its destination file
UPLOAD_COMPLETE_WAIT = 0.5  # wait for OK:UPLOAD_COMPLETE after the last chunk
MAX_UPLOAD_SIZE = 1_500_000  # LittleFS budget on the gateway


def _check_name(name: str) -> None:
    if not name:
        raise ValueError("File name must not be empty")
    if ":" in name or "\n" in name or "\r" in name:
        raise ValueError(f"File name {name!r} must not contain ':' or line breaks")


def _build(command: Command, *args: str | int) -> str:
    return ":".join([COMMAND_PREFIX + command.value, *(str(arg) for arg in args)])


def build_list_command() -> str:
    """Build ``CMD:LIST``."""
    return _build(Command.LIST)


def build_delete_command(name: str) -> str:
    """Build ``CMD:DELETE:<name>``."""
    _check_name(name)
    return _build(Command.DELETE, name)


def build_download_command(name: str) -> str:
    """Build ``CMD:DOWNLOAD:<name>``."""
    _check_name(name)
    return _build(Command.DOWNLOAD, name)


def build_upload_start_command(name: str, size: int) -> str:
    """Build ``CMD:UPLOAD_START:<name>:<size>``.

    Args:
        name: Destination file name on the gateway
        size: Total number of bytes that will follow

    Raises:
        ValueError: If name contains a separator or size is negative
    """
    _check_name(name)
    if size < 0:
        raise ValueError(f"Upload size must not be negative: {size}")
    return _build(Command.UPLOAD_START, name, size)


def build_upload_chunk_command(chunk: bytes) -> str:
    """Build ``CMD:UPLOAD_CHUNK:<base64>``.

    Standard base-64 alphabet, padded, no line wrapping.

    Raises:
        ValueError: If chunk exceeds CHUNK_SIZE
    """
    if len(chunk) > CHUNK_SIZE:
        raise ValueError(f"Chunk size {len(chunk)} exceeds maximum {CHUNK_SIZE}")
    return _build(Command.UPLOAD_CHUNK, base64.b64encode(chunk).decode("ascii"))


def build_get_radio_config_command() -> str:
    """Build ``CMD:GET_LORA_CONFIG``."""
    return _build(Command.GET_LORA_CONFIG)


def build_set_radio_config_command(config: RadioConfig) -> str:
    """Build ``CMD:SET_LORA_CONFIG:{"bw":..,"sf":..,"cr":..,"ack":..,"power":..}``."""
    return _build(Command.SET_LORA_CONFIG, config.to_json())


def build_tx_file_command(name: str) -> str:
    """Build ``CMD:TX_FILE:<name>``."""
    _check_name(name)
    return _build(Command.TX_FILE, name)
