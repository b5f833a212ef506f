"""LoRa gateway line protocol over BLE."""

from .chunking import ChunkAssembler, read_chunks
from .commands import (
    CHUNK_INTERVAL,
    CHUNK_SIZE,
    COMMAND_CHAR_UUID,
    DATA_CHAR_UUID,
    MAX_UPLOAD_SIZE,
    PROGRESS_CHAR_UUID,
    RECONNECT_ATTEMPTS,
    RECONNECT_DELAY,
    REQUESTED_MTU,
    SERVICE_UUID,
    UPLOAD_COMPLETE_WAIT,
    UPLOAD_START_GRACE,
    WRITE_DELAY,
    Command,
    build_delete_command,
    build_download_command,
    build_get_radio_config_command,
    build_list_command,
    build_set_radio_config_command,
    build_tx_file_command,
    build_upload_chunk_command,
    build_upload_start_command,
)
from .framing import LineDemuxer
from .responses import parse_line, parse_progress

__all__ = [
    "Command",
    "SERVICE_UUID",
    "COMMAND_CHAR_UUID",
    "DATA_CHAR_UUID",
    "PROGRESS_CHAR_UUID",
    "REQUESTED_MTU",
    "WRITE_DELAY",
    "RECONNECT_ATTEMPTS",
    "RECONNECT_DELAY",
    "CHUNK_SIZE",
    "CHUNK_INTERVAL",
    "UPLOAD_START_GRACE",
    "UPLOAD_COMPLETE_WAIT",
    "MAX_UPLOAD_SIZE",
    "build_list_command",
    "build_delete_command",
    "build_download_command",
    "build_upload_start_command",
    "build_upload_chunk_command",
    "build_get_radio_config_command",
    "build_set_radio_config_command",
    "build_tx_file_command",
    "ChunkAssembler",
    "read_chunks",
    "LineDemuxer",
    "parse_line",
    "parse_progress",
]
