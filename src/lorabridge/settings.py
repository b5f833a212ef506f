"""Tunable link and transfer settings."""

from __future__ import annotations

from dataclasses import dataclass

from .protocol.commands import (
    CHUNK_INTERVAL,
    MAX_UPLOAD_SIZE,
    RECONNECT_ATTEMPTS,
    RECONNECT_DELAY,
    UPLOAD_COMPLETE_WAIT,
    UPLOAD_START_GRACE,
    WRITE_DELAY,
)


@dataclass(frozen=True, slots=True)
class LinkSettings:
    """Timings and limits used by the link, pacer and transfer engine.

    Defaults match what the gateway firmware was tuned for. Tests use zero
    delays to run without wall-clock waits.

    Attributes:
        timeout: Connection timeout in seconds
        max_attempts: Attempts per connect for bleak-retry-connector
        use_services_cache: Enable GATT service caching for faster reconnections
        write_delay: Minimum gap between two GATT writes
        chunk_interval: Pause between two upload chunks
        upload_start_grace: Wait after UPLOAD_START before the first chunk
        upload_complete_wait: How long to wait for OK:UPLOAD_COMPLETE
        reconnect_attempts: Reconnects after an unintended drop
        reconnect_delay: Gap between two reconnects
        max_upload_size: Largest file accepted for upload (bytes)
        strict_chunk_order: Reject download chunks that arrive out of order
    """

    timeout: float = 10.0
    max_attempts: int = 4
    use_services_cache: bool = True
    write_delay: float = WRITE_DELAY
    chunk_interval: float = CHUNK_INTERVAL
    upload_start_grace: float = UPLOAD_START_GRACE
    upload_complete_wait: float = UPLOAD_COMPLETE_WAIT
    reconnect_attempts: int = RECONNECT_ATTEMPTS
    reconnect_delay: float = RECONNECT_DELAY
    max_upload_size: int = MAX_UPLOAD_SIZE
    strict_chunk_order: bool = False

    def __post_init__(self) -> None:
        for name in (
            "timeout",
            "write_delay",
            "chunk_interval",
            "upload_start_grace",
            "upload_complete_wait",
            "reconnect_delay",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative: {getattr(self, name)}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1: {self.max_attempts}")
        if self.reconnect_attempts < 0:
            raise ValueError(
                f"reconnect_attempts must not be negative: {self.reconnect_attempts}"
            )
