"""Gateway response line parsing."""

from __future__ import annotations

from ..exceptions import InvalidResponseError
from .events import (
    Ack,
    Chunk,
    Deleted,
    DownloadEnd,
    DownloadStart,
    Event,
    FileEntry,
    FilesEnd,
    FilesStart,
    PeerErrorEvent,
    RadioConfigApplied,
    RadioConfigReport,
    RxComplete,
    RxFailed,
    RxStart,
    RxStatus,
    TxComplete,
    TxFailed,
    TxStarting,
    TxStatus,
    UploadComplete,
)


def _parse_int(value: str, field: str, line: str) -> int:
    try:
        number = int(value.strip())
    except ValueError as e:
        raise InvalidResponseError(f"Invalid {field} {value!r} in {line!r}") from e
    if number < 0:
        raise InvalidResponseError(f"Negative {field} {number} in {line!r}")
    return number


def _parse_float(value: str, field: str, line: str) -> float:
    try:
        return float(value.strip())
    except ValueError as e:
        raise InvalidResponseError(f"Invalid {field} {value!r} in {line!r}") from e


def _split_fields(body: str, count: int, line: str) -> list[str]:
    """Split ``body`` on ':' and require at least ``count`` fields."""
    parts = body.split(":")
    if len(parts) < count:
        raise InvalidResponseError(
            f"Expected {count} fields, got {len(parts)}: {line!r}"
        )
    return parts


def _parse_fraction(value: str, line: str) -> tuple[int, int]:
    """Parse ``<done>/<total>``."""
    done, sep, total = value.partition("/")
    if not sep:
        raise InvalidResponseError(f"Expected <done>/<total>, got {value!r}: {line!r}")
    return _parse_int(done, "done", line), _parse_int(total, "total", line)


def _name_and_size(body: str, line: str) -> tuple[str, int]:
    # Names never contain ':'; tolerate it anyway by splitting from the right
    name, sep, size = body.rpartition(":")
    if not sep:
        raise InvalidResponseError(f"Expected <name>:<size>: {line!r}")
    return name, _parse_int(size, "size", line)


def parse_line(line: str) -> Event | None:
    """Parse one complete response line into an event.

    Args:
        line: Line without its terminator

    Returns:
        The parsed event, or None if the line matches no known prefix

    Raises:
        InvalidResponseError: If a known prefix carries malformed fields
    """
    line = line.strip()

    if line == "FILES_START":
        return FilesStart()
    if line.startswith("FILES_END"):
        return FilesEnd(detail=line[len("FILES_END"):].lstrip(":"))
    if line.startswith("FILE:"):
        name, size = _name_and_size(line[len("FILE:"):], line)
        return FileEntry(name=name, size=size)

    if line == "OK:DELETED":
        return Deleted()
    if line.startswith("OK:UPLOAD_COMPLETE"):
        return UploadComplete()
    if line == "OK:LORA_CONFIG_SET":
        return RadioConfigApplied()
    if line == "OK:TX_STARTING":
        return TxStarting()

    if line.startswith("DOWNLOAD_START:"):
        name, size = _name_and_size(line[len("DOWNLOAD_START:"):], line)
        return DownloadStart(name=name, size=size)
    if line.startswith("CHUNK:"):
        index, sep, payload = line[len("CHUNK:"):].partition(":")
        if not sep:
            raise InvalidResponseError(f"Expected CHUNK:<n>:<base64>: {line!r}")
        return Chunk(index=_parse_int(index, "chunk index", line), payload=payload)
    if line.startswith("DOWNLOAD_END"):
        return DownloadEnd(name=line[len("DOWNLOAD_END"):].lstrip(":"))

    if line.startswith("ACK:"):
        return Ack(detail=line[len("ACK:"):])
    if line.startswith("ERROR:"):
        return PeerErrorEvent(code=line[len("ERROR:"):].strip())

    if line.startswith("LORA_CONFIG:"):
        return RadioConfigReport(json=line[len("LORA_CONFIG:"):])

    if line.startswith("TX_STATUS:"):
        parts = _split_fields(line[len("TX_STATUS:"):], 1, line)
        done, total = _parse_fraction(parts[0], line)
        retries = _parse_int(parts[1], "retries", line) if len(parts) > 1 else 0
        return TxStatus(done=done, total=total, retries=retries)
    if line.startswith("TX_COMPLETE:"):
        parts = _split_fields(line[len("TX_COMPLETE:"):], 3, line)
        return TxComplete(
            size=_parse_int(parts[0], "size", line),
            seconds=_parse_float(parts[1], "seconds", line),
            kbps=_parse_float(parts[2], "kbps", line),
        )
    if line.startswith("TX_FAILED:"):
        return TxFailed(reason=line[len("TX_FAILED:"):])

    if line.startswith("RX_START:"):
        name, size = _name_and_size(line[len("RX_START:"):], line)
        return RxStart(name=name, size=size)
    if line.startswith("RX_STATUS:"):
        parts = _split_fields(line[len("RX_STATUS:"):], 1, line)
        done, total = _parse_fraction(parts[0], line)
        return RxStatus(done=done, total=total)
    if line.startswith("RX_COMPLETE:"):
        parts = _split_fields(line[len("RX_COMPLETE:"):], 3, line)
        return RxComplete(
            name=parts[0],
            size=_parse_int(parts[1], "size", line),
            seconds=_parse_float(parts[2], "seconds", line),
        )
    if line.startswith("RX_FAILED:"):
        return RxFailed(reason=line[len("RX_FAILED:"):])

    return None


def parse_progress(payload: bytes) -> int:
    """Parse a progress characteristic notification.

    Format: [percent:1] (unsigned, 0-100)

    Raises:
        InvalidResponseError: If payload is empty or out of range
    """
    if not payload:
        raise InvalidResponseError("Empty progress notification")
    percent = payload[0]
    if percent > 100:
        raise InvalidResponseError(f"Progress out of range: {percent}")
    return percent
