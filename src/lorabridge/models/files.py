"""Remote file and downloaded artifact models."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class FileRecord:
    """One entry of the gateway file listing."""

    name: str
    size: int


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """Reference to a downloaded file handed over to an artifact sink."""

    name: str
    size: int
    expected_size: int
    path: Path | None = None

    @property
    def size_mismatch(self) -> bool:
        return self.size != self.expected_size


def format_file_size(size: int) -> str:
    """Format a byte count for display (B, KB, MB), at most two decimals."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{_trim_decimals(size / 1024)} KB"
    return f"{_trim_decimals(size / (1024 * 1024))} MB"


def _trim_decimals(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")
