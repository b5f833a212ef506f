"""Destinations for downloaded files."""

from __future__ import annotations

import io
import logging
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Protocol

from .models.files import ArtifactRef

_LOGGER = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_DIR = "LoRaDownloads"


class ArtifactSink(Protocol):
    """Where completed downloads are written.

    ``create`` opens a writer for a remote file name; ``finalise`` closes it
    and returns a reference to the stored artifact.
    """

    def create(self, name: str) -> BinaryIO:
        ...

    def finalise(self, writer: BinaryIO) -> ArtifactRef:
        ...


def unique_path(directory: Path, name: str, now: datetime | None = None) -> Path:
    """Return directory/name, or a timestamped variant if it already exists.

    The suffix ``_YYYYMMDD_HHMMSS`` goes before the extension:
    ``photo.jpg`` -> ``photo_20240101_120000.jpg``.
    """
    target = directory / name
    if not target.exists():
        return target

    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    candidate = directory / f"{target.stem}_{stamp}{target.suffix}"
    counter = 1
    # Two downloads of the same name within one second
    while candidate.exists():
        candidate = directory / f"{target.stem}_{stamp}_{counter}{target.suffix}"
        counter += 1
    return candidate


class DirectorySink:
    """Writes downloads into a local directory.

    Usage:
        sink = DirectorySink(Path.home() / "Downloads" / "LoRaDownloads")
    """

    def __init__(self, directory: str | Path = DEFAULT_DOWNLOAD_DIR):
        self.directory = Path(directory)
        self._open: dict[int, tuple[str, Path]] = {}

    def create(self, name: str) -> BinaryIO:
        """Open a new file for ``name`` (never overwrites)."""
        self.directory.mkdir(parents=True, exist_ok=True)
        # Remote names are flat; drop any path component
        path = unique_path(self.directory, Path(name).name)
        writer = path.open("wb")
        self._open[id(writer)] = (name, path)
        _LOGGER.debug("Writing %s to %s", name, path)
        return writer

    def finalise(self, writer: BinaryIO) -> ArtifactRef:
        name, path = self._open.pop(id(writer))
        size = writer.tell()
        writer.close()
        _LOGGER.info("Saved %s (%d bytes) to %s", name, size, path)
        return ArtifactRef(name=name, size=size, expected_size=size, path=path)


class MemorySink:
    """Keeps downloads in memory, keyed by remote name."""

    def __init__(self):
        self.artifacts: dict[str, bytes] = {}
        self._open: dict[int, str] = {}

    def create(self, name: str) -> BinaryIO:
        writer = io.BytesIO()
        self._open[id(writer)] = name
        return writer

    def finalise(self, writer: BinaryIO) -> ArtifactRef:
        name = self._open.pop(id(writer))
        data = writer.getvalue()
        self.artifacts[name] = data
        return ArtifactRef(name=name, size=len(data), expected_size=len(data))
