"""Shared fixtures: a scripted link and zero-delay settings."""

from __future__ import annotations

import asyncio

import pytest

from lorabridge.engine import ProtocolEngine
from lorabridge.exceptions import NotReadyError
from lorabridge.settings import LinkSettings
from lorabridge.sink import MemorySink


class FakeLink:
    """Stands in for BLEConnection.

    Records every command line and, when a line equals a key of ``replies``
    or extends it by ":", feeds the reply lines back to the engine on the next loop
    iteration, the way a gateway answers over notifications.
    """

    def __init__(self):
        self.is_ready = True
        self.written: list[str] = []
        self.replies: dict[str, list[str]] = {}
        self.drop_writes = False
        self.engine: ProtocolEngine | None = None

    def write_command(self, line: str) -> asyncio.Future[bool]:
        if not self.is_ready:
            raise NotReadyError("Link not ready")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[bool] = loop.create_future()
        if self.drop_writes:
            future.set_result(False)
            return future

        self.written.append(line)
        future.set_result(True)
        for prefix, lines in self.replies.items():
            if line == prefix or line.startswith(prefix + ":"):
                loop.call_soon(self.feed, *lines)
                break
        return future

    def feed(self, *lines: str) -> None:
        """Deliver lines to the engine as one data notification."""
        self.engine.feed_data("".join(line + "\n" for line in lines).encode())


@pytest.fixture
def fast_settings() -> LinkSettings:
    return LinkSettings(
        write_delay=0,
        chunk_interval=0,
        upload_start_grace=0,
        upload_complete_wait=0.05,
        reconnect_delay=0,
    )


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink()


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def engine(fake_link, memory_sink, fast_settings) -> ProtocolEngine:
    engine = ProtocolEngine(fake_link, memory_sink, fast_settings)
    fake_link.engine = engine
    return engine
