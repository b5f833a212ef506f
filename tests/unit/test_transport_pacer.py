"""Test the paced command writer."""

from __future__ import annotations

import asyncio

import pytest

from lorabridge.exceptions import BLEConnectionError
from lorabridge.transport.pacer import WritePacer


class _RecordingWriter:
    def __init__(self, fail_on: bytes | None = None):
        self.writes: list[bytes] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.fail_on = fail_on

    async def __call__(self, data: bytes) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        if data == self.fail_on:
            raise BLEConnectionError("Write failed: link gone")
        self.writes.append(data)


@pytest.mark.asyncio
async def test_writes_in_enqueue_order() -> None:
    """Lines leave in FIFO order with a newline appended."""
    writer = _RecordingWriter()
    pacer = WritePacer(writer, write_delay=0)

    futures = [pacer.enqueue(f"CMD:UPLOAD_CHUNK:{i}") for i in range(20)]
    results = await asyncio.gather(*futures)

    assert results == [True] * 20
    assert writer.writes == [f"CMD:UPLOAD_CHUNK:{i}\n".encode() for i in range(20)]
    assert writer.max_in_flight == 1
    await pacer.stop()


@pytest.mark.asyncio
async def test_existing_terminator_is_kept() -> None:
    writer = _RecordingWriter()
    pacer = WritePacer(writer, write_delay=0)

    assert await pacer.enqueue("CMD:LIST\n") is True
    assert writer.writes == [b"CMD:LIST\n"]
    await pacer.stop()


@pytest.mark.asyncio
async def test_write_delay_spaces_writes() -> None:
    """Consecutive writes are at least write_delay apart."""
    loop = asyncio.get_running_loop()
    stamps: list[float] = []

    async def write(data: bytes) -> None:
        stamps.append(loop.time())

    pacer = WritePacer(write, write_delay=0.02)
    await asyncio.gather(*(pacer.enqueue("CMD:LIST") for _ in range(3)))

    gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    assert all(gap >= 0.015 for gap in gaps)
    await pacer.stop()


@pytest.mark.asyncio
async def test_failed_write_resolves_false_and_continues() -> None:
    writer = _RecordingWriter(fail_on=b"CMD:DELETE:x\n")
    pacer = WritePacer(writer, write_delay=0)

    first = pacer.enqueue("CMD:DELETE:x")
    second = pacer.enqueue("CMD:LIST")

    assert await first is False
    assert await second is True
    assert writer.writes == [b"CMD:LIST\n"]
    await pacer.stop()


@pytest.mark.asyncio
async def test_drain_drops_queued_lines() -> None:
    """Disconnect drains the queue; dropped lines resolve False."""
    writer = _RecordingWriter()
    pacer = WritePacer(writer, write_delay=0)

    futures = [pacer.enqueue("CMD:LIST") for _ in range(3)]
    assert pacer.pending == 3
    assert pacer.drain() == 3

    assert [future.result() for future in futures] == [False, False, False]
    assert pacer.pending == 0
    await pacer.stop()
    assert writer.writes == []


@pytest.mark.asyncio
async def test_enqueue_after_stop_restarts_worker() -> None:
    writer = _RecordingWriter()
    pacer = WritePacer(writer, write_delay=0)
    await pacer.stop()

    assert await pacer.enqueue("CMD:LIST") is True
    await pacer.stop()


@pytest.mark.asyncio
async def test_stop_drops_line_in_flight() -> None:
    """A write cut short by stop() resolves False instead of hanging."""
    started = asyncio.Event()

    async def stalled_write(data: bytes) -> None:
        started.set()
        await asyncio.Event().wait()

    pacer = WritePacer(stalled_write, write_delay=0)
    in_flight = pacer.enqueue("CMD:UPLOAD_CHUNK:QUFB")
    queued = pacer.enqueue("CMD:LIST")
    await started.wait()

    await pacer.stop()

    assert in_flight.result() is False
    assert queued.result() is False
