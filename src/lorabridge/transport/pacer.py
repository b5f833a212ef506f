"""Paced, strictly ordered command writer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..exceptions import BLEConnectionError
from ..protocol.commands import LINE_TERMINATOR, WRITE_DELAY

_LOGGER = logging.getLogger(__name__)


class WritePacer:
    """Serialises command lines onto the GATT write path.

    One write is in flight at a time and consecutive writes are separated by
    ``write_delay`` seconds, which keeps the gateway's BLE stack from
    dropping writes. Each enqueued line gets a future that resolves to True
    once written, or False if the line was dropped (disconnect or failed
    write).
    """

    def __init__(
            self,
            write: Callable[[bytes], Awaitable[None]],
            write_delay: float = WRITE_DELAY,
    ):
        """Initialize write pacer.

        Args:
            write: Coroutine function performing one raw GATT write
            write_delay: Gap after each write in seconds (default: 0.05)
        """
        self._write = write
        self.write_delay = write_delay
        self._queue: asyncio.Queue[tuple[bytes, asyncio.Future[bool]]] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    def enqueue(self, line: str) -> asyncio.Future[bool]:
        """Queue one command line, appending the terminator if absent.

        Must be called from the event loop thread.
        """
        if not line.endswith(LINE_TERMINATOR):
            line += LINE_TERMINATOR

        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((line.encode("utf-8"), future))

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

        return future

    def drain(self) -> int:
        """Drop every queued line; returns how many were dropped."""
        dropped = 0
        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.set_result(False)
            dropped += 1

        if dropped:
            _LOGGER.debug("Dropped %d queued commands", dropped)
        return dropped

    async def stop(self) -> None:
        """Drop queued lines and stop the worker task.

        A line whose write is in flight is dropped as well.
        """
        self.drain()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    @property
    def pending(self) -> int:
        """Number of lines waiting to be written."""
        return self._queue.qsize()

    async def _run(self) -> None:
        while True:
            payload, future = await self._queue.get()
            if future.done():
                continue

            try:
                await self._write(payload)
            except asyncio.CancelledError:
                # stop() while the write was in flight
                if not future.done():
                    future.set_result(False)
                raise
            except BLEConnectionError as e:
                _LOGGER.warning("Dropping command %r: %s", payload.rstrip(), e)
                if not future.done():
                    future.set_result(False)
            else:
                _LOGGER.debug("Wrote %r (%d bytes)", payload.rstrip(), len(payload))
                if not future.done():
                    future.set_result(True)

            await asyncio.sleep(self.write_delay)
