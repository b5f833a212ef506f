"""Test upload and download sessions."""

from __future__ import annotations

import asyncio
import base64
import io
import logging

import pytest

from lorabridge.engine import ProtocolEngine
from lorabridge.exceptions import (
    BusyError,
    CorruptPayloadError,
    InvalidResponseError,
    OutOfOrderError,
    PeerError,
    ReadError,
    TransferCancelledError,
)
from lorabridge.models import DownloadState, UploadState
from lorabridge.settings import LinkSettings
from lorabridge.sink import MemorySink


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _chunk_payloads(written: list[str]) -> list[bytes]:
    prefix = "CMD:UPLOAD_CHUNK:"
    return [base64.b64decode(line[len(prefix):]) for line in written if line.startswith(prefix)]


class _FailingReader(io.RawIOBase):
    """Returns one block, then fails like a vanished USB stick."""

    def __init__(self):
        self._calls = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self._calls += 1
        if self._calls == 1:
            return b"x" * size
        raise OSError("device not configured")


class TestUpload:
    """Upload command stream and session state."""

    @pytest.mark.asyncio
    async def test_empty_file_sends_no_chunks(self, engine, fake_link):
        """An empty upload is just UPLOAD_START."""
        fake_link.replies["CMD:UPLOAD_START"] = ["OK:UPLOAD_COMPLETE"]

        session = await engine.upload("empty.txt", io.BytesIO(b""), 0)

        assert fake_link.written == ["CMD:UPLOAD_START:empty.txt:0"]
        assert session.state is UploadState.FINISHED
        assert session.percent == 100

    @pytest.mark.asyncio
    async def test_single_byte_file(self, engine, fake_link):
        session = await engine.upload("b", io.BytesIO(b"A"), 1)

        assert fake_link.written == ["CMD:UPLOAD_START:b:1", "CMD:UPLOAD_CHUNK:QQ=="]
        assert session.state is UploadState.FINISHED

    @pytest.mark.asyncio
    async def test_exact_multiple_of_chunk_size(self, engine, fake_link):
        """k * 200 bytes give k full chunks."""
        payload = bytes(range(200)) * 3

        await engine.upload("k.bin", io.BytesIO(payload), len(payload))

        chunks = _chunk_payloads(fake_link.written)
        assert [len(chunk) for chunk in chunks] == [200, 200, 200]
        assert b"".join(chunks) == payload

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [199, 201, 1234])
    async def test_chunks_concatenate_to_payload(self, engine, fake_link, size):
        """Chunks decode back to the payload; only the last one is short."""
        payload = bytes(i % 251 for i in range(size))

        await engine.upload("p.bin", io.BytesIO(payload), size)

        chunks = _chunk_payloads(fake_link.written)
        assert len(chunks) == -(-size // 200)
        assert all(len(chunk) == 200 for chunk in chunks[:-1])
        assert b"".join(chunks) == payload

    @pytest.mark.asyncio
    async def test_missing_confirmation_is_only_logged(self, engine, fake_link, caplog):
        with caplog.at_level(logging.WARNING):
            session = await engine.upload("a", io.BytesIO(b"abc"), 3)

        assert session.state is UploadState.FINISHED
        assert "No OK:UPLOAD_COMPLETE for a" in caplog.text

    @pytest.mark.asyncio
    async def test_progress_reaches_100(self, engine):
        percents: list[int] = []
        await engine.upload("a", io.BytesIO(b"x" * 500), 500, progress=percents.append)
        assert percents == [40, 80, 100, 100]

    @pytest.mark.asyncio
    async def test_too_large_is_rejected_before_sending(self, fake_link, memory_sink):
        engine = ProtocolEngine(fake_link, memory_sink, LinkSettings(max_upload_size=10))
        fake_link.engine = engine

        with pytest.raises(ValueError, match="at most 10 bytes"):
            await engine.upload("big", io.BytesIO(b"x" * 11), 11)
        assert fake_link.written == []

    @pytest.mark.asyncio
    async def test_invalid_name_is_rejected(self, engine, fake_link):
        with pytest.raises(ValueError):
            await engine.upload("a:b", io.BytesIO(b"x"), 1)
        assert fake_link.written == []
        assert engine.pending_operations() == []

    @pytest.mark.asyncio
    async def test_read_error_fails_session(self, engine, fake_link):
        """Reader OSError becomes ReadError and the session FAILED."""
        with pytest.raises(ReadError, match="device not configured"):
            await engine.upload("r.bin", _FailingReader(), 1000)

        assert engine.upload_session.state is UploadState.FAILED
        assert len(_chunk_payloads(fake_link.written)) == 1

    @pytest.mark.asyncio
    async def test_short_source_is_a_read_error(self, engine):
        with pytest.raises(ReadError, match="ended after 3 of 10 bytes"):
            await engine.upload("s", io.BytesIO(b"abc"), 10)

    @pytest.mark.asyncio
    async def test_peer_error_aborts_upload(self, engine, fake_link):
        """ERROR after UPLOAD_START stops the upload before any chunk."""
        fake_link.replies["CMD:UPLOAD_START"] = ["ERROR:NO_SPACE"]

        with pytest.raises(PeerError, match="NO_SPACE"):
            await engine.upload("big.bin", io.BytesIO(b"x" * 400), 400)

        assert fake_link.written == ["CMD:UPLOAD_START:big.bin:400"]
        assert engine.upload_session.state is UploadState.FAILED

    @pytest.mark.asyncio
    async def test_cancel_upload_stops_emitter(self, engine, fake_link):
        """cancel_upload marks the session FAILED and no more chunks go out."""

        def cancel_after_first(percent: int) -> None:
            engine.cancel_upload()

        with pytest.raises(TransferCancelledError):
            await engine.upload(
                "c.bin", io.BytesIO(b"x" * 1000), 1000, progress=cancel_after_first
            )

        assert len(_chunk_payloads(fake_link.written)) == 1
        assert engine.upload_session.state is UploadState.FAILED
        assert engine.cancel_upload() is False

    @pytest.mark.asyncio
    async def test_second_upload_is_busy(self, engine):
        first = asyncio.create_task(engine.upload("a", io.BytesIO(b"x" * 10), 10))
        await asyncio.sleep(0)

        with pytest.raises(BusyError):
            await engine.upload("b", io.BytesIO(b"y"), 1)

        session = await first
        assert session.name == "a"


class TestDownload:
    """Download reassembly, validation and cancellation."""

    @pytest.mark.asyncio
    async def test_size_mismatch_still_delivers(self, engine, fake_link, memory_sink, caplog):
        fake_link.replies["CMD:DOWNLOAD:f"] = [
            "DOWNLOAD_START:f:10",
            "CHUNK:0:" + _b64(b"hello"),
            "DOWNLOAD_END:",
        ]

        with caplog.at_level(logging.WARNING):
            artifact = await engine.download("f")

        assert artifact.size == 5
        assert artifact.expected_size == 10
        assert artifact.size_mismatch
        assert memory_sink.artifacts["f"] == b"hello"
        assert "Size mismatch" in caplog.text
        assert engine.download_session.state is DownloadState.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_download(self, engine, fake_link, memory_sink):
        fake_link.replies["CMD:DOWNLOAD:e"] = ["DOWNLOAD_START:e:0", "DOWNLOAD_END:e"]

        artifact = await engine.download("e")

        assert artifact.size == 0
        assert memory_sink.artifacts["e"] == b""

    @pytest.mark.asyncio
    async def test_progress_callback(self, engine, fake_link):
        fake_link.replies["CMD:DOWNLOAD:f"] = [
            "DOWNLOAD_START:f:400",
            "CHUNK:0:" + _b64(b"a" * 200),
            "CHUNK:1:" + _b64(b"b" * 200),
            "DOWNLOAD_END:f",
        ]
        percents: list[int] = []

        await engine.download("f", progress=percents.append)

        assert percents == [0, 50, 100, 100]

    @pytest.mark.asyncio
    async def test_corrupt_chunk_fails_download(self, engine, fake_link):
        fake_link.replies["CMD:DOWNLOAD:f"] = ["DOWNLOAD_START:f:3", "CHUNK:0:@@@@"]

        with pytest.raises(CorruptPayloadError):
            await engine.download("f")
        assert engine.download_session.state is DownloadState.FAILED

    @pytest.mark.asyncio
    async def test_duplicate_chunk_is_a_violation(self, engine, fake_link):
        chunk = "CHUNK:0:" + _b64(b"a" * 200)
        fake_link.replies["CMD:DOWNLOAD:f"] = ["DOWNLOAD_START:f:400", chunk, chunk]

        with pytest.raises(InvalidResponseError, match="Duplicate"):
            await engine.download("f")

    @pytest.mark.asyncio
    async def test_overlong_download_is_a_violation(self, engine, fake_link):
        """More data than announced (beyond one short chunk) is rejected."""
        fake_link.replies["CMD:DOWNLOAD:f"] = [
            "DOWNLOAD_START:f:100",
            "CHUNK:0:" + _b64(b"a" * 200),
            "CHUNK:1:" + _b64(b"b" * 200),
        ]

        with pytest.raises(InvalidResponseError, match="exceeds announced size"):
            await engine.download("f")

    @pytest.mark.asyncio
    async def test_strict_order_rejects_out_of_order(self, fake_link, memory_sink):
        settings = LinkSettings(
            write_delay=0,
            chunk_interval=0,
            upload_start_grace=0,
            strict_chunk_order=True,
        )
        engine = ProtocolEngine(fake_link, memory_sink, settings)
        fake_link.engine = engine
        fake_link.replies["CMD:DOWNLOAD:f"] = [
            "DOWNLOAD_START:f:400",
            "CHUNK:1:" + _b64(b"b" * 200),
        ]

        with pytest.raises(OutOfOrderError):
            await engine.download("f")

    @pytest.mark.asyncio
    async def test_peer_error_fails_download(self, engine, fake_link):
        fake_link.replies["CMD:DOWNLOAD:nope"] = ["ERROR:FILE_NOT_FOUND"]

        with pytest.raises(PeerError, match="FILE_NOT_FOUND"):
            await engine.download("nope")
        assert engine.download_session is None

    @pytest.mark.asyncio
    async def test_cancel_drops_later_chunks(self, engine, fake_link, memory_sink):
        """After cancel the session is FAILED and further chunks are ignored."""
        fake_link.replies["CMD:DOWNLOAD:f"] = ["DOWNLOAD_START:f:400"]
        task = asyncio.create_task(engine.download("f"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert engine.cancel_download() is True
        with pytest.raises(TransferCancelledError):
            await task

        fake_link.feed("CHUNK:0:" + _b64(b"a" * 200), "DOWNLOAD_END:f")
        assert engine.download_session.state is DownloadState.FAILED
        assert memory_sink.artifacts == {}

    @pytest.mark.asyncio
    async def test_busy_while_receiving(self, engine, fake_link):
        fake_link.feed("DOWNLOAD_START:other:400")

        with pytest.raises(BusyError):
            await engine.download("f")
        assert fake_link.written == []

    def test_unsolicited_download_reaches_sink(self, engine, fake_link, memory_sink):
        """A download nobody waits for is still stored."""
        fake_link.feed("DOWNLOAD_START:log.txt:2", "CHUNK:0:" + _b64(b"ok"), "DOWNLOAD_END:log.txt")

        assert memory_sink.artifacts["log.txt"] == b"ok"

    def test_chunk_without_session_is_ignored(self, engine, caplog):
        with caplog.at_level(logging.WARNING):
            engine.handle_line("CHUNK:0:" + _b64(b"a"))
        assert "without an active download" in caplog.text

    def test_cancel_without_download(self, engine):
        assert engine.cancel_download() is False


def test_sink_is_shared_between_downloads() -> None:
    """Each completed download lands in the same sink under its own name."""
    sink = MemorySink()
    for name, data in (("a", b"1"), ("b", b"22")):
        writer = sink.create(name)
        writer.write(data)
        sink.finalise(writer)
    assert sink.artifacts == {"a": b"1", "b": b"22"}
