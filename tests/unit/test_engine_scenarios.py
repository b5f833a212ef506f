"""End-to-end transcripts between the engine and a scripted gateway."""

from __future__ import annotations

import base64
import io
import logging

import pytest

from lorabridge.exceptions import PeerError
from lorabridge.models import FileRecord, PeerErrorCode, RadioPhase, TxSummary, UploadState


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.mark.asyncio
async def test_list_empty(engine, fake_link) -> None:
    """FILES_START/FILES_END with nothing in between yields an empty list."""
    fake_link.replies["CMD:LIST"] = ["FILES_START", "FILES_END"]

    assert await engine.list_files() == []
    assert fake_link.written == ["CMD:LIST"]


@pytest.mark.asyncio
async def test_list_two_files(engine, fake_link) -> None:
    """FILE lines accumulate in order until FILES_END."""
    fake_link.replies["CMD:LIST"] = [
        "FILES_START",
        "FILE:a.txt:10",
        "FILE:b.bin:2048",
        "FILES_END",
    ]

    records = await engine.list_files()

    assert records == [FileRecord("a.txt", 10), FileRecord("b.bin", 2048)]
    assert engine.files == records


@pytest.mark.asyncio
async def test_delete_missing_file(engine, fake_link) -> None:
    """ERROR:FILE_NOT_FOUND fails the delete with PeerError."""
    fake_link.replies["CMD:DELETE:x"] = ["ERROR:FILE_NOT_FOUND"]

    with pytest.raises(PeerError) as exc_info:
        await engine.delete("x")

    assert fake_link.written == ["CMD:DELETE:x"]
    assert exc_info.value.code == "FILE_NOT_FOUND"
    assert exc_info.value.known_code is PeerErrorCode.FILE_NOT_FOUND


@pytest.mark.asyncio
async def test_upload_350_bytes(engine, fake_link, caplog) -> None:
    """350 bytes go out as one full and one short chunk."""
    fake_link.replies["CMD:UPLOAD_CHUNK:" + _b64(b"A" * 150)] = ["OK:UPLOAD_COMPLETE"]

    with caplog.at_level(logging.WARNING):
        session = await engine.upload("foo", io.BytesIO(b"A" * 350), 350)

    assert fake_link.written == [
        "CMD:UPLOAD_START:foo:350",
        "CMD:UPLOAD_CHUNK:" + _b64(b"A" * 200),
        "CMD:UPLOAD_CHUNK:" + _b64(b"A" * 150),
    ]
    assert session.state is UploadState.FINISHED
    assert session.chunks_sent == 2
    assert session.bytes_sent == 350
    assert "No OK:UPLOAD_COMPLETE" not in caplog.text


@pytest.mark.asyncio
async def test_download_chunks_out_of_order(engine, fake_link, memory_sink) -> None:
    """Chunks are reassembled by index, not by arrival."""
    fake_link.replies["CMD:DOWNLOAD:f"] = [
        "DOWNLOAD_START:f:500",
        "CHUNK:2:" + _b64(b"\x03" * 100),
        "CHUNK:0:" + _b64(b"\x01" * 200),
        "CHUNK:1:" + _b64(b"\x02" * 200),
        "DOWNLOAD_END:f",
    ]

    artifact = await engine.download("f")

    expected = b"\x01" * 200 + b"\x02" * 200 + b"\x03" * 100
    assert memory_sink.artifacts["f"] == expected
    assert artifact.name == "f"
    assert artifact.size == 500
    assert artifact.expected_size == 500
    assert not artifact.size_mismatch


@pytest.mark.asyncio
async def test_radio_transmit(engine, fake_link) -> None:
    """TX_STATUS and TX_COMPLETE drive progress and the summary."""
    fake_link.replies["CMD:TX_FILE:photo.jpg"] = [
        "OK:TX_STARTING",
        "TX_STATUS:25/100:0",
        "TX_STATUS:100/100:3",
        "TX_COMPLETE:51200:42:9.76",
    ]
    percents: list[int] = []

    summary = await engine.transmit_over_radio("photo.jpg", progress=percents.append)

    assert summary == TxSummary(size=51200, seconds=42.0, kbps=9.76)
    assert percents == [25, 100, 100]
    assert engine.tx_state.phase is RadioPhase.COMPLETED
    assert engine.tx_state.retries == 3
    assert engine.tx_state.file_name == "photo.jpg"
