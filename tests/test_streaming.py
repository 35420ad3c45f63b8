"""Tests for line framing of streamed bodies."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, List

import pytest

from groovechat.core.errors import StreamDecodeWarning
from groovechat.providers.streaming import (
    LineReader,
    ReaderState,
    iter_ndjson_frames,
    iter_sse_frames,
)


class ByteSource:
    def __init__(self, chunks: List[bytes]) -> None:
        self.chunks = chunks
        self.closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._gen()

    async def _gen(self) -> AsyncIterator[bytes]:
        try:
            for chunk in self.chunks:
                yield chunk
        finally:
            self.closed = True


async def collect(reader) -> List:
    return [item async for item in reader]


@pytest.mark.asyncio
async def test_lines_reassembled_across_reads() -> None:
    reader = LineReader(ByteSource([b"first li", b"ne\nsecond", b" line\nthi", b"rd\n"]))
    assert await collect(reader) == ["first line", "second line", "third"]
    assert reader.state is ReaderState.DONE


@pytest.mark.asyncio
async def test_multibyte_character_split_between_reads() -> None:
    encoded = "naïve café ß 日本\n".encode("utf-8")
    # Cut inside the 3-byte sequence for 日
    cut = encoded.index("日".encode("utf-8")) + 1
    reader = LineReader(ByteSource([encoded[:cut], encoded[cut:]]))

    lines = await collect(reader)

    assert lines == ["naïve café ß 日本"]
    assert "�" not in lines[0]


@pytest.mark.asyncio
async def test_every_byte_in_its_own_read() -> None:
    encoded = "ünïcödé\nline two\n".encode("utf-8")
    reader = LineReader(ByteSource([bytes([b]) for b in encoded]))
    assert await collect(reader) == ["ünïcödé", "line two"]


@pytest.mark.asyncio
async def test_crlf_and_unterminated_last_line() -> None:
    reader = LineReader(ByteSource([b"a\r\nb\r\n", b"tail"]))
    assert await collect(reader) == ["a", "b", "tail"]


@pytest.mark.asyncio
async def test_read_failure_marks_errored_and_propagates() -> None:
    async def broken() -> AsyncIterator[bytes]:
        yield b"ok\npart"
        raise ConnectionResetError("gone")

    reader = LineReader(broken())
    assert await reader.__anext__() == "ok"
    with pytest.raises(ConnectionResetError):
        await reader.__anext__()
    assert reader.state is ReaderState.ERRORED


@pytest.mark.asyncio
async def test_cancel_event_stops_reading_and_closes_source() -> None:
    source = ByteSource([b"one\n", b"two\n", b"three\n"])
    cancel = asyncio.Event()
    reader = LineReader(source.__aiter__(), cancel=cancel)

    assert await reader.__anext__() == "one"
    cancel.set()
    with pytest.raises(asyncio.CancelledError):
        await reader.__anext__()
    assert source.closed
    assert reader.state is ReaderState.ERRORED


@pytest.mark.asyncio
async def test_ndjson_skips_blank_and_malformed_lines() -> None:
    body = b'{"n": 1}\n\n{"n": oops}\n{"n": 2}\n'
    with pytest.warns(StreamDecodeWarning):
        frames = await collect(iter_ndjson_frames(LineReader(ByteSource([body])), "Ollama"))
    assert frames == [{"n": 1}, {"n": 2}]


@pytest.mark.asyncio
async def test_sse_stops_at_done_and_ignores_event_lines() -> None:
    body = (
        b"event: message_start\n"
        b'data: {"type": "message_start"}\n\n'
        b": keep-alive comment\n"
        b'data: {"type": "message_stop"}\n\n'
        b"data: [DONE]\n\n"
        b'data: {"type": "never_seen"}\n\n'
    )
    frames = await collect(iter_sse_frames(LineReader(ByteSource([body])), "Claude"))
    assert [f["type"] for f in frames] == ["message_start", "message_stop"]


@pytest.mark.asyncio
async def test_cancel_event_interrupts_read_waiting_for_bytes() -> None:
    closed = asyncio.Event()

    async def quiet_after_first_line() -> AsyncIterator[bytes]:
        try:
            yield b"one\n"
            await asyncio.Event().wait()
            yield b"never\n"
        finally:
            closed.set()

    cancel = asyncio.Event()
    reader = LineReader(quiet_after_first_line(), cancel=cancel)
    assert await reader.__anext__() == "one"

    asyncio.get_running_loop().call_later(0.05, cancel.set)
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(reader.__anext__(), timeout=2)

    assert closed.is_set()
    assert reader.state is ReaderState.ERRORED
