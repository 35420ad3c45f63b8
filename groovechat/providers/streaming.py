"""Line framing for streamed HTTP bodies.

Both providers stream newline-delimited text: Ollama sends one JSON object per
line, Anthropic sends Server-Sent Events where the interesting lines look like
``data: {...}``. ``LineReader`` turns the raw byte chunks coming off the socket
into complete lines, holding back any partial UTF-8 sequence and any partial
line until the next read completes them.
"""

from __future__ import annotations
import asyncio
import codecs
import json
import warnings
from collections import deque
from enum import Enum
from typing import Any, AsyncIterator, Deque, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from groovechat.core.errors import StreamDecodeWarning
from groovechat.providers.base import run_cancellable

M = TypeVar("M", bound=BaseModel)


SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class ReaderState(str, Enum):
    AWAITING_BYTES = "awaiting_bytes"
    HAVE_LINE = "have_line"
    DONE = "done"
    ERRORED = "errored"


class LineReader:
    """Async iterator of decoded lines (without the trailing newline).

    Nothing is buffered beyond the decoder remainder and the current partial
    line, so a slow consumer slows down the reads from the transport.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        cancel: Optional[asyncio.Event] = None,
        encoding: str = "utf-8",
    ) -> None:
        self._chunks = chunks.__aiter__()
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._partial = ""
        self._lines: Deque[str] = deque()
        self._cancel = cancel
        self.state = ReaderState.AWAITING_BYTES

    def __aiter__(self) -> "LineReader":
        return self

    async def __anext__(self) -> str:
        while True:
            if self._lines:
                line = self._lines.popleft()
                self.state = ReaderState.HAVE_LINE if self._lines else ReaderState.AWAITING_BYTES
                return line
            if self.state in (ReaderState.DONE, ReaderState.ERRORED):
                raise StopAsyncIteration
            if self._cancel is not None and self._cancel.is_set():
                await self._fail()
                raise asyncio.CancelledError("stream cancelled")

            try:
                chunk = await self._read()
            except StopAsyncIteration:
                tail = self._partial + self._decoder.decode(b"", final=True)
                self._partial = ""
                self.state = ReaderState.DONE
                if tail:
                    return tail.rstrip("\r")
                raise
            except BaseException:
                await self._fail()
                raise

            self._feed(self._decoder.decode(chunk))

    async def _read(self) -> bytes:
        if self._cancel is None:
            return await self._chunks.__anext__()
        # A read blocked on a quiet connection must still notice the cancel event
        return await run_cancellable(self._next_chunk(), self._cancel)

    async def _next_chunk(self) -> bytes:
        return await self._chunks.__anext__()

    def _feed(self, text: str) -> None:
        if not text:
            return
        pieces = (self._partial + text).split("\n")
        self._partial = pieces.pop()
        self._lines.extend(p.rstrip("\r") for p in pieces)
        if self._lines:
            self.state = ReaderState.HAVE_LINE

    async def _fail(self) -> None:
        self.state = ReaderState.ERRORED
        self._lines.clear()
        await self.aclose()

    async def aclose(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()


def parse_json_frame(raw: str, provider: str) -> Optional[Any]:
    """Parse one frame, warning and returning None when it is malformed."""
    try:
        return json.loads(raw)
    except ValueError:
        warnings.warn(
            StreamDecodeWarning(f"Failed to parse {provider} response line: {raw[:200]!r}"),
            stacklevel=2,
        )
        return None


def validate_frame(model: Type[M], frame: dict, provider: str) -> Optional[M]:
    try:
        return model.model_validate(frame)
    except ValidationError as e:
        warnings.warn(
            StreamDecodeWarning(f"Unexpected {provider} frame shape: {e.error_count()} error(s)"),
            stacklevel=2,
        )
        return None


async def iter_ndjson_frames(lines: AsyncIterator[str], provider: str) -> AsyncIterator[dict]:
    async for line in lines:
        if not line.strip():
            continue
        obj = parse_json_frame(line, provider)
        if isinstance(obj, dict):
            yield obj


async def iter_sse_frames(lines: AsyncIterator[str], provider: str) -> AsyncIterator[dict]:
    """Yield the JSON payload of each ``data:`` line until ``data: [DONE]``."""
    async for line in lines:
        # event:, id: and comment lines carry nothing the payload doesn't
        if not line.startswith(SSE_DATA_PREFIX):
            continue
        data = line[len(SSE_DATA_PREFIX):].strip()
        if not data:
            continue
        if data == SSE_DONE:
            return
        obj = parse_json_frame(data, provider)
        if isinstance(obj, dict):
            yield obj
