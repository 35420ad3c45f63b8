from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Protocol, Sequence

import httpx

from groovechat.core.errors import ProviderHTTPError
from groovechat.schemas.chat import ChatMessage, ChatResponse, ChatStreamChunk


AVAILABILITY_TIMEOUT = 5.0


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(connect=10.0, read=120.0, write=30.0, pool=10.0)


class ChatAdapter(Protocol):
    """What the façade needs from one backend.

    ``normalize`` and ``normalize_stream`` turn the adapter-native shapes into
    the provider-neutral ChatResponse / ChatStreamChunk, so callers never have
    to look at which backend is active.
    """

    provider: str

    async def chat(self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None) -> Any:
        ...

    def chat_stream(self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None) -> AsyncIterator[Any]:
        ...

    async def is_available(self) -> bool:
        ...

    def get_model(self) -> str:
        ...

    def normalize(self, response: Any) -> ChatResponse:
        ...

    def normalize_stream(self, frames: AsyncIterator[Any]) -> AsyncIterator[ChatStreamChunk]:
        ...


async def raise_for_status(resp: httpx.Response, provider: str) -> None:
    if resp.is_success:
        return
    body = await resp.aread()
    raise ProviderHTTPError(provider, resp.status_code, body.decode("utf-8", errors="ignore"))


async def run_cancellable(coro: Any, cancel: Optional[asyncio.Event]) -> Any:
    """Await ``coro`` unless ``cancel`` fires first, in which case it is cancelled."""
    if cancel is None:
        return await coro
    if cancel.is_set():
        coro.close()
        raise asyncio.CancelledError("request cancelled")
    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if task in done:
        return task.result()
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    raise asyncio.CancelledError("request cancelled")


@asynccontextmanager
async def open_stream(
    client: httpx.AsyncClient, request: httpx.Request, cancel: Optional[asyncio.Event]
) -> AsyncIterator[httpx.Response]:
    """Send ``request`` for streaming; the cancel event also covers waiting for the headers."""
    resp = await run_cancellable(client.send(request, stream=True), cancel)
    try:
        yield resp
    finally:
        await resp.aclose()


def to_wire_messages(messages: Sequence[ChatMessage]) -> List[dict]:
    return [{"role": m.role, "content": m.content} for m in messages]
