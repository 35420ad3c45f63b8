from __future__ import annotations

import asyncio
import json
from typing import Callable, Iterable, List, Optional

import httpx
import pytest

from groovechat.config import CloudProviderConfig, LocalProviderConfig, get_settings

ENV_VARS = [
    "CHAT_CLI_PROVIDER",
    "OLLAMA_HOST",
    "OLLAMA_URL",
    "OLLAMA_MODEL",
    "CLAUDE_API_KEY",
    "CLAUDE_MODEL",
    "CLAUDE_MAX_TOKENS",
    "GROOVECHAT_LOG_LEVEL",
]

OLLAMA_HOST = "http://ollama.test:11434"


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the given byte chunks."""

    def __init__(
        self, chunks: Iterable[bytes], fail_after: Optional[int] = None, stall_after: Optional[int] = None
    ) -> None:
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.stall_after = stall_after
        self.closed = False

    async def __aiter__(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise httpx.ReadError("connection reset")
            if self.stall_after is not None and i >= self.stall_after:
                # Connection stays open but the server never sends another byte
                await asyncio.Event().wait()
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def ndjson(*frames: dict) -> bytes:
    return b"".join(json.dumps(f, ensure_ascii=False).encode("utf-8") + b"\n" for f in frames)


def sse(*events: dict, done: bool = True) -> bytes:
    out: List[str] = []
    for e in events:
        out.append(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n")
    if done:
        out.append("data: [DONE]\n\n")
    return "".join(out).encode("utf-8")


def ollama_frame(content: str, done: bool = False, model: str = "llama3.2") -> dict:
    return {
        "model": model,
        "created_at": "2025-01-01T00:00:00Z",
        "message": {"role": "assistant", "content": content},
        "done": done,
    }


def claude_stream_events(*pieces: str) -> List[dict]:
    events: List[dict] = [
        {"type": "message_start", "message": {"id": "msg_1", "model": "claude-test", "content": []}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "ping"},
    ]
    for piece in pieces:
        events.append({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": piece}})
    events += [
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 3}},
        {"type": "message_stop"},
    ]
    return events


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    for name in ENV_VARS:
        # setenv first so monkeypatch records the prior value and undoes
        # anything the code under test writes into os.environ
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def local_config() -> LocalProviderConfig:
    return LocalProviderConfig(host=OLLAMA_HOST, model="llama3.2")


@pytest.fixture
def cloud_config() -> CloudProviderConfig:
    return CloudProviderConfig(api_key="sk-ant-test-key", model="claude-test", max_tokens=256)
