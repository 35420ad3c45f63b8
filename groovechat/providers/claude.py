from __future__ import annotations
import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple
import httpx

from groovechat.config import CloudProviderConfig
from groovechat.providers.base import (
    AVAILABILITY_TIMEOUT,
    default_timeout,
    open_stream,
    raise_for_status,
    run_cancellable,
)
from groovechat.providers.streaming import LineReader, iter_sse_frames, validate_frame
from groovechat.schemas.chat import (
    ChatMessage,
    ChatResponse,
    ChatStreamChunk,
    ClaudeResponse,
    ClaudeStreamEvent,
    TokenUsage,
)

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


def split_system_messages(messages: Sequence[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """Pull system turns out of the history.

    Anthropic takes the system prompt as a separate field, so every system
    message is joined with newlines and the rest keep their order.
    """
    system_parts: List[str] = []
    turns: List[Dict[str, str]] = []
    for m in messages:
        if m.role == "system":
            system_parts.append(m.content)
            continue
        turns.append({"role": m.role, "content": m.content})
    system = "\n".join(system_parts) if system_parts else None
    return system, turns


class ClaudeAdapter:
    """Cloud chat through the Anthropic Messages API."""

    provider = "cloud"

    def __init__(
        self,
        config: CloudProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_url: str = API_URL,
    ) -> None:
        self.config = config
        self.api_url = api_url
        self._transport = transport

    def get_model(self) -> str:
        return self.config.model

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or default_timeout(),
            trust_env=True,
            transport=self._transport,
        )

    def _headers(self, stream: bool = False) -> Dict[str, str]:
        headers = {
            "content-type": "application/json",
            "x-api-key": self.config.api_key.get_secret_value(),
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if stream:
            headers["accept"] = "text/event-stream"
        return headers

    def build_payload(self, messages: Sequence[ChatMessage], stream: bool = False) -> dict:
        system, turns = split_system_messages(messages)
        payload: dict = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "messages": turns,
        }
        if system:
            payload["system"] = system
        if stream:
            payload["stream"] = True
        return payload

    async def chat(self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None) -> ClaudeResponse:
        async with self._client() as client:
            resp = await run_cancellable(
                client.post(self.api_url, headers=self._headers(), json=self.build_payload(messages)),
                cancel,
            )
            await raise_for_status(resp, "Claude")
            return ClaudeResponse.model_validate(resp.json())

    async def chat_stream(
        self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ClaudeStreamEvent]:
        payload = self.build_payload(messages, stream=True)
        async with self._client() as client:
            request = client.build_request("POST", self.api_url, headers=self._headers(stream=True), json=payload)
            async with open_stream(client, request, cancel) as resp:
                await raise_for_status(resp, "Claude")
                lines = LineReader(resp.aiter_bytes(), cancel=cancel)
                async for frame in iter_sse_frames(lines, "Claude"):
                    event = validate_frame(ClaudeStreamEvent, frame, "Claude")
                    if event is not None:
                        yield event

    async def is_available(self) -> bool:
        payload = {
            "model": self.config.model,
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "test"}],
        }
        try:
            async with self._client(httpx.Timeout(AVAILABILITY_TIMEOUT)) as client:
                resp = await client.post(self.api_url, headers=self._headers(), json=payload)
        except Exception as e:
            logger.debug("Claude API not reachable: %s", e)
            return False
        # A 4xx (bad key, quota) still means the service answered
        return resp.status_code < 500

    def normalize(self, response: ClaudeResponse) -> ChatResponse:
        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            )
        return ChatResponse(
            content=response.first_text,
            model=response.model or self.config.model,
            provider=self.provider,
            usage=usage,
        )

    async def normalize_stream(self, frames: AsyncIterator[ClaudeStreamEvent]) -> AsyncIterator[ChatStreamChunk]:
        model = self.config.model
        async for event in frames:
            if event.type == "content_block_delta" and event.delta is not None and event.delta.text:
                yield ChatStreamChunk(content=event.delta.text, done=False, model=model, provider=self.provider)
            elif event.type == "message_stop":
                yield ChatStreamChunk(content="", done=True, model=model, provider=self.provider)
                return
