from __future__ import annotations
import asyncio
import logging
from typing import AsyncIterator, List, Optional, Sequence
import httpx

from groovechat.config import LocalProviderConfig
from groovechat.providers.base import (
    AVAILABILITY_TIMEOUT,
    default_timeout,
    open_stream,
    raise_for_status,
    run_cancellable,
    to_wire_messages,
)
from groovechat.providers.streaming import LineReader, iter_ndjson_frames, validate_frame
from groovechat.schemas.chat import (
    ChatMessage,
    ChatResponse,
    ChatStreamChunk,
    ModelDescriptor,
    OllamaChatResponse,
    TokenUsage,
)

logger = logging.getLogger(__name__)


class OllamaAdapter:
    """Local inference through an Ollama server (``/api/chat``, ``/api/tags``)."""

    provider = "local"

    def __init__(
        self,
        config: LocalProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport

    @property
    def host(self) -> str:
        return self.config.host.rstrip("/")

    def get_model(self) -> str:
        return self.config.model

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or default_timeout(),
            trust_env=True,
            transport=self._transport,
        )

    def _payload(self, messages: Sequence[ChatMessage], stream: bool) -> dict:
        return {
            "model": self.config.model,
            "messages": to_wire_messages(messages),
            "stream": stream,
        }

    async def chat(self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None) -> OllamaChatResponse:
        url = f"{self.host}/api/chat"
        headers = {"Content-Type": "application/json"}
        async with self._client() as client:
            resp = await run_cancellable(
                client.post(url, headers=headers, json=self._payload(messages, stream=False)),
                cancel,
            )
            await raise_for_status(resp, "Ollama")
            return OllamaChatResponse.model_validate(resp.json())

    async def chat_stream(
        self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[OllamaChatResponse]:
        url = f"{self.host}/api/chat"
        headers = {"Content-Type": "application/json"}
        async with self._client() as client:
            request = client.build_request("POST", url, headers=headers, json=self._payload(messages, stream=True))
            async with open_stream(client, request, cancel) as resp:
                await raise_for_status(resp, "Ollama")
                lines = LineReader(resp.aiter_bytes(), cancel=cancel)
                async for frame in iter_ndjson_frames(lines, "Ollama"):
                    parsed = validate_frame(OllamaChatResponse, frame, "Ollama")
                    if parsed is not None:
                        yield parsed

    async def list_models(self, cancel: Optional[asyncio.Event] = None) -> List[ModelDescriptor]:
        async with self._client() as client:
            resp = await run_cancellable(client.get(f"{self.host}/api/tags"), cancel)
            await raise_for_status(resp, "Ollama")
            data = resp.json() or {}
        return [ModelDescriptor.model_validate(m) for m in data.get("models") or []]

    async def is_available(self) -> bool:
        try:
            async with self._client(httpx.Timeout(AVAILABILITY_TIMEOUT)) as client:
                resp = await client.get(f"{self.host}/api/tags")
                return resp.is_success
        except Exception as e:
            logger.debug("Ollama at %s not reachable: %s", self.host, e)
            return False

    def normalize(self, response: OllamaChatResponse) -> ChatResponse:
        usage = None
        if response.prompt_eval_count is not None and response.eval_count is not None:
            usage = TokenUsage(prompt_tokens=response.prompt_eval_count, completion_tokens=response.eval_count)
        return ChatResponse(
            content=response.message.content,
            model=response.model or self.config.model,
            provider=self.provider,
            usage=usage,
        )

    async def normalize_stream(self, frames: AsyncIterator[OllamaChatResponse]) -> AsyncIterator[ChatStreamChunk]:
        async for frame in frames:
            yield ChatStreamChunk(
                content=frame.message.content,
                done=frame.done,
                model=frame.model or self.config.model,
                provider=self.provider,
            )
