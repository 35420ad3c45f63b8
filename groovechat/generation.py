"""Content-generator bridge.

Exposes any chat provider through the structured "generate content" shape the
rest of the app works with (turns made of parts, candidates, token usage).
Provider failures never escape ``generate_content`` or
``generate_content_stream``: they come back as a single diagnostic candidate
so one bad call cannot end a session.

Token counts the provider does not report are estimated as
``ceil(characters / chars_per_token)``. That is a rough character heuristic,
not a tokenizer, and can be far off for code or non-English text.
"""

from __future__ import annotations
import asyncio
import logging
import math
from typing import AsyncIterator, Dict, List, Optional, Protocol

import httpx

from groovechat.client import ChatClient, config_from_settings
from groovechat.config import PROVIDER_LABELS, ProviderConfig
from groovechat.core.errors import ConfigurationError, UnsupportedOperation
from groovechat.schemas.chat import ChatMessage, TokenUsage
from groovechat.schemas.generation import (
    Candidate,
    Content,
    CountTokensResponse,
    GenerationRequest,
    GenerationResponse,
    Part,
    UsageMetadata,
)

logger = logging.getLogger(__name__)

LOCAL_CHARS_PER_TOKEN = 4.0
CLOUD_CHARS_PER_TOKEN = 3.5
CHARS_PER_TOKEN: Dict[str, float] = {
    "local": LOCAL_CHARS_PER_TOKEN,
    "cloud": CLOUD_CHARS_PER_TOKEN,
}

FINISH_STOP = "STOP"

TROUBLESHOOTING: Dict[str, List[str]] = {
    "local": [
        "Ensure Ollama is running: ollama serve",
        "Check model: ollama list",
    ],
    "cloud": [
        "Check CLAUDE_API_KEY",
        "Verify API key is valid",
        "Check network connectivity",
    ],
}


def estimate_tokens(text: str, chars_per_token: float) -> int:
    return math.ceil(len(text) / chars_per_token)


def extract_prompt(request: GenerationRequest) -> str:
    """Join every text part of every turn with newlines; other parts are skipped."""
    texts = [part.text for content in request.contents for part in content.parts if part.text]
    return "\n".join(texts)


def _candidate(text: str, finish_reason: Optional[str]) -> Candidate:
    return Candidate(
        content=Content(role="model", parts=[Part(text=text)]),
        finish_reason=finish_reason,
        index=0,
    )


def diagnostic_response(message: str) -> GenerationResponse:
    return GenerationResponse(
        candidates=[_candidate(message, FINISH_STOP)],
        usage_metadata=UsageMetadata(),
    )


class ContentGenerator(Protocol):
    async def generate_content(
        self, request: GenerationRequest, cancel: Optional[asyncio.Event] = None
    ) -> GenerationResponse:
        ...

    def generate_content_stream(
        self, request: GenerationRequest, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[GenerationResponse]:
        ...

    async def count_tokens(self, request: GenerationRequest) -> CountTokensResponse:
        ...

    async def embed_content(self, request: GenerationRequest) -> None:
        ...


class ChatContentGenerator:
    """ContentGenerator backed by a ChatClient."""

    def __init__(self, client: ChatClient, chars_per_token: Optional[float] = None) -> None:
        self.client = client
        self.chars_per_token = chars_per_token or CHARS_PER_TOKEN[client.provider]
        self.label = PROVIDER_LABELS.get(client.provider, client.provider)

    def _usage(self, prompt: str, text: str, reported: Optional[TokenUsage]) -> UsageMetadata:
        if reported is not None:
            prompt_tokens = reported.prompt_tokens
            completion_tokens = reported.completion_tokens
        else:
            prompt_tokens = estimate_tokens(prompt, self.chars_per_token)
            completion_tokens = estimate_tokens(text, self.chars_per_token)
        return UsageMetadata(
            prompt_token_count=prompt_tokens,
            candidates_token_count=completion_tokens,
            total_token_count=prompt_tokens + completion_tokens,
        )

    def _error_text(self, error: Exception, streaming: bool = False) -> str:
        kind = "Streaming Error" if streaming else "Error"
        text = f"❌ {self.label} {kind}: {error}"
        tips = TROUBLESHOOTING.get(self.client.provider)
        if tips and not streaming:
            text += "\n\nTroubleshooting:\n" + "\n".join(f"- {tip}" for tip in tips)
        return text

    async def generate_content(
        self, request: GenerationRequest, cancel: Optional[asyncio.Event] = None
    ) -> GenerationResponse:
        prompt = extract_prompt(request)
        try:
            response = await self.client.chat([ChatMessage(role="user", content=prompt)], cancel=cancel)
        except Exception as e:
            logger.warning("%s generate_content failed: %s", self.label, e)
            return diagnostic_response(self._error_text(e))

        return GenerationResponse(
            candidates=[_candidate(response.content, FINISH_STOP)],
            usage_metadata=self._usage(prompt, response.content, response.usage),
        )

    async def generate_content_stream(
        self, request: GenerationRequest, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[GenerationResponse]:
        prompt = extract_prompt(request)
        try:
            async for chunk in self.client.chat_stream([ChatMessage(role="user", content=prompt)], cancel=cancel):
                if chunk.content or chunk.done:
                    yield GenerationResponse(
                        candidates=[_candidate(chunk.content, FINISH_STOP if chunk.done else None)]
                    )
        except Exception as e:
            logger.warning("%s generate_content_stream failed: %s", self.label, e)
            yield diagnostic_response(self._error_text(e, streaming=True))

    async def count_tokens(self, request: GenerationRequest) -> CountTokensResponse:
        return CountTokensResponse(total_tokens=estimate_tokens(extract_prompt(request), self.chars_per_token))

    async def embed_content(self, request: GenerationRequest) -> None:
        raise UnsupportedOperation(f"Embedding not supported for {self.label}")


class ErrorContentGenerator:
    """Stands in when no provider could be configured, reporting why on every call."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    def _text(self) -> str:
        return f"❌ Content Generator Error: {self.error}\n\nPlease check your configuration and try again."

    async def generate_content(
        self, request: GenerationRequest, cancel: Optional[asyncio.Event] = None
    ) -> GenerationResponse:
        return diagnostic_response(self._text())

    async def generate_content_stream(
        self, request: GenerationRequest, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[GenerationResponse]:
        yield diagnostic_response(self._text())

    async def count_tokens(self, request: GenerationRequest) -> CountTokensResponse:
        return CountTokensResponse(total_tokens=0)

    async def embed_content(self, request: GenerationRequest) -> None:
        raise UnsupportedOperation("Embedding not available due to configuration error")


def create_content_generator(
    config: Optional[ProviderConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ContentGenerator:
    try:
        client = ChatClient(config or config_from_settings(), transport=transport)
    except ConfigurationError as e:
        logger.error("Content generator creation error: %s", e)
        return ErrorContentGenerator(e)
    logger.info("Using %s: %s", PROVIDER_LABELS[client.provider], client.model)
    return ChatContentGenerator(client)
