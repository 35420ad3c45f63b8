from __future__ import annotations
import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional, Sequence

import httpx
from pydantic import SecretStr, ValidationError

from groovechat.config import (
    SETUP_GUIDANCE,
    CloudProviderConfig,
    LocalProviderConfig,
    ProviderConfig,
    Settings,
    normalize_provider,
)
from groovechat.core.errors import ConfigurationError
from groovechat.providers.base import ChatAdapter
from groovechat.providers.claude import ClaudeAdapter
from groovechat.providers.ollama import OllamaAdapter
from groovechat.schemas.chat import ChatMessage, ChatResponse, ChatStreamChunk

logger = logging.getLogger(__name__)


def create_adapter(
    config: ProviderConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ChatAdapter:
    if isinstance(config, LocalProviderConfig):
        if not config.host or not config.model:
            raise ConfigurationError("Local provider needs both a host and a model.\n\n" + SETUP_GUIDANCE)
        return OllamaAdapter(config, transport=transport)
    if isinstance(config, CloudProviderConfig):
        if not config.api_key.get_secret_value():
            raise ConfigurationError(
                "CLAUDE_API_KEY environment variable is required for Claude provider.\n\n" + SETUP_GUIDANCE
            )
        return ClaudeAdapter(config, transport=transport)
    raise ConfigurationError(f"Invalid provider configuration: {config!r}")


class ChatClient:
    """Single entry point for chatting with whichever provider is configured."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._adapter = create_adapter(config, transport=transport)

    @property
    def adapter(self) -> ChatAdapter:
        return self._adapter

    @property
    def provider(self) -> str:
        return self.config.provider

    @property
    def model(self) -> str:
        return self._adapter.get_model()

    def get_provider(self) -> str:
        return self.provider

    def get_model(self) -> str:
        return self.model

    async def chat(self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None) -> ChatResponse:
        logger.debug("chat provider=%s model=%s messages=%d", self.provider, self.model, len(messages))
        native = await self._adapter.chat(list(messages), cancel=cancel)
        return self._adapter.normalize(native)

    async def chat_stream(
        self, messages: Sequence[ChatMessage], cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ChatStreamChunk]:
        """Yield normalized chunks. The last one always has ``done=True``."""
        logger.debug("chat_stream provider=%s model=%s messages=%d", self.provider, self.model, len(messages))
        frames = self._adapter.chat_stream(list(messages), cancel=cancel)
        async with aclosing(frames), aclosing(self._adapter.normalize_stream(frames)) as chunks:
            async for chunk in chunks:
                yield chunk
                if chunk.done:
                    return
        yield ChatStreamChunk(content="", done=True, model=self.model, provider=self.provider)

    async def is_available(self) -> bool:
        return await self._adapter.is_available()

    @classmethod
    def from_environment(
        cls,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ChatClient":
        return cls(config_from_settings(settings), transport=transport)


def config_from_settings(settings: Optional[Settings] = None) -> ProviderConfig:
    """Build the provider config from CHAT_CLI_PROVIDER and friends."""
    if settings is None:
        try:
            settings = Settings()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid chat configuration in environment:\n{e}\n\n{SETUP_GUIDANCE}") from e

    raw = settings.chat_cli_provider
    if not raw:
        raise ConfigurationError(
            "Chat CLI not configured. Please set CHAT_CLI_PROVIDER environment variable.\n\n" + SETUP_GUIDANCE
        )
    provider = normalize_provider(raw)
    if provider == "local":
        return LocalProviderConfig(host=settings.resolved_ollama_host, model=settings.ollama_model)
    if provider == "cloud":
        api_key: Optional[SecretStr] = settings.claude_api_key
        if api_key is None or not api_key.get_secret_value():
            raise ConfigurationError(
                "CLAUDE_API_KEY environment variable is required for Claude provider.\n\n" + SETUP_GUIDANCE
            )
        try:
            return CloudProviderConfig(
                api_key=api_key,
                model=settings.claude_model,
                max_tokens=settings.claude_max_tokens,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid Claude configuration:\n{e}\n\n{SETUP_GUIDANCE}") from e
    raise ConfigurationError(f"Unsupported provider: {raw}\n\n" + SETUP_GUIDANCE)
