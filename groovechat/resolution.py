"""Provider resolution and zero-configuration setup for the local backend.

``resolve_provider`` decides whether a requested backend is ready to use. For
the local backend it can probe a running Ollama, pick the best installed model
and hand back a ready-made config. Nothing here touches the environment; the
entry point calls ``apply_to_environment`` if it wants the selection to stick
for the rest of the process.
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from typing import MutableMapping, Optional, Sequence, Union

import httpx

from groovechat.client import config_from_settings
from groovechat.config import (
    DEFAULT_OLLAMA_HOST,
    LocalProviderConfig,
    ProviderConfig,
    Settings,
    get_settings,
    normalize_provider,
)
from groovechat.core.errors import ConfigurationError
from groovechat.providers.ollama import OllamaAdapter
from groovechat.schemas.chat import ModelDescriptor

logger = logging.getLogger(__name__)

# Earlier entries win; matched as name prefixes
MODEL_PRIORITY = [
    "llama3.2",
    "llama3.1",
    "codellama",
    "llama3",
    "llama2",
    "phi3",
    "mistral",
    "qwen",
    "gemma",
]
FALLBACK_MODEL = "llama3.2"


@dataclass(frozen=True)
class Ok:
    config: ProviderConfig


@dataclass(frozen=True)
class NeedsSetup:
    provider: str


@dataclass(frozen=True)
class ConfigError:
    message: str


ResolutionResult = Union[Ok, NeedsSetup, ConfigError]


OLLAMA_NOT_RUNNING = """🦙 Ollama Setup Required

❌ Ollama is not running at {host}

🛠️ To get started:
1. Install Ollama: https://ollama.ai
2. Start Ollama: `ollama serve`
3. Download a model: `ollama pull llama3.2`

Then restart groovechat and select Ollama again."""

OLLAMA_NO_MODELS = """🦙 Ollama Models Required

📥 No models found

🛠️ Download recommended models:
• `ollama pull llama3.2` - Latest Llama (recommended)
• `ollama pull codellama` - Code-specialized model
• `ollama pull phi3` - Smaller, faster model

After downloading, restart groovechat and select Ollama again."""

OLLAMA_CONNECTION_ERROR = """🦙 Ollama Connection Error

❌ {error}

🛠️ Troubleshooting:
• Make sure Ollama is installed and running
• Check if Ollama is accessible: `curl {host}/api/tags`
• Restart Ollama service: `ollama serve`"""


def select_best_model(models: Sequence[ModelDescriptor]) -> str:
    for prefix in MODEL_PRIORITY:
        for model in models:
            if model.name.startswith(prefix):
                return model.name
    if models:
        return models[0].name
    return FALLBACK_MODEL


async def auto_configure_local(
    host: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResolutionResult:
    """Probe a local Ollama and build a config for its best installed model.

    Never falls back to another provider: an unreachable server or an empty
    model list comes back as a ConfigError carrying the next step for the user.
    """
    host = (host or get_settings().resolved_ollama_host or DEFAULT_OLLAMA_HOST).rstrip("/")
    # Model is a placeholder until one is picked from the listing
    probe = OllamaAdapter(LocalProviderConfig(host=host, model=FALLBACK_MODEL), transport=transport)

    if not await probe.is_available():
        logger.info("Ollama not reachable at %s", host)
        return ConfigError(OLLAMA_NOT_RUNNING.format(host=host))

    try:
        models = await probe.list_models()
    except Exception as e:
        logger.warning("Listing Ollama models failed: %s", e)
        return ConfigError(OLLAMA_CONNECTION_ERROR.format(error=e, host=host))

    if not models:
        return ConfigError(OLLAMA_NO_MODELS)

    best = select_best_model(models)
    logger.info("Auto-selected Ollama model %s from %d installed at %s", best, len(models), host)
    return Ok(LocalProviderConfig(host=host, model=best))


async def resolve_provider(
    requested: str,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResolutionResult:
    """Check that ``requested`` can be used right now."""
    settings = settings or get_settings()
    provider = normalize_provider(requested)
    configured = normalize_provider(settings.chat_cli_provider)

    if provider == "local":
        if configured == "local":
            return Ok(config_from_settings(settings))
        return await auto_configure_local(settings.resolved_ollama_host, transport=transport)

    if provider == "cloud":
        key = settings.claude_api_key
        if configured != "cloud" or key is None or not key.get_secret_value():
            return NeedsSetup("cloud")
        try:
            return Ok(config_from_settings(settings))
        except ConfigurationError as e:
            return ConfigError(str(e))

    return ConfigError(f"Invalid provider selected: {requested!r}. Choose 'ollama' or 'claude'.")


def apply_to_environment(
    config: ProviderConfig,
    environ: Optional[MutableMapping[str, str]] = None,
) -> None:
    """Write the selection back so later from_environment() calls see it."""
    env = os.environ if environ is None else environ
    env["CHAT_CLI_PROVIDER"] = config.provider
    if isinstance(config, LocalProviderConfig):
        env["OLLAMA_MODEL"] = config.model
        env["OLLAMA_HOST"] = config.host
    else:
        env["CLAUDE_MODEL"] = config.model
        env["CLAUDE_MAX_TOKENS"] = str(config.max_tokens)
    get_settings.cache_clear()


def persistence_hint(config: ProviderConfig) -> str:
    lines = ["💡 To make this permanent, add to your shell profile:"]
    if isinstance(config, LocalProviderConfig):
        lines.append('   export CHAT_CLI_PROVIDER="ollama"')
        lines.append(f'   export OLLAMA_MODEL="{config.model}"')
        lines.append(f'   export OLLAMA_HOST="{config.host}"')
    else:
        lines.append('   export CHAT_CLI_PROVIDER="claude"')
        lines.append(f'   export CLAUDE_MODEL="{config.model}"')
    return "\n".join(lines)
