from __future__ import annotations
from functools import lru_cache
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama2"
DEFAULT_CLAUDE_MODEL = "claude-3-sonnet-20240229"
DEFAULT_CLAUDE_MAX_TOKENS = 4096

# Values accepted in CHAT_CLI_PROVIDER, mapped onto the two provider tags
PROVIDER_ALIASES = {
    "local": "local",
    "ollama": "local",
    "cloud": "cloud",
    "claude": "cloud",
    "anthropic": "cloud",
}


def normalize_provider(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return PROVIDER_ALIASES.get(value.strip().lower())


class Settings(BaseSettings):
    chat_cli_provider: Optional[str] = None
    # Local inference (Ollama)
    ollama_host: Optional[str] = None
    ollama_url: Optional[str] = None
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    # Cloud chat (Anthropic)
    claude_api_key: Optional[SecretStr] = None
    claude_model: str = DEFAULT_CLAUDE_MODEL
    claude_max_tokens: int = DEFAULT_CLAUDE_MAX_TOKENS

    groovechat_log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @property
    def resolved_ollama_host(self) -> str:
        return (self.ollama_host or self.ollama_url or DEFAULT_OLLAMA_HOST).rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


class LocalProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["local"] = "local"
    host: str = DEFAULT_OLLAMA_HOST
    model: str = DEFAULT_OLLAMA_MODEL


class CloudProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["cloud"] = "cloud"
    api_key: SecretStr
    model: str = DEFAULT_CLAUDE_MODEL
    max_tokens: int = Field(default=DEFAULT_CLAUDE_MAX_TOKENS, ge=1)


ProviderConfig = Annotated[
    Union[LocalProviderConfig, CloudProviderConfig],
    Field(discriminator="provider"),
]


SETUP_GUIDANCE = """For Ollama (local):
  export CHAT_CLI_PROVIDER="ollama"
  export OLLAMA_MODEL="llama3.2"
  export OLLAMA_HOST="http://localhost:11434"

For Claude (cloud):
  export CHAT_CLI_PROVIDER="claude"
  export CLAUDE_API_KEY="your_api_key"
  export CLAUDE_MODEL="claude-3-sonnet-20240229"   # optional
  export CLAUDE_MAX_TOKENS="4096"                   # optional"""

# Human-facing backend names, also used for the "ollama/llama3.2" display form
PROVIDER_LABELS = {"local": "Ollama", "cloud": "Claude"}
