"""Tests for provider resolution and Ollama auto-configuration."""

from __future__ import annotations

import os

import httpx
import pytest

from conftest import OLLAMA_HOST, mock_transport
from groovechat.client import ChatClient
from groovechat.config import CloudProviderConfig, LocalProviderConfig, Settings
from groovechat.resolution import (
    ConfigError,
    NeedsSetup,
    Ok,
    apply_to_environment,
    auto_configure_local,
    persistence_hint,
    resolve_provider,
    select_best_model,
)
from groovechat.schemas.chat import ModelDescriptor


def tags_transport(names, status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(status, json={"models": [{"name": n, "size": 1, "digest": "d"} for n in names]})

    return mock_transport(handler)


def down_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    return mock_transport(handler)


def descriptors(*names: str):
    return [ModelDescriptor(name=n) for n in names]


@pytest.mark.parametrize(
    "names,expected",
    [
        (["mistral:latest", "llama3.2:latest"], "llama3.2:latest"),
        (["gemma:2b", "phi3:mini", "codellama:7b"], "codellama:7b"),
        (["llama3:8b", "llama3.1:8b"], "llama3.1:8b"),
        (["deepseek-r1:7b", "tinyllama"], "deepseek-r1:7b"),
        ([], "llama3.2"),
    ],
)
def test_select_best_model(names, expected) -> None:
    assert select_best_model(descriptors(*names)) == expected


@pytest.mark.asyncio
async def test_auto_configure_picks_priority_model_and_updates_environment() -> None:
    result = await auto_configure_local(OLLAMA_HOST, transport=tags_transport(["mistral:latest", "llama3.2:latest"]))

    assert isinstance(result, Ok)
    assert result.config == LocalProviderConfig(host=OLLAMA_HOST, model="llama3.2:latest")

    env: dict = {}
    apply_to_environment(result.config, environ=env)
    assert env == {
        "CHAT_CLI_PROVIDER": "local",
        "OLLAMA_MODEL": "llama3.2:latest",
        "OLLAMA_HOST": OLLAMA_HOST,
    }


@pytest.mark.asyncio
async def test_auto_configure_selection_visible_to_later_factory() -> None:
    result = await auto_configure_local(OLLAMA_HOST, transport=tags_transport(["phi3:mini"]))
    assert isinstance(result, Ok)

    apply_to_environment(result.config)
    client = ChatClient.from_environment()

    assert client.provider == "local"
    assert client.model == "phi3:mini"
    assert client.config.host == OLLAMA_HOST


@pytest.mark.asyncio
async def test_auto_configure_unreachable_gives_install_instructions() -> None:
    result = await auto_configure_local(OLLAMA_HOST, transport=down_transport())
    assert isinstance(result, ConfigError)
    assert "ollama serve" in result.message
    assert "https://ollama.ai" in result.message


@pytest.mark.asyncio
async def test_auto_configure_without_models_gives_pull_instructions() -> None:
    result = await auto_configure_local(OLLAMA_HOST, transport=tags_transport([]))
    assert isinstance(result, ConfigError)
    assert "ollama pull llama3.2" in result.message


@pytest.mark.asyncio
async def test_auto_configure_does_not_touch_environment() -> None:
    result = await auto_configure_local(OLLAMA_HOST, transport=tags_transport(["llama3.2:latest"]))
    assert isinstance(result, Ok)
    assert "CHAT_CLI_PROVIDER" not in os.environ
    assert "OLLAMA_MODEL" not in os.environ


@pytest.mark.asyncio
async def test_resolve_local_uses_existing_selection_without_probing() -> None:
    settings = Settings(chat_cli_provider="ollama", ollama_model="codellama", ollama_host=OLLAMA_HOST)
    result = await resolve_provider("ollama", settings, transport=down_transport())
    assert result == Ok(LocalProviderConfig(host=OLLAMA_HOST, model="codellama"))


@pytest.mark.asyncio
async def test_resolve_local_auto_configures_when_not_selected() -> None:
    settings = Settings(ollama_host=OLLAMA_HOST)
    result = await resolve_provider("local", settings, transport=tags_transport(["gemma:2b"]))
    assert result == Ok(LocalProviderConfig(host=OLLAMA_HOST, model="gemma:2b"))


@pytest.mark.asyncio
async def test_resolve_local_never_falls_back_to_cloud() -> None:
    settings = Settings(ollama_host=OLLAMA_HOST, claude_api_key="sk-ant-xyz")
    result = await resolve_provider("local", settings, transport=down_transport())
    assert isinstance(result, ConfigError)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {},
        {"chat_cli_provider": "ollama", "claude_api_key": "sk-ant-xyz"},
        {"chat_cli_provider": "claude"},
    ],
)
async def test_resolve_cloud_needs_setup(overrides) -> None:
    assert await resolve_provider("claude", Settings(**overrides)) == NeedsSetup("cloud")


@pytest.mark.asyncio
async def test_resolve_cloud_ready() -> None:
    settings = Settings(chat_cli_provider="claude", claude_api_key="sk-ant-xyz", claude_model="claude-test")
    result = await resolve_provider("cloud", settings)
    assert isinstance(result, Ok)
    assert isinstance(result.config, CloudProviderConfig)
    assert result.config.model == "claude-test"


@pytest.mark.asyncio
async def test_resolve_unknown_provider() -> None:
    result = await resolve_provider("gemini", Settings())
    assert isinstance(result, ConfigError)


def test_persistence_hint_lists_exports() -> None:
    hint = persistence_hint(LocalProviderConfig(host=OLLAMA_HOST, model="llama3.2:latest"))
    assert 'export CHAT_CLI_PROVIDER="ollama"' in hint
    assert 'export OLLAMA_MODEL="llama3.2:latest"' in hint
