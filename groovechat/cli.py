"""Command-line entry point: an interactive chat loop plus a few diagnostics."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import httpx

from groovechat.client import ChatClient
from groovechat.config import (
    PROVIDER_LABELS,
    SETUP_GUIDANCE,
    LocalProviderConfig,
    ProviderConfig,
    get_settings,
    normalize_provider,
)
from groovechat.core.errors import ConfigurationError, GrooveChatError, ProviderUnavailable
from groovechat.core.logging import setup_logging
from groovechat.generation import CHARS_PER_TOKEN, estimate_tokens
from groovechat.providers.ollama import OllamaAdapter
from groovechat.resolution import (
    NeedsSetup,
    Ok,
    apply_to_environment,
    persistence_hint,
    resolve_provider,
    select_best_model,
)
from groovechat.schemas.chat import ChatMessage, TokenUsage

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /help    show this help
  /model   show the active provider, model and token usage
  /clear   forget the conversation so far
  /quit    leave (also /exit or Ctrl-D)"""


def display_model(config: ProviderConfig) -> str:
    return f"{PROVIDER_LABELS[config.provider].lower()}/{config.model}"


def format_token_count(input_tokens: int, output_tokens: int) -> str:
    if input_tokens == 0 and output_tokens == 0:
        return "Ready"
    return f"↑{input_tokens} ↓{output_tokens}"


async def resolve_config(provider: Optional[str] = None) -> ProviderConfig:
    """Work out which backend to talk to, auto-configuring Ollama if needed."""
    settings = get_settings()
    requested = provider or settings.chat_cli_provider or "local"
    if provider and normalize_provider(provider) == "cloud":
        settings = settings.model_copy(update={"chat_cli_provider": "cloud"})

    result = await resolve_provider(requested, settings)
    if isinstance(result, Ok):
        if normalize_provider(settings.chat_cli_provider) != result.config.provider:
            apply_to_environment(result.config)
            print(f"🦙 {PROVIDER_LABELS[result.config.provider]} auto-configured")
            print(f"✅ Selected model: {result.config.model}")
            if isinstance(result.config, LocalProviderConfig):
                print(f"🔗 Host: {result.config.host}")
            print(persistence_hint(result.config))
        return result.config
    if isinstance(result, NeedsSetup):
        label = PROVIDER_LABELS.get(result.provider, result.provider)
        raise ConfigurationError(f"{label} needs to be set up before it can be used.\n\n{SETUP_GUIDANCE}")
    raise ConfigurationError(result.message)


class ChatSession:
    """Conversation history and token tally for one interactive run."""

    def __init__(self, client: ChatClient, system_prompt: Optional[str] = None, stream: bool = True) -> None:
        self.client = client
        self.stream = stream
        self.system_prompt = system_prompt
        self.history: List[ChatMessage] = []
        self.input_tokens = 0
        self.output_tokens = 0
        self.clear()

    def clear(self) -> None:
        self.history = []
        if self.system_prompt:
            self.history.append(ChatMessage(role="system", content=self.system_prompt))

    def _count(self, text: str) -> int:
        return estimate_tokens(text, CHARS_PER_TOKEN[self.client.provider])

    async def send(self, text: str) -> str:
        self.history.append(ChatMessage(role="user", content=text))
        usage: Optional[TokenUsage] = None
        try:
            if self.stream:
                parts: List[str] = []
                async for chunk in self.client.chat_stream(self.history):
                    if chunk.content:
                        parts.append(chunk.content)
                        print(chunk.content, end="", flush=True)
                print()
                reply = "".join(parts)
            else:
                response = await self.client.chat(self.history)
                reply = response.content
                usage = response.usage
                print(reply)
        except Exception:
            # Keep the history consistent: drop the turn that got no answer
            self.history.pop()
            raise
        if usage is not None:
            self.input_tokens += usage.prompt_tokens
            self.output_tokens += usage.completion_tokens
        else:
            self.input_tokens += sum(self._count(m.content) for m in self.history)
            self.output_tokens += self._count(reply)
        self.history.append(ChatMessage(role="assistant", content=reply))
        return reply

    def status(self) -> str:
        return f"{display_model(self.client.config)}  {format_token_count(self.input_tokens, self.output_tokens)}"


async def _chat_loop(args: argparse.Namespace) -> int:
    config = await resolve_config(args.provider)
    client = ChatClient(config)
    if not await client.is_available():
        raise ProviderUnavailable(
            f"{PROVIDER_LABELS[client.provider]} is not available. Check that the service is reachable."
        )
    session = ChatSession(client, system_prompt=args.system, stream=not args.no_stream)
    print(f"Chatting with {display_model(config)}. Type /help for commands.")

    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            print()
            return 0
        text = line.strip()
        if not text:
            continue
        if text in ("/quit", "/exit"):
            return 0
        if text == "/help":
            print(HELP_TEXT)
            continue
        if text == "/model":
            print(session.status())
            continue
        if text == "/clear":
            session.clear()
            print("Conversation cleared.")
            continue
        if text.startswith("/"):
            print(f"Unknown command: {text}. Type /help for commands.")
            continue
        try:
            await session.send(text)
        except GrooveChatError as e:
            print(f"Error: {e}", file=sys.stderr)
        except Exception as e:
            logger.exception("Chat request failed")
            print(f"Error: {e}", file=sys.stderr)


async def _check(args: argparse.Namespace) -> int:
    config = await resolve_config(args.provider)
    client = ChatClient(config)
    label = PROVIDER_LABELS[client.provider]
    print(f"Testing provider: {display_model(config)}")
    if not await client.is_available():
        print(
            f'Provider "{label}" is not available. Please check your configuration:\n\n'
            "For Ollama:\n  - Ensure Ollama is running: ollama serve\n  - Check if model is available: ollama list\n\n"
            "For Claude:\n  - Verify your API key is correct\n  - Check your internet connection",
            file=sys.stderr,
        )
        return 1
    print(f'✅ Provider "{label}" is available!')
    message = " ".join(args.message) or "Hello! Can you tell me what you are?"
    print(f'Sending test message: "{message}"')
    response = await client.chat([ChatMessage(role="user", content=message)])
    print(f"✅ Response ({response.provider}/{response.model}):\n\n{response.content}")
    return 0


async def _models(args: argparse.Namespace) -> int:
    settings = get_settings()
    host = args.host or settings.resolved_ollama_host
    adapter = OllamaAdapter(LocalProviderConfig(host=host, model=settings.ollama_model))
    if not await adapter.is_available():
        print(f"Ollama is not running at {host}. Start it with: ollama serve", file=sys.stderr)
        return 1
    models = await adapter.list_models()
    if not models:
        print("No models installed. Try: ollama pull llama3.2")
        return 0
    best = select_best_model(models)
    for m in models:
        marker = "*" if m.name == best else " "
        print(f"{marker} {m.name:<40} {m.size / 1e9:6.1f} GB")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="groovechat", description="Chat with local or cloud LLMs.")
    parser.add_argument("--log-level", default=None, help="Logging level (default: GROOVECHAT_LOG_LEVEL or WARNING)")
    # Bare `groovechat` behaves like `groovechat chat`
    parser.set_defaults(handler=_chat_loop, provider=None, system=None, no_stream=False)
    subparsers = parser.add_subparsers(dest="command")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat (default)")
    chat_parser.add_argument("--provider", choices=["ollama", "claude", "local", "cloud"], default=None)
    chat_parser.add_argument("--system", default=None, help="System prompt for the conversation")
    chat_parser.add_argument("--no-stream", action="store_true", help="Wait for complete replies")
    chat_parser.set_defaults(handler=_chat_loop)

    check_parser = subparsers.add_parser("check", help="Check that the provider answers")
    check_parser.add_argument("--provider", choices=["ollama", "claude", "local", "cloud"], default=None)
    check_parser.add_argument("message", nargs="*", help="Message to send")
    check_parser.set_defaults(handler=_check)

    models_parser = subparsers.add_parser("models", help="List installed Ollama models")
    models_parser.add_argument("--host", default=None)
    models_parser.set_defaults(handler=_models)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(args.log_level or get_settings().groovechat_log_level)
    except ValueError as e:
        parser.error(str(e))

    try:
        return asyncio.run(args.handler(args))
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return 1
    except (GrooveChatError, httpx.HTTPError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
