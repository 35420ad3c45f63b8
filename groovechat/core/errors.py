from __future__ import annotations

from dataclasses import dataclass


class GrooveChatError(Exception):
    """Base class for every error raised by groovechat."""


class ConfigurationError(GrooveChatError):
    """Required provider configuration is missing or unrecognized.

    The message is meant to be shown to the user as-is, so it usually spans
    several lines with the variables to set and example commands.
    """


@dataclass(eq=False)
class ProviderHTTPError(GrooveChatError):
    provider: str
    status_code: int
    body: str = ""

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"{self.provider} API error: {self.status_code}"
        if self.body:
            text += f" - {self.body}"
        return text


class ProviderUnavailable(GrooveChatError):
    """Liveness probe failed. is_available() reports this as False instead."""


class StreamDecodeWarning(UserWarning):
    """A streamed frame could not be parsed and was skipped."""


class UnsupportedOperation(GrooveChatError):
    pass
