from __future__ import annotations
import logging
import re
from typing import Optional, Union


REDACT_PATTERNS = [
    re.compile(r"(sk-ant-[A-Za-z0-9_\-]{20,})"),  # Anthropic keys
    re.compile(r"(sk-[A-Za-z0-9]{20,})"),
]


def redact(value: str) -> str:
    redacted = value
    for pat in REDACT_PATTERNS:
        redacted = pat.sub("***", redacted)
    return redacted


class RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        return redact(super().format(record))


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, int):
        return resolved
    raise ValueError(f"Unsupported log level: {level}")


def setup_logging(level: Union[str, int] = logging.WARNING, stream: Optional[object] = None) -> None:
    logger = logging.getLogger()
    logger.setLevel(_resolve_level(level))
    # Clear existing handlers so repeated CLI invocations in one process don't stack
    logger.handlers.clear()

    handler = logging.StreamHandler(stream)  # type: ignore[arg-type]
    formatter = RedactingFormatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # StreamDecodeWarning and friends go through the same handler
    logging.captureWarnings(True)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(logger.level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(logger.level, logging.WARNING))
