from __future__ import annotations
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


Role = Literal["user", "assistant", "system"]


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatResponse(BaseModel):
    content: str
    model: str
    provider: str
    # Only set when the backend reported counts itself
    usage: Optional[TokenUsage] = None


class ChatStreamChunk(BaseModel):
    content: str = ""
    done: bool = False
    model: str
    provider: str


class ModelDescriptor(BaseModel):
    name: str
    size: int = 0
    digest: str = ""


# Ollama wire shapes


class OllamaMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class OllamaChatResponse(BaseModel):
    """One /api/chat reply. Streaming frames share the same shape."""

    model_config = ConfigDict(extra="ignore")

    model: str = ""
    created_at: str = ""
    message: OllamaMessage = Field(default_factory=OllamaMessage)
    done: bool = False
    # Present on the final (done) reply only
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None


# Anthropic Messages API wire shapes


class ClaudeContentBlock(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = "text"
    text: str = ""


class ClaudeUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ClaudeResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    type: str = "message"
    role: str = "assistant"
    content: List[ClaudeContentBlock] = Field(default_factory=list)
    model: str = ""
    stop_reason: Optional[str] = None
    stop_sequence: Optional[str] = None
    usage: Optional[ClaudeUsage] = None

    @property
    def first_text(self) -> str:
        for block in self.content:
            if block.type == "text":
                return block.text
        return ""


class ClaudeDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    text: Optional[str] = None
    stop_reason: Optional[str] = None


class ClaudeStreamEvent(BaseModel):
    """One SSE data frame: message_start, content_block_delta, message_stop, ..."""

    model_config = ConfigDict(extra="ignore")

    type: str
    message: Optional[dict] = None
    content_block: Optional[ClaudeContentBlock] = None
    delta: Optional[ClaudeDelta] = None
    index: Optional[int] = None
    usage: Optional[dict] = None
