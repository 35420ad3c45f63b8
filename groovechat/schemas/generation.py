from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Part(BaseModel):
    """One piece of a turn. Only ``text`` is honoured by the chat providers."""

    model_config = ConfigDict(extra="allow")

    text: Optional[str] = None
    inline_data: Optional[Dict[str, Any]] = None
    function_call: Optional[Dict[str, Any]] = None


class Content(BaseModel):
    role: str = "user"
    parts: List[Part] = Field(default_factory=list)


class GenerationRequest(BaseModel):
    model: Optional[str] = None
    contents: List[Content] = Field(default_factory=list)

    @classmethod
    def from_text(cls, text: str, role: str = "user") -> "GenerationRequest":
        return cls(contents=[Content(role=role, parts=[Part(text=text)])])


class Candidate(BaseModel):
    content: Content
    finish_reason: Optional[str] = None
    index: int = 0

    @property
    def text(self) -> str:
        return "".join(p.text or "" for p in self.content.parts)


class UsageMetadata(BaseModel):
    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0


class GenerationResponse(BaseModel):
    candidates: List[Candidate] = Field(default_factory=list)
    usage_metadata: Optional[UsageMetadata] = None

    @property
    def text(self) -> str:
        return self.candidates[0].text if self.candidates else ""


class CountTokensResponse(BaseModel):
    total_tokens: int = 0
