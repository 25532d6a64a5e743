from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional

from .domain import Part, Source


class HistoryEntry(BaseModel):
    """Provider-facing history item: exactly ``{role, parts}``."""

    role: Literal["user", "model"]
    parts: List[Part]

    @field_validator("parts", mode="before")
    @classmethod
    def normalize_parts(cls, v):
        # Bare strings are accepted and normalized to {"text": ...}
        if isinstance(v, list):
            return [{"text": p} if isinstance(p, str) else p for p in v]
        return v


class ChatRequest(BaseModel):
    history: List[HistoryEntry] = Field(default_factory=list)
    message: str

    @field_validator("history", mode="before")
    @classmethod
    def default_history(cls, v):
        return [] if v is None else v

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be empty")
        return v


class ChatResponse(BaseModel):
    text: str
    sources: List[Source] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
    message: str
    stack: Optional[str] = None


class ApiKeyResponse(BaseModel):
    apiKey: str
