from pydantic import BaseModel, Field, model_validator
from typing import List, Optional, Literal
from enum import Enum
from urllib.parse import urlparse
import datetime
import uuid

from olegal.errors import ErrorCode, is_recoverable, message_for_code

Role = Literal["user", "model"]
MessageKind = Literal["chat", "greeting", "error"]


class ApiStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class Part(BaseModel):
    text: str

    class Config:
        frozen = True


class Source(BaseModel):
    uri: str
    title: Optional[str] = None

    class Config:
        frozen = True

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        host = urlparse(self.uri).hostname
        return host or self.uri


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Message(BaseModel):
    """One chat turn. ``id``, ``timestamp`` and ``kind`` never leave the client."""

    role: Role
    parts: List[Part]
    sources: Optional[List[Source]] = None
    kind: MessageKind = "chat"
    id: str = Field(default_factory=_new_id)
    timestamp: datetime.datetime = Field(default_factory=_utcnow)

    class Config:
        frozen = True

    @classmethod
    def from_text(
        cls,
        role: Role,
        text: str,
        sources: Optional[List[Source]] = None,
        kind: MessageKind = "chat",
    ) -> "Message":
        return cls(role=role, parts=[Part(text=text)], sources=sources, kind=kind)

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts)


class ErrorState(BaseModel):
    message: str
    code: ErrorCode
    is_recoverable: bool

    class Config:
        frozen = True

    @model_validator(mode="before")
    @classmethod
    def derive_recoverable(cls, data):
        # only a missing or invalid API key is unrecoverable
        if isinstance(data, dict) and data.get("code") is not None:
            expected = is_recoverable(ErrorCode(data["code"]))
            given = data.get("is_recoverable")
            if given is None:
                data = {**data, "is_recoverable": expected}
            elif bool(given) != expected:
                raise ValueError(f"is_recoverable must be {expected} for {data['code']}")
        return data

    @classmethod
    def from_code(cls, code: ErrorCode, message: Optional[str] = None) -> "ErrorState":
        return cls(
            message=message or message_for_code(code),
            code=code,
            is_recoverable=is_recoverable(code),
        )
