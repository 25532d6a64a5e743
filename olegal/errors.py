"""Error taxonomy shared by the chat client layers.

Whatever goes wrong between the state machine and the provider leaves the
orchestration service as a single :class:`ChatServiceError` carrying one of
the :class:`ErrorCode` values below.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from . import constants


class ErrorCode(str, Enum):
    INVALID_API_KEY = "INVALID_API_KEY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CONTENT_FILTERED = "CONTENT_FILTERED"
    MODEL_OVERLOADED = "MODEL_OVERLOADED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    CHAT_SESSION_ERROR = "CHAT_SESSION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_MESSAGES = {
    ErrorCode.INVALID_API_KEY: constants.API_KEY_MISSING_MESSAGE,
    ErrorCode.RATE_LIMIT_EXCEEDED: constants.RATE_LIMIT_MESSAGE,
    ErrorCode.CONTENT_FILTERED: constants.CONTENT_FILTERED_MESSAGE,
    ErrorCode.MODEL_OVERLOADED: constants.MODEL_OVERLOADED_MESSAGE,
    ErrorCode.NETWORK_ERROR: constants.NETWORK_ERROR_MESSAGE,
    ErrorCode.TIMEOUT: constants.TIMEOUT_MESSAGE,
    ErrorCode.CHAT_SESSION_ERROR: constants.CHAT_SESSION_ERROR,
    ErrorCode.UNKNOWN_ERROR: constants.API_ERROR_MESSAGE,
}


def message_for_code(code: ErrorCode) -> str:
    """Localized display text for *code*."""
    return _MESSAGES.get(code, constants.API_ERROR_MESSAGE)


def is_recoverable(code: ErrorCode) -> bool:
    return code != ErrorCode.INVALID_API_KEY


class ChatServiceError(Exception):
    """Normalized failure raised by the orchestration service."""

    def __init__(self, code: ErrorCode, message: Optional[str] = None, detail: str = ""):
        self.code = ErrorCode(code)
        self.message = message or message_for_code(self.code)
        self.detail = detail
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"ChatServiceError(code={self.code.value!r}, message={self.message!r})"


class ValidationError(ValueError):
    """Raised for client input that must never reach the network."""


class InvalidTransition(RuntimeError):
    """Raised when the session state machine is asked for an illegal move."""


# Ordered: the first matching rule wins. API key problems are checked before
# status codes because the backend reports a missing key as 503.
_KEYWORD_RULES = (
    (ErrorCode.INVALID_API_KEY, ("api key", "api_key", "apikey", "permission_denied", "unauthenticated")),
    (ErrorCode.RATE_LIMIT_EXCEEDED, ("quota", "rate limit", "rate-limit", "resource_exhausted", "too many requests")),
    (ErrorCode.CONTENT_FILTERED, ("safety", "blocked", "content filter", "prohibited_content")),
    (ErrorCode.TIMEOUT, ("timed out", "timeout", "deadline_exceeded")),
    (ErrorCode.NETWORK_ERROR, ("failed to connect", "connection", "network", "unreachable", "name or service not known")),
    (ErrorCode.MODEL_OVERLOADED, ("overloaded", "unavailable", "try again later")),
)

_STATUS_RULES = {
    401: ErrorCode.INVALID_API_KEY,
    403: ErrorCode.INVALID_API_KEY,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
    502: ErrorCode.MODEL_OVERLOADED,
    503: ErrorCode.MODEL_OVERLOADED,
    504: ErrorCode.TIMEOUT,
}


def classify_error(text: Optional[str], status: Optional[int] = None) -> ErrorCode:
    """Map provider/transport error text and HTTP status onto :class:`ErrorCode`."""
    lowered = (text or "").lower()
    for code, needles in _KEYWORD_RULES:
        if any(needle in lowered for needle in needles):
            return code
    if status is not None and status in _STATUS_RULES:
        return _STATUS_RULES[status]
    return ErrorCode.UNKNOWN_ERROR
