"""Chat orchestration - session setup, history projection, error normalization.

Two ways to talk to Gemini:

* ``proxy`` (default): every turn is POSTed to the backend ``/api/chat``
  endpoint, which owns the API key.
* ``direct``: the server-issued key is fetched once from ``/api/api-key``
  and the SDK is called from the client process.

Whichever mode is used, callers only ever see :class:`ProviderReply` on
success and :class:`ChatServiceError` on failure.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

import anyio

from olegal.config import Settings
from olegal.errors import ChatServiceError, ErrorCode, ValidationError, classify_error
from olegal.models.api_io import ChatResponse, HistoryEntry
from olegal.models.domain import Message
from olegal.constants import EMPTY_MESSAGE_ERROR

from .api_client import ApiClient
from .base import ChatProvider, ProviderReply
from .llm_service import (
    Err,
    FailureKind,
    GeminiProvider,
    ProviderClientCache,
    ProviderFailure,
    call_provider,
)

logger = logging.getLogger(__name__)

_KIND_CODES = {
    FailureKind.TIMEOUT: ErrorCode.TIMEOUT,
    FailureKind.CONNECTIVITY: ErrorCode.NETWORK_ERROR,
    FailureKind.CONTENT_BLOCKED: ErrorCode.CONTENT_FILTERED,
}


def project_history(history: Iterable[Message]) -> List[HistoryEntry]:
    """Keep only ``{role, parts}``; id, timestamp, sources and kind stay local."""
    return [HistoryEntry(role=m.role, parts=list(m.parts)) for m in history]


class ProxyChatSession(ChatProvider):
    """Session handle that relays each turn through the backend endpoint."""

    def __init__(self, api_client: ApiClient):
        self.api_client = api_client

    async def send(self, history: Sequence[HistoryEntry], message: str) -> ProviderReply:
        payload = {
            "history": [entry.model_dump() for entry in history],
            "message": message,
        }
        # requests is blocking; keep the event loop free while it runs
        result = await anyio.to_thread.run_sync(self.api_client.post_chat, payload)
        if result.error is not None or result.data is None:
            error = result.error or "Request failed"
            raise ChatServiceError(classify_error(error, result.status), detail=error)

        try:
            body = ChatResponse.model_validate(result.data)
        except ValueError as e:
            raise ChatServiceError(ErrorCode.UNKNOWN_ERROR, detail=f"Malformed chat response: {e}") from e
        return ProviderReply(text=body.text, sources=list(body.sources))


class GeminiService:
    def __init__(
        self,
        settings: Settings,
        api_client: Optional[ApiClient] = None,
        client_cache: Optional[ProviderClientCache] = None,
    ) -> None:
        self.settings = settings
        self.api_client = api_client or ApiClient(settings)
        self.client_cache = client_cache or ProviderClientCache()
        self.mode = (settings.chat_session_mode or "proxy").strip().lower()

    # ---------- session -------------------------------------------------------
    async def initialize_chat_session(self) -> ChatProvider:
        if self.mode == "direct":
            return await self._initialize_direct()
        return ProxyChatSession(self.api_client)

    async def _initialize_direct(self) -> ChatProvider:
        result = await anyio.to_thread.run_sync(self.api_client.fetch_api_key)
        api_key = ""
        if isinstance(result.data, dict):
            api_key = str(result.data.get("apiKey") or "").strip()

        if not api_key:
            logger.error("No API key available for direct chat session: %s", result.error)
            if result.error and classify_error(result.error, result.status) == ErrorCode.NETWORK_ERROR:
                raise ChatServiceError(ErrorCode.NETWORK_ERROR, detail=result.error)
            raise ChatServiceError(ErrorCode.INVALID_API_KEY, detail=result.error or "empty key")

        try:
            client = self.client_cache.get(api_key)
            return GeminiProvider.from_settings(client, self.settings)
        except Exception as exc:
            logger.error("Error initializing chat session: %s", exc, exc_info=True)
            raise ChatServiceError(ErrorCode.CHAT_SESSION_ERROR, detail=str(exc)) from exc

    # ---------- messaging -----------------------------------------------------
    async def send_message(
        self,
        session: Optional[ChatProvider],
        history: Iterable[Message],
        message: str,
    ) -> ProviderReply:
        if not message or not message.strip():
            raise ValidationError(EMPTY_MESSAGE_ERROR)
        if session is None:
            raise ChatServiceError(ErrorCode.CHAT_SESSION_ERROR, detail="Chat session is not initialized.")

        outbound = project_history(history)
        result = await call_provider(session, outbound, message.strip())
        if isinstance(result, Err):
            raise self._normalize(result.failure)
        return result.value

    @staticmethod
    def _normalize(failure: ProviderFailure) -> ChatServiceError:
        if isinstance(failure.exc, ChatServiceError):
            return failure.exc
        code = _KIND_CODES.get(failure.kind) or classify_error(failure.message, failure.status)
        return ChatServiceError(code, detail=failure.message)
