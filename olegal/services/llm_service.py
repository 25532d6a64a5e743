"""Gemini provider - thin wrapper around the Google Gen AI SDK.

Everything that touches the SDK lives here: the cached client, generation
config (safety settings, grounding tool), history conversion, text and
citation extraction, and the single boundary (:func:`call_provider`) that
turns SDK exceptions into tagged results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Union

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types              # pydantic config classes

from olegal.config import Settings
from olegal.models.api_io import HistoryEntry
from olegal.models.domain import Source
from olegal.utils.logging import mask_secret

from .base import ChatProvider, ProviderReply

logger = logging.getLogger(__name__)

SAFETY_THRESHOLD = types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE

SAFETY_SETTINGS = [
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_HARASSMENT, threshold=SAFETY_THRESHOLD),
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_HATE_SPEECH, threshold=SAFETY_THRESHOLD),
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT, threshold=SAFETY_THRESHOLD),
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT, threshold=SAFETY_THRESHOLD),
]

_BLOCKING_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}


class ContentBlockedError(Exception):
    """The provider returned no text because a safety filter fired."""


# ---------- client cache -----------------------------------------------------

class ProviderClientCache:
    """Holds one SDK client per process, rebuilt only when the key changes."""

    def __init__(self, factory: Optional[Callable[[str], Any]] = None) -> None:
        self._factory = factory or (lambda key: genai.Client(api_key=key))
        self._client: Any = None
        self._key: Optional[str] = None

    @property
    def cached_key(self) -> Optional[str]:
        return self._key

    def get(self, api_key: str) -> Any:
        key = (api_key or "").strip()
        if not key:
            raise ValueError("API key is missing or empty")

        if self._client is None or key != self._key:
            logger.info("Initialising Google Gen AI client (key %s)", mask_secret(key))
            self._client = self._factory(key)
            self._key = key
        return self._client


# ---------- request / response shaping ---------------------------------------

def format_history(history: Sequence[HistoryEntry]) -> List[types.Content]:
    return [
        types.Content(
            role="user" if entry.role == "user" else "model",
            parts=[types.Part(text=part.text) for part in entry.parts],
        )
        for entry in history
    ]


def build_generation_config(
    *,
    system_instruction: Optional[str],
    temperature: float,
    max_output_tokens: int,
    enable_search: bool,
) -> types.GenerateContentConfig:
    cfg = types.GenerateContentConfig(
        temperature=temperature,
        max_output_tokens=max_output_tokens,
        safety_settings=SAFETY_SETTINGS,
        system_instruction=system_instruction or None,
    )
    if enable_search:
        cfg.tools = [types.Tool(google_search=types.GoogleSearch())]
    return cfg


def _field(obj: Any, *names: str) -> Any:
    for name in names:
        value = obj.get(name) if isinstance(obj, dict) else getattr(obj, name, None)
        if value is not None:
            return value
    return None


def extract_sources(grounding_metadata: Any) -> List[Source]:
    """Map grounding chunks to sources, dropping chunks without a web URI."""
    if not grounding_metadata:
        return []
    chunks = _field(grounding_metadata, "grounding_chunks", "groundingChunks") or []

    sources: List[Source] = []
    for chunk in chunks:
        web = _field(chunk, "web")
        uri = _field(web, "uri") if web is not None else None
        if not uri:
            continue
        sources.append(Source(uri=uri, title=_field(web, "title") or uri))
    return sources


def extract_text(resp: Any) -> str:
    if getattr(resp, "text", None):
        return resp.text

    if resp.candidates:
        content = resp.candidates[0].content
        parts = getattr(content, "parts", None) or []
        texts = [p.text for p in parts if getattr(p, "text", None)]
        if texts:
            return "".join(texts)
    return ""


def _block_reason(resp: Any) -> Optional[str]:
    feedback = getattr(resp, "prompt_feedback", None)
    reason = getattr(feedback, "block_reason", None)
    if reason:
        return getattr(reason, "name", str(reason))

    if resp.candidates:
        finish = getattr(resp.candidates[0], "finish_reason", None)
        name = getattr(finish, "name", str(finish)) if finish else None
        if name in _BLOCKING_FINISH_REASONS:
            return name
    return None


# ---------- provider ---------------------------------------------------------

class GeminiProvider(ChatProvider):
    """Sends one turn through ``client.aio.chats`` seeded with the history."""

    def __init__(
        self,
        client: genai.Client,
        *,
        model_name: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.9,
        max_output_tokens: int = 1000,
        enable_search: bool = True,
    ) -> None:
        self.client = client
        self.model_name = model_name
        self.config = build_generation_config(
            system_instruction=system_instruction,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            enable_search=enable_search,
        )

    @classmethod
    def from_settings(cls, client: genai.Client, settings: Settings) -> "GeminiProvider":
        return cls(
            client,
            model_name=settings.gemini_model_name,
            system_instruction=settings.system_instruction,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            enable_search=settings.enable_search,
        )

    async def send(self, history: Sequence[HistoryEntry], message: str) -> ProviderReply:
        chat = self.client.aio.chats.create(
            model=self.model_name,
            config=self.config,
            history=format_history(history),
        )
        resp = await chat.send_message(message)

        text = extract_text(resp)
        if not text:
            reason = _block_reason(resp)
            if reason:
                raise ContentBlockedError(f"Response blocked by safety filters ({reason})")
            logger.warning("Empty response from model %s", self.model_name)

        grounding = resp.candidates[0].grounding_metadata if resp.candidates else None
        return ProviderReply(text=text, sources=extract_sources(grounding))


# ---------- error boundary ---------------------------------------------------

class FailureKind(str, Enum):
    CONNECTIVITY = "connectivity"
    TIMEOUT = "timeout"
    INVALID_MODEL = "invalid_model"
    CONTENT_BLOCKED = "content_blocked"
    PROVIDER = "provider"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProviderFailure:
    kind: FailureKind
    message: str
    status: Optional[int] = None
    exc: Optional[BaseException] = None


@dataclass(frozen=True)
class Ok:
    value: ProviderReply


@dataclass(frozen=True)
class Err:
    failure: ProviderFailure


Result = Union[Ok, Err]


def _mentions_bad_model(text: str) -> bool:
    lowered = text.lower()
    return "model" in lowered and any(
        needle in lowered for needle in ("not found", "invalid", "not supported", "does not exist")
    )


def classify_provider_exception(exc: BaseException) -> ProviderFailure:
    if isinstance(exc, ContentBlockedError):
        return ProviderFailure(FailureKind.CONTENT_BLOCKED, str(exc), 400, exc)

    if isinstance(exc, genai_errors.APIError):
        message = exc.message or str(exc)
        if exc.code == 404 and "model" in message.lower():
            return ProviderFailure(FailureKind.INVALID_MODEL, message, exc.code, exc)
        return ProviderFailure(FailureKind.PROVIDER, message, exc.code, exc)

    # TimeoutError is an OSError, so it has to be checked first
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ProviderFailure(FailureKind.TIMEOUT, str(exc) or "timed out", None, exc)

    if isinstance(exc, (httpx.NetworkError, OSError)):
        return ProviderFailure(FailureKind.CONNECTIVITY, str(exc) or "connection failed", None, exc)

    message = str(exc) or exc.__class__.__name__
    if _mentions_bad_model(message):
        return ProviderFailure(FailureKind.INVALID_MODEL, message, None, exc)
    return ProviderFailure(FailureKind.UNKNOWN, message, None, exc)


async def call_provider(provider: ChatProvider, history: Sequence[HistoryEntry], message: str) -> Result:
    """The only place provider exceptions are caught; callers get Ok or Err."""
    try:
        reply = await provider.send(history, message)
        return Ok(reply)
    except Exception as exc:
        logger.error("Gen AI error: %s", exc, exc_info=True)
        return Err(classify_provider_exception(exc))
