"""Backend chat handler.

One :class:`ChatHandler` per process. It owns the provider client cache and
runs every request through the same guards before calling the provider.
"""

from __future__ import annotations

import json
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from olegal.config import Settings
from olegal.models.api_io import ChatRequest, ChatResponse, ErrorResponse
from olegal.services.base import ChatProvider
from olegal.services.llm_service import (
    Err,
    FailureKind,
    GeminiProvider,
    ProviderClientCache,
    ProviderFailure,
    call_provider,
)
from olegal.utils.logging import mask_secret

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Any, Settings], ChatProvider]

PROVIDER_ERROR = "Gemini API Error"
CONFIG_ERROR = "Server Configuration Error"
BAD_REQUEST = "Bad Request"


def cors_headers(settings: Settings) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.allowed_origin or "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }


@dataclass
class HandlerResponse:
    status: int
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)

    def to_response(self) -> Response:
        if self.body is None:
            return Response(status_code=self.status, headers=self.headers)
        return JSONResponse(self.body, status_code=self.status, headers=self.headers)


class ChatHandler:
    """Request state machine for ``/api/chat``."""

    def __init__(
        self,
        settings: Settings,
        client_cache: Optional[ProviderClientCache] = None,
        provider_factory: Optional[ProviderFactory] = None,
    ) -> None:
        self.settings = settings
        self.client_cache = client_cache or ProviderClientCache()
        self.provider_factory = provider_factory or GeminiProvider.from_settings

    # ---------- response helpers ----------------------------------------------
    def _respond(self, status: int, body: Optional[Dict[str, Any]] = None, **headers: str) -> HandlerResponse:
        merged = cors_headers(self.settings)
        merged.update({k.replace("_", "-"): v for k, v in headers.items()})
        return HandlerResponse(status=status, body=body, headers=merged)

    def _error(
        self,
        status: int,
        error: str,
        message: str,
        exc: Optional[BaseException] = None,
        **headers: str,
    ) -> HandlerResponse:
        if not self.settings.is_production:
            logger.info("Sending error response (%s): %s - %s", status, error, message)
        stack = None
        if exc is not None and not self.settings.is_production:
            stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        body = ErrorResponse(error=error, message=message, stack=stack)
        return self._respond(status, body.model_dump(exclude_none=True), **headers)

    # ---------- entry point ---------------------------------------------------
    async def handle(self, method: str, body: Union[bytes, str, dict, None]) -> HandlerResponse:
        """Answer one request. Never raises; unexpected errors become a 500."""
        try:
            return await self._handle(method.upper(), body)
        except Exception as exc:
            logger.error("Unhandled error in chat handler: %s", exc, exc_info=True)
            return self._error(500, "Internal Server Error", str(exc) or "An unknown error occurred", exc)

    async def _handle(self, method: str, body: Union[bytes, str, dict, None]) -> HandlerResponse:
        # the app middleware normally answers preflight before routing
        if method == "OPTIONS":
            return self._respond(200)

        if method != "POST":
            logger.warning("Method %s not allowed", method)
            return self._error(405, "Method Not Allowed", "Only POST method is allowed", Allow="POST")

        api_key = self.settings.api_key
        if not api_key:
            logger.error("GEMINI_API_KEY is not configured")
            return self._error(
                503,
                CONFIG_ERROR,
                "GEMINI_API_KEY environment variable is missing or empty",
                Retry_After="60",
            )

        data, problem = self._parse_body(body)
        if problem:
            return self._error(400, BAD_REQUEST, problem)

        try:
            request = ChatRequest.model_validate(data)
        except ValidationError as e:
            logger.warning("Request validation failed: %s", e)
            first = e.errors()[0] if e.errors() else {}
            where = ".".join(str(p) for p in first.get("loc", ())) or "body"
            return self._error(400, BAD_REQUEST, f"Invalid request payload ({where}: {first.get('msg', 'invalid')})")

        if not self.settings.is_production:
            logger.info(
                "Chat request: history=%d message=%r model=%s key=%s",
                len(request.history),
                request.message[:100],
                self.settings.gemini_model_name,
                mask_secret(api_key),
            )

        try:
            client = self.client_cache.get(api_key)
            provider = self.provider_factory(client, self.settings)
        except Exception as exc:
            logger.error("Failed to initialize Gemini API client: %s", exc, exc_info=True)
            return self._error(500, CONFIG_ERROR, "Failed to initialize Gemini API client", exc)

        result = await call_provider(provider, request.history, request.message.strip())
        if isinstance(result, Err):
            return self._provider_error(result.failure)

        reply = result.value
        payload = ChatResponse(text=reply.text, sources=list(reply.sources))
        if not self.settings.is_production:
            logger.info("Sending success response: %d chars, %d sources", len(payload.text), len(payload.sources))
        return self._respond(200, payload.model_dump())

    # ---------- guards ---------------------------------------------------------
    @staticmethod
    def _parse_body(body: Union[bytes, str, dict, None]):
        if body is None or body == b"" or body == "":
            return None, "No request body provided"

        if isinstance(body, (bytes, bytearray)):
            try:
                body = body.decode("utf-8")
            except UnicodeDecodeError:
                return None, "Invalid JSON in request body"

        if isinstance(body, str):
            if not body.strip():
                return None, "No request body provided"
            try:
                body = json.loads(body)
            except json.JSONDecodeError:
                return None, "Invalid JSON in request body"

        if not isinstance(body, dict):
            return None, "Invalid request body format"
        return body, None

    def _provider_error(self, failure: ProviderFailure) -> HandlerResponse:
        exc = failure.exc
        if failure.kind == FailureKind.CONNECTIVITY:
            return self._error(503, PROVIDER_ERROR, "Failed to connect to Gemini API. Please check your internet connection.", exc)
        if failure.kind == FailureKind.TIMEOUT:
            return self._error(504, PROVIDER_ERROR, "Connection to Gemini API timed out. Please try again.", exc)
        if failure.kind == FailureKind.INVALID_MODEL:
            return self._error(
                400,
                PROVIDER_ERROR,
                f"Model '{self.settings.gemini_model_name}' might not be accessible. "
                "Please verify the GEMINI_MODEL_NAME setting.",
                exc,
            )
        if failure.kind == FailureKind.CONTENT_BLOCKED:
            return self._error(400, PROVIDER_ERROR, failure.message, exc)

        status = failure.status if failure.status and 400 <= failure.status <= 599 else None
        if status is None:
            lowered = failure.message.lower()
            if "api key" in lowered:
                return self._error(401, "Invalid API key", failure.message, exc)
            if "quota" in lowered:
                return self._error(429, "API quota exceeded", failure.message, exc)
            status = 500
        return self._error(status, PROVIDER_ERROR, failure.message or "Failed to process chat request with Gemini API", exc)
