"""HTTP transport from the chat client to the backend.

Every call returns an :class:`ApiResponse`; nothing here raises. Deciding
whether to retry belongs to the session state machine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urljoin

import requests

from olegal.config import API_KEY_PATH, CHAT_API_PATH, DEV_API_BASE_URL, Settings

logger = logging.getLogger(__name__)

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


@dataclass(frozen=True)
class ApiResponse:
    data: Any = None
    error: Optional[str] = None
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def resolve_api_url(settings: Settings, path: str = CHAT_API_PATH) -> str:
    """Explicit base URL wins; production is same-origin; dev falls back to localhost."""
    base = settings.chat_api_url.strip()
    if base:
        return f"{base.rstrip('/')}{path}"
    if settings.is_production:
        return urljoin(settings.app_origin.strip() or "/", path)
    return f"{DEV_API_BASE_URL}{path}"


def _error_text(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and (body.get("error") or body.get("message")):
        parts = [str(body[k]) for k in ("error", "message") if body.get(k)]
        return ": ".join(parts)

    text = (resp.text or "").strip()
    return text or f"Request failed with status {resp.status_code}"


class ApiClient:
    """Thin wrapper around a ``requests.Session`` bound to the chat backend."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.settings = settings
        self.session = session or requests.Session()
        self.timeout = timeout
        self.chat_url = resolve_api_url(settings, CHAT_API_PATH)
        self.api_key_url = resolve_api_url(settings, API_KEY_PATH)

    def post_chat(self, payload: dict) -> ApiResponse:
        logger.debug("POST %s", self.chat_url)
        try:
            resp = self.session.post(self.chat_url, json=payload, headers=JSON_HEADERS, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Chat request to %s failed: %s", self.chat_url, e)
            return ApiResponse(error=str(e) or e.__class__.__name__)
        return self._read(resp)

    def fetch_api_key(self) -> ApiResponse:
        logger.debug("GET %s", self.api_key_url)
        try:
            resp = self.session.get(self.api_key_url, headers={"Accept": "application/json"}, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("API key request to %s failed: %s", self.api_key_url, e)
            return ApiResponse(error=str(e) or e.__class__.__name__)
        return self._read(resp)

    def _read(self, resp: requests.Response) -> ApiResponse:
        if not resp.ok:
            return ApiResponse(error=_error_text(resp), status=resp.status_code)
        try:
            return ApiResponse(data=resp.json(), status=resp.status_code)
        except ValueError:
            return ApiResponse(error="Invalid JSON response from server", status=resp.status_code)

    def close(self) -> None:
        self.session.close()
