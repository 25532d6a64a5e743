import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from olegal.api.deps import get_app_settings, get_chat_handler
from olegal.api.handler import ChatHandler
from olegal.config import Settings
from olegal.models.api_io import ApiKeyResponse

router = APIRouter(prefix="/api", tags=["chat"])

CHAT_PATH = "/api/chat"
CHAT_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"]


@router.api_route("/chat", methods=CHAT_METHODS)
async def chat(request: Request, handler: ChatHandler = Depends(get_chat_handler)):
    """Relay one chat turn to Gemini. Guards and error mapping live in ChatHandler."""
    body = await request.body()
    result = await handler.handle(request.method, body)
    return result.to_response()


@router.get("/api-key", response_model=ApiKeyResponse)
async def get_api_key(settings: Settings = Depends(get_app_settings)):
    """Hand the configured key to clients that talk to Gemini directly (dev only)."""
    api_key = settings.api_key
    if not api_key:
        logging.error("API key requested but GEMINI_API_KEY is not configured")
        return JSONResponse({"error": "API key not configured on the server."}, status_code=500)
    return ApiKeyResponse(apiKey=api_key)
