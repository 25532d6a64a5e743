"""FastAPI entrypoint - thin layer that wires together settings, handler & routes.

All heavy lifting lives in sibling modules:
  • handler.py         - /api/chat request guards and provider error mapping
  • routers/chat.py    - HTTP routes
  • services/          - Gemini provider, client-side orchestration
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from olegal.config import Settings, get_settings
from olegal.utils.logging import configure_logging

from .handler import ChatHandler, cors_headers
from .routers import chat

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, handler: Optional[ChatHandler] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="oLegal Chat Backend", version="0.1.0")
    app.state.settings = settings
    app.state.chat_handler = handler or ChatHandler(settings)

    # preflight on any path: 200, empty body
    @app.middleware("http")
    async def add_cors_headers(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=cors_headers(settings))
        response = await call_next(request)
        response.headers.update(cors_headers(settings))
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            message = f"The requested resource {request.url.path} was not found."
        else:
            message = str(exc.detail)
        headers = dict(getattr(exc, "headers", None) or {})
        if exc.status_code == 405 and request.url.path == chat.CHAT_PATH:
            headers["Allow"] = "POST"
        return JSONResponse(
            {"error": _reason(exc.status_code), "message": message},
            status_code=exc.status_code,
            headers=headers or None,
        )

    app.include_router(chat.router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    if not settings.is_production:
        logger.info("Chat backend ready (model %s, search %s)", settings.gemini_model_name, settings.enable_search)
    return app


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
