from fastapi import Request

from olegal.config import Settings

from .handler import ChatHandler


def get_app_settings(request: Request) -> Settings:
    """Settings the running app was built with."""
    return request.app.state.settings


def get_chat_handler(request: Request) -> ChatHandler:
    """The per-process chat handler created by the app factory."""
    return request.app.state.chat_handler
