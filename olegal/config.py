"""Global configuration using pydantic settings management.

Values are loaded from environment variables (or an .env file). The server
and the chat client read the same settings object; client-only fields are
simply ignored by the backend and vice versa.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

from .constants import DEFAULT_MODEL_NAME, DEFAULT_SYSTEM_INSTRUCTION

DEV_API_BASE_URL = "http://localhost:3001"
CHAT_API_PATH = "/api/chat"
API_KEY_PATH = "/api/api-key"


class Settings(BaseSettings):
    """Application configuration loaded from env or defaults."""

    # Gemini
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    gemini_model_name: str = Field(default=DEFAULT_MODEL_NAME, alias="GEMINI_MODEL_NAME")
    enable_search: bool = Field(default=True, alias="GEMINI_ENABLE_SEARCH")
    temperature: float = Field(default=0.9, alias="GEMINI_TEMPERATURE")
    max_output_tokens: int = Field(default=1000, alias="GEMINI_MAX_OUTPUT_TOKENS")
    system_instruction: str = Field(default=DEFAULT_SYSTEM_INSTRUCTION, alias="SYSTEM_INSTRUCTION")

    # Runtime
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")

    # CORS - single origin or "*"
    allowed_origin: str = Field(default="*", alias="ALLOWED_ORIGIN")

    # --- Chat client settings ---
    chat_api_url: str = Field(default="", alias="CHAT_API_URL")
    app_origin: str = Field(default="", alias="APP_ORIGIN")
    chat_session_mode: str = Field(default="proxy", alias="CHAT_SESSION_MODE")

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    @property
    def api_key(self) -> str:
        """The configured provider key with surrounding whitespace removed."""
        return (self.gemini_api_key or "").strip()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
