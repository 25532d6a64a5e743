"""Pytest configuration and shared fixtures."""
from typing import List, Optional, Sequence, Tuple

import pytest

from olegal.config import Settings
from olegal.models.api_io import HistoryEntry
from olegal.services.base import ChatProvider, ProviderReply


class FakeProvider(ChatProvider):
    """Records every turn; answers with a canned reply or raises ``error``."""

    def __init__(self, reply: Optional[ProviderReply] = None, error: Optional[BaseException] = None):
        self.reply = reply or ProviderReply(text="Відповідь", sources=[])
        self.error = error
        self.calls: List[Tuple[List[HistoryEntry], str]] = []

    async def send(self, history: Sequence[HistoryEntry], message: str) -> ProviderReply:
        self.calls.append((list(history), message))
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def make_settings():
    """Build isolated settings that ignore the developer's .env file."""

    def _make(**overrides) -> Settings:
        values = {
            "gemini_api_key": "test-key-123",
            "gemini_model_name": "gemini-test",
            "app_env": "development",
            "chat_api_url": "http://backend.test",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()
