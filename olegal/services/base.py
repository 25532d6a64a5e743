from __future__ import annotations

"""Common contract for anything that can answer a chat turn.

The backend wraps the Gemini SDK behind it, the chat client uses it as the
opaque session handle (either a proxy to the backend or a direct SDK
session), and tests substitute fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence

from olegal.models.api_io import HistoryEntry
from olegal.models.domain import Source


@dataclass(frozen=True)
class ProviderReply:
    text: str
    sources: List[Source] = field(default_factory=list)


class ChatProvider(ABC):
    """Abstract base class for chat backends.

    Sub-classes implement :py:meth:`send`; ``history`` is already projected
    to ``{role, parts}`` entries and ``message`` is already trimmed.
    """

    @abstractmethod
    async def send(self, history: Sequence[HistoryEntry], message: str) -> ProviderReply:
        """Send *message* on top of *history* and return the model's reply."""
