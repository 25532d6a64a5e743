"""Chat session state machine.

A framework-free replacement for a UI hook: it owns the transcript, the
request status and the current error, and exposes ``subscribe``/``dispatch``
so any front end can render from :class:`ChatSnapshot` objects.

Status moves only along :data:`TRANSITIONS`; at most one provider round-trip
is in flight per session and extra submissions are rejected, never queued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from olegal.constants import ERROR_NARRATION_PREFIX, INITIAL_GREETING_TEXT
from olegal.errors import ChatServiceError, ErrorCode, InvalidTransition
from olegal.models.domain import ApiStatus, ErrorState, Message

from .base import ChatProvider
from .gemini_service import GeminiService

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    SEND = "send"
    RESOLVE = "resolve"
    REJECT = "reject"
    INIT_FAILED = "init_failed"
    SEED = "seed"
    TRUNCATE = "truncate"
    CLEAR_ERROR = "clear_error"
    RESET = "reset"


@dataclass(frozen=True)
class Action:
    type: ActionType
    message: Optional[Message] = None
    error: Optional[ErrorState] = None
    index: Optional[int] = None


_S = ApiStatus
_A = ActionType

TRANSITIONS: Dict[ApiStatus, Dict[ActionType, ApiStatus]] = {
    _S.IDLE: {
        _A.SEND: _S.LOADING,
        _A.INIT_FAILED: _S.ERROR,
        _A.SEED: _S.IDLE,
        _A.TRUNCATE: _S.IDLE,
        _A.CLEAR_ERROR: _S.IDLE,
        _A.RESET: _S.IDLE,
    },
    _S.LOADING: {
        _A.RESOLVE: _S.SUCCESS,
        _A.REJECT: _S.ERROR,
        _A.RESET: _S.IDLE,
    },
    _S.SUCCESS: {
        _A.SEND: _S.LOADING,
        _A.SEED: _S.SUCCESS,
        _A.TRUNCATE: _S.SUCCESS,
        _A.CLEAR_ERROR: _S.SUCCESS,
        _A.RESET: _S.IDLE,
    },
    _S.ERROR: {
        _A.SEND: _S.LOADING,
        _A.INIT_FAILED: _S.ERROR,
        _A.SEED: _S.ERROR,
        _A.TRUNCATE: _S.ERROR,
        _A.CLEAR_ERROR: _S.IDLE,
        _A.RESET: _S.IDLE,
    },
}


@dataclass(frozen=True)
class ChatSnapshot:
    messages: Tuple[Message, ...]
    status: ApiStatus
    error: Optional[ErrorState]

    @property
    def is_loading(self) -> bool:
        return self.status == ApiStatus.LOADING

    @property
    def is_typing(self) -> bool:
        return self.status == ApiStatus.LOADING

    @property
    def is_api_key_missing(self) -> bool:
        return self.error is not None and self.error.code == ErrorCode.INVALID_API_KEY


Listener = Callable[[ChatSnapshot], None]


class ChatSessionMachine:
    """One chat session: transcript, status, error and the provider handle."""

    def __init__(self, service: GeminiService, initial_messages: Optional[Sequence[Message]] = None):
        self.service = service
        self._messages: List[Message] = list(initial_messages or [])
        self._status = ApiStatus.IDLE
        self._error: Optional[ErrorState] = None
        self._session: Optional[ChatProvider] = None
        self._listeners: List[Listener] = []
        self._initialized = False
        self._mounted = True
        # bumped on reset/teardown so late results from an old round-trip are dropped
        self._epoch = 0

    # ---------- read side -----------------------------------------------------
    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def status(self) -> ApiStatus:
        return self._status

    @property
    def error(self) -> Optional[ErrorState]:
        return self._error

    @property
    def has_session(self) -> bool:
        return self._session is not None

    @property
    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(messages=self.messages, status=self._status, error=self._error)

    @property
    def is_loading(self) -> bool:
        return self._status == ApiStatus.LOADING

    @property
    def is_typing(self) -> bool:
        return self.snapshot.is_typing

    @property
    def is_api_key_missing(self) -> bool:
        return self.snapshot.is_api_key_missing

    # ---------- subscribe / dispatch ------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> ChatSnapshot:
        next_status = TRANSITIONS[self._status].get(action.type)
        if next_status is None:
            raise InvalidTransition(f"{action.type.value} is not allowed while {self._status.value}")

        if action.type == ActionType.SEND:
            self._messages.append(action.message)
            self._error = None
        elif action.type in (ActionType.RESOLVE, ActionType.SEED):
            self._messages.append(action.message)
        elif action.type == ActionType.REJECT:
            self._error = action.error
            if action.message is not None:
                self._messages.append(action.message)
        elif action.type == ActionType.INIT_FAILED:
            self._error = action.error
        elif action.type == ActionType.TRUNCATE:
            del self._messages[action.index:]
        elif action.type == ActionType.CLEAR_ERROR:
            self._error = None
        elif action.type == ActionType.RESET:
            self._messages.clear()
            self._error = None

        logger.debug("chat session %s: %s -> %s", action.type.value, self._status.value, next_status.value)
        self._status = next_status

        snapshot = self.snapshot
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    def _is_current(self, epoch: int) -> bool:
        return self._mounted and epoch == self._epoch

    # ---------- operations ----------------------------------------------------
    async def initialize(self) -> bool:
        """Open the provider session; seed the greeting on an empty transcript.

        Once a session is open further calls are no-ops. A failed attempt can be
        repeated.
        """
        if self._initialized:
            return self._session is not None
        self._initialized = True
        epoch = self._epoch

        try:
            session = await self.service.initialize_chat_session()
        except ChatServiceError as e:
            logger.error("Initialization error: %s (%s)", e.code.value, e.detail)
            if self._is_current(epoch):
                self._initialized = False
                self.dispatch(Action(ActionType.INIT_FAILED, error=ErrorState.from_code(e.code)))
            return False
        except Exception as e:
            logger.error("Initialization error: %s", e, exc_info=True)
            if self._is_current(epoch):
                self._initialized = False
                self.dispatch(Action(ActionType.INIT_FAILED, error=ErrorState.from_code(ErrorCode.CHAT_SESSION_ERROR)))
            return False

        if not self._is_current(epoch):
            return False
        self._session = session
        if self._error is not None:
            self.dispatch(Action(ActionType.CLEAR_ERROR))
        if not self._messages:
            greeting = Message.from_text("model", INITIAL_GREETING_TEXT, kind="greeting")
            self.dispatch(Action(ActionType.SEED, message=greeting))
        return True

    async def send_message(self, text: str) -> bool:
        """Submit *text*. Returns False when the call was a no-op."""
        trimmed = (text or "").strip()
        if not trimmed or self.is_loading or self._session is None:
            return False

        history = [m for m in self._messages if m.kind == "chat"]
        epoch = self._epoch
        self.dispatch(Action(ActionType.SEND, message=Message.from_text("user", trimmed)))

        error: Optional[ErrorState] = None
        try:
            reply = await self.service.send_message(self._session, history, trimmed)
        except ChatServiceError as e:
            logger.warning("Chat request failed: %s (%s)", e.code.value, e.detail)
            error = ErrorState.from_code(e.code)
        except Exception as e:
            logger.error("Unexpected chat failure: %s", e, exc_info=True)
            error = ErrorState.from_code(ErrorCode.UNKNOWN_ERROR)

        if not self._is_current(epoch):
            logger.debug("Discarding result for a session that was reset or torn down")
            return True

        if error is not None:
            narration = None
            if error.is_recoverable:
                narration = Message.from_text("model", f"{ERROR_NARRATION_PREFIX}{error.message}", kind="error")
            self.dispatch(Action(ActionType.REJECT, message=narration, error=error))
        else:
            answer = Message.from_text("model", reply.text, sources=list(reply.sources))
            self.dispatch(Action(ActionType.RESOLVE, message=answer))
        return True

    async def retry_last_message(self) -> bool:
        """Drop everything from the latest user message on and send it again."""
        if self.is_loading or self._session is None:
            return False

        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].role == "user":
                break
        else:
            return False

        text = self._messages[index].text
        if not text.strip():
            return False
        self.dispatch(Action(ActionType.TRUNCATE, index=index))
        return await self.send_message(text)

    def clear_error(self) -> None:
        if self._error is not None:
            self.dispatch(Action(ActionType.CLEAR_ERROR))

    def reset(self) -> None:
        """Empty the transcript; the next :meth:`initialize` opens a new session."""
        self._epoch += 1
        self._session = None
        self._initialized = False
        self.dispatch(Action(ActionType.RESET))

    def teardown(self) -> None:
        self._mounted = False
        self._epoch += 1
        self._listeners.clear()
