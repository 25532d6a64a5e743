import asyncio
from typing import List, Optional

import pytest

from olegal.constants import ERROR_NARRATION_PREFIX, INITIAL_GREETING_TEXT
from olegal.errors import ChatServiceError, ErrorCode, InvalidTransition
from olegal.models.domain import ApiStatus, Message, Source
from olegal.services.base import ProviderReply
from olegal.services.chat_session import Action, ActionType, ChatSessionMachine

from conftest import FakeProvider


class StubService:
    """Stands in for GeminiService; scripted replies are consumed in order."""

    def __init__(self, replies=None, init_error: Optional[BaseException] = None):
        self.replies = list(replies or [])
        self.init_error = init_error
        self.init_calls = 0
        self.sent: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def initialize_chat_session(self):
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error
        return FakeProvider()

    async def send_message(self, session, history, message):
        self.sent.append(([m.text for m in history], message))
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.replies.pop(0) if self.replies else ProviderReply(text="Відповідь")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def _ready(service) -> ChatSessionMachine:
    machine = ChatSessionMachine(service)
    await machine.initialize()
    return machine


# ---------- initialize -------------------------------------------------------

@pytest.mark.asyncio
async def test_initialize_seeds_greeting_once():
    service = StubService()
    machine = await _ready(service)
    await machine.initialize()

    assert service.init_calls == 1
    assert len(machine.messages) == 1
    assert machine.has_session
    greeting = machine.messages[0]
    assert greeting.role == "model"
    assert greeting.text == INITIAL_GREETING_TEXT
    assert machine.status == ApiStatus.IDLE


@pytest.mark.asyncio
async def test_initialize_keeps_existing_transcript():
    existing = [Message.from_text("user", "Привіт"), Message.from_text("model", "Вітаю")]
    machine = ChatSessionMachine(StubService(), initial_messages=existing)

    assert await machine.initialize()
    assert [m.text for m in machine.messages] == ["Привіт", "Вітаю"]


@pytest.mark.asyncio
async def test_initialize_missing_key_is_not_recoverable():
    machine = await _ready(StubService(init_error=ChatServiceError(ErrorCode.INVALID_API_KEY)))

    assert machine.status == ApiStatus.ERROR
    assert machine.is_api_key_missing
    assert machine.error.is_recoverable is False
    assert machine.messages == ()
    assert await machine.send_message("Привіт") is False


@pytest.mark.asyncio
async def test_initialize_unexpected_failure_becomes_session_error():
    machine = await _ready(StubService(init_error=RuntimeError("boom")))

    assert machine.error.code == ErrorCode.CHAT_SESSION_ERROR
    assert machine.error.is_recoverable


@pytest.mark.asyncio
async def test_initialize_can_be_retried_after_failure():
    service = StubService(init_error=ChatServiceError(ErrorCode.NETWORK_ERROR))
    machine = await _ready(service)
    assert machine.error.is_recoverable
    assert not machine.has_session

    service.init_error = None
    assert await machine.initialize()

    assert service.init_calls == 2
    assert machine.has_session
    assert machine.error is None
    assert machine.status == ApiStatus.IDLE
    assert machine.messages[0].text == INITIAL_GREETING_TEXT
    assert await machine.send_message("Питання")


# ---------- send -------------------------------------------------------------

@pytest.mark.asyncio
async def test_send_appends_user_and_model_messages():
    reply = ProviderReply(text="Строк позовної давності 3 роки", sources=[Source(uri="https://zakon.rada.gov.ua")])
    service = StubService(replies=[reply])
    machine = await _ready(service)

    assert await machine.send_message("  Який строк давності?  ")

    roles = [m.role for m in machine.messages]
    assert roles == ["model", "user", "model"]
    assert machine.messages[1].text == "Який строк давності?"
    assert machine.messages[2].sources[0].uri == "https://zakon.rada.gov.ua"
    assert machine.status == ApiStatus.SUCCESS
    # the greeting is local only and never part of provider history
    assert service.sent == [([], "Який строк давності?")]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_blank_input_is_a_noop(text):
    service = StubService()
    machine = await _ready(service)

    assert await machine.send_message(text) is False
    assert len(machine.messages) == 1
    assert service.sent == []


@pytest.mark.asyncio
async def test_only_one_request_in_flight():
    service = StubService()
    service.gate = asyncio.Event()
    machine = await _ready(service)

    first = asyncio.create_task(machine.send_message("Перше"))
    await asyncio.sleep(0)
    assert machine.is_loading
    assert machine.is_typing

    assert await machine.send_message("Друге") is False

    service.gate.set()
    assert await first
    assert [m.text for m in machine.messages if m.role == "user"] == ["Перше"]
    assert len(service.sent) == 1


@pytest.mark.asyncio
async def test_recoverable_error_keeps_user_message_and_narrates():
    service = StubService(replies=[ChatServiceError(ErrorCode.RATE_LIMIT_EXCEEDED)])
    machine = await _ready(service)

    await machine.send_message("Питання")

    assert machine.status == ApiStatus.ERROR
    assert machine.error.code == ErrorCode.RATE_LIMIT_EXCEEDED
    user, narration = machine.messages[1:]
    assert user.text == "Питання"
    assert narration.kind == "error"
    assert narration.text.startswith(ERROR_NARRATION_PREFIX)


@pytest.mark.asyncio
async def test_unrecoverable_error_has_no_narration():
    service = StubService(replies=[ChatServiceError(ErrorCode.INVALID_API_KEY)])
    machine = await _ready(service)

    await machine.send_message("Питання")

    assert [m.role for m in machine.messages] == ["model", "user"]
    assert machine.is_api_key_missing


@pytest.mark.asyncio
async def test_narration_is_not_sent_as_history():
    service = StubService(replies=[ChatServiceError(ErrorCode.MODEL_OVERLOADED), ProviderReply(text="Ок")])
    machine = await _ready(service)

    await machine.send_message("Перше")
    await machine.send_message("Друге")

    assert service.sent[1] == (["Перше"], "Друге")


# ---------- retry ------------------------------------------------------------

@pytest.mark.asyncio
async def test_retry_resends_last_user_message():
    service = StubService(replies=[ChatServiceError(ErrorCode.TIMEOUT), ProviderReply(text="Відповідь")])
    machine = await _ready(service)
    await machine.send_message("Питання")

    assert await machine.retry_last_message()

    assert [m.text for m in machine.messages[1:]] == ["Питання", "Відповідь"]
    assert machine.status == ApiStatus.SUCCESS
    assert machine.error is None
    assert service.sent[1] == ([], "Питання")


@pytest.mark.asyncio
async def test_retry_without_user_message():
    machine = await _ready(StubService())
    assert await machine.retry_last_message() is False
    assert len(machine.messages) == 1


@pytest.mark.asyncio
async def test_retry_without_session_keeps_transcript():
    existing = [Message.from_text("user", "Питання")]
    machine = ChatSessionMachine(StubService(), initial_messages=existing)

    assert await machine.retry_last_message() is False
    assert [m.text for m in machine.messages] == ["Питання"]


@pytest.mark.asyncio
async def test_retry_is_rejected_while_loading():
    service = StubService(replies=[ChatServiceError(ErrorCode.TIMEOUT)])
    machine = await _ready(service)
    await machine.send_message("Перше")
    service.gate = asyncio.Event()

    pending = asyncio.create_task(machine.send_message("Друге"))
    await asyncio.sleep(0)
    before = machine.messages

    assert await machine.retry_last_message() is False
    assert machine.messages == before
    assert len(service.sent) == 2

    service.gate.set()
    await pending
    assert [m.text for m in machine.messages if m.role == "user"] == ["Перше", "Друге"]


@pytest.mark.asyncio
async def test_retry_keeps_blank_user_message():
    existing = [Message.from_text("user", "   "), Message.from_text("model", "Вітаю")]
    service = StubService()
    machine = ChatSessionMachine(service, initial_messages=existing)
    await machine.initialize()

    assert await machine.retry_last_message() is False
    assert [m.text for m in machine.messages] == ["   ", "Вітаю"]
    assert service.sent == []


# ---------- lifecycle --------------------------------------------------------

@pytest.mark.asyncio
async def test_teardown_discards_late_result():
    service = StubService()
    service.gate = asyncio.Event()
    machine = await _ready(service)

    pending = asyncio.create_task(machine.send_message("Питання"))
    await asyncio.sleep(0)
    machine.teardown()
    service.gate.set()
    await pending

    assert [m.role for m in machine.messages] == ["model", "user"]
    assert machine.status == ApiStatus.LOADING


@pytest.mark.asyncio
async def test_reset_requires_new_initialize():
    service = StubService()
    machine = await _ready(service)
    await machine.send_message("Питання")

    machine.reset()
    assert machine.messages == ()
    assert machine.status == ApiStatus.IDLE
    assert not machine.has_session
    assert await machine.send_message("Ще") is False

    await machine.initialize()
    assert service.init_calls == 2
    assert machine.messages[0].text == INITIAL_GREETING_TEXT


@pytest.mark.asyncio
async def test_clear_error_returns_to_idle():
    machine = await _ready(StubService(replies=[ChatServiceError(ErrorCode.UNKNOWN_ERROR)]))
    await machine.send_message("Питання")

    machine.clear_error()

    assert machine.error is None
    assert machine.status == ApiStatus.IDLE


@pytest.mark.asyncio
async def test_subscribers_see_each_transition():
    machine = await _ready(StubService())
    seen = []
    unsubscribe = machine.subscribe(lambda snap: seen.append(snap.status))

    await machine.send_message("Питання")
    unsubscribe()
    machine.reset()

    assert seen == [ApiStatus.LOADING, ApiStatus.SUCCESS]


def test_illegal_transition_raises():
    machine = ChatSessionMachine(StubService())
    with pytest.raises(InvalidTransition):
        machine.dispatch(Action(ActionType.RESOLVE, message=Message.from_text("model", "x")))
