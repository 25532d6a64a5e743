import pytest
from pydantic import ValidationError

from olegal.errors import ErrorCode
from olegal.models.api_io import ChatRequest
from olegal.models.domain import ErrorState, Message, Source


def test_source_display_title():
    assert Source(uri="https://zakon.rada.gov.ua/laws/show/435-15", title="ЦКУ").display_title == "ЦКУ"
    assert Source(uri="https://zakon.rada.gov.ua/laws/show/435-15").display_title == "zakon.rada.gov.ua"
    assert Source(uri="not-a-url").display_title == "not-a-url"


def test_message_text_joins_parts_in_order():
    msg = Message(role="model", parts=[{"text": "Стаття "}, {"text": "257"}])

    assert msg.text == "Стаття 257"
    assert msg.kind == "chat"
    assert msg.id
    assert msg.timestamp.tzinfo is not None


def test_messages_are_immutable():
    msg = Message.from_text("user", "Привіт")
    with pytest.raises(ValidationError):
        msg.role = "model"


def test_error_state_recoverability():
    assert ErrorState.from_code(ErrorCode.INVALID_API_KEY).is_recoverable is False
    for code in ErrorCode:
        if code != ErrorCode.INVALID_API_KEY:
            assert ErrorState.from_code(code).is_recoverable


def test_chat_request_normalizes_history():
    req = ChatRequest.model_validate({"history": [{"role": "user", "parts": ["Привіт"]}], "message": "Ще"})

    assert req.history[0].parts[0].text == "Привіт"
    assert ChatRequest.model_validate({"history": None, "message": "x"}).history == []


def test_chat_request_rejects_unknown_role():
    with pytest.raises(ValidationError):
        ChatRequest.model_validate({"history": [{"role": "system", "parts": ["x"]}], "message": "x"})


def test_error_state_derives_recoverability_from_code():
    state = ErrorState(message="x", code=ErrorCode.INVALID_API_KEY)
    assert state.is_recoverable is False
    assert ErrorState(message="x", code=ErrorCode.TIMEOUT).is_recoverable is True


@pytest.mark.parametrize(
    "code, recoverable",
    [(ErrorCode.INVALID_API_KEY, True), (ErrorCode.NETWORK_ERROR, False)],
)
def test_error_state_rejects_contradictory_recoverability(code, recoverable):
    with pytest.raises(ValidationError):
        ErrorState(message="x", code=code, is_recoverable=recoverable)
