from __future__ import annotations

import allure
import pytest

from locus.protocol import (
    PROTOCOL_VERSION,
    HostEventType,
    ProtocolErrorCode,
    ProtocolMessageError,
    UIIntentType,
    create_error_event,
    create_host_event,
    create_ui_intent,
    parse_host_event,
    parse_ui_intent,
)

pytestmark = [
    allure.epic("Session Protocol"),
    allure.feature("Host and UI Messages"),
]


def test_submit_prompt_intent_round_trips() -> None:
    intent = create_ui_intent(UIIntentType.SUBMIT_PROMPT, text="fix the build")

    parsed = parse_ui_intent(intent.to_dict())

    assert parsed == intent
    assert parsed.payload == {"text": "fix the build"}


def test_payload_less_intent_round_trips_without_payload() -> None:
    intent = create_ui_intent(UIIntentType.WEBVIEW_READY)

    assert intent.to_dict() == {"protocol": PROTOCOL_VERSION, "type": "webview_ready"}
    assert parse_ui_intent(intent.to_dict()) == intent


def test_session_scoped_intent_exposes_session_id() -> None:
    intent = parse_ui_intent(
        {"protocol": PROTOCOL_VERSION, "type": "stop_session", "payload": {"sessionId": "s-1"}},
    )

    assert intent.type is UIIntentType.STOP_SESSION
    assert intent.session_id == "s-1"


@pytest.mark.parametrize(
    "message",
    [
        {"protocol": 2, "type": "submit_prompt", "payload": {"text": "x"}},
        {"protocol": PROTOCOL_VERSION, "type": "dance", "payload": {}},
        {"protocol": PROTOCOL_VERSION, "type": "submit_prompt", "payload": {"text": ""}},
        {"protocol": PROTOCOL_VERSION, "type": "submit_prompt"},
        {"protocol": PROTOCOL_VERSION, "type": "stop_session", "payload": {"sessionId": 7}},
        "not a message",
    ],
)
def test_malformed_intents_are_rejected(message: object) -> None:
    with pytest.raises(ProtocolMessageError):
        parse_ui_intent(message)


def test_host_event_round_trips() -> None:
    event = create_host_event(
        HostEventType.TOOL_COMPLETED,
        sessionId="s-1",
        tool="Edit",
        success=True,
        duration=12.5,
    )

    assert parse_host_event(event.to_dict()) == event


def test_host_event_rejects_unknown_session_status() -> None:
    with pytest.raises(ProtocolMessageError, match="unknown session status"):
        parse_host_event(
            {
                "protocol": PROTOCOL_VERSION,
                "type": "session_state",
                "payload": {"sessionId": "s-1", "status": "sleeping"},
            },
        )


def test_host_event_numeric_field_rejects_bool() -> None:
    with pytest.raises(ProtocolMessageError, match="invalid type bool"):
        create_host_event(
            HostEventType.TOOL_COMPLETED,
            sessionId="s-1",
            tool="Edit",
            success=True,
            duration=True,
        )


def test_error_event_is_valid_host_event() -> None:
    event = create_error_event(
        ProtocolErrorCode.CLI_NOT_FOUND,
        "claude not found",
        session_id="s-1",
        recoverable=True,
    )

    parsed = parse_host_event(event.to_dict())

    assert parsed.payload["error"] == {
        "code": "CLI_NOT_FOUND",
        "message": "claude not found",
        "recoverable": True,
    }
    assert parsed.payload["sessionId"] == "s-1"
