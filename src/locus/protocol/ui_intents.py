"""UI intents: requests sent from a UI surface to the agent host."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from locus.protocol.envelope import (
    PROTOCOL_VERSION,
    ProtocolMessageError,
    read_envelope,
    validate_payload,
)


class UIIntentType(str, Enum):
    SUBMIT_PROMPT = "submit_prompt"
    STOP_SESSION = "stop_session"
    RESUME_SESSION = "resume_session"
    REQUEST_SESSIONS = "request_sessions"
    REQUEST_SESSION_DETAIL = "request_session_detail"
    CLEAR_SESSION = "clear_session"
    WEBVIEW_READY = "webview_ready"


_SESSION_SCOPED = {
    UIIntentType.STOP_SESSION,
    UIIntentType.RESUME_SESSION,
    UIIntentType.REQUEST_SESSION_DETAIL,
    UIIntentType.CLEAR_SESSION,
}
_PAYLOAD_OPTIONAL = {UIIntentType.REQUEST_SESSIONS, UIIntentType.WEBVIEW_READY}


@dataclass(slots=True)
class UIIntent:
    """One validated UI intent. ``payload`` is ``None`` only for payload-less intents."""

    type: UIIntentType
    payload: dict[str, Any] | None = None
    protocol: int = PROTOCOL_VERSION

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"protocol": self.protocol, "type": self.type.value}
        if self.payload is not None:
            message["payload"] = dict(self.payload)
        return message

    @property
    def session_id(self) -> str | None:
        if self.payload is None:
            return None
        return self.payload.get("sessionId")


def parse_ui_intent(message: object) -> UIIntent:
    """Validate a raw message as a UI intent or raise ``ProtocolMessageError``."""

    raw_type, raw_payload = read_envelope(message, kind="UI intent")
    try:
        intent_type = UIIntentType(raw_type)
    except ValueError as error:
        raise ProtocolMessageError(f"Unknown UI intent type: {raw_type!r}") from error

    label = f"UI intent {intent_type.value}"
    if intent_type in _PAYLOAD_OPTIONAL:
        if raw_payload is None:
            return UIIntent(type=intent_type)
        return UIIntent(type=intent_type, payload=dict(raw_payload))
    if raw_payload is None:
        raise ProtocolMessageError(f"{label}: payload is required")

    if intent_type is UIIntentType.SUBMIT_PROMPT:
        payload = validate_payload(
            raw_payload,
            required={"text": str},
            optional={"context": Mapping},
            label=label,
        )
        if not payload["text"]:
            raise ProtocolMessageError(f"{label}: text must not be empty")
        return UIIntent(type=intent_type, payload=payload)

    if intent_type in _SESSION_SCOPED:
        payload = validate_payload(raw_payload, required={"sessionId": str}, label=label)
        return UIIntent(type=intent_type, payload=payload)

    raise ProtocolMessageError(f"{label}: unsupported intent")  # pragma: no cover


def create_ui_intent(intent_type: UIIntentType, **payload: Any) -> UIIntent:
    data = {key: value for key, value in payload.items() if value is not None}
    message: dict[str, Any] = {
        "protocol": PROTOCOL_VERSION,
        "type": UIIntentType(intent_type).value,
    }
    if data or UIIntentType(intent_type) not in _PAYLOAD_OPTIONAL:
        message["payload"] = data
    return parse_ui_intent(message)
