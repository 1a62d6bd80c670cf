"""Host events: messages sent from the agent host to a UI surface."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from locus.protocol.envelope import (
    PROTOCOL_VERSION,
    ProtocolError,
    ProtocolErrorCode,
    ProtocolMessageError,
    read_envelope,
    validate_payload,
)
from locus.protocol.session import SessionStatus


class HostEventType(str, Enum):
    SESSION_STATE = "session_state"
    TEXT_DELTA = "text_delta"
    TOOL_STARTED = "tool_started"
    TOOL_COMPLETED = "tool_completed"
    THINKING = "thinking"
    ERROR = "error"
    SESSION_LIST = "session_list"
    SESSION_COMPLETED = "session_completed"


_NUMBER = (int, float)

_REQUIRED_FIELDS: dict[HostEventType, dict[str, type | tuple[type, ...]]] = {
    HostEventType.SESSION_STATE: {"sessionId": str, "status": str},
    HostEventType.TEXT_DELTA: {"sessionId": str, "content": str},
    HostEventType.TOOL_STARTED: {"sessionId": str, "tool": str},
    HostEventType.TOOL_COMPLETED: {"sessionId": str, "tool": str, "success": bool},
    HostEventType.THINKING: {"sessionId": str},
    HostEventType.ERROR: {"error": Mapping},
    HostEventType.SESSION_LIST: {"sessions": list},
    HostEventType.SESSION_COMPLETED: {"sessionId": str},
}
_OPTIONAL_FIELDS: dict[HostEventType, dict[str, type | tuple[type, ...]]] = {
    HostEventType.SESSION_STATE: {"metadata": Mapping, "timeline": list},
    HostEventType.TOOL_STARTED: {"toolId": str, "parameters": Mapping},
    HostEventType.TOOL_COMPLETED: {"toolId": str, "duration": _NUMBER, "error": str},
    HostEventType.THINKING: {"content": str},
    HostEventType.ERROR: {"sessionId": str},
    HostEventType.SESSION_COMPLETED: {"summary": str},
}


@dataclass(slots=True)
class HostEvent:
    """One validated host event; ``payload`` keys follow the wire names."""

    type: HostEventType
    payload: dict[str, Any] = field(default_factory=dict)
    protocol: int = PROTOCOL_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {"protocol": self.protocol, "type": self.type.value, "payload": dict(self.payload)}


def parse_host_event(message: object) -> HostEvent:
    """Validate a raw message as a host event or raise ``ProtocolMessageError``."""

    raw_type, raw_payload = read_envelope(message, kind="Host event")
    try:
        event_type = HostEventType(raw_type)
    except ValueError as error:
        raise ProtocolMessageError(f"Unknown host event type: {raw_type!r}") from error

    label = f"Host event {event_type.value}"
    payload = validate_payload(
        raw_payload,
        required=_REQUIRED_FIELDS[event_type],
        optional=_OPTIONAL_FIELDS.get(event_type),
        label=label,
    )
    if event_type is HostEventType.SESSION_STATE:
        try:
            SessionStatus(payload["status"])
        except ValueError as error:
            raise ProtocolMessageError(
                f"{label}: unknown session status {payload['status']!r}",
            ) from error
    if event_type is HostEventType.ERROR:
        validate_payload(
            payload["error"],
            required={"code": str, "message": str},
            optional={"recoverable": bool},
            label=f"{label} error",
        )
    return HostEvent(type=event_type, payload=payload)


def create_host_event(event_type: HostEventType, **payload: Any) -> HostEvent:
    """Build a host event from keyword payload, dropping ``None`` values."""

    data = {key: value for key, value in payload.items() if value is not None}
    return parse_host_event(
        {"protocol": PROTOCOL_VERSION, "type": HostEventType(event_type).value, "payload": data},
    )


def create_error_event(
    code: ProtocolErrorCode,
    message: str,
    *,
    session_id: str | None = None,
    details: Any = None,
    recoverable: bool = False,
) -> HostEvent:
    error = ProtocolError(code=code, message=message, details=details, recoverable=recoverable)
    payload: dict[str, Any] = {"error": error.to_dict()}
    if session_id is not None:
        payload["sessionId"] = session_id
    return HostEvent(type=HostEventType.ERROR, payload=payload)
