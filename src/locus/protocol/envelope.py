"""Shared envelope, error shape and payload validation for host/UI messages."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

PROTOCOL_VERSION = 1


class ProtocolErrorCode(str, Enum):
    """Stable error codes carried in host error events."""

    CLI_NOT_FOUND = "CLI_NOT_FOUND"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    CONTEXT_LIMIT = "CONTEXT_LIMIT"
    MALFORMED_EVENT = "MALFORMED_EVENT"
    PROCESS_CRASHED = "PROCESS_CRASHED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    UNKNOWN = "UNKNOWN"


class ProtocolMessageError(ValueError):
    """Raised when an inbound message does not match the protocol."""


@dataclass(slots=True)
class ProtocolError:
    code: ProtocolErrorCode
    message: str
    details: Any = None
    recoverable: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


def read_envelope(message: object, *, kind: str) -> tuple[str, Mapping[str, Any] | None]:
    """Validate protocol version and return ``(type, payload)`` of a raw message."""

    if not isinstance(message, Mapping):
        raise ProtocolMessageError(f"{kind} must be an object, got {type(message).__name__}")
    if message.get("protocol") != PROTOCOL_VERSION:
        raise ProtocolMessageError(
            f"Unsupported {kind} protocol version: {message.get('protocol')!r}",
        )
    message_type = message.get("type")
    if not isinstance(message_type, str):
        raise ProtocolMessageError(f"{kind} type must be a string")
    payload = message.get("payload")
    if payload is not None and not isinstance(payload, Mapping):
        raise ProtocolMessageError(f"{kind} payload must be an object")
    return message_type, payload


def validate_payload(
    payload: Mapping[str, Any] | None,
    *,
    required: Mapping[str, type | tuple[type, ...]],
    optional: Mapping[str, type | tuple[type, ...]] | None = None,
    label: str,
) -> dict[str, Any]:
    """Check field presence and types, returning a plain-dict copy of payload."""

    data = dict(payload or {})
    for name, expected in required.items():
        if name not in data:
            raise ProtocolMessageError(f"{label}: missing payload field {name!r}")
        _check_type(data[name], expected, label=label, name=name)
    for name, expected in (optional or {}).items():
        if data.get(name) is not None:
            _check_type(data[name], expected, label=label, name=name)
    return data


def _check_type(
    value: object,
    expected: type | tuple[type, ...],
    *,
    label: str,
    name: str,
) -> None:
    # bool is an int subclass; numeric fields must not accept it
    if isinstance(value, bool) and bool not in _as_tuple(expected):
        raise ProtocolMessageError(f"{label}: field {name!r} has invalid type bool")
    if not isinstance(value, expected):
        raise ProtocolMessageError(
            f"{label}: field {name!r} has invalid type {type(value).__name__}",
        )


def _as_tuple(expected: type | tuple[type, ...]) -> tuple[type, ...]:
    return expected if isinstance(expected, tuple) else (expected,)
