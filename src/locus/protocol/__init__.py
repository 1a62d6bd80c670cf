"""Session state machine and host/UI message protocol."""

from locus.protocol.envelope import (
    PROTOCOL_VERSION,
    ProtocolError,
    ProtocolErrorCode,
    ProtocolMessageError,
)
from locus.protocol.host_events import (
    HostEvent,
    HostEventType,
    create_error_event,
    create_host_event,
    parse_host_event,
)
from locus.protocol.session import (
    SESSION_TRANSITIONS,
    TERMINAL_STATUSES,
    Session,
    SessionEvent,
    SessionStatus,
    SessionTransitionError,
    get_next_status,
    is_terminal_status,
    is_valid_transition,
)
from locus.protocol.ui_intents import UIIntent, UIIntentType, create_ui_intent, parse_ui_intent

__all__ = [
    "PROTOCOL_VERSION",
    "SESSION_TRANSITIONS",
    "TERMINAL_STATUSES",
    "HostEvent",
    "HostEventType",
    "ProtocolError",
    "ProtocolErrorCode",
    "ProtocolMessageError",
    "Session",
    "SessionEvent",
    "SessionStatus",
    "SessionTransitionError",
    "UIIntent",
    "UIIntentType",
    "create_error_event",
    "create_host_event",
    "create_ui_intent",
    "get_next_status",
    "is_terminal_status",
    "is_valid_transition",
    "parse_host_event",
    "parse_ui_intent",
]
