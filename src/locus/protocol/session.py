"""Session lifecycle state machine for one agent execution."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    """Lifecycle states of an execution session."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELED = "canceled"
    INTERRUPTED = "interrupted"
    FAILED = "failed"
    RESUMING = "resuming"


class SessionEvent(str, Enum):
    """Events that drive session transitions."""

    CREATE_SESSION = "create_session"
    CLI_SPAWNED = "cli_spawned"
    FIRST_TEXT_DELTA = "first_text_delta"
    RESULT_RECEIVED = "result_received"
    USER_STOP = "user_stop"
    PROCESS_LOST = "process_lost"
    RESUME = "resume"
    ERROR = "error"


TERMINAL_STATUSES: frozenset[SessionStatus] = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.CANCELED, SessionStatus.FAILED},
)
ACTIVE_STATUSES: tuple[SessionStatus, ...] = (
    SessionStatus.STARTING,
    SessionStatus.RUNNING,
    SessionStatus.STREAMING,
    SessionStatus.RESUMING,
)


@dataclass(frozen=True, slots=True)
class SessionTransition:
    from_status: SessionStatus
    event: SessionEvent
    to_status: SessionStatus


def _build_transitions() -> tuple[SessionTransition, ...]:
    S = SessionStatus  # noqa: N806
    E = SessionEvent  # noqa: N806
    table = [
        SessionTransition(S.IDLE, E.CREATE_SESSION, S.STARTING),
        SessionTransition(S.STARTING, E.CLI_SPAWNED, S.RUNNING),
        SessionTransition(S.STARTING, E.ERROR, S.FAILED),
        SessionTransition(S.RUNNING, E.FIRST_TEXT_DELTA, S.STREAMING),
        SessionTransition(S.RUNNING, E.ERROR, S.FAILED),
        SessionTransition(S.STREAMING, E.RESULT_RECEIVED, S.COMPLETED),
        SessionTransition(S.STREAMING, E.ERROR, S.FAILED),
        SessionTransition(S.INTERRUPTED, E.RESUME, S.RESUMING),
        SessionTransition(S.INTERRUPTED, E.CREATE_SESSION, S.STARTING),
        SessionTransition(S.RESUMING, E.CLI_SPAWNED, S.RUNNING),
        SessionTransition(S.RESUMING, E.ERROR, S.FAILED),
    ]
    for status in ACTIVE_STATUSES:
        table.append(SessionTransition(status, E.USER_STOP, S.CANCELED))
        table.append(SessionTransition(status, E.PROCESS_LOST, S.INTERRUPTED))
    for status in sorted(TERMINAL_STATUSES, key=lambda item: item.value):
        table.append(SessionTransition(status, E.CREATE_SESSION, S.STARTING))
    return tuple(table)


SESSION_TRANSITIONS: tuple[SessionTransition, ...] = _build_transitions()
_TRANSITION_INDEX: dict[tuple[SessionStatus, SessionEvent], SessionStatus] = {
    (transition.from_status, transition.event): transition.to_status
    for transition in SESSION_TRANSITIONS
}


class SessionTransitionError(RuntimeError):
    """Raised when an event is not allowed in the current session status."""

    def __init__(self, from_status: SessionStatus, event: SessionEvent) -> None:
        super().__init__(
            f"Invalid session transition: {from_status.value} --{event.value}-->",
        )
        self.from_status = from_status
        self.event = event


def is_valid_transition(from_status: SessionStatus, event: SessionEvent) -> bool:
    return (SessionStatus(from_status), SessionEvent(event)) in _TRANSITION_INDEX


def get_next_status(from_status: SessionStatus, event: SessionEvent) -> SessionStatus | None:
    """Return the target status for a transition, or ``None`` if it is not listed."""

    return _TRANSITION_INDEX.get((SessionStatus(from_status), SessionEvent(event)))


def is_terminal_status(status: SessionStatus) -> bool:
    return SessionStatus(status) in TERMINAL_STATUSES


@dataclass(slots=True)
class Session:
    """Mutable session record; status changes only through ``apply``."""

    session_id: str
    model: str | None = None
    provider: str | None = None
    status: SessionStatus = SessionStatus.IDLE
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    input_tokens: int = 0
    output_tokens: int = 0
    tool_calls: int = 0

    def apply(self, event: SessionEvent) -> SessionStatus:
        next_status = get_next_status(self.status, event)
        if next_status is None:
            raise SessionTransitionError(self.status, SessionEvent(event))
        self.status = next_status
        self.updated_at = time.time()
        return next_status

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    def to_summary(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "status": self.status.value,
            "model": self.model,
            "provider": self.provider,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "toolCalls": self.tool_calls,
        }
