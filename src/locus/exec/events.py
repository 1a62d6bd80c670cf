"""Typed execution events emitted while a runner drives an assistant process."""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from locus.emitter import EventEmitter

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_CHARS = 500
_ANY_EVENT = "*"


class ExecEventType(str, Enum):
    """Closed set of execution event kinds."""

    SESSION_STARTED = "session_started"
    PROMPT_SUBMITTED = "prompt_submitted"
    TEXT_DELTA = "text_delta"
    TOOL_STARTED = "tool_started"
    TOOL_COMPLETED = "tool_completed"
    THINKING_STARTED = "thinking_started"
    THINKING_STOPPED = "thinking_stopped"
    RESPONSE_COMPLETED = "response_completed"
    SESSION_ENDED = "session_ended"
    ERROR_OCCURRED = "error_occurred"


@dataclass(slots=True)
class ExecEvent:
    type: ExecEventType
    session_id: str
    timestamp: float
    data: dict[str, Any] = field(default_factory=dict)


ExecEventListener = Callable[[ExecEvent], Any]


def new_session_id() -> str:
    return f"exec-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class ExecEventEmitter:
    """Typed emitter bound to one execution session.

    Listeners registered with ``on_any`` receive every event. In debug mode
    every emitted event is also kept in an in-memory log.
    """

    def __init__(self, *, session_id: str | None = None, debug: bool = False) -> None:
        self.session_id = session_id or new_session_id()
        self.debug = debug
        self._emitter = EventEmitter()
        self._event_log: list[ExecEvent] = []

    def on(self, event_type: ExecEventType, listener: ExecEventListener) -> Callable[[], None]:
        return self._emitter.on(ExecEventType(event_type).value, listener)

    def once(self, event_type: ExecEventType, listener: ExecEventListener) -> Callable[[], None]:
        return self._emitter.once(ExecEventType(event_type).value, listener)

    def off(self, event_type: ExecEventType, listener: ExecEventListener) -> None:
        self._emitter.off(ExecEventType(event_type).value, listener)

    def on_any(self, listener: ExecEventListener) -> Callable[[], None]:
        return self._emitter.on(_ANY_EVENT, listener)

    def remove_all_listeners(self, event_type: ExecEventType | None = None) -> None:
        if event_type is None:
            self._emitter.remove_all_listeners()
        else:
            self._emitter.remove_all_listeners(ExecEventType(event_type).value)

    def emit(self, event_type: ExecEventType, data: dict[str, Any] | None = None) -> ExecEvent:
        event = ExecEvent(
            type=ExecEventType(event_type),
            session_id=self.session_id,
            timestamp=time.time(),
            data=data or {},
        )
        if self.debug:
            self._event_log.append(event)
            logger.debug("exec event %s %s", event.type.value, event.data)
        self._emitter.emit(event.type.value, event)
        self._emitter.emit(_ANY_EVENT, event)
        return event

    def get_event_log(self) -> list[ExecEvent]:
        return list(self._event_log)

    def clear_event_log(self) -> None:
        self._event_log.clear()

    def emit_session_started(
        self, *, model: str | None = None, provider: str | None = None
    ) -> None:
        self.emit(
            ExecEventType.SESSION_STARTED,
            {"session_id": self.session_id, "model": model, "provider": provider},
        )

    def emit_prompt_submitted(self, prompt: str) -> None:
        truncated = len(prompt) > PROMPT_PREVIEW_CHARS
        preview = f"{prompt[:PROMPT_PREVIEW_CHARS]}..." if truncated else prompt
        self.emit(ExecEventType.PROMPT_SUBMITTED, {"prompt": preview, "truncated": truncated})

    def emit_thinking_started(self, content: str | None = None) -> None:
        self.emit(ExecEventType.THINKING_STARTED, {"content": content})

    def emit_thinking_stopped(self) -> None:
        self.emit(ExecEventType.THINKING_STOPPED)

    def emit_tool_started(
        self,
        tool_name: str,
        tool_id: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self.emit(
            ExecEventType.TOOL_STARTED,
            {"tool_name": tool_name, "tool_id": tool_id, "parameters": parameters},
        )

    def emit_tool_completed(  # noqa: PLR0913
        self,
        tool_name: str,
        tool_id: str | None = None,
        *,
        parameters: dict[str, Any] | None = None,
        result: Any = None,
        duration_ms: float | None = None,
    ) -> None:
        self.emit(
            ExecEventType.TOOL_COMPLETED,
            {
                "tool_name": tool_name,
                "tool_id": tool_id,
                "parameters": parameters,
                "result": result,
                "duration_ms": duration_ms,
            },
        )

    def emit_text_delta(self, content: str) -> None:
        self.emit(ExecEventType.TEXT_DELTA, {"content": content})

    def emit_response_completed(self, content: str) -> None:
        self.emit(ExecEventType.RESPONSE_COMPLETED, {"content": content})

    def emit_error_occurred(self, error: str, code: str | None = None) -> None:
        self.emit(ExecEventType.ERROR_OCCURRED, {"error": error, "code": code})

    def emit_session_ended(self, success: bool, summary: dict[str, Any] | None = None) -> None:
        data: dict[str, Any] = {"session_id": self.session_id, "success": success}
        if summary is not None:
            data["summary"] = summary
        self.emit(ExecEventType.SESSION_ENDED, data)
