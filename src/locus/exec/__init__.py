"""Execution event surface for runner observers."""

from locus.exec.events import ExecEvent, ExecEventEmitter, ExecEventType, new_session_id

__all__ = ["ExecEvent", "ExecEventEmitter", "ExecEventType", "new_session_id"]
