"""Runner interface, stream chunk types and runner errors."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

if TYPE_CHECKING:
    from locus.ai.failure_classifier import RunnerFailureClassification
    from locus.exec.events import ExecEventEmitter


@dataclass(frozen=True, slots=True)
class TextDeltaChunk:
    type: ClassVar[str] = "text_delta"
    content: str


@dataclass(frozen=True, slots=True)
class ThinkingChunk:
    type: ClassVar[str] = "thinking"
    content: str | None = None


@dataclass(frozen=True, slots=True)
class ToolUseChunk:
    type: ClassVar[str] = "tool_use"
    tool: str
    id: str | None = None


@dataclass(frozen=True, slots=True)
class ToolParametersChunk:
    type: ClassVar[str] = "tool_parameters"
    tool: str
    id: str | None
    parameters: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ResultChunk:
    type: ClassVar[str] = "result"
    content: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class ErrorChunk:
    type: ClassVar[str] = "error"
    error: str


StreamChunk = (
    TextDeltaChunk | ThinkingChunk | ToolUseChunk | ToolParametersChunk | ResultChunk | ErrorChunk
)


class RunnerError(RuntimeError):
    """Runner error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class RunnerSpawnError(RunnerError):
    """The assistant executable could not be started."""

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=False)


class RunnerExecutionError(RunnerError):
    """The assistant process exited with a non-zero code."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int,
        stderr: str,
        classification: RunnerFailureClassification,
    ) -> None:
        super().__init__(message, transient=classification.retryable)
        self.exit_code = exit_code
        self.stderr = stderr
        self.classification = classification


class RunnerTimeoutError(RunnerError):
    """The assistant process exceeded its wall-clock budget. Never retried."""

    def __init__(self, message: str, *, timeout_seconds: float) -> None:
        super().__init__(message, transient=False)
        self.timeout_seconds = timeout_seconds


class AiRunner(Protocol):
    """Protocol implemented by assistant runners."""

    provider: str
    model: str

    async def run(self, prompt: str) -> str:
        """Run prompt to completion and return the final response text."""

    def run_stream(self, prompt: str) -> AsyncIterator[StreamChunk]:
        """Run prompt and yield chunks as the assistant produces them."""

    def abort(self) -> None:
        """Terminate the active process, if any."""

    def set_event_emitter(self, emitter: ExecEventEmitter | None) -> None:
        """Attach an execution event observer."""
