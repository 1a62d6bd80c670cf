"""Controller for ``locus exec``: one prompt, streamed to the console."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from locus.ai.base import ErrorChunk, ResultChunk
from locus.ai.factory import create_ai_runner
from locus.config import Settings
from locus.exec.events import ExecEvent, ExecEventEmitter, ExecEventType

Write = Callable[[str], None]


@dataclass(slots=True)
class ExecCommand:
    """CLI input for a single prompt execution."""

    prompt: str
    project_path: Path | None
    provider: str | None
    model: str | None
    timeout_seconds: int | None
    runner_command: tuple[str, ...] = ()


@dataclass(slots=True)
class ExecOutcome:
    success: bool
    lines: list[str] = field(default_factory=list)


class ExecCliController:
    """Streams one assistant run through the execution event surface."""

    def run(self, command: ExecCommand, *, write: Write) -> ExecOutcome:
        settings = Settings.from_env(project_path=command.project_path)
        provider = (command.provider or settings.agent.provider).lower()
        options: dict[str, object] = {
            "timeout_seconds": command.timeout_seconds or settings.agent.runner_timeout_seconds,
        }
        if command.runner_command:
            options["command"] = command.runner_command
        runner = create_ai_runner(
            provider,
            settings.project_path,
            command.model or settings.agent.model,
            **options,
        )

        emitter = ExecEventEmitter(debug=True)
        _attach_console(emitter, write)
        runner.set_event_emitter(emitter)

        errors: list[str] = []
        result: list[str] = []

        async def consume() -> None:
            async for chunk in runner.run_stream(command.prompt):
                if isinstance(chunk, ErrorChunk):
                    errors.append(chunk.error)
                elif isinstance(chunk, ResultChunk):
                    result.append(chunk.content)

        try:
            asyncio.run(consume())
        except KeyboardInterrupt:
            runner.abort()
            return ExecOutcome(success=False, lines=["Interrupted."])

        streamed = any(
            event.type is ExecEventType.TEXT_DELTA for event in emitter.get_event_log()
        )
        if result and not streamed:
            write(result[-1])
        write("\n")
        if errors:
            return ExecOutcome(success=False, lines=[f"Error: {error}" for error in errors])
        return ExecOutcome(
            success=True,
            lines=[f"Session {emitter.session_id} finished ({runner.display_name})."],
        )


def _attach_console(emitter: ExecEventEmitter, write: Write) -> None:
    def on_text(event: ExecEvent) -> None:
        write(event.data["content"])

    def on_tool(event: ExecEvent) -> None:
        write(f"\n[{event.data['tool_name']}]\n")

    def on_thinking(_: ExecEvent) -> None:
        write("\n[thinking]\n")

    emitter.on(ExecEventType.TEXT_DELTA, on_text)
    emitter.on(ExecEventType.TOOL_STARTED, on_tool)
    emitter.on(ExecEventType.THINKING_STARTED, on_thinking)
