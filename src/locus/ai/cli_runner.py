"""Async subprocess driver shared by CLI assistant runners."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import sys
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from locus.ai.base import (
    ErrorChunk,
    ResultChunk,
    RunnerError,
    RunnerExecutionError,
    RunnerSpawnError,
    RunnerTimeoutError,
    StreamChunk,
    TextDeltaChunk,
    ThinkingChunk,
    ToolParametersChunk,
    ToolUseChunk,
)
from locus.ai.failure_classifier import classify_runner_failure
from locus.config import DEFAULT_MODELS
from locus.exec.events import ExecEventEmitter, new_session_id
from locus.protocol.session import Session, SessionEvent, SessionStatus, is_valid_transition

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 3_600
MAX_ATTEMPTS = 3
RETRY_BASE_SECONDS = 2.0
STREAM_QUEUE_SIZE = 256
STREAM_LINE_LIMIT = 16 * 1024 * 1024
TERMINATE_GRACE_SECONDS = 2.0
ERROR_DETAIL_MAX_CHARS = 2_000

# worker narration lines such as "[12:00:01] [a1b2c3d4] ℹ Claimed: ..."
_INFO_LOG_LINE = re.compile(r"^\[\d{2}:\d{2}:\d{2}\]\s\[[^\]]*\]\s*ℹ")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class _StreamEnd:
    returncode: int | None
    error: BaseException | None = None


@dataclass(slots=True)
class _OpenTool:
    name: str
    id: str | None
    started_at: float
    parameters: dict[str, Any] | None = None


class _ChunkObserver:
    """Turn chunks into execution events and session transitions.

    Also tracks the open tool and the thinking span, and keeps the session's
    token and tool counters current.
    """

    def __init__(self, emitter: ExecEventEmitter | None, session: Session) -> None:
        self.emitter = emitter
        self.session = session
        self.thinking = False
        self.open_tool: _OpenTool | None = None
        self.text_parts: list[str] = []
        self.result: str | None = None

    def observe(self, chunk: StreamChunk) -> None:
        if isinstance(chunk, ThinkingChunk):
            if not self.thinking and self.emitter is not None:
                self.emitter.emit_thinking_started(chunk.content)
            self.thinking = True
            return

        if isinstance(chunk, TextDeltaChunk | ToolUseChunk) and self.thinking:
            self.thinking = False
            if self.emitter is not None:
                self.emitter.emit_thinking_stopped()

        if isinstance(chunk, TextDeltaChunk):
            self._mark_streaming()
            self.text_parts.append(chunk.content)
            if self.emitter is not None:
                self.emitter.emit_text_delta(chunk.content)
        elif isinstance(chunk, ToolUseChunk):
            self.session.tool_calls += 1
            self._complete_open_tool()
            self.open_tool = _OpenTool(name=chunk.tool, id=chunk.id, started_at=time.monotonic())
            if self.emitter is not None:
                self.emitter.emit_tool_started(chunk.tool, chunk.id)
        elif isinstance(chunk, ToolParametersChunk):
            if self.open_tool is not None and self.open_tool.name == chunk.tool:
                self.open_tool.parameters = chunk.parameters
        elif isinstance(chunk, ResultChunk):
            self._mark_streaming()
            self._complete_open_tool()
            self.result = chunk.content
            self.session.input_tokens += chunk.input_tokens
            self.session.output_tokens += chunk.output_tokens

    def finish(self, *, success: bool, event: SessionEvent = SessionEvent.ERROR) -> None:
        """Move the session to its terminal status and announce the end of the run."""

        if success:
            self._mark_streaming()
            self._apply(SessionEvent.RESULT_RECEIVED)
        else:
            self._apply(event)
        if self.emitter is None:
            return
        if success:
            response = "".join(self.text_parts) or self.result or ""
            if response:
                self.emitter.emit_response_completed(response)
        self.emitter.emit_session_ended(success, self.session.to_summary())

    def _mark_streaming(self) -> None:
        if self.session.status is SessionStatus.RUNNING:
            self.session.apply(SessionEvent.FIRST_TEXT_DELTA)

    def _apply(self, event: SessionEvent) -> None:
        if not is_valid_transition(self.session.status, event):
            logger.debug(
                "Ignoring %s for session %s in status %s",
                event.value,
                self.session.session_id,
                self.session.status.value,
            )
            return
        self.session.apply(event)

    def _complete_open_tool(self) -> None:
        tool = self.open_tool
        if tool is None:
            return
        self.open_tool = None
        if self.emitter is not None:
            self.emitter.emit_tool_completed(
                tool.name,
                tool.id,
                parameters=tool.parameters,
                duration_ms=round((time.monotonic() - tool.started_at) * 1000, 1),
            )


class CliRunner:
    """Drive one external assistant CLI per prompt.

    Subclasses describe the command line and how one output line maps to a
    chunk; this class owns process lifetime, backpressure, retries, timeout
    and abort handling.
    """

    provider: ClassVar[str] = ""
    executable: ClassVar[str] = ""
    display_name: ClassVar[str] = ""
    install_hint: ClassVar[str] = ""
    parse_stderr: ClassVar[bool] = False

    def __init__(  # noqa: PLR0913
        self,
        project_path: Path | str,
        model: str | None = None,
        *,
        command: Sequence[str] | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        retry_base_seconds: float = RETRY_BASE_SECONDS,
        sleep: Sleep = asyncio.sleep,
        echo_stderr: bool = True,
    ) -> None:
        self.project_path = Path(project_path).resolve()
        self.model = model or DEFAULT_MODELS[self.provider]
        self.command: tuple[str, ...] = tuple(command) if command else (self.executable,)
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.echo_stderr = echo_stderr
        self.attempts = 0
        self._sleep = sleep
        self.session: Session | None = None
        self._emitter: ExecEventEmitter | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._aborted = False
        self._last_error: RunnerError | None = None

    # -- subclass hooks -------------------------------------------------

    def build_args(self, prompt: str) -> list[str]:
        raise NotImplementedError

    def parse_line(self, line: str) -> StreamChunk | None:
        raise NotImplementedError

    def stdin_payload(self, prompt: str) -> bytes:
        return prompt.encode("utf-8")

    def build_env(self) -> dict[str, str]:
        return os.environ.copy()

    def final_result(self, stdout: str) -> str | None:
        """Return the final response when the protocol does not stream a result item."""

        return None

    def error_detail(self, stdout: str, stderr: str) -> str:
        return stderr.strip()

    def reset_stream_state(self) -> None:
        """Clear per-run parser state before a new process starts."""

    def cleanup_stream_state(self) -> None:
        """Release per-run resources after the process has exited."""

    # -- public API -----------------------------------------------------

    def set_event_emitter(self, emitter: ExecEventEmitter | None) -> None:
        self._emitter = emitter

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def abort(self) -> None:
        """Send one termination signal to the active process."""

        process = self._process
        if process is None or process.returncode is not None or self._aborted:
            return
        self._aborted = True
        logger.info("Aborting %s (pid %s)", self.display_name, process.pid)
        with suppress(ProcessLookupError):
            process.terminate()

    async def run(self, prompt: str) -> str:
        """Run prompt to completion with retry on transient failures."""

        self.attempts = 0
        while True:
            self.attempts += 1
            try:
                return await self._run_with_timeout(prompt)
            except RunnerError as error:
                if not error.transient or self.attempts >= self.max_attempts:
                    raise
                delay = self.retry_base_seconds * 2 ** (self.attempts - 1)
                logger.warning(
                    "%s attempt %s failed: %s. Retrying in %.0fs...",
                    self.display_name,
                    self.attempts,
                    error,
                    delay,
                )
                await self._sleep(delay)

    async def run_stream(self, prompt: str) -> AsyncIterator[StreamChunk]:
        """Spawn the assistant and yield chunks as output lines arrive.

        Each call owns a fresh :attr:`session` until it reaches a terminal
        status. A caller that stops iterating early cancels the session.
        """

        self._aborted = False
        self._last_error = None
        self.reset_stream_state()
        session = Session(
            session_id=self._emitter.session_id if self._emitter else new_session_id(),
            model=self.model,
            provider=self.provider,
        )
        session.apply(SessionEvent.CREATE_SESSION)
        self.session = session
        observer = _ChunkObserver(self._emitter, session)
        if self._emitter is not None:
            self._emitter.emit_session_started(model=self.model, provider=self.provider)
            self._emitter.emit_prompt_submitted(prompt)

        try:
            process = await self._spawn(prompt)
        except RunnerError as error:
            self.cleanup_stream_state()
            chunk = self._record_failure(error, code="SPAWN_ERROR")
            observer.finish(success=False)
            yield chunk
            return

        self._process = process
        session.apply(SessionEvent.CLI_SPAWNED)
        queue: asyncio.Queue[StreamChunk | _StreamEnd] = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        producer = asyncio.create_task(
            self._produce(process, prompt, queue, stdout_lines, stderr_lines),
        )
        end: _StreamEnd | None = None
        try:
            while True:
                item = await queue.get()
                if isinstance(item, _StreamEnd):
                    end = item
                    break
                observer.observe(item)
                yield item
        except asyncio.CancelledError:
            observer.finish(success=False)
            raise
        finally:
            if end is None and not session.is_terminal:
                observer.finish(success=False, event=SessionEvent.USER_STOP)
            if not producer.done():
                producer.cancel()
            if process.returncode is None:
                await _terminate_process(process)
            with suppress(asyncio.CancelledError):
                await producer
            self._process = None

        try:
            if end.error is not None:
                observer.finish(success=False)
                raise RunnerError(
                    f"{self.display_name} output stream failed: {end.error}",
                    transient=True,
                ) from end.error

            stdout = "\n".join(stdout_lines)
            stderr = "\n".join(stderr_lines)
            if end.returncode == 0:
                final_chunk: ResultChunk | None = None
                if observer.result is None:
                    final = self.final_result(stdout)
                    if final:
                        final_chunk = ResultChunk(content=final)
                        observer.observe(final_chunk)
                observer.finish(success=True)
                if final_chunk is not None:
                    yield final_chunk
                return

            if self._aborted:
                logger.info(
                    "%s stopped after abort (exit code %s)", self.display_name, end.returncode
                )
                observer.finish(success=False, event=SessionEvent.USER_STOP)
                return

            error = self._execution_error(end.returncode, stdout, stderr, observer.result)
            failure = self._record_failure(error, code=f"EXIT_{end.returncode}")
            observer.finish(success=False)
            yield failure
        finally:
            self.cleanup_stream_state()

    # -- internals ------------------------------------------------------

    async def _run_with_timeout(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(self._collect(prompt), timeout=self.timeout_seconds)
        except TimeoutError as error:
            self.abort()
            message = f"{self.display_name} timed out after {self.timeout_seconds:g}s"
            if self._emitter is not None:
                self._emitter.emit_error_occurred(message, code="TIMEOUT")
            raise RunnerTimeoutError(message, timeout_seconds=self.timeout_seconds) from error

    async def _collect(self, prompt: str) -> str:
        text_parts: list[str] = []
        result: str | None = None
        async for chunk in self.run_stream(prompt):
            if isinstance(chunk, TextDeltaChunk):
                text_parts.append(chunk.content)
            elif isinstance(chunk, ResultChunk):
                result = chunk.content
        if self._last_error is not None:
            raise self._last_error
        return result if result is not None else "".join(text_parts)

    async def _spawn(self, prompt: str) -> asyncio.subprocess.Process:
        argv = [*self.command, *self.build_args(prompt)]
        logger.debug("Starting %s: %s", self.display_name, argv[0])
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.project_path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(),
                limit=STREAM_LINE_LIMIT,
            )
        except FileNotFoundError as error:
            raise RunnerSpawnError(self.spawn_error_message(str(error))) from error
        except OSError as error:
            raise RunnerError(
                f"{self.display_name} failed to start: {error}",
                transient=True,
            ) from error

    def spawn_error_message(self, reason: str) -> str:
        return (
            f"Failed to start {self.display_name}: {reason}. "
            f"Please ensure the '{self.executable}' command is available in your PATH."
        )

    async def _produce(
        self,
        process: asyncio.subprocess.Process,
        prompt: str,
        queue: asyncio.Queue[StreamChunk | _StreamEnd],
        stdout_lines: list[str],
        stderr_lines: list[str],
    ) -> None:
        try:
            await asyncio.gather(
                self._write_prompt(process, prompt),
                self._pump(process.stdout, stdout_lines, queue, parse=True, echo=False),
                self._pump(
                    process.stderr,
                    stderr_lines,
                    queue,
                    parse=self.parse_stderr,
                    echo=not self.parse_stderr,
                ),
            )
            returncode = await process.wait()
        except asyncio.CancelledError:
            raise
        except (OSError, ValueError) as error:
            await queue.put(_StreamEnd(returncode=None, error=error))
            return
        await queue.put(_StreamEnd(returncode=returncode))

    async def _write_prompt(self, process: asyncio.subprocess.Process, prompt: str) -> None:
        stdin = process.stdin
        if stdin is None:
            return
        try:
            payload = self.stdin_payload(prompt)
            if payload:
                stdin.write(payload)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("%s closed stdin before the prompt was written", self.display_name)
        finally:
            stdin.close()

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        sink: list[str],
        queue: asyncio.Queue[StreamChunk | _StreamEnd],
        *,
        parse: bool,
        echo: bool,
    ) -> None:
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            sink.append(line)
            if echo:
                self._echo_stderr_line(line)
            if not parse:
                continue
            chunk = self.parse_line(line)
            if chunk is not None:
                await queue.put(chunk)

    def _echo_stderr_line(self, line: str) -> None:
        if not self.echo_stderr or not line.strip() or _INFO_LOG_LINE.match(line):
            return
        sys.stderr.write(f"{line}\n")

    def _execution_error(
        self,
        exit_code: int | None,
        stdout: str,
        stderr: str,
        last_result: str | None,
    ) -> RunnerExecutionError:
        classification = classify_runner_failure(
            provider=self.provider,
            stdout=stdout,
            stderr=stderr,
            last_result=last_result,
        )
        detail = self.error_detail(stdout, stderr)[-ERROR_DETAIL_MAX_CHARS:]
        if detail:
            message = f"{self.display_name} error (exit code {exit_code}): {detail}"
        else:
            message = f"{self.display_name} exited with code {exit_code}. {self.install_hint}"
        return RunnerExecutionError(
            message,
            exit_code=exit_code if exit_code is not None else -1,
            stderr=stderr,
            classification=classification,
        )

    def _record_failure(self, error: RunnerError, *, code: str) -> ErrorChunk:
        self._last_error = error
        logger.warning("%s", error)
        if self._emitter is not None:
            self._emitter.emit_error_occurred(str(error), code=code)
        return ErrorChunk(error=str(error))


async def _terminate_process(process: asyncio.subprocess.Process) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()
