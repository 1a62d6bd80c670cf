"""Assistant runner implementations."""

from locus.ai.base import (
    AiRunner,
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
from locus.ai.claude import ClaudeRunner
from locus.ai.cli_runner import CliRunner
from locus.ai.codex import CodexRunner
from locus.ai.factory import create_ai_runner

__all__ = [
    "AiRunner",
    "ClaudeRunner",
    "CliRunner",
    "CodexRunner",
    "ErrorChunk",
    "ResultChunk",
    "RunnerError",
    "RunnerExecutionError",
    "RunnerSpawnError",
    "RunnerTimeoutError",
    "StreamChunk",
    "TextDeltaChunk",
    "ThinkingChunk",
    "ToolParametersChunk",
    "ToolUseChunk",
    "create_ai_runner",
]
