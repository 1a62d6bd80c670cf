"""Codex CLI runner parsing the plain-text progress output of ``codex exec``."""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import Any, ClassVar
from uuid import uuid4

from locus.ai.base import StreamChunk, TextDeltaChunk, ThinkingChunk, ToolUseChunk
from locus.ai.cli_runner import CliRunner

logger = logging.getLogger(__name__)

_THINKING_LINE = re.compile(r"^thinking\b", re.IGNORECASE)
_TOOL_LINE = re.compile(r"^[→•✓]|^Plan update\b")
_TOOL_BULLET = re.compile(r"^[→•✓]\s*")
_HEADER_LINE = re.compile(r"^\*\*")


class CodexRunner(CliRunner):
    """Run prompts through ``codex exec`` reading the prompt from stdin."""

    provider: ClassVar[str] = "codex"
    executable: ClassVar[str] = "codex"
    display_name: ClassVar[str] = "Codex CLI"
    install_hint: ClassVar[str] = "Ensure Codex CLI is installed and you are logged in."
    parse_stderr: ClassVar[bool] = True

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._output_path: Path | None = None

    def build_args(self, prompt: str) -> list[str]:
        self._output_path = Path(tempfile.gettempdir()) / f"locus-codex-{uuid4()}.txt"
        args = [
            "exec",
            "--full-auto",
            "--skip-git-repo-check",
            "--output-last-message",
            str(self._output_path),
        ]
        if self.model:
            args.extend(["--model", self.model])
        args.append("-")
        return args

    def spawn_error_message(self, reason: str) -> str:
        return (
            f"Failed to start Codex CLI: {reason}. "
            "Ensure 'codex' is installed and available in PATH."
        )

    def parse_line(self, line: str) -> StreamChunk | None:
        stripped = line.strip()
        if not stripped:
            return None
        if _THINKING_LINE.match(stripped):
            return ThinkingChunk(content=stripped)
        if _TOOL_LINE.match(stripped):
            return ToolUseChunk(tool=_TOOL_BULLET.sub("", stripped))
        if _HEADER_LINE.match(stripped):
            return TextDeltaChunk(content=f"{stripped}\n")
        return None

    def final_result(self, stdout: str) -> str | None:
        path = self._output_path
        if path is not None and path.exists():
            try:
                text = path.read_text("utf-8").strip()
            except OSError as error:
                logger.warning("Could not read Codex output file %s: %s", path, error)
                text = ""
            if text:
                return text
        return stdout.strip()

    def error_detail(self, stdout: str, stderr: str) -> str:
        return "\n".join(part for part in (stdout.strip(), stderr.strip()) if part)

    def cleanup_stream_state(self) -> None:
        path = self._output_path
        self._output_path = None
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as error:
            logger.debug("Could not remove Codex output file %s: %s", path, error)
