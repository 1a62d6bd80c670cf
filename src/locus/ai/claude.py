"""Claude CLI runner speaking the ``stream-json`` output protocol."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from locus.ai.base import (
    ResultChunk,
    StreamChunk,
    TextDeltaChunk,
    ThinkingChunk,
    ToolParametersChunk,
    ToolUseChunk,
)
from locus.ai.cli_runner import CliRunner

logger = logging.getLogger(__name__)

SANDBOX_SETTINGS = json.dumps(
    {
        "sandbox": {
            "enabled": True,
            "autoAllow": True,
            "allowUnsandboxedCommands": False,
        },
    },
)


@dataclass(slots=True)
class _ActiveToolInput:
    name: str
    id: str | None
    partial_json: str = ""


class ClaudeRunner(CliRunner):
    """Run prompts through ``claude --print`` and parse its stream-json items."""

    provider: ClassVar[str] = "claude"
    executable: ClassVar[str] = "claude"
    display_name: ClassVar[str] = "Claude CLI"
    install_hint: ClassVar[str] = (
        "Please ensure the Claude CLI is installed and you are logged in."
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._active_tools: dict[int, _ActiveToolInput] = {}

    def build_args(self, prompt: str) -> list[str]:
        return [
            "--dangerously-skip-permissions",
            "--print",
            "--verbose",
            "--output-format",
            "stream-json",
            "--include-partial-messages",
            "--model",
            self.model,
            "--settings",
            SANDBOX_SETTINGS,
        ]

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        env["FORCE_COLOR"] = "1"
        env["TERM"] = "xterm-256color"
        return env

    def reset_stream_state(self) -> None:
        self._active_tools.clear()

    def parse_line(self, line: str) -> StreamChunk | None:
        if not line.strip():
            return None
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON Claude output line")
            return None
        if not isinstance(item, dict):
            return None

        if item.get("type") == "result":
            usage = item.get("usage") if isinstance(item.get("usage"), dict) else {}
            return ResultChunk(
                content=item.get("result") or "",
                input_tokens=_token_count(usage, "input_tokens"),
                output_tokens=_token_count(usage, "output_tokens"),
            )
        event = item.get("event")
        if item.get("type") == "stream_event" and isinstance(event, dict):
            return self._parse_stream_event(event)
        return None

    def _parse_stream_event(self, event: dict[str, Any]) -> StreamChunk | None:
        event_type = event.get("type")
        index = event.get("index")
        delta = event.get("delta") or {}
        block = event.get("content_block") or {}

        if event_type == "content_block_delta":
            if delta.get("type") == "text_delta":
                return TextDeltaChunk(content=delta.get("text") or "")
            if delta.get("type") == "input_json_delta" and isinstance(index, int):
                active = self._active_tools.get(index)
                if active is not None:
                    active.partial_json += delta.get("partial_json") or ""
            return None

        if event_type == "content_block_start":
            if block.get("type") == "tool_use" and block.get("name"):
                if isinstance(index, int):
                    self._active_tools[index] = _ActiveToolInput(
                        name=block["name"],
                        id=block.get("id"),
                    )
                return ToolUseChunk(tool=block["name"], id=block.get("id"))
            if block.get("type") == "thinking":
                return ThinkingChunk()
            return None

        if event_type == "content_block_stop" and isinstance(index, int):
            active = self._active_tools.pop(index, None)
            if active is None or not active.partial_json:
                return None
            try:
                parameters = json.loads(active.partial_json)
            except json.JSONDecodeError:
                logger.debug("Discarding malformed tool input for %s", active.name)
                return None
            if isinstance(parameters, dict):
                return ToolParametersChunk(tool=active.name, id=active.id, parameters=parameters)
        return None


def _token_count(usage: dict[str, Any], key: str) -> int:
    value = usage.get(key)
    return value if isinstance(value, int) else 0
