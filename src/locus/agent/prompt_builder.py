"""Markdown prompts handed to the assistant for a task or an ad-hoc request."""

from __future__ import annotations

import logging
from pathlib import Path

from locus.api.models import Task

logger = logging.getLogger(__name__)

COMPLETION_MARKER = "<promise>COMPLETE</promise>"
CONTEXT_FILES = ("CLAUDE.md", ".locus/LOCUS.md")
README_PREVIEW_CHARS = 1_000
MIN_CONTEXT_CHARS = 20
MAX_COMMENTS = 3

_TASK_INSTRUCTIONS = f"""## Instructions
1. Complete this task.
2. **Artifact Management**: save high-level documentation you create (PRDs, technical
   drafts, architecture docs) in `.locus/artifacts/`, not in the repository root.
3. **Paths**: use paths relative to the project root. Do not use absolute local paths.
4. When finished successfully, output: {COMPLETION_MARKER}
"""

_GENERIC_INSTRUCTIONS = f"""## Instructions
1. Execute the prompt based on the provided project context.
2. **Paths**: use paths relative to the project root. Do not use absolute local paths.
3. When finished successfully, output: {COMPLETION_MARKER}
"""


class PromptBuilder:
    def __init__(self, project_path: Path | str) -> None:
        self.project_path = Path(project_path)

    def build(self, task: Task) -> str:
        parts = [
            f"# Task: {task.title}\n\n",
            f"## Description\n{task.description or 'No description provided.'}\n\n",
            self._project_context(),
        ]

        if task.acceptance_checklist:
            lines = [
                f"- {'[x]' if item.done else '[ ]'} {item.text}"
                for item in task.acceptance_checklist
            ]
            parts.append("## Acceptance Criteria\n" + "\n".join(lines) + "\n\n")

        if task.comments:
            parts.append(
                "## Task History & Feedback\n"
                "Review the following comments for context or rejection feedback:\n\n",
            )
            for comment in task.comments[-MAX_COMMENTS:]:
                when = (
                    comment.created_at.strftime("%Y-%m-%d %H:%M")
                    if comment.created_at
                    else "unknown"
                )
                parts.append(f"### {comment.author} ({when})\n{comment.text}\n\n")

        parts.append(_TASK_INSTRUCTIONS)
        return "".join(parts)

    def build_generic(self, query: str) -> str:
        return "".join(
            [
                "# Direct Execution\n\n",
                f"## Prompt\n{query}\n\n",
                self._project_context(),
                _GENERIC_INSTRUCTIONS,
            ],
        )

    def _project_context(self) -> str:
        for name in CONTEXT_FILES:
            path = self.project_path / name
            if not path.is_file():
                continue
            try:
                text = path.read_text("utf-8")
            except OSError as error:
                logger.warning("Could not read context file %s: %s", path, error)
                continue
            if len(text.strip()) > MIN_CONTEXT_CHARS:
                return f"## Project Context (Local)\n{text}\n\n"

        readme = self.project_path / "README.md"
        if not readme.is_file():
            return ""
        try:
            text = readme.read_text("utf-8")
        except OSError as error:
            logger.warning("Could not read %s: %s", readme, error)
            return ""
        preview = text[:README_PREVIEW_CHARS]
        if len(text) > README_PREVIEW_CHARS:
            preview += "\n...(truncated)..."
        return f"## Project Context (README Fallback)\n{preview}\n\n"
