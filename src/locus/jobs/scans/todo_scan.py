"""Report TODO/FIXME/HACK/XXX comments as code-fix suggestions."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass

from locus.jobs.base import BaseJob
from locus.jobs.models import JobContext, JobResult, JobSuggestion, JobType, SuggestionType

logger = logging.getLogger(__name__)

MARKERS: tuple[str, ...] = ("TODO", "FIXME", "HACK", "XXX")
INCLUDE_GLOBS: tuple[str, ...] = ("*.py", "*.ts", "*.tsx", "*.js", "*.jsx")
EXCLUDE_DIRS: tuple[str, ...] = (
    "node_modules",
    ".git",
    "dist",
    "build",
    ".locus",
    ".venv",
    "venv",
    "__pycache__",
)

_GREP_LINE = re.compile(r"^(.+?):(\d+):(.+)$")
_MARKER = re.compile(r"\b(TODO|FIXME|HACK|XXX)\b:?\s*(.*)")


@dataclass(slots=True, frozen=True)
class TodoItem:
    file: str
    line: int
    marker: str
    text: str


class TodoScanJob(BaseJob):
    type = JobType.TODO_CLEANUP
    name = "TODO Cleanup"

    async def run(self, context: JobContext) -> JobResult:
        result = await self.exec_command(_grep_args(), context.project_path)
        # grep exits 1 when nothing matched
        if result.returncode > 1:
            message = result.stderr.strip() or f"grep exited with code {result.returncode}"
            logger.warning("TODO scan failed in %s: %s", context.project_path, message)
            return JobResult(summary=f"TODO scan failed: {message}", errors=[message])

        items = parse_grep_output(result.stdout)
        if not items:
            return JobResult(summary="TODO scan passed: no TODO/FIXME/HACK/XXX comments found")

        return JobResult(
            summary=_summary(items, context.config.options.get("previousTodoCount")),
            suggestions=[_suggestion(item) for item in items],
        )


def parse_grep_output(stdout: str) -> list[TodoItem]:
    """Parse ``grep -rn`` output into items, dropping lines without a marker."""

    items: list[TodoItem] = []
    for line in stdout.splitlines():
        match = _GREP_LINE.match(line)
        if match is None:
            continue
        file_path, line_number, content = match.groups()
        marker = _MARKER.search(content)
        if marker is None:
            continue
        items.append(
            TodoItem(
                file=file_path.removeprefix("./"),
                line=int(line_number),
                marker=marker.group(1),
                text=marker.group(2).strip() or content.strip(),
            ),
        )
    return items


def _grep_args() -> list[str]:
    args = ["grep", "-rn"]
    args.extend(f"--include={glob}" for glob in INCLUDE_GLOBS)
    args.extend(f"--exclude-dir={name}" for name in EXCLUDE_DIRS)
    args.extend(["-E", "(TODO|FIXME|HACK|XXX):?", "."])
    return args


def _summary(items: list[TodoItem], previous_count: object) -> str:
    counts = Counter(item.marker for item in items)
    parts = [f"{counts[marker]} {marker}s" for marker in MARKERS if counts[marker]]
    files = len({item.file for item in items})
    summary = f"Found {', '.join(parts)} across {files} file(s)"

    if isinstance(previous_count, int) and not isinstance(previous_count, bool):
        diff = previous_count - len(items)
        if diff > 0:
            summary += f" ({diff} resolved since last run)"
        elif diff < 0:
            summary += f" ({-diff} new since last run)"
    return summary


def _suggestion(item: TodoItem) -> JobSuggestion:
    return JobSuggestion(
        type=SuggestionType.CODE_FIX,
        title=f"{item.marker} in {item.file}:{item.line}",
        description=f"{item.marker} comment found: {item.text}",
        metadata={
            "file": item.file,
            "line": item.line,
            "todoType": item.marker,
            "text": item.text,
        },
    )
