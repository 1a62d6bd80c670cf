"""Run the project's linter and either auto-fix style issues or suggest fixes."""

from __future__ import annotations

import logging
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path

from locus.jobs.base import BaseJob
from locus.jobs.models import (
    ChangeCategory,
    JobContext,
    JobResult,
    JobSuggestion,
    JobType,
    SuggestionType,
)

logger = logging.getLogger(__name__)

ESLINT_CONFIG_FILES: tuple[str, ...] = (
    ".eslintrc",
    ".eslintrc.js",
    ".eslintrc.cjs",
    ".eslintrc.json",
    ".eslintrc.yml",
    ".eslintrc.yaml",
)
_ESLINT_FLAT_CONFIG = re.compile(r"^eslint\.config\.(js|cjs|mjs|ts|cts|mts)$")
_FOUND_ERRORS = re.compile(r"Found (\d+) error", re.IGNORECASE)
_FOUND_WARNINGS = re.compile(r"Found (\d+) warning", re.IGNORECASE)
_ESLINT_SUMMARY = re.compile(r"(\d+) problems?\s*\((\d+) errors?,\s*(\d+) warnings?\)")
_ESLINT_ISSUE_LINE = re.compile(r"^\s+\d+:\d+\s+(error|warning)\s")


@dataclass(slots=True, frozen=True)
class DetectedLinter:
    kind: str
    check_command: tuple[str, ...]
    fix_command: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class LintCounts:
    errors: int
    warnings: int

    @property
    def clean(self) -> bool:
        return self.errors == 0 and self.warnings == 0

    def describe(self) -> str:
        parts = []
        if self.errors:
            parts.append(f"{self.errors} error(s)")
        if self.warnings:
            parts.append(f"{self.warnings} warning(s)")
        return ", ".join(parts) or "0 issues"


class LintScanJob(BaseJob):
    type = JobType.LINT_SCAN
    name = "Linting Scan"

    async def run(self, context: JobContext) -> JobResult:
        linter = detect_linter(context.project_path)
        if linter is None:
            return JobResult(summary="No linter configuration detected")

        check = await self.exec_command(linter.check_command, context.project_path)
        if check.returncode == 127:
            message = check.stderr.strip() or f"{linter.check_command[0]} not found"
            return JobResult(summary=f"Linting scan failed: {message}", errors=[message])

        counts = parse_lint_output(linter.kind, f"{check.stdout}\n{check.stderr}")
        if counts.clean:
            return JobResult(summary=f"Linting scan passed: no issues found ({linter.kind})")

        if self.should_auto_execute(ChangeCategory.STYLE, context.autonomy_rules):
            return await self._auto_fix(linter, counts, context)

        return JobResult(
            summary=f"Linting scan found {counts.describe()} ({linter.kind})",
            suggestions=_suggestions(linter, counts),
        )

    async def _auto_fix(
        self,
        linter: DetectedLinter,
        counts: LintCounts,
        context: JobContext,
    ) -> JobResult:
        fix = await self.exec_command(linter.fix_command, context.project_path)
        if fix.returncode == 127:
            message = fix.stderr.strip() or f"{linter.fix_command[0]} not found"
            return JobResult(summary=f"Lint auto-fix failed: {message}", errors=[message])

        diff = await self.exec_command(["git", "diff", "--name-only"], context.project_path)
        changed = [line for line in diff.stdout.splitlines() if line.strip()] if diff.ok else []
        if not changed:
            return JobResult(
                summary=(
                    f"Linting scan found {counts.describe()} "
                    f"but auto-fix made no changes ({linter.kind})"
                ),
                suggestions=_suggestions(linter, counts),
            )

        logger.info("Lint auto-fix changed %d file(s) with %s", len(changed), linter.kind)
        return JobResult(
            summary=(
                f"Auto-fixed {counts.describe()} across {len(changed)} file(s) ({linter.kind})"
            ),
            files_changed=len(changed),
        )


def detect_linter(project_path: Path) -> DetectedLinter | None:
    """Pick the linter configured for ``project_path``: ruff, then biome, then eslint."""

    if _uses_ruff(project_path):
        return DetectedLinter(
            kind="ruff",
            check_command=("ruff", "check", "."),
            fix_command=("ruff", "check", "--fix", "."),
        )
    if (project_path / "biome.json").exists() or (project_path / "biome.jsonc").exists():
        return DetectedLinter(
            kind="biome",
            check_command=("bunx", "biome", "check", "."),
            fix_command=("bunx", "biome", "check", "--fix", "."),
        )
    has_eslint = any((project_path / name).exists() for name in ESLINT_CONFIG_FILES) or any(
        _ESLINT_FLAT_CONFIG.match(entry.name) for entry in project_path.iterdir()
    )
    if has_eslint:
        return DetectedLinter(
            kind="eslint",
            check_command=("npx", "eslint", "."),
            fix_command=("npx", "eslint", "--fix", "."),
        )
    return None


def parse_lint_output(kind: str, raw: str) -> LintCounts:
    if kind == "eslint":
        summary = _ESLINT_SUMMARY.search(raw)
        if summary:
            return LintCounts(errors=int(summary.group(2)), warnings=int(summary.group(3)))
        issues = [m.group(1) for m in map(_ESLINT_ISSUE_LINE.match, raw.splitlines()) if m]
        return LintCounts(errors=issues.count("error"), warnings=issues.count("warning"))

    errors = _FOUND_ERRORS.search(raw)
    warnings = _FOUND_WARNINGS.search(raw)
    return LintCounts(
        errors=int(errors.group(1)) if errors else 0,
        warnings=int(warnings.group(1)) if warnings else 0,
    )


def _uses_ruff(project_path: Path) -> bool:
    if (project_path / "ruff.toml").exists() or (project_path / ".ruff.toml").exists():
        return True
    pyproject = project_path / "pyproject.toml"
    if not pyproject.exists():
        return False
    try:
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError:
        logger.warning("Could not parse %s", pyproject)
        return False
    return "ruff" in data.get("tool", {})


def _suggestions(linter: DetectedLinter, counts: LintCounts) -> list[JobSuggestion]:
    fix = " ".join(linter.fix_command)
    suggestions: list[JobSuggestion] = []
    if counts.errors:
        suggestions.append(
            JobSuggestion(
                type=SuggestionType.CODE_FIX,
                title=f"Fix {counts.errors} lint error(s)",
                description=(
                    f"The {linter.kind} linter found {counts.errors} error(s). "
                    f"Run `{fix}` to auto-fix, or review the issues manually."
                ),
                metadata={"linter": linter.kind, "errors": counts.errors},
            ),
        )
    if counts.warnings:
        suggestions.append(
            JobSuggestion(
                type=SuggestionType.CODE_FIX,
                title=f"Resolve {counts.warnings} lint warning(s)",
                description=(
                    f"The {linter.kind} linter found {counts.warnings} warning(s). "
                    f"Run `{fix}` to auto-fix, or review the issues manually."
                ),
                metadata={"linter": linter.kind, "warnings": counts.warnings},
            ),
        )
    return suggestions
