from __future__ import annotations

import asyncio
from pathlib import Path

import allure

from locus.jobs import (
    AutonomyRule,
    ChangeCategory,
    JobConfig,
    JobContext,
    JobSchedule,
    JobType,
    RiskLevel,
)
from locus.jobs.scans import LintScanJob, TodoScanJob
from locus.jobs.scans.lint_scan import detect_linter, parse_lint_output
from locus.jobs.scans.todo_scan import parse_grep_output

pytestmark = [
    allure.epic("Maintenance Jobs"),
    allure.feature("Built-in Scans"),
]

AUTO_STYLE = (AutonomyRule(ChangeCategory.STYLE, RiskLevel.LOW, auto_execute=True),)

GREP_OUTPUT = """./src/app.py:12:    # TODO: split this function
./src/app.py:40:    # FIXME handle timeouts
./web/index.ts:3:// HACK: temporary polyfill
./web/index.ts:9:const label = "TODOS are fine here";
"""


def _context(
    tmp_path: Path,
    job_type: JobType,
    *,
    rules=(),
    options: dict | None = None,
) -> JobContext:
    return JobContext(
        workspace_id="ws-1",
        project_path=tmp_path,
        config=JobConfig(
            type=job_type,
            schedule=JobSchedule("0 3 * * *"),
            options=options or {},
        ),
        autonomy_rules=tuple(rules),
    )


def _run(job, tmp_path: Path, job_type: JobType):
    return asyncio.run(job.run(_context(tmp_path, job_type)))


def test_parse_grep_output_extracts_markers() -> None:
    items = parse_grep_output(GREP_OUTPUT)

    assert [(item.file, item.line, item.marker, item.text) for item in items] == [
        ("src/app.py", 12, "TODO", "split this function"),
        ("src/app.py", 40, "FIXME", "handle timeouts"),
        ("web/index.ts", 3, "HACK", "temporary polyfill"),
    ]


def test_todo_scan_reports_suggestions_and_trend(tmp_path: Path, fake_executor) -> None:
    fake_executor.respond(("grep",), stdout=GREP_OUTPUT)
    job = TodoScanJob(executor=fake_executor)

    result = asyncio.run(
        job.run(_context(tmp_path, JobType.TODO_CLEANUP, options={"previousTodoCount": 5})),
    )

    assert result.summary == (
        "Found 1 TODOs, 1 FIXMEs, 1 HACKs across 2 file(s) (2 resolved since last run)"
    )
    assert result.suggestions[0].title == "TODO in src/app.py:12"
    assert result.suggestions[0].description == "TODO comment found: split this function"
    assert result.suggestions[0].metadata == {
        "file": "src/app.py",
        "line": 12,
        "todoType": "TODO",
        "text": "split this function",
    }
    argv, cwd, _ = fake_executor.calls[0]
    assert argv[:2] == ("grep", "-rn")
    assert "--exclude-dir=node_modules" in argv
    assert cwd == tmp_path


def test_todo_scan_passes_when_grep_finds_nothing(tmp_path: Path, fake_executor) -> None:
    fake_executor.respond(("grep",), returncode=1)

    result = _run(TodoScanJob(executor=fake_executor), tmp_path, JobType.TODO_CLEANUP)

    assert result.summary == "TODO scan passed: no TODO/FIXME/HACK/XXX comments found"
    assert result.suggestions == []


def test_todo_scan_reports_grep_failure(tmp_path: Path, fake_executor) -> None:
    fake_executor.respond(("grep",), returncode=2, stderr="grep: invalid option")

    result = _run(TodoScanJob(executor=fake_executor), tmp_path, JobType.TODO_CLEANUP)

    assert result.summary == "TODO scan failed: grep: invalid option"
    assert result.errors == ["grep: invalid option"]


def test_detect_linter_prefers_ruff_then_biome_then_eslint(tmp_path: Path) -> None:
    assert detect_linter(tmp_path) is None

    (tmp_path / "eslint.config.mjs").write_text("export default [];", encoding="utf-8")
    assert detect_linter(tmp_path).kind == "eslint"

    (tmp_path / "biome.json").write_text("{}", encoding="utf-8")
    assert detect_linter(tmp_path).kind == "biome"

    (tmp_path / "pyproject.toml").write_text("[tool.ruff]\nline-length = 99\n", encoding="utf-8")
    linter = detect_linter(tmp_path)
    assert linter.kind == "ruff"
    assert linter.fix_command == ("ruff", "check", "--fix", ".")


def test_parse_lint_output_formats() -> None:
    ruff = parse_lint_output("ruff", "src/a.py:1:1: F401 unused import\nFound 3 errors.")
    assert (ruff.errors, ruff.warnings) == (3, 0)

    summary = parse_lint_output("eslint", "✖ 5 problems (2 errors, 3 warnings)")
    assert (summary.errors, summary.warnings) == (2, 3)

    lines = "/src/a.js\n  1:1  error  Unexpected var\n  4:2  warning  Unused x  no-unused-vars\n"
    issues = parse_lint_output("eslint", lines)
    assert (issues.errors, issues.warnings) == (1, 1)
    assert issues.describe() == "1 error(s), 1 warning(s)"
    assert parse_lint_output("biome", "Checked 4 files").describe() == "0 issues"


def test_lint_scan_without_config(tmp_path: Path, fake_executor) -> None:
    result = _run(LintScanJob(executor=fake_executor), tmp_path, JobType.LINT_SCAN)

    assert result.summary == "No linter configuration detected"
    assert fake_executor.calls == []


def test_lint_scan_suggests_fixes_without_autonomy(tmp_path: Path, fake_executor) -> None:
    (tmp_path / "ruff.toml").write_text("line-length = 99\n", encoding="utf-8")
    fake_executor.respond(("ruff", "check"), returncode=1, stdout="Found 4 errors.")

    result = _run(LintScanJob(executor=fake_executor), tmp_path, JobType.LINT_SCAN)

    assert result.summary == "Linting scan found 4 error(s) (ruff)"
    assert [suggestion.title for suggestion in result.suggestions] == ["Fix 4 lint error(s)"]
    assert "ruff check --fix ." in result.suggestions[0].description
    assert fake_executor.argvs() == [("ruff", "check", ".")]


def test_lint_scan_passes_on_clean_output(tmp_path: Path, fake_executor) -> None:
    (tmp_path / "ruff.toml").write_text("", encoding="utf-8")
    fake_executor.respond(("ruff", "check"), stdout="All checks passed!")

    result = _run(LintScanJob(executor=fake_executor), tmp_path, JobType.LINT_SCAN)

    assert result.summary == "Linting scan passed: no issues found (ruff)"


def test_lint_scan_auto_fixes_style_when_allowed(tmp_path: Path, fake_executor) -> None:
    (tmp_path / "ruff.toml").write_text("", encoding="utf-8")
    fake_executor.respond(("ruff", "check", "."), returncode=1, stdout="Found 2 errors.")
    fake_executor.respond(("ruff", "check", "--fix"), stdout="Fixed 2 errors.")
    fake_executor.respond(("git", "diff", "--name-only"), stdout="src/a.py\nsrc/b.py\n")
    context = _context(tmp_path, JobType.LINT_SCAN, rules=AUTO_STYLE)

    result = asyncio.run(LintScanJob(executor=fake_executor).run(context))

    assert result.summary == "Auto-fixed 2 error(s) across 2 file(s) (ruff)"
    assert result.files_changed == 2
    assert result.suggestions == []
    assert not any(argv[:2] == ("git", "checkout") for argv in fake_executor.argvs())


def test_lint_scan_auto_fix_without_changes_falls_back_to_suggestions(
    tmp_path: Path, fake_executor
) -> None:
    (tmp_path / "ruff.toml").write_text("", encoding="utf-8")
    fake_executor.respond(("ruff", "check", "."), returncode=1, stdout="Found 1 warning.")
    context = _context(tmp_path, JobType.LINT_SCAN, rules=AUTO_STYLE)

    result = asyncio.run(LintScanJob(executor=fake_executor).run(context))

    assert result.summary == "Linting scan found 1 warning(s) but auto-fix made no changes (ruff)"
    assert [suggestion.title for suggestion in result.suggestions] == [
        "Resolve 1 lint warning(s)",
    ]


def test_lint_scan_reports_missing_linter_binary(tmp_path: Path, fake_executor) -> None:
    (tmp_path / "biome.json").write_text("{}", encoding="utf-8")
    fake_executor.respond(("bunx",), returncode=127, stderr="bunx: command not found")

    result = _run(LintScanJob(executor=fake_executor), tmp_path, JobType.LINT_SCAN)

    assert result.summary == "Linting scan failed: bunx: command not found"
