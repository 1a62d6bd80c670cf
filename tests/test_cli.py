from __future__ import annotations

import json
import shlex
from pathlib import Path

import allure
from click.testing import CliRunner

from locus.jobs import JobRegistry, JobType
from locus.jobs.controllers import JobsCliController, JobsRunCommand
from locus.jobs.scans import TodoScanJob
from locus.main import locus

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Commands"),
]


def _write_jobs_config(tmp_path: Path) -> Path:
    path = tmp_path / "jobs.json"
    path.write_text(
        json.dumps(
            {
                "jobs": {
                    "LINT_SCAN": {"schedule": {"cronExpression": "0 2 * * 1"}},
                    "TODO_CLEANUP": {"enabled": False},
                },
                "autonomyRules": [
                    {"category": "STYLE", "riskLevel": "LOW", "autoExecute": True},
                ],
            },
        ),
        encoding="utf-8",
    )
    return path


def test_jobs_list_shows_schedule_state(tmp_path: Path) -> None:
    config_path = _write_jobs_config(tmp_path)

    result = CliRunner().invoke(
        locus,
        ["jobs", "list", "--project-path", str(tmp_path), "--config", str(config_path)],
    )

    assert result.exit_code == 0, result.output
    assert "- LINT_SCAN: cron=0 2 * * 1 state=scheduled severity=REQUIRE_APPROVAL" in result.output
    assert "- TODO_CLEANUP: cron=0 3 * * * state=disabled" in result.output
    assert "rule STYLE/LOW: auto" in result.output


def test_jobs_list_without_config(tmp_path: Path) -> None:
    result = CliRunner().invoke(locus, ["jobs", "list", "--project-path", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "No jobs configured in" in result.output


def test_jobs_run_requires_api_credentials(tmp_path: Path) -> None:
    result = CliRunner().invoke(locus, ["jobs", "run", "--project-path", str(tmp_path)])

    assert result.exit_code == 1
    assert "Workspace id is required" in result.output


def test_run_requires_workspace(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        locus,
        ["run", "--project-path", str(tmp_path), "--api-key", "key"],
    )

    assert result.exit_code == 1
    assert "Workspace id is required" in result.output


def test_run_rejects_too_many_agents(tmp_path: Path) -> None:
    result = CliRunner().invoke(locus, ["run", "--project-path", str(tmp_path), "--agents", "9"])

    assert result.exit_code == 2


def test_exec_streams_assistant_output(tmp_path: Path, echo_command) -> None:
    result = CliRunner().invoke(
        locus,
        [
            "exec",
            "hello",
            "--project-path",
            str(tmp_path),
            "--runner-command",
            shlex.join(echo_command),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "[thinking]" in result.output
    assert "[Read]" in result.output
    assert "echo: hello" in result.output
    assert "finished (Claude CLI)." in result.output


def test_exec_reports_spawn_failure(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        locus,
        [
            "exec",
            "hello",
            "--project-path",
            str(tmp_path),
            "--runner-command",
            "locus-missing-assistant-binary",
        ],
    )

    assert result.exit_code == 1
    assert "Error: Failed to start Claude CLI" in result.output
    assert "Assistant run failed." in result.output


def test_jobs_run_single_job_prints_result_and_suggestions(
    tmp_path: Path, monkeypatch, fake_client, fake_executor
) -> None:
    monkeypatch.setenv("LOCUS_WORKSPACE_ID", "ws-1")
    monkeypatch.setenv("LOCUS_API_KEY", "key")
    monkeypatch.setattr("locus.jobs.controllers._client", lambda settings: fake_client)
    fake_executor.respond(("grep",), stdout="./app.py:3:# TODO: tidy up\n")

    def registry() -> JobRegistry:
        jobs = JobRegistry()
        jobs.register(TodoScanJob(executor=fake_executor))
        return jobs

    lines = JobsCliController(registry_factory=registry).run_jobs(
        JobsRunCommand(project_path=tmp_path, config_path=None, job_type="todo_cleanup"),
    )

    assert lines == [
        "TODO_CLEANUP: Found 1 TODOs across 1 file(s)",
        "  - TODO in app.py:3",
    ]
    (_, created), _ = fake_client.named("create_job_run")[0]
    assert created["jobType"] == JobType.TODO_CLEANUP.value
    assert fake_client.closed is True
