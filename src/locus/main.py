"""CLI entrypoint for locus."""

import logging
import os
import shlex
from pathlib import Path

import rich_click as click

from locus import __version__
from locus.config import MAX_AGENTS, SUPPORTED_PROVIDERS
from locus.exec.controllers import ExecCliController, ExecCommand
from locus.jobs.controllers import (
    JobsCliController,
    JobsListCommand,
    JobsRunCommand,
    JobsScheduleCommand,
)
from locus.jobs.models import JobType
from locus.orchestrator.controllers import OrchestratorCliController, RunAgentsCommand

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()
JOBS_CONTROLLER = JobsCliController()
EXEC_CONTROLLER = ExecCliController()

PROJECT_PATH_OPTION = click.option(
    "--project-path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Repository the agents work in. Defaults to LOCUS_PROJECT_PATH or the current directory.",
)
JOBS_CONFIG_OPTION = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Job configuration JSON. Defaults to LOCUS_JOBS_CONFIG_PATH or .locus/jobs.json.",
)


@click.group()
@click.version_option(version=__version__, prog_name="locus")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level. Defaults to LOCUS_LOG_LEVEL or INFO.",
)
def locus(log_level: str | None) -> None:
    """Locus agent orchestration CLI."""

    level = (log_level or os.getenv("LOCUS_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@locus.command("run")
@PROJECT_PATH_OPTION
@click.option("--workspace-id", default=None, help="Workspace to pull tasks from.")
@click.option("--sprint-id", default=None, help="Sprint to work on. Defaults to the active one.")
@click.option("--api-url", "api_base", default=None, help="Task API base URL.")
@click.option("--api-key", default=None, help="Task API key.")
@click.option(
    "--provider",
    type=click.Choice(SUPPORTED_PROVIDERS, case_sensitive=False),
    default=None,
    help="AI assistant CLI to drive.",
)
@click.option("--model", default=None, help="Model id override for the provider.")
@click.option(
    "--agents",
    "agent_count",
    type=click.IntRange(min=1, max=MAX_AGENTS),
    default=None,
    help="Number of worker processes.",
)
@click.option(
    "--worktrees/--no-worktrees",
    "use_worktrees",
    default=None,
    help="Run each task in its own git worktree.",
)
@click.option(
    "--auto-push/--no-auto-push",
    default=None,
    help="Push task branches and open pull requests.",
)
@click.option("--base-branch", default=None, help="Branch new task branches start from.")
def run_agents(  # noqa: PLR0913
    project_path: Path | None,
    workspace_id: str | None,
    sprint_id: str | None,
    api_base: str | None,
    api_key: str | None,
    provider: str | None,
    model: str | None,
    agent_count: int | None,
    use_worktrees: bool | None,
    auto_push: bool | None,
    base_branch: str | None,
) -> None:
    """Spawn agent workers and process the workspace backlog."""

    try:
        lines = ORCHESTRATOR_CONTROLLER.run(
            RunAgentsCommand(
                project_path=project_path,
                workspace_id=workspace_id,
                sprint_id=sprint_id,
                api_base=api_base,
                api_key=api_key,
                provider=provider,
                model=model,
                agent_count=agent_count,
                use_worktrees=use_worktrees,
                auto_push=auto_push,
                base_branch=base_branch,
            ),
            echo=click.echo,
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@locus.group()
def jobs() -> None:
    """Maintenance job commands."""


@jobs.command("list")
@PROJECT_PATH_OPTION
@JOBS_CONFIG_OPTION
def jobs_list(project_path: Path | None, config_path: Path | None) -> None:
    """Show configured jobs and whether they are scheduled."""

    _emit_lines(
        JOBS_CONTROLLER.list_jobs(
            JobsListCommand(project_path=project_path, config_path=config_path),
        ),
    )


@jobs.command("run")
@click.argument(
    "job_type",
    required=False,
    type=click.Choice([job_type.value for job_type in JobType], case_sensitive=False),
)
@PROJECT_PATH_OPTION
@JOBS_CONFIG_OPTION
def jobs_run(job_type: str | None, project_path: Path | None, config_path: Path | None) -> None:
    """Run one job now, or every enabled job when no type is given."""

    try:
        lines = JOBS_CONTROLLER.run_jobs(
            JobsRunCommand(
                project_path=project_path,
                config_path=config_path,
                job_type=job_type,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@jobs.command("schedule")
@PROJECT_PATH_OPTION
@JOBS_CONFIG_OPTION
def jobs_schedule(project_path: Path | None, config_path: Path | None) -> None:
    """Run jobs on their cron schedules until interrupted. Send SIGHUP to reload the config."""

    try:
        lines = JOBS_CONTROLLER.schedule(
            JobsScheduleCommand(project_path=project_path, config_path=config_path),
            echo=click.echo,
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@locus.command("exec")
@click.argument("prompt")
@PROJECT_PATH_OPTION
@click.option(
    "--provider",
    type=click.Choice(SUPPORTED_PROVIDERS, case_sensitive=False),
    default=None,
    help="AI assistant CLI to drive.",
)
@click.option("--model", default=None, help="Model id override for the provider.")
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Abort the assistant after this many seconds.",
)
@click.option(
    "--runner-command",
    default=None,
    hidden=True,
    help="Replace the assistant executable, for example with a local stand-in.",
)
def exec_prompt(  # noqa: PLR0913
    prompt: str,
    project_path: Path | None,
    provider: str | None,
    model: str | None,
    timeout_seconds: int | None,
    runner_command: str | None,
) -> None:
    """Run one prompt through the assistant and stream its output."""

    outcome = EXEC_CONTROLLER.run(
        ExecCommand(
            prompt=prompt,
            project_path=project_path,
            provider=provider,
            model=model,
            timeout_seconds=timeout_seconds,
            runner_command=tuple(shlex.split(runner_command)) if runner_command else (),
        ),
        write=lambda text: click.echo(text, nl=False),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Assistant run failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    locus()
