"""Agent worker process: claim tasks, run the assistant, report the outcome.

Started by the orchestrator as ``python -m locus.agent.worker --agent-id ...``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import click

from locus.agent.messages import encode_worker_message
from locus.agent.prompt_builder import COMPLETION_MARKER, PromptBuilder
from locus.ai.base import RunnerError
from locus.ai.cli_runner import CliRunner
from locus.ai.factory import create_ai_runner
from locus.api.client import ApiError, LocusClient
from locus.api.models import Task, TaskStatus
from locus.config import DEFAULT_PROVIDER, SUPPORTED_PROVIDERS
from locus.git.gh import GhClient, GhCommandError
from locus.git.process import CommandError
from locus.git.worktree import WorktreeInfo, WorktreeManager

logger = logging.getLogger(__name__)

MAX_TASKS = 50
HEARTBEAT_INTERVAL_SECONDS = 60.0
DISPATCH_MAX_ATTEMPTS = 10
DISPATCH_RETRY_SECONDS = 30.0
SUMMARY_MAX_CHARS = 2_000
DEFAULT_SUMMARY = "Task completed by the agent."
REQUIRED_FLAGS = (
    ("--agent-id", "agent_id"),
    ("--workspace-id", "workspace_id"),
    ("--api-url", "api_base"),
    ("--api-key", "api_key"),
    ("--project-path", "project_path"),
)

_LEVELS = {
    "info": ("ℹ", "cyan"),
    "success": ("✓", "green"),
    "warn": ("⚠", "yellow"),
    "error": ("✗", "red"),
}

RunnerFactory = Callable[..., CliRunner]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class WorkerConfig:
    """Immutable settings handed to one worker process at spawn."""

    agent_id: str
    workspace_id: str
    api_base: str
    api_key: str
    project_path: Path
    sprint_id: str | None = None
    model: str | None = None
    provider: str = DEFAULT_PROVIDER
    base_branch: str | None = None
    use_worktrees: bool = False
    auto_push: bool = False


@dataclass(slots=True)
class TaskOutcome:
    success: bool
    summary: str
    branch: str | None = None
    pr_url: str | None = None
    pr_error: str | None = None
    no_changes: bool = False


class AgentWorker:
    """Sequential task loop for one agent."""

    def __init__(  # noqa: PLR0913
        self,
        config: WorkerConfig,
        *,
        client: LocusClient | None = None,
        runner_factory: RunnerFactory = create_ai_runner,
        runner_options: dict[str, Any] | None = None,
        worktrees: WorktreeManager | None = None,
        gh: GhClient | None = None,
        sleep: Sleep = asyncio.sleep,
        max_tasks: int = MAX_TASKS,
        heartbeat_interval_seconds: float = HEARTBEAT_INTERVAL_SECONDS,
        dispatch_retry_seconds: float = DISPATCH_RETRY_SECONDS,
    ) -> None:
        self.config = config
        self.client = client or LocusClient(config.api_base, config.api_key)
        self.runner_factory = runner_factory
        self.runner_options = runner_options or {}
        self.worktrees = worktrees
        if self.worktrees is None and config.use_worktrees:
            self.worktrees = WorktreeManager(config.project_path)
        self.gh = gh
        if self.gh is None and config.auto_push:
            self.gh = GhClient(config.project_path)
        self.prompt_builder = PromptBuilder(config.project_path)
        self.max_tasks = max_tasks
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.dispatch_retry_seconds = dispatch_retry_seconds
        self.tasks_completed = 0
        self.tasks_failed = 0
        self.current_task_id: str | None = None
        self.stop_requested = False
        self._sleep = sleep
        self._runner: CliRunner | None = None

    def log(self, message: str, level: str = "info") -> None:
        glyph, color = _LEVELS[level]
        timestamp = datetime.now().strftime("%H:%M:%S")
        click.echo(
            f"{click.style(f'[{timestamp}]', dim=True)} "
            f"{click.style(f'[{self.config.agent_id[-8:]}]', bold=True)} "
            f"{click.style(f'{glyph} {message}', fg=color)}",
        )

    def request_stop(self) -> None:
        """Abort the running assistant and stop after the current task."""

        if self.stop_requested:
            return
        self.stop_requested = True
        self.log("Received shutdown signal. Aborting...", "warn")
        if self._runner is not None:
            self._runner.abort()

    async def run(self) -> int:
        self.log(f"Agent started in {self.config.project_path}", "success")
        heartbeat = asyncio.create_task(self._heartbeat_loop())
        try:
            while self.tasks_completed + self.tasks_failed < self.max_tasks:
                if self.stop_requested:
                    break
                task = await self._next_task()
                if task is None:
                    self.log("No more tasks to process. Exiting.")
                    break
                self.log(f"Claimed: {task.title}", "success")
                self.current_task_id = task.id
                await self._send_heartbeat()
                outcome = await self._execute(task)
                await self._report(task, outcome)
                self.current_task_id = None
                self._emit_stats()
                await self._send_heartbeat()
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            self.current_task_id = None
            await self._send_heartbeat("COMPLETED")
        return 1 if self.stop_requested else 0

    # -- dispatch ---------------------------------------------------------

    async def _next_task(self) -> Task | None:
        for attempt in range(1, DISPATCH_MAX_ATTEMPTS + 1):
            try:
                task = await self.client.dispatch(
                    self.config.workspace_id,
                    self.config.agent_id,
                    self.config.sprint_id,
                )
            except ApiError as error:
                if attempt == DISPATCH_MAX_ATTEMPTS:
                    self.log(
                        f"Nothing dispatched after {DISPATCH_MAX_ATTEMPTS} attempts: {error}",
                        "warn",
                    )
                    return None
                self.log(
                    f"Nothing dispatched (attempt {attempt}/{DISPATCH_MAX_ATTEMPTS}): {error}. "
                    f"Retrying in {self.dispatch_retry_seconds:.0f}s...",
                    "warn",
                )
                await self._sleep(self.dispatch_retry_seconds)
                continue
            if task is None:
                self.log("No tasks available in the backlog.")
            return task
        return None

    # -- execution --------------------------------------------------------

    async def _execute(self, task: Task) -> TaskOutcome:
        try:
            full_task = await self.client.get_task(task.id, self.config.workspace_id)
        except ApiError as error:
            self.log(f"Could not load task details, using dispatch payload: {error}", "warn")
            full_task = task

        worktrees = self.worktrees
        if worktrees is None:
            return await self._run_assistant(full_task, self.config.project_path)

        try:
            worktree = await asyncio.to_thread(
                worktrees.create,
                self.config.agent_id,
                full_task.id,
                full_task.title,
                self.config.base_branch,
            )
        except CommandError as error:
            return TaskOutcome(success=False, summary=f"Worktree setup failed: {error}")
        self.log(f"Worktree created: {worktree.path} ({worktree.branch})")

        preserve = False
        keep_branch = False
        try:
            outcome = await self._run_assistant(full_task, worktree.path)
            if outcome.success:
                outcome = await self._publish(worktrees, full_task, worktree, outcome)
                keep_branch = outcome.branch is not None
                preserve = self.config.auto_push and keep_branch and outcome.pr_url is None
            return outcome
        finally:
            if preserve:
                self.log(f"Preserving worktree for manual follow-up: {worktree.path}", "warn")
            else:
                await self._cleanup_worktree(worktrees, worktree, keep_branch=keep_branch)

    async def _run_assistant(self, task: Task, cwd: Path) -> TaskOutcome:
        prompt = self.prompt_builder.build(task)
        runner = self.runner_factory(
            self.config.provider,
            cwd,
            self.config.model,
            **self.runner_options,
        )
        self._runner = runner
        try:
            output = await runner.run(prompt)
        except RunnerError as error:
            return TaskOutcome(success=False, summary=str(error))
        finally:
            self._runner = None
        if self.stop_requested:
            return TaskOutcome(success=False, summary="Aborted by shutdown signal.")
        return TaskOutcome(success=True, summary=_summarize(output))

    async def _publish(
        self,
        worktrees: WorktreeManager,
        task: Task,
        worktree: WorktreeInfo,
        outcome: TaskOutcome,
    ) -> TaskOutcome:
        message = (
            f"feat(agent): {task.title}\n\n"
            f"Task-ID: {task.id}\n"
            f"Agent: {self.config.agent_id}"
        )
        try:
            commit = await asyncio.to_thread(
                worktrees.commit,
                worktree.path,
                message,
                worktree.base_commit,
            )
        except CommandError as error:
            self.log(f"Git commit failed: {error}", "error")
            return outcome
        if commit is None:
            self.log("No changes to commit for this task")
            outcome.no_changes = True
            return outcome

        outcome.branch = worktree.branch
        if not self.config.auto_push:
            self.log("Auto-push disabled; skipping branch push")
            return outcome
        try:
            await asyncio.to_thread(worktrees.push, worktree.path)
        except CommandError as error:
            self.log(f"Git push failed: {error}", "error")
            outcome.pr_error = f"Git push failed: {error}"
            return outcome

        if self.gh is None:
            return outcome
        self.log(f"Attempting PR creation from branch: {worktree.branch}")
        try:
            url, _number = await asyncio.to_thread(
                self.gh.create_pr,
                f"[Locus] {task.title}",
                self._pr_body(task, outcome.summary),
                worktree.branch,
                worktree.base_branch,
            )
        except GhCommandError as error:
            self.log(f"PR creation failed: {error}", "error")
            outcome.pr_error = str(error)
            return outcome
        self.log(f"PR created: {url}", "success")
        outcome.pr_url = url
        return outcome

    def _pr_body(self, task: Task, summary: str) -> str:
        sections = [f"## Task: {task.title}", ""]
        if task.description:
            sections.extend([task.description, ""])
        if task.acceptance_checklist:
            sections.append("## Acceptance Criteria")
            sections.extend(f"- [ ] {item.text}" for item in task.acceptance_checklist)
            sections.append("")
        if summary:
            sections.extend(["## Agent Summary", summary, ""])
        sections.append("---")
        sections.append(
            f"*Created by Locus Agent `{self.config.agent_id[-8:]}`* | Task ID: `{task.id}`",
        )
        return "\n".join(sections)

    async def _cleanup_worktree(
        self,
        worktrees: WorktreeManager,
        worktree: WorktreeInfo,
        *,
        keep_branch: bool,
    ) -> None:
        try:
            await asyncio.to_thread(
                worktrees.remove,
                worktree.path,
                delete_branch=not keep_branch,
            )
        except CommandError as error:
            self.log(f"Could not clean up worktree {worktree.path}: {error}", "warn")
            return
        suffix = " (branch preserved)" if keep_branch else ""
        self.log(f"Worktree cleaned up{suffix}")

    # -- reporting --------------------------------------------------------

    async def _report(self, task: Task, outcome: TaskOutcome) -> None:
        workspace = self.config.workspace_id
        author = self.config.agent_id
        try:
            if outcome.success and outcome.no_changes:
                self.log(f"Blocked: {task.title} - execution produced no file changes", "warn")
                await self.client.update_task(
                    task.id,
                    workspace,
                    {"status": TaskStatus.BLOCKED.value, "assignedTo": None},
                )
                await self.client.add_comment(
                    task.id,
                    workspace,
                    author=author,
                    text=(
                        "⚠️ Agent execution finished with no file changes, "
                        f"so no commit/branch/PR was created.\n\n{outcome.summary}"
                    ),
                )
                self.tasks_failed += 1
            elif outcome.success:
                self.log(f"Completed: {task.title}", "success")
                changes: dict[str, Any] = {"status": TaskStatus.IN_REVIEW.value}
                if outcome.pr_url:
                    changes["prUrl"] = outcome.pr_url
                await self.client.update_task(task.id, workspace, changes)
                text = f"✅ {outcome.summary}"
                if outcome.branch:
                    text += f"\n\nBranch: `{outcome.branch}`"
                if outcome.pr_url:
                    text += f"\nPR: {outcome.pr_url}"
                if outcome.pr_error:
                    text += f"\nPR automation error: {outcome.pr_error}"
                await self.client.add_comment(task.id, workspace, author=author, text=text)
                self.tasks_completed += 1
            else:
                self.log(f"Failed: {task.title} - {outcome.summary}", "error")
                await self.client.update_task(
                    task.id,
                    workspace,
                    {"status": TaskStatus.BACKLOG.value, "assignedTo": None},
                )
                await self.client.add_comment(
                    task.id,
                    workspace,
                    author=author,
                    text=f"❌ {outcome.summary}",
                )
                self.tasks_failed += 1
        except ApiError as error:
            self.log(f"Could not report result for {task.title}: {error}", "error")

    # -- heartbeat --------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        while True:
            await self._send_heartbeat()
            await asyncio.sleep(self.heartbeat_interval_seconds)

    async def _send_heartbeat(self, status: str | None = None) -> None:
        state = status or ("WORKING" if self.current_task_id else "IDLE")
        click.echo(encode_worker_message("heartbeat", status=state, taskId=self.current_task_id))
        try:
            await self.client.heartbeat(
                self.config.workspace_id,
                self.config.agent_id,
                self.current_task_id,
                state,
            )
        except ApiError as error:
            self.log(f"Heartbeat failed: {error}", "warn")

    def _emit_stats(self) -> None:
        click.echo(
            encode_worker_message(
                "stats",
                tasksCompleted=self.tasks_completed,
                tasksFailed=self.tasks_failed,
            ),
        )


def _summarize(output: str) -> str:
    text = output.replace(COMPLETION_MARKER, "").strip()
    if not text:
        return DEFAULT_SUMMARY
    if len(text) > SUMMARY_MAX_CHARS:
        return "..." + text[-SUMMARY_MAX_CHARS:]
    return text


def resolve_provider(value: str | None) -> str:
    """Map the ``--provider`` argument to a supported provider, warning on bad input."""

    if not value or value.startswith("--"):
        print("Warning: --provider requires a value. Falling back to 'claude'.", file=sys.stderr)
        return DEFAULT_PROVIDER
    if value in SUPPORTED_PROVIDERS:
        return value
    print(
        f"Warning: invalid --provider value '{value}'. Falling back to 'claude'.",
        file=sys.stderr,
    )
    return DEFAULT_PROVIDER


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="locus-worker", description="Locus agent worker")
    parser.add_argument("--agent-id")
    parser.add_argument("--workspace-id")
    parser.add_argument("--sprint-id")
    parser.add_argument("--api-url", "--api-base", dest="api_base")
    parser.add_argument("--api-key")
    parser.add_argument("--project-path")
    parser.add_argument("--model")
    parser.add_argument("--provider", nargs="?", const="")
    parser.add_argument("--base-branch")
    parser.add_argument("--use-worktrees", action="store_true")
    parser.add_argument("--auto-push", action="store_true")
    return parser


def parse_worker_args(argv: Sequence[str]) -> WorkerConfig | None:
    """Parse worker flags; ``None`` means a required flag is missing."""

    args, unknown = build_parser().parse_known_args(list(argv))
    if unknown:
        logger.debug("Ignoring unknown worker arguments: %s", unknown)
    if _missing_flags(args):
        return None
    provider = DEFAULT_PROVIDER if args.provider is None else resolve_provider(args.provider)
    return WorkerConfig(
        agent_id=args.agent_id,
        workspace_id=args.workspace_id,
        api_base=args.api_base,
        api_key=args.api_key,
        project_path=Path(args.project_path),
        sprint_id=args.sprint_id,
        model=args.model,
        provider=provider,
        base_branch=args.base_branch,
        use_worktrees=args.use_worktrees,
        auto_push=args.auto_push,
    )


def missing_worker_flags(argv: Sequence[str]) -> list[str]:
    args, _ = build_parser().parse_known_args(list(argv))
    return _missing_flags(args)


def _missing_flags(args: argparse.Namespace) -> list[str]:
    return [flag for flag, dest in REQUIRED_FLAGS if not getattr(args, dest)]


async def _run_worker(config: WorkerConfig) -> int:
    worker = AgentWorker(config)
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        with suppress(NotImplementedError):
            loop.add_signal_handler(signum, worker.request_stop)
    try:
        return await worker.run()
    finally:
        await worker.client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    arguments = list(sys.argv[1:] if argv is None else argv)
    config = parse_worker_args(arguments)
    if config is None:
        missing = ", ".join(missing_worker_flags(arguments))
        print(f"Missing required arguments: {missing}", file=sys.stderr)
        return 1
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(_run_worker(config))
    except Exception:
        logger.exception("Fatal worker error")
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
