"""Top-level control loop that spawns agent worker processes and tracks them."""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import os
import signal
import sys
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from locus.agent.dispatch import pick_next_task
from locus.agent.messages import decode_worker_message
from locus.api.client import ApiError, LocusClient
from locus.api.models import Task, TaskStatus
from locus.config import Settings, clamp_agent_count
from locus.emitter import EventEmitter
from locus.orchestrator.models import (
    AgentState,
    AgentStatus,
    OrchestratorAlreadyRunningError,
    OrchestratorEvent,
    WorkerEntrypointNotFoundError,
)

logger = logging.getLogger(__name__)

WORKER_MODULE = "locus.agent.worker"
HEARTBEAT_CHECK_SECONDS = 60.0
WORKER_STREAM_LIMIT = 16 * 1024 * 1024

Sleep = Callable[[float], Awaitable[None]]


class AgentOrchestrator(EventEmitter):
    """Spawn up to ``agent_count`` workers against one workspace and wait for them.

    Workers run as separate OS processes. The orchestrator only reads their
    output, tracks heartbeats and reaps them; task state changes go through
    the workspace API.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: Settings,
        *,
        client: LocusClient | None = None,
        worker_command: Sequence[str] | None = None,
        sleep: Sleep = asyncio.sleep,
        heartbeat_check_seconds: float = HEARTBEAT_CHECK_SECONDS,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.client = client or LocusClient(
            settings.api.base_url,
            settings.api.api_key,
            timeout_seconds=settings.api.timeout_seconds,
            max_retries=settings.api.max_retries,
        )
        self.worker_command = tuple(worker_command) if worker_command else None
        self.heartbeat_check_seconds = heartbeat_check_seconds
        self.sprint_id: str | None = None
        self._sleep = sleep
        self._agents: dict[str, AgentState] = {}
        self._watchers: dict[str, asyncio.Task[None]] = {}
        self._processed: set[str] = set()
        self._running = False
        self._monitor: asyncio.Task[None] | None = None

    @property
    def agent_count(self) -> int:
        return clamp_agent_count(self.settings.agent.agent_count)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            raise OrchestratorAlreadyRunningError("Orchestrator is already running")
        self._running = True
        self._processed.clear()
        try:
            await self._orchestration_loop()
        except Exception as error:
            self.emit(OrchestratorEvent.ERROR, error)
            raise
        finally:
            await self._cleanup()

    async def _orchestration_loop(self) -> None:
        self.sprint_id = await self._resolve_sprint_id()
        self.emit(
            OrchestratorEvent.STARTED,
            {
                "timestamp": datetime.now(UTC),
                "workspaceId": self.settings.workspace_id,
                "sprintId": self.sprint_id,
                "agentCount": self.agent_count,
            },
        )
        logger.info(
            "Orchestrator started: workspace=%s sprint=%s agents=%s worktrees=%s",
            self.settings.workspace_id,
            self.sprint_id or "-",
            self.agent_count,
            "enabled" if self.settings.agent.use_worktrees else "disabled",
        )

        tasks = await self._get_available_tasks()
        if not tasks:
            logger.info("No available tasks found in the backlog.")
            return

        self._monitor = asyncio.create_task(self._monitor_heartbeats())
        for index in range(min(self.agent_count, len(tasks))):
            if index > 0:
                await self._sleep(self.settings.agent.spawn_stagger_seconds)
            if not self._running:
                break
            await self._spawn_agent(index)

        while self._agents and self._running:
            await self._sleep(self.settings.agent.poll_interval_seconds)

        logger.info("Orchestrator finished")

    async def _resolve_sprint_id(self) -> str | None:
        if self.settings.sprint_id:
            return self.settings.sprint_id
        try:
            sprint = await self.client.get_active_sprint(self.settings.workspace_id)
        except ApiError as error:
            logger.debug("Active sprint lookup failed: %s", error)
            sprint = None
        if sprint is not None:
            logger.info("Using active sprint: %s", sprint.name)
            return sprint.id
        logger.info("No sprint specified, working with all workspace tasks")
        return None

    async def _get_available_tasks(self) -> list[Task]:
        try:
            return await self.client.get_available_tasks(
                self.settings.workspace_id, self.sprint_id
            )
        except ApiError as error:
            self.emit(OrchestratorEvent.ERROR, error)
            return []

    # -- worker processes -------------------------------------------------

    def resolve_worker_command(self) -> tuple[str, ...]:
        if self.worker_command:
            return self.worker_command
        if importlib.util.find_spec(WORKER_MODULE) is None:
            raise WorkerEntrypointNotFoundError(
                f"Worker module {WORKER_MODULE!r} not found. "
                "Make sure the locus package is properly installed.",
            )
        return (sys.executable, "-m", WORKER_MODULE)

    def _worker_args(self, agent_id: str) -> list[str]:
        settings = self.settings
        args = [
            "--agent-id",
            agent_id,
            "--workspace-id",
            settings.workspace_id,
            "--api-url",
            settings.api.base_url,
            "--api-key",
            settings.api.api_key,
            "--project-path",
            str(settings.project_path),
            "--provider",
            settings.agent.provider,
        ]
        if settings.agent.model:
            args.extend(["--model", settings.agent.model])
        if self.sprint_id:
            args.extend(["--sprint-id", self.sprint_id])
        if settings.agent.base_branch:
            args.extend(["--base-branch", settings.agent.base_branch])
        if settings.agent.use_worktrees:
            args.append("--use-worktrees")
        if settings.agent.auto_push:
            args.append("--auto-push")
        return args

    async def _spawn_agent(self, index: int) -> AgentState:
        agent_id = f"agent-{index}-{int(time.time() * 1000)}-{uuid4().hex[:7]}"
        command = self.resolve_worker_command()
        env = os.environ.copy()
        env.update(
            {
                "FORCE_COLOR": "1",
                "TERM": "xterm-256color",
                "LOCUS_WORKER": agent_id,
                "LOCUS_WORKSPACE": self.settings.workspace_id,
            },
        )
        process = await asyncio.create_subprocess_exec(
            *command,
            *self._worker_args(agent_id),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=str(self.settings.project_path),
            start_new_session=True,
            limit=WORKER_STREAM_LIMIT,
        )
        state = AgentState(id=agent_id, process=process)
        self._agents[agent_id] = state
        self._watchers[agent_id] = asyncio.create_task(self._watch_agent(state, process))
        logger.info("Agent started: %s (pid %s)", agent_id, process.pid)
        self.emit(OrchestratorEvent.AGENT_SPAWNED, {"agentId": agent_id})
        return state

    async def _watch_agent(self, state: AgentState, process: asyncio.subprocess.Process) -> None:
        await asyncio.gather(
            self._forward_stdout(state, process.stdout),
            _forward_stream(process.stderr, sys.stderr),
        )
        code = await process.wait()
        self._handle_exit(state.id, code)

    async def _forward_stdout(
        self, state: AgentState, stream: asyncio.StreamReader | None
    ) -> None:
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace")
            message = decode_worker_message(line.rstrip("\r\n"))
            if message is None:
                sys.stdout.write(line)
                sys.stdout.flush()
                continue
            self._apply_worker_message(state, message)

    def _apply_worker_message(self, state: AgentState, message: dict[str, Any]) -> None:
        if message["type"] == "stats":
            state.tasks_completed = int(message.get("tasksCompleted") or 0)
            state.tasks_failed = int(message.get("tasksFailed") or 0)
        elif message["type"] == "heartbeat":
            state.touch()
            task_id = message.get("taskId")
            if message.get("status") == AgentStatus.WORKING.value and task_id:
                state.start_task(str(task_id))
            else:
                state.finish_task()

    def _handle_exit(self, agent_id: str, code: int | None) -> None:
        logger.info("%s finished (exit code: %s)", agent_id, code)
        state = self._agents.get(agent_id)
        if state is None:
            return
        state.status = AgentStatus.COMPLETED if code == 0 else AgentStatus.FAILED
        state.current_task_id = None
        try:
            self.emit(
                OrchestratorEvent.AGENT_COMPLETED,
                {
                    "agentId": agent_id,
                    "status": state.status.value,
                    "tasksCompleted": state.tasks_completed,
                    "tasksFailed": state.tasks_failed,
                },
            )
        finally:
            self._agents.pop(agent_id, None)
            self._watchers.pop(agent_id, None)

    async def _monitor_heartbeats(self) -> None:
        stale_after = self.settings.agent.stale_agent_seconds
        while True:
            await asyncio.sleep(self.heartbeat_check_seconds)
            now = datetime.now(UTC)
            for agent_id, state in list(self._agents.items()):
                silent_for = (now - state.last_heartbeat).total_seconds()
                if state.status is AgentStatus.WORKING and silent_for > stale_after:
                    logger.error(
                        "Agent %s is stale (no heartbeat for %.0f minutes). Killing.",
                        agent_id,
                        silent_for / 60,
                    )
                    _kill_process_tree(state.process)
                    self.emit(OrchestratorEvent.AGENT_STALE, {"agentId": agent_id})

    # -- worker-facing task API -------------------------------------------

    async def assign_task_to_agent(self, agent_id: str) -> Task | None:
        """Pick the highest-priority available task for agent and mark the agent WORKING."""

        tasks = await self._get_available_tasks()
        task = pick_next_task(tasks, agent_id=agent_id, processed=self._processed)
        if task is None:
            return None
        state = self._agents.get(agent_id)
        if state is not None:
            state.start_task(task.id)
        self.emit(
            OrchestratorEvent.TASK_ASSIGNED,
            {"agentId": agent_id, "taskId": task.id, "title": task.title},
        )
        return task

    async def complete_task(self, task_id: str, agent_id: str, summary: str | None = None) -> None:
        if task_id in self._processed:
            logger.debug("Task %s already completed in this run", task_id)
            return
        workspace = self.settings.workspace_id
        try:
            await self.client.update_task(
                task_id, workspace, {"status": TaskStatus.IN_REVIEW.value}
            )
            if summary:
                await self.client.add_comment(
                    task_id,
                    workspace,
                    author=agent_id,
                    text=f"✅ Task completed\n\n{summary}",
                )
        except ApiError as error:
            self.emit(OrchestratorEvent.ERROR, error)
            return
        self._processed.add(task_id)
        state = self._agents.get(agent_id)
        if state is not None:
            state.tasks_completed += 1
            state.finish_task()
        self.emit(OrchestratorEvent.TASK_COMPLETED, {"agentId": agent_id, "taskId": task_id})

    async def fail_task(self, task_id: str, agent_id: str, error: str) -> None:
        workspace = self.settings.workspace_id
        try:
            await self.client.update_task(
                task_id,
                workspace,
                {"status": TaskStatus.BACKLOG.value, "assignedTo": None},
            )
            await self.client.add_comment(
                task_id,
                workspace,
                author=agent_id,
                text=f"❌ Agent failed: {error}",
            )
        except ApiError as api_error:
            self.emit(OrchestratorEvent.ERROR, api_error)
        state = self._agents.get(agent_id)
        if state is not None:
            state.tasks_failed += 1
            state.finish_task()
        self.emit(
            OrchestratorEvent.TASK_FAILED,
            {"agentId": agent_id, "taskId": task_id, "error": error},
        )

    # -- control ----------------------------------------------------------

    async def stop(self) -> None:
        """Kill every worker and end the loop; safe to call more than once."""

        was_running = self._running
        self._running = False
        await self._cleanup()
        if was_running:
            self.emit(
                OrchestratorEvent.STOPPED,
                {"timestamp": datetime.now(UTC), **self.get_stats()},
            )

    def stop_agent(self, agent_id: str) -> bool:
        state = self._agents.get(agent_id)
        if state is None or state.process is None:
            return False
        _kill_process_tree(state.process)
        return True

    def get_stats(self) -> dict[str, Any]:
        agents = list(self._agents.values())
        return {
            "activeAgents": len(agents),
            "totalTasksCompleted": sum(agent.tasks_completed for agent in agents),
            "totalTasksFailed": sum(agent.tasks_failed for agent in agents),
            "processedTasks": len(self._processed),
        }

    def get_agent_states(self) -> list[AgentState]:
        return list(self._agents.values())

    async def _cleanup(self) -> None:
        if self._monitor is not None:
            self._monitor.cancel()
            with suppress(asyncio.CancelledError):
                await self._monitor
            self._monitor = None
        for state in list(self._agents.values()):
            _kill_process_tree(state.process)
        watchers = list(self._watchers.values())
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
        self._running = False


async def _forward_stream(stream: asyncio.StreamReader | None, sink: Any) -> None:
    if stream is None:
        return
    async for raw in stream:
        sink.write(raw.decode("utf-8", errors="replace"))
        sink.flush()


def _kill_process_tree(process: asyncio.subprocess.Process | None) -> None:
    if process is None or process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        with suppress(ProcessLookupError):
            process.kill()
