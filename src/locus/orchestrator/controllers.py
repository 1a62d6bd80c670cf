"""Controller for the ``locus run`` command."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from locus.config import Settings, clamp_agent_count
from locus.orchestrator.models import OrchestratorEvent
from locus.orchestrator.orchestrator import AgentOrchestrator

Echo = Callable[[str], None]


@dataclass(slots=True)
class RunAgentsCommand:
    """CLI input for an orchestrator run; ``None`` keeps the environment value."""

    project_path: Path | None
    workspace_id: str | None
    sprint_id: str | None
    api_base: str | None
    api_key: str | None
    provider: str | None
    model: str | None
    agent_count: int | None
    use_worktrees: bool | None
    auto_push: bool | None
    base_branch: str | None


class OrchestratorCliController:
    """Runs the agent orchestrator and narrates its lifecycle events."""

    def run(self, command: RunAgentsCommand, *, echo: Echo) -> list[str]:
        settings = _settings(command)
        settings.validate_for_orchestrator()
        orchestrator = AgentOrchestrator(settings)
        _attach_narration(orchestrator, echo)
        totals = {"tasksCompleted": 0, "tasksFailed": 0}

        def on_agent_completed(payload: dict[str, Any]) -> None:
            for key in totals:
                totals[key] += payload[key]

        orchestrator.on(OrchestratorEvent.AGENT_COMPLETED, on_agent_completed)

        try:
            asyncio.run(_run_orchestrator(orchestrator))
        except KeyboardInterrupt:
            echo("Interrupted; agents stopped.")

        return [
            "Orchestrator summary: "
            f"completed={totals['tasksCompleted']} failed={totals['tasksFailed']}",
        ]


async def _run_orchestrator(orchestrator: AgentOrchestrator) -> None:
    try:
        await orchestrator.start()
    finally:
        await orchestrator.client.aclose()


def _settings(command: RunAgentsCommand) -> Settings:
    settings = Settings.from_env(project_path=command.project_path)
    if command.workspace_id:
        settings.workspace_id = command.workspace_id
    if command.sprint_id:
        settings.sprint_id = command.sprint_id
    if command.api_base:
        settings.api.base_url = command.api_base
    if command.api_key:
        settings.api.api_key = command.api_key
    if command.provider:
        settings.agent.provider = command.provider.lower()
    if command.model:
        settings.agent.model = command.model
    if command.agent_count is not None:
        settings.agent.agent_count = clamp_agent_count(command.agent_count)
    if command.use_worktrees is not None:
        settings.agent.use_worktrees = command.use_worktrees
    if command.auto_push is not None:
        settings.agent.auto_push = command.auto_push
    if command.base_branch:
        settings.agent.base_branch = command.base_branch
    settings.project_path = settings.project_path.resolve()
    return settings


def _attach_narration(orchestrator: AgentOrchestrator, echo: Echo) -> None:
    def on_started(payload: dict[str, Any]) -> None:
        sprint = payload.get("sprintId") or "all workspace tasks"
        echo(f"Orchestrator started ({sprint})")

    def on_spawned(payload: dict[str, Any]) -> None:
        echo(f"Agent spawned: {payload['agentId']}")

    def on_task_assigned(payload: dict[str, Any]) -> None:
        echo(f"Task assigned to {payload['agentId']}: {payload['title']}")

    def on_agent_completed(payload: dict[str, Any]) -> None:
        echo(
            f"Agent finished: {payload['agentId']} status={payload['status']} "
            f"completed={payload['tasksCompleted']} failed={payload['tasksFailed']}",
        )

    def on_stale(payload: dict[str, Any]) -> None:
        echo(f"Agent stale, killed: {payload['agentId']}")

    orchestrator.on(OrchestratorEvent.STARTED, on_started)
    orchestrator.on(OrchestratorEvent.AGENT_SPAWNED, on_spawned)
    orchestrator.on(OrchestratorEvent.TASK_ASSIGNED, on_task_assigned)
    orchestrator.on(OrchestratorEvent.AGENT_COMPLETED, on_agent_completed)
    orchestrator.on(OrchestratorEvent.AGENT_STALE, on_stale)
