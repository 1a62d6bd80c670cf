from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import allure
import pytest

from locus.api.models import Sprint, Task, TaskPriority
from locus.config import AgentSettings, ApiSettings, Settings
from locus.orchestrator import (
    AgentOrchestrator,
    OrchestratorAlreadyRunningError,
    OrchestratorEvent,
)

pytestmark = [
    allure.epic("Orchestrator"),
    allure.feature("Agent Lifecycle"),
]

WORKER_SCRIPT = """
import sys
from locus.agent.messages import encode_worker_message
print("argv: " + " ".join(sys.argv[1:]))
print(encode_worker_message("heartbeat", status="WORKING", taskId="1"))
print(encode_worker_message("stats", tasksCompleted=2, tasksFailed=1))
"""


async def _short_sleep(_seconds: float) -> None:
    await asyncio.sleep(0.01)


def _settings(tmp_path: Path, agent_count: int = 1) -> Settings:
    return Settings(
        project_path=tmp_path,
        workspace_id="ws-1",
        api=ApiSettings(base_url="https://api.example.com/api", api_key="key"),
        agent=AgentSettings(agent_count=agent_count, poll_interval_seconds=0.01),
    )


def _orchestrator(tmp_path: Path, fake_client, agent_count: int = 1) -> AgentOrchestrator:
    return AgentOrchestrator(
        _settings(tmp_path, agent_count),
        client=fake_client,
        worker_command=(sys.executable, "-c", WORKER_SCRIPT),
        sleep=_short_sleep,
    )


def _record(orchestrator: AgentOrchestrator, *events: OrchestratorEvent) -> list[tuple]:
    seen: list[tuple] = []
    for event in events:
        orchestrator.on(event, lambda payload, event=event: seen.append((event, payload)))
    return seen


def test_orchestrator_without_tasks_spawns_nothing(tmp_path: Path, fake_client) -> None:
    orchestrator = _orchestrator(tmp_path, fake_client)
    seen = _record(orchestrator, OrchestratorEvent.STARTED, OrchestratorEvent.AGENT_SPAWNED)

    asyncio.run(orchestrator.start())

    assert [event for event, _ in seen] == [OrchestratorEvent.STARTED]
    assert seen[0][1]["sprintId"] is None
    assert seen[0][1]["agentCount"] == 1
    assert orchestrator.is_running is False


def test_orchestrator_spawns_workers_and_reports_their_stats(
    tmp_path: Path, fake_client, capsys
) -> None:
    fake_client.active_sprint = Sprint(id="sp-1", name="Sprint 1")
    fake_client.available_tasks = [Task(id=str(index), title=f"T{index}") for index in range(3)]
    orchestrator = _orchestrator(tmp_path, fake_client, agent_count=2)
    seen = _record(
        orchestrator,
        OrchestratorEvent.AGENT_SPAWNED,
        OrchestratorEvent.AGENT_COMPLETED,
    )

    asyncio.run(orchestrator.start())

    spawned = [payload for event, payload in seen if event is OrchestratorEvent.AGENT_SPAWNED]
    completed = [payload for event, payload in seen if event is OrchestratorEvent.AGENT_COMPLETED]
    assert len(spawned) == 2
    assert len(completed) == 2
    assert {payload["agentId"] for payload in completed} == {
        payload["agentId"] for payload in spawned
    }
    for payload in completed:
        assert payload["status"] == "COMPLETED"
        assert payload["tasksCompleted"] == 2
        assert payload["tasksFailed"] == 1
    assert orchestrator.get_agent_states() == []

    out = capsys.readouterr().out
    assert "--workspace-id ws-1" in out
    assert "--sprint-id sp-1" in out
    assert "--provider claude" in out
    assert "@@locus" not in out


def test_agent_is_still_listed_when_its_completion_is_announced(
    tmp_path: Path, fake_client
) -> None:
    fake_client.available_tasks = [Task(id="1", title="T1")]
    orchestrator = _orchestrator(tmp_path, fake_client)
    listed_during_event: list[tuple[str, list[str]]] = []
    orchestrator.on(
        OrchestratorEvent.AGENT_COMPLETED,
        lambda payload: listed_during_event.append(
            (payload["agentId"], [agent.id for agent in orchestrator.get_agent_states()]),
        ),
    )

    asyncio.run(orchestrator.start())

    assert len(listed_during_event) == 1
    agent_id, listed = listed_during_event[0]
    assert agent_id in listed
    assert orchestrator.get_agent_states() == []


def test_orchestrator_rejects_reentrant_start(tmp_path: Path, fake_client) -> None:
    orchestrator = _orchestrator(tmp_path, fake_client)

    async def scenario() -> None:
        gate = asyncio.Event()

        async def blocked_sprint_lookup(workspace_id: str) -> None:
            await gate.wait()

        fake_client.get_active_sprint = blocked_sprint_lookup
        first = asyncio.create_task(orchestrator.start())
        await asyncio.sleep(0)
        with pytest.raises(OrchestratorAlreadyRunningError):
            await orchestrator.start()
        gate.set()
        await first

    asyncio.run(scenario())


def test_assign_task_prefers_priority_and_skips_processed(tmp_path: Path, fake_client) -> None:
    fake_client.available_tasks = [
        Task(id="1", title="Low", priority=TaskPriority.LOW),
        Task(id="2", title="Critical", priority=TaskPriority.CRITICAL),
    ]
    orchestrator = _orchestrator(tmp_path, fake_client)
    seen = _record(orchestrator, OrchestratorEvent.TASK_ASSIGNED, OrchestratorEvent.TASK_COMPLETED)

    async def scenario() -> tuple[Task | None, Task | None]:
        first = await orchestrator.assign_task_to_agent("agent-a")
        await orchestrator.complete_task(first.id, "agent-a", "All done")
        await orchestrator.complete_task(first.id, "agent-a", "All done")
        second = await orchestrator.assign_task_to_agent("agent-a")
        return first, second

    first, second = asyncio.run(scenario())

    assert first.id == "2"
    assert second.id == "1"
    assert seen[0] == (
        OrchestratorEvent.TASK_ASSIGNED,
        {"agentId": "agent-a", "taskId": "2", "title": "Critical"},
    )
    assert [args for args, _ in fake_client.named("update_task")] == [
        ("2", "ws-1", {"status": "IN_REVIEW"}),
    ]
    _, comment = fake_client.named("add_comment")[0]
    assert comment == {"author": "agent-a", "text": "✅ Task completed\n\nAll done"}
    assert orchestrator.get_stats()["processedTasks"] == 1


def test_fail_task_returns_task_to_backlog(tmp_path: Path, fake_client) -> None:
    orchestrator = _orchestrator(tmp_path, fake_client)
    seen = _record(orchestrator, OrchestratorEvent.TASK_FAILED)

    asyncio.run(orchestrator.fail_task("7", "agent-a", "tests failed"))

    args, _ = fake_client.named("update_task")[0]
    assert args == ("7", "ws-1", {"status": "BACKLOG", "assignedTo": None})
    _, comment = fake_client.named("add_comment")[0]
    assert comment["text"] == "❌ Agent failed: tests failed"
    assert seen == [
        (
            OrchestratorEvent.TASK_FAILED,
            {"agentId": "agent-a", "taskId": "7", "error": "tests failed"},
        ),
    ]


def test_complete_task_api_error_is_reported_not_recorded(tmp_path: Path, fake_client) -> None:
    fake_client.fail_updates = True
    orchestrator = _orchestrator(tmp_path, fake_client)
    errors: list[Exception] = []
    orchestrator.on(OrchestratorEvent.ERROR, errors.append)

    asyncio.run(orchestrator.complete_task("7", "agent-a", "done"))

    assert len(errors) == 1
    assert orchestrator.get_stats()["processedTasks"] == 0


def test_stop_is_idempotent_and_silent_when_idle(tmp_path: Path, fake_client) -> None:
    orchestrator = _orchestrator(tmp_path, fake_client)
    seen = _record(orchestrator, OrchestratorEvent.STOPPED)

    asyncio.run(orchestrator.stop())
    asyncio.run(orchestrator.stop())

    assert seen == []
    assert orchestrator.stop_agent("agent-missing") is False


def test_default_worker_command_runs_worker_module(tmp_path: Path, fake_client) -> None:
    orchestrator = AgentOrchestrator(_settings(tmp_path), client=fake_client)

    assert orchestrator.resolve_worker_command() == (sys.executable, "-m", "locus.agent.worker")
