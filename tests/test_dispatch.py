from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure

from locus.agent.dispatch import TaskLock, order_by_priority, pick_next_task
from locus.agent.messages import MESSAGE_PREFIX, decode_worker_message, encode_worker_message
from locus.agent.prompt_builder import COMPLETION_MARKER, PromptBuilder
from locus.api.models import ChecklistItem, Task, TaskComment, TaskPriority

pytestmark = [
    allure.epic("Agents"),
    allure.feature("Task Dispatch and Prompts"),
]

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


def _task(task_id: str, priority: TaskPriority | None = TaskPriority.MEDIUM, **kwargs) -> Task:
    return Task(id=task_id, title=f"Task {task_id}", priority=priority, **kwargs)


def test_pick_next_task_prefers_highest_priority() -> None:
    tasks = [
        _task("1", TaskPriority.LOW),
        _task("2", TaskPriority.CRITICAL),
        _task("3", TaskPriority.HIGH),
    ]

    assert pick_next_task(tasks, agent_id="agent-a", now=NOW).id == "2"


def test_order_by_priority_keeps_discovery_order_for_ties() -> None:
    tasks = [
        _task("a", TaskPriority.MEDIUM),
        _task("b", TaskPriority.HIGH),
        _task("c", TaskPriority.MEDIUM),
        _task("d", None),
        _task("e", TaskPriority.HIGH),
    ]

    assert [task.id for task in order_by_priority(tasks)] == ["b", "e", "a", "c", "d"]


def test_pick_next_task_falls_back_to_first_unranked_task() -> None:
    tasks = [_task("x", None), _task("y", None)]

    assert pick_next_task(tasks, agent_id="agent-a", now=NOW).id == "x"


def test_pick_next_task_skips_processed_tasks() -> None:
    tasks = [_task("1", TaskPriority.CRITICAL), _task("2", TaskPriority.LOW)]

    assert pick_next_task(tasks, agent_id="agent-a", processed={"1"}, now=NOW).id == "2"
    assert pick_next_task(tasks, agent_id="agent-a", processed={"1", "2"}, now=NOW) is None


def test_pick_next_task_respects_live_locks_of_other_agents() -> None:
    locked = _task(
        "1",
        TaskPriority.CRITICAL,
        locked_by="agent-b",
        lock_expires_at=NOW + timedelta(minutes=10),
    )
    tasks = [locked, _task("2", TaskPriority.LOW)]

    assert pick_next_task(tasks, agent_id="agent-a", now=NOW).id == "2"
    assert pick_next_task(tasks, agent_id="agent-b", now=NOW).id == "1"


def test_pick_next_task_ignores_expired_locks() -> None:
    stale = _task(
        "1",
        TaskPriority.CRITICAL,
        locked_by="agent-b",
        lock_expires_at=NOW - timedelta(seconds=1),
    )

    assert pick_next_task([stale], agent_id="agent-a", now=NOW).id == "1"


def test_task_lock_treats_naive_expiry_as_utc() -> None:
    lock = TaskLock(task_id="1", agent_id="agent-b", expires_at=datetime(2026, 5, 1, 11, 0))

    assert lock.is_expired(NOW)
    assert not lock.held_by_other("agent-a", NOW)


def test_task_lock_acquire_uses_ttl() -> None:
    lock = TaskLock.acquire("1", "agent-a", ttl_seconds=60, now=NOW)

    assert lock.expires_at == NOW + timedelta(seconds=60)
    assert not lock.is_expired(NOW + timedelta(seconds=59))
    assert lock.is_expired(NOW + timedelta(seconds=60))


def test_task_lock_from_task_requires_owner_and_expiry() -> None:
    assert TaskLock.from_task(_task("1", locked_by="agent-b")) is None
    lock = TaskLock.from_task(_task("1", locked_by="agent-b", lock_expires_at=NOW))
    assert lock == TaskLock(task_id="1", agent_id="agent-b", expires_at=NOW)


def test_prompt_includes_task_checklist_comments_and_marker(tmp_path: Path) -> None:
    (tmp_path / "CLAUDE.md").write_text("Use the service layer for all database access.", "utf-8")
    comments = [
        TaskComment(author=f"reviewer{index}", text=f"note {index}") for index in range(5)
    ]
    task = Task(
        id="9",
        title="Add export",
        description="Export reports as CSV.",
        acceptance_checklist=[
            ChecklistItem("CSV download works", done=True),
            ChecklistItem("Tests added"),
        ],
        comments=comments,
    )

    prompt = PromptBuilder(tmp_path).build(task)

    assert prompt.startswith("# Task: Add export\n\n## Description\nExport reports as CSV.")
    assert "## Project Context (Local)\nUse the service layer" in prompt
    assert "- [x] CSV download works\n- [ ] Tests added" in prompt
    assert "note 0" not in prompt
    assert "note 1" not in prompt
    assert "### reviewer4 (unknown)\nnote 4" in prompt
    assert prompt.rstrip().endswith(COMPLETION_MARKER)


def test_prompt_falls_back_to_truncated_readme(tmp_path: Path) -> None:
    (tmp_path / "CLAUDE.md").write_text("short", "utf-8")
    (tmp_path / "README.md").write_text("r" * 1_500, "utf-8")

    prompt = PromptBuilder(tmp_path).build(Task(id="1", title="Anything"))

    assert "## Description\nNo description provided." in prompt
    assert "## Project Context (README Fallback)\n" + "r" * 1_000 + "\n...(truncated)..." in prompt


def test_generic_prompt_without_context_files(tmp_path: Path) -> None:
    prompt = PromptBuilder(tmp_path).build_generic("explain the build")

    assert prompt.startswith("# Direct Execution\n\n## Prompt\nexplain the build\n\n")
    assert "Project Context" not in prompt
    assert COMPLETION_MARKER in prompt


def test_worker_messages_round_trip_and_ignore_plain_output() -> None:
    line = encode_worker_message("stats", tasksCompleted=2, tasksFailed=0)

    assert line.startswith(MESSAGE_PREFIX)
    assert decode_worker_message(line) == {"type": "stats", "tasksCompleted": 2, "tasksFailed": 0}
    assert decode_worker_message("plain log line") is None
    assert decode_worker_message(MESSAGE_PREFIX + "{not json") is None
    assert decode_worker_message(MESSAGE_PREFIX + '["list"]') is None
    assert decode_worker_message(MESSAGE_PREFIX + '{"type": 3}') is None
