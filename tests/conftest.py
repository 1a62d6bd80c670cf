"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from locus.api.client import ApiError
from locus.api.models import Sprint, Task
from locus.git.process import CommandResult

ECHO_AGENT_COMMAND: tuple[str, ...] = (sys.executable, "-m", "locus.ai.echo_agent")

_LOCUS_ENV = (
    "LOCUS_API_BASE",
    "LOCUS_API_KEY",
    "LOCUS_WORKSPACE_ID",
    "LOCUS_SPRINT_ID",
    "LOCUS_PROJECT_PATH",
    "LOCUS_PROVIDER",
    "LOCUS_MODEL",
    "LOCUS_AGENT_COUNT",
    "LOCUS_USE_WORKTREES",
    "LOCUS_AUTO_PUSH",
    "LOCUS_BASE_BRANCH",
    "LOCUS_RUNNER_TIMEOUT_SECONDS",
    "LOCUS_POLL_INTERVAL_SECONDS",
    "LOCUS_JOBS_CONFIG_PATH",
    "LOCUS_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_locus_env(monkeypatch):
    """Keep developer LOCUS_* variables from leaking into tests."""
    for name in _LOCUS_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def echo_command():
    """Command prefix that runs the deterministic echo assistant."""
    return ECHO_AGENT_COMMAND


@pytest.fixture()
def sleeps():
    """Recording replacement for asyncio.sleep."""
    recorded: list[float] = []

    async def _sleep(seconds: float) -> None:
        recorded.append(seconds)

    _sleep.calls = recorded
    return _sleep


class FakeExecutor:
    """Scripted stand-in for ``run_command``.

    Responses are matched by the longest registered argv prefix; anything
    unmatched succeeds with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[tuple[str, ...], Path, str | None]] = []
        self._responses: dict[tuple[str, ...], list[CommandResult]] = {}

    def respond(
        self,
        prefix: tuple[str, ...],
        *,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> None:
        self._responses.setdefault(prefix, []).append(
            CommandResult(args=prefix, returncode=returncode, stdout=stdout, stderr=stderr),
        )

    def __call__(self, args, cwd, *, input_text=None) -> CommandResult:
        argv = tuple(args)
        self.calls.append((argv, Path(cwd), input_text))
        matches = [prefix for prefix in self._responses if argv[: len(prefix)] == prefix]
        if not matches:
            return CommandResult(args=argv, returncode=0, stdout="", stderr="")
        queue = self._responses[max(matches, key=len)]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def argvs(self) -> list[tuple[str, ...]]:
        return [argv for argv, _cwd, _input in self.calls]


@pytest.fixture()
def fake_executor():
    return FakeExecutor()


class FakeClient:
    """In-memory stand-in for ``LocusClient`` that records every call.

    ``dispatch_queue`` entries are handed out in order; an ``ApiError`` entry
    is raised instead of returned. Setting ``fail_updates`` makes every
    update call raise.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple, dict]] = []
        self.available_tasks: list[Task] = []
        self.dispatch_queue: list[Task | ApiError | None] = []
        self.active_sprint: Sprint | None = None
        self.fail_updates = False
        self.fail_job_run_updates = False
        self.closed = False
        self._run_counter = 0

    def _record(self, name: str, *args, **kwargs) -> None:
        self.calls.append((name, args, kwargs))

    def named(self, name: str) -> list[tuple[tuple, dict]]:
        return [(args, kwargs) for call, args, kwargs in self.calls if call == name]

    async def aclose(self) -> None:
        self.closed = True

    async def __aenter__(self) -> FakeClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def get_active_sprint(self, workspace_id: str) -> Sprint | None:
        self._record("get_active_sprint", workspace_id)
        return self.active_sprint

    async def get_available_tasks(self, workspace_id: str, sprint_id: str | None = None):
        self._record("get_available_tasks", workspace_id, sprint_id)
        return list(self.available_tasks)

    async def get_task(self, task_id: str, workspace_id: str) -> Task:
        self._record("get_task", task_id, workspace_id)
        for task in self.available_tasks:
            if task.id == task_id:
                return task
        raise ApiError(f"GET task {task_id} returned HTTP 404", status_code=404)

    async def update_task(self, task_id: str, workspace_id: str, changes: dict) -> None:
        self._record("update_task", task_id, workspace_id, changes)
        if self.fail_updates:
            raise ApiError("PATCH task returned HTTP 500", status_code=500)

    async def add_comment(self, task_id: str, workspace_id: str, *, author: str, text: str):
        self._record("add_comment", task_id, workspace_id, author=author, text=text)

    async def dispatch(self, workspace_id: str, worker_id: str, sprint_id: str | None = None):
        self._record("dispatch", workspace_id, worker_id, sprint_id)
        if not self.dispatch_queue:
            return None
        item = self.dispatch_queue.pop(0)
        if isinstance(item, ApiError):
            raise item
        return item

    async def heartbeat(self, workspace_id, agent_id, current_task_id, status) -> None:
        self._record("heartbeat", workspace_id, agent_id, current_task_id, status)

    async def create_job_run(self, workspace_id: str, payload: dict) -> dict:
        self._record("create_job_run", workspace_id, payload)
        self._run_counter += 1
        return {"id": f"run-{self._run_counter}", **payload}

    async def update_job_run(self, workspace_id: str, run_id: str, payload: dict) -> dict:
        self._record("update_job_run", workspace_id, run_id, payload)
        if self.fail_job_run_updates:
            raise ApiError("PATCH job run returned HTTP 503", status_code=503)
        return {"id": run_id, **payload}

    async def create_suggestion(self, workspace_id: str, payload: dict) -> dict:
        self._record("create_suggestion", workspace_id, payload)
        return {"id": f"suggestion-{len(self.named('create_suggestion'))}", **payload}


@pytest.fixture()
def fake_client():
    return FakeClient()
