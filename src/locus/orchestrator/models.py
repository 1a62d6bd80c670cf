"""Agent bookkeeping records and event names for the orchestrator."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class AgentStatus(str, Enum):
    IDLE = "IDLE"
    WORKING = "WORKING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class OrchestratorEvent(str, Enum):
    """Events emitted by :class:`~locus.orchestrator.AgentOrchestrator`."""

    STARTED = "started"
    AGENT_SPAWNED = "agent:spawned"
    TASK_ASSIGNED = "task:assigned"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    AGENT_COMPLETED = "agent:completed"
    AGENT_STALE = "agent:stale"
    STOPPED = "stopped"
    ERROR = "error"


class OrchestratorAlreadyRunningError(RuntimeError):
    pass


class WorkerEntrypointNotFoundError(RuntimeError):
    pass


@dataclass(slots=True)
class AgentState:
    """One spawned worker as seen by the orchestrator.

    ``current_task_id`` is set exactly while ``status`` is WORKING; use
    :meth:`start_task` and :meth:`finish_task` to keep the two in step.
    """

    id: str
    status: AgentStatus = AgentStatus.IDLE
    current_task_id: str | None = None
    tasks_completed: int = 0
    tasks_failed: int = 0
    last_heartbeat: datetime = field(default_factory=lambda: datetime.now(UTC))
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)

    def start_task(self, task_id: str) -> None:
        self.status = AgentStatus.WORKING
        self.current_task_id = task_id

    def finish_task(self) -> None:
        self.status = AgentStatus.IDLE
        self.current_task_id = None

    def touch(self) -> None:
        self.last_heartbeat = datetime.now(UTC)

    def to_summary(self) -> dict[str, Any]:
        return {
            "agentId": self.id,
            "status": self.status.value,
            "currentTaskId": self.current_task_id,
            "tasksCompleted": self.tasks_completed,
            "tasksFailed": self.tasks_failed,
            "lastHeartbeat": self.last_heartbeat.isoformat(),
        }
