"""Agent orchestration: spawn workers, dispatch tasks, reap processes."""

from locus.orchestrator.models import (
    AgentState,
    AgentStatus,
    OrchestratorAlreadyRunningError,
    OrchestratorEvent,
    WorkerEntrypointNotFoundError,
)
from locus.orchestrator.orchestrator import AgentOrchestrator

__all__ = [
    "AgentOrchestrator",
    "AgentState",
    "AgentStatus",
    "OrchestratorAlreadyRunningError",
    "OrchestratorEvent",
    "WorkerEntrypointNotFoundError",
]
