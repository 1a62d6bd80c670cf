"""Agent worker process and the helpers it uses to pick and describe tasks."""

from locus.agent.dispatch import TaskLock, order_by_priority, pick_next_task
from locus.agent.prompt_builder import COMPLETION_MARKER, PromptBuilder

__all__ = [
    "COMPLETION_MARKER",
    "PromptBuilder",
    "TaskLock",
    "order_by_priority",
    "pick_next_task",
]
