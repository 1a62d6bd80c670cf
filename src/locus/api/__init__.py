"""Workspace task API client and records."""

from locus.api.client import ApiError, LocusClient
from locus.api.models import (
    PRIORITY_ORDER,
    ChecklistItem,
    Sprint,
    Task,
    TaskComment,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "PRIORITY_ORDER",
    "ApiError",
    "ChecklistItem",
    "LocusClient",
    "Sprint",
    "Task",
    "TaskComment",
    "TaskPriority",
    "TaskStatus",
]
