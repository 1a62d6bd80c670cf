"""Task board records as returned by the workspace API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Board columns a task moves through."""

    BACKLOG = "BACKLOG"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    BLOCKED = "BLOCKED"
    DONE = "DONE"


class TaskPriority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


PRIORITY_ORDER: tuple[TaskPriority, ...] = (
    TaskPriority.CRITICAL,
    TaskPriority.HIGH,
    TaskPriority.MEDIUM,
    TaskPriority.LOW,
)


@dataclass(slots=True)
class ChecklistItem:
    text: str
    done: bool = False


@dataclass(slots=True)
class TaskComment:
    author: str
    text: str
    created_at: datetime | None = None


@dataclass(slots=True)
class Task:
    """One unit of work on the board."""

    id: str
    title: str
    description: str = ""
    status: TaskStatus | None = TaskStatus.BACKLOG
    priority: TaskPriority | None = TaskPriority.MEDIUM
    assigned_to: str | None = None
    sprint_id: str | None = None
    pr_url: str | None = None
    acceptance_checklist: list[ChecklistItem] = field(default_factory=list)
    comments: list[TaskComment] = field(default_factory=list)
    locked_by: str | None = None
    lock_expires_at: datetime | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Task:
        """Build a task from the camelCase API payload.

        A missing priority means MEDIUM; an unrecognized one is kept as ``None``
        so dispatch can treat it as unranked.
        """

        raw_priority = payload.get("priority")
        priority: TaskPriority | None
        if raw_priority is None:
            priority = TaskPriority.MEDIUM
        else:
            priority = _enum_or_none(TaskPriority, raw_priority)

        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            status=_enum_or_none(TaskStatus, payload.get("status") or TaskStatus.BACKLOG.value),
            priority=priority,
            assigned_to=payload.get("assignedTo"),
            sprint_id=payload.get("sprintId"),
            pr_url=payload.get("prUrl"),
            acceptance_checklist=[
                ChecklistItem(text=str(item.get("text") or ""), done=bool(item.get("done")))
                for item in payload.get("acceptanceChecklist") or []
                if isinstance(item, dict)
            ],
            comments=[
                TaskComment(
                    author=str(item.get("author") or "unknown"),
                    text=str(item.get("text") or ""),
                    created_at=parse_timestamp(item.get("createdAt")),
                )
                for item in payload.get("comments") or []
                if isinstance(item, dict)
            ],
            locked_by=payload.get("lockedBy"),
            lock_expires_at=parse_timestamp(payload.get("lockExpiresAt")),
        )


@dataclass(slots=True)
class Sprint:
    id: str
    name: str
    status: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Sprint:
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or payload["id"]),
            status=payload.get("status"),
        )


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting the trailing ``Z`` form."""

    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring malformed timestamp %r", value)
        return None


def _enum_or_none(enum_cls: type[Enum], value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        logger.debug("Unknown %s value %r", enum_cls.__name__, value)
        return None
