"""Task pick order and agent locks."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from locus.api.models import PRIORITY_ORDER, Task

DEFAULT_LOCK_TTL_SECONDS = 3_600


@dataclass(slots=True, frozen=True)
class TaskLock:
    """An agent's claim on a task; ignorable once ``expires_at`` has passed."""

    task_id: str
    agent_id: str
    expires_at: datetime

    @classmethod
    def acquire(
        cls,
        task_id: str,
        agent_id: str,
        *,
        ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        now: datetime | None = None,
    ) -> TaskLock:
        current = now or datetime.now(UTC)
        expires_at = current + timedelta(seconds=ttl_seconds)
        return cls(task_id=task_id, agent_id=agent_id, expires_at=expires_at)

    @classmethod
    def from_task(cls, task: Task) -> TaskLock | None:
        if not task.locked_by or task.lock_expires_at is None:
            return None
        return cls(task_id=task.id, agent_id=task.locked_by, expires_at=task.lock_expires_at)

    def is_expired(self, now: datetime | None = None) -> bool:
        current = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return current >= expires_at

    def held_by_other(self, agent_id: str, now: datetime | None = None) -> bool:
        return self.agent_id != agent_id and not self.is_expired(now)


def order_by_priority(tasks: Iterable[Task]) -> list[Task]:
    """Sort CRITICAL first; ties keep discovery order and unranked tasks go last."""

    rank = {priority: index for index, priority in enumerate(PRIORITY_ORDER)}
    return sorted(tasks, key=lambda task: rank.get(task.priority, len(PRIORITY_ORDER)))


def pick_next_task(
    tasks: Sequence[Task],
    *,
    agent_id: str,
    processed: Iterable[str] = (),
    now: datetime | None = None,
) -> Task | None:
    """Choose the next task for ``agent_id``.

    Tasks already processed in this run, or locked by another agent under a
    live lock, are skipped. Without any ranked candidate the first eligible
    task is returned.
    """

    done = set(processed)
    candidates = [
        task
        for task in tasks
        if task.id not in done
        and not ((lock := TaskLock.from_task(task)) and lock.held_by_other(agent_id, now))
    ]
    if not candidates:
        return None
    ranked = [task for task in candidates if task.priority in PRIORITY_ORDER]
    if not ranked:
        return candidates[0]
    return order_by_priority(ranked)[0]
