"""Job handler lookup by job type."""

from __future__ import annotations

from locus.jobs.base import BaseJob
from locus.jobs.models import JobType


class JobRegistry:
    def __init__(self) -> None:
        self._jobs: dict[JobType, BaseJob] = {}

    def register(self, job: BaseJob) -> None:
        self._jobs[job.type] = job

    def get(self, job_type: JobType) -> BaseJob | None:
        return self._jobs.get(job_type)

    def has(self, job_type: JobType) -> bool:
        return job_type in self._jobs

    def types(self) -> list[JobType]:
        return list(self._jobs)


def create_default_registry() -> JobRegistry:
    """Registry with every built-in scan registered."""

    from locus.jobs.scans.lint_scan import LintScanJob
    from locus.jobs.scans.todo_scan import TodoScanJob

    registry = JobRegistry()
    registry.register(LintScanJob())
    registry.register(TodoScanJob())
    return registry
