"""Maintenance job configuration, results and event names."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from locus.api.client import LocusClient


class JobType(str, Enum):
    LINT_SCAN = "LINT_SCAN"
    DEPENDENCY_CHECK = "DEPENDENCY_CHECK"
    TODO_CLEANUP = "TODO_CLEANUP"
    FLAKY_TEST_DETECTION = "FLAKY_TEST_DETECTION"
    CUSTOM = "CUSTOM"


class JobSeverity(str, Enum):
    AUTO_EXECUTE = "AUTO_EXECUTE"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"


class JobStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ChangeCategory(str, Enum):
    STYLE = "STYLE"
    FIX = "FIX"
    REFACTOR = "REFACTOR"
    DEPENDENCY = "DEPENDENCY"
    DATABASE = "DATABASE"
    AUTH = "AUTH"
    API = "API"
    FEATURE = "FEATURE"
    ARCHITECTURE = "ARCHITECTURE"


class RiskLevel(str, Enum):
    LOW = "LOW"
    HIGH = "HIGH"


class SuggestionType(str, Enum):
    CODE_FIX = "CODE_FIX"
    DEPENDENCY_UPDATE = "DEPENDENCY_UPDATE"
    TEST_FIX = "TEST_FIX"
    NEXT_STEP = "NEXT_STEP"


class JobEvent(str, Enum):
    JOB_STARTED = "JOB_STARTED"
    JOB_COMPLETED = "JOB_COMPLETED"
    JOB_FAILED = "JOB_FAILED"


class SchedulerEvent(str, Enum):
    SCHEDULER_STARTED = "SCHEDULER_STARTED"
    SCHEDULER_STOPPED = "SCHEDULER_STOPPED"
    JOB_SCHEDULED = "JOB_SCHEDULED"
    JOB_TRIGGERED = "JOB_TRIGGERED"
    JOB_SKIPPED = "JOB_SKIPPED"
    CONFIG_RELOADED = "CONFIG_RELOADED"


class JobHandlerNotFoundError(LookupError):
    pass


@dataclass(slots=True, frozen=True)
class JobSchedule:
    cron_expression: str
    enabled: bool = True


@dataclass(slots=True, frozen=True)
class JobConfig:
    """Read-only description of one job; reloads replace instances instead of mutating them."""

    type: JobType
    schedule: JobSchedule
    severity: JobSeverity = JobSeverity.REQUIRE_APPROVAL
    enabled: bool = True
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def schedulable(self) -> bool:
        return self.enabled and self.schedule.enabled


@dataclass(slots=True, frozen=True)
class AutonomyRule:
    category: ChangeCategory
    risk_level: RiskLevel
    auto_execute: bool


@dataclass(slots=True, frozen=True)
class SchedulerConfig:
    job_configs: tuple[JobConfig, ...] = ()
    autonomy_rules: tuple[AutonomyRule, ...] = ()


@dataclass(slots=True)
class JobSuggestion:
    type: SuggestionType
    title: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobResult:
    summary: str
    suggestions: list[JobSuggestion] = field(default_factory=list)
    files_changed: int = 0
    pr_url: str | None = None
    errors: list[str] | None = None

    def to_record(self) -> dict[str, Any]:
        """Return the ``result`` object stored on a completed run record."""

        record: dict[str, Any] = {"summary": self.summary, "filesChanged": self.files_changed}
        if self.pr_url:
            record["prUrl"] = self.pr_url
        if self.errors:
            record["errors"] = list(self.errors)
        return record


@dataclass(slots=True)
class JobContext:
    workspace_id: str
    project_path: Path
    config: JobConfig
    autonomy_rules: tuple[AutonomyRule, ...]
    client: LocusClient | None = None
