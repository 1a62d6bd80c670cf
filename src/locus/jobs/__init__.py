"""Maintenance jobs: handlers, run recording and cron scheduling."""

from locus.jobs.base import BaseJob
from locus.jobs.config import config_loader, load_scheduler_config
from locus.jobs.models import (
    AutonomyRule,
    ChangeCategory,
    JobConfig,
    JobContext,
    JobEvent,
    JobHandlerNotFoundError,
    JobResult,
    JobSchedule,
    JobSeverity,
    JobStatus,
    JobSuggestion,
    JobType,
    RiskLevel,
    SchedulerConfig,
    SchedulerEvent,
    SuggestionType,
)
from locus.jobs.registry import JobRegistry, create_default_registry
from locus.jobs.runner import JobRunner
from locus.jobs.scheduler import JobScheduler, ScheduledJob

__all__ = [
    "AutonomyRule",
    "BaseJob",
    "ChangeCategory",
    "JobConfig",
    "JobContext",
    "JobEvent",
    "JobHandlerNotFoundError",
    "JobRegistry",
    "JobResult",
    "JobRunner",
    "JobSchedule",
    "JobScheduler",
    "JobSeverity",
    "JobStatus",
    "JobSuggestion",
    "JobType",
    "RiskLevel",
    "ScheduledJob",
    "SchedulerConfig",
    "SchedulerEvent",
    "SuggestionType",
    "config_loader",
    "create_default_registry",
    "load_scheduler_config",
]
