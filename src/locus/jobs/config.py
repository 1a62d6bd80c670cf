"""Load the maintenance job configuration file."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from locus.jobs.models import (
    AutonomyRule,
    ChangeCategory,
    JobConfig,
    JobSchedule,
    JobSeverity,
    JobType,
    RiskLevel,
    SchedulerConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_CRON_EXPRESSION = "0 3 * * *"


def load_scheduler_config(path: Path) -> SchedulerConfig:
    """Parse ``path`` into job configs and autonomy rules.

    A missing file yields an empty configuration. Unknown job types, jobs
    with an unknown severity and invalid autonomy rules are logged and skipped.
    """

    if not path.exists():
        logger.info("Job config %s not found; no jobs configured", path)
        return SchedulerConfig()
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Job config {path} must contain a JSON object")
    return parse_scheduler_config(raw)


def parse_scheduler_config(raw: dict[str, Any]) -> SchedulerConfig:
    jobs: list[JobConfig] = []
    for type_name, entry in (raw.get("jobs") or {}).items():
        try:
            job_type = JobType(type_name)
        except ValueError:
            logger.warning("Skipping unknown job type %r", type_name)
            continue
        try:
            jobs.append(_parse_job(job_type, entry or {}))
        except ValueError as error:
            logger.warning("Skipping job %s with invalid settings: %s", type_name, error)

    rules: list[AutonomyRule] = []
    for entry in raw.get("autonomyRules") or []:
        try:
            rules.append(
                AutonomyRule(
                    category=ChangeCategory(entry["category"]),
                    risk_level=RiskLevel(entry.get("riskLevel", RiskLevel.LOW.value)),
                    auto_execute=bool(entry.get("autoExecute", False)),
                ),
            )
        except (KeyError, ValueError):
            logger.warning("Skipping invalid autonomy rule %r", entry)
    return SchedulerConfig(job_configs=tuple(jobs), autonomy_rules=tuple(rules))


def config_loader(path: Path) -> Callable[[], SchedulerConfig]:
    """Return a zero-argument loader that re-reads ``path`` on every call."""

    return lambda: load_scheduler_config(path)


def _parse_job(job_type: JobType, entry: dict[str, Any]) -> JobConfig:
    schedule = entry.get("schedule") or {}
    severity = entry.get("severity", JobSeverity.REQUIRE_APPROVAL.value)
    return JobConfig(
        type=job_type,
        schedule=JobSchedule(
            cron_expression=str(schedule.get("cronExpression", DEFAULT_CRON_EXPRESSION)),
            enabled=bool(schedule.get("enabled", True)),
        ),
        severity=JobSeverity(severity),
        enabled=bool(entry.get("enabled", True)),
        options=dict(entry.get("options") or {}),
    )
