"""Controllers for ``locus jobs`` commands."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from locus.api.client import LocusClient
from locus.config import Settings
from locus.jobs.config import DEFAULT_CRON_EXPRESSION, config_loader, load_scheduler_config
from locus.jobs.models import (
    JobConfig,
    JobEvent,
    JobResult,
    JobSchedule,
    JobType,
    SchedulerConfig,
    SchedulerEvent,
)
from locus.jobs.registry import JobRegistry, create_default_registry
from locus.jobs.runner import JobRunner
from locus.jobs.scheduler import JobScheduler

Echo = Callable[[str], None]


@dataclass(slots=True)
class JobsListCommand:
    """CLI input for job configuration listing."""

    project_path: Path | None
    config_path: Path | None


@dataclass(slots=True)
class JobsRunCommand:
    """CLI input for an immediate job run; no job type means every enabled job."""

    project_path: Path | None
    config_path: Path | None
    job_type: str | None


@dataclass(slots=True)
class JobsScheduleCommand:
    """CLI input for the scheduler daemon."""

    project_path: Path | None
    config_path: Path | None


class JobsCliController:
    """Lists, runs and schedules maintenance jobs."""

    def __init__(self, registry_factory: Callable[[], JobRegistry] = create_default_registry):
        self._registry_factory = registry_factory

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        settings = _settings(command.project_path, command.config_path)
        config = load_scheduler_config(settings.jobs.config_path)
        registry = self._registry_factory()
        if not config.job_configs:
            return [f"No jobs configured in {settings.jobs.config_path}"]

        lines = [f"Jobs from {settings.jobs.config_path}:"]
        for job in config.job_configs:
            state = "scheduled" if job.schedulable else "disabled"
            handler = "" if registry.has(job.type) else " (no handler)"
            lines.append(
                f"- {job.type.value}: cron={job.schedule.cron_expression} "
                f"state={state} severity={job.severity.value}{handler}",
            )
        for rule in config.autonomy_rules:
            mode = "auto" if rule.auto_execute else "approval"
            lines.append(f"  rule {rule.category.value}/{rule.risk_level.value}: {mode}")
        return lines

    def run_jobs(self, command: JobsRunCommand) -> list[str]:
        settings = _settings(command.project_path, command.config_path)
        settings.validate_for_jobs()
        config = load_scheduler_config(settings.jobs.config_path)
        registry = self._registry_factory()

        if command.job_type is None:
            results = asyncio.run(self._run_all(settings, registry, config))
            if not results:
                return ["No enabled jobs ran successfully."]
            return [_result_line(job_type, result) for job_type, result in results.items()]

        job_type = JobType(command.job_type.upper())
        job_config = next(
            (job for job in config.job_configs if job.type is job_type),
            JobConfig(type=job_type, schedule=JobSchedule(DEFAULT_CRON_EXPRESSION)),
        )
        result = asyncio.run(self._run_one(settings, registry, config, job_config))
        return [_result_line(job_type, result), *_suggestion_lines(result)]

    def schedule(self, command: JobsScheduleCommand, *, echo: Echo) -> list[str]:
        """Run the scheduler until interrupted; SIGHUP reloads the job configuration."""

        settings = _settings(command.project_path, command.config_path)
        settings.validate_for_jobs()
        registry = self._registry_factory()
        asyncio.run(self._serve(settings, registry, echo))
        return ["Job scheduler stopped."]

    async def _run_all(
        self,
        settings: Settings,
        registry: JobRegistry,
        config: SchedulerConfig,
    ) -> dict[JobType, JobResult]:
        async with _client(settings) as client:
            runner = JobRunner(registry, client, settings.project_path, settings.workspace_id)
            return await runner.run_all_enabled(config.job_configs, config.autonomy_rules)

    async def _run_one(
        self,
        settings: Settings,
        registry: JobRegistry,
        config: SchedulerConfig,
        job_config: JobConfig,
    ) -> JobResult:
        async with _client(settings) as client:
            runner = JobRunner(registry, client, settings.project_path, settings.workspace_id)
            return await runner.run_job(job_config.type, job_config, config.autonomy_rules)

    async def _serve(self, settings: Settings, registry: JobRegistry, echo: Echo) -> None:
        async with _client(settings) as client:
            runner = JobRunner(registry, client, settings.project_path, settings.workspace_id)
            scheduler = JobScheduler(runner, config_loader(settings.jobs.config_path))
            _attach_narration(scheduler, echo)

            loop = asyncio.get_running_loop()
            stopped = asyncio.Event()
            loop.add_signal_handler(signal.SIGHUP, scheduler.reload)
            loop.add_signal_handler(signal.SIGTERM, stopped.set)
            loop.add_signal_handler(signal.SIGINT, stopped.set)
            try:
                scheduler.start()
                await stopped.wait()
            finally:
                scheduler.stop()
                for signum in (signal.SIGHUP, signal.SIGTERM, signal.SIGINT):
                    with suppress(ValueError):
                        loop.remove_signal_handler(signum)


def _settings(project_path: Path | None, config_path: Path | None) -> Settings:
    settings = Settings.from_env(project_path=project_path)
    settings.project_path = settings.project_path.resolve()
    if config_path is not None:
        settings.jobs.config_path = config_path
    return settings


def _client(settings: Settings) -> LocusClient:
    return LocusClient(
        settings.api.base_url,
        settings.api.api_key,
        timeout_seconds=settings.api.timeout_seconds,
        max_retries=settings.api.max_retries,
    )


def _result_line(job_type: JobType, result: JobResult) -> str:
    line = f"{job_type.value}: {result.summary}"
    if result.pr_url:
        line += f" ({result.pr_url})"
    return line


def _suggestion_lines(result: JobResult) -> list[str]:
    return [f"  - {suggestion.title}" for suggestion in result.suggestions]


def _attach_narration(scheduler: JobScheduler, echo: Echo) -> None:
    def on_scheduled(payload: dict[str, Any]) -> None:
        echo(f"Scheduled {payload['jobType']} ({payload['cronExpression']})")

    def on_triggered(payload: dict[str, Any]) -> None:
        echo(f"Running {payload['jobType']}")

    def on_skipped(payload: dict[str, Any]) -> None:
        echo(f"Skipped {payload['jobType']}: {payload['reason']}")

    def on_completed(payload: dict[str, Any]) -> None:
        echo(f"{payload['jobType']} completed: {payload['result'].summary}")

    def on_failed(payload: dict[str, Any]) -> None:
        echo(f"{payload['jobType']} failed: {payload['error']}")

    def on_reloaded(payload: dict[str, Any]) -> None:
        echo(f"Config reloaded: {payload['previousJobCount']} -> {payload['newJobCount']} job(s)")

    emitter = scheduler.emitter
    emitter.on(SchedulerEvent.JOB_SCHEDULED, on_scheduled)
    emitter.on(SchedulerEvent.JOB_TRIGGERED, on_triggered)
    emitter.on(SchedulerEvent.JOB_SKIPPED, on_skipped)
    emitter.on(SchedulerEvent.CONFIG_RELOADED, on_reloaded)
    emitter.on(JobEvent.JOB_COMPLETED, on_completed)
    emitter.on(JobEvent.JOB_FAILED, on_failed)
