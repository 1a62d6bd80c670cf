"""Cron-driven scheduler for maintenance jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from croniter import CroniterBadDateError, croniter

from locus.emitter import EventEmitter
from locus.jobs.models import AutonomyRule, JobConfig, JobType, SchedulerConfig, SchedulerEvent
from locus.jobs.runner import JobRunner

logger = logging.getLogger(__name__)

SKIP_REASON_IN_PROGRESS = "Previous run still in progress"


@dataclass(slots=True)
class ScheduledJob:
    config: JobConfig
    timer: asyncio.Task[None] | None = None
    next_run: datetime | None = None


class JobScheduler:
    """Fire each enabled job on its cron schedule, never overlapping runs of one type.

    Must be started from inside a running event loop. The in-flight guard
    outlives ``stop`` and ``reload`` so that a run still executing after a
    reload is not started a second time.
    """

    def __init__(
        self,
        runner: JobRunner,
        load_config: Callable[[], SchedulerConfig],
        *,
        emitter: EventEmitter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.runner = runner
        self.emitter = emitter or runner.emitter
        self._load_config = load_config
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._scheduled: dict[JobType, ScheduledJob] = {}
        self._configs: dict[JobType, JobConfig] = {}
        self._autonomy_rules: tuple[AutonomyRule, ...] = ()
        self._in_flight: set[JobType] = set()
        self._running = False

    def start(self) -> None:
        if self._running:
            return
        self._apply(self._load_config())
        self._running = True
        self.emitter.emit(SchedulerEvent.SCHEDULER_STARTED, {"jobCount": len(self._scheduled)})
        logger.info("Job scheduler started with %d job(s)", len(self._scheduled))

    def stop(self) -> None:
        if not self._running:
            return
        self._cancel_timers()
        self._running = False
        self.emitter.emit(SchedulerEvent.SCHEDULER_STOPPED, {})
        logger.info("Job scheduler stopped")

    def reload(self) -> None:
        """Re-read the configuration and reschedule every job from scratch.

        When the configuration cannot be read the current schedule stays in place.
        """

        previous_count = len(self._scheduled)
        try:
            config = self._load_config()
        except Exception:
            logger.exception(
                "Failed to reload job config; keeping %d scheduled job(s)", previous_count
            )
            return
        self._cancel_timers()
        self._apply(config)
        self._running = True
        self.emitter.emit(SchedulerEvent.SCHEDULER_STARTED, {"jobCount": len(self._scheduled)})
        self.emitter.emit(
            SchedulerEvent.CONFIG_RELOADED,
            {"previousJobCount": previous_count, "newJobCount": len(self._scheduled)},
        )
        logger.info(
            "Job config reloaded: %d -> %d scheduled job(s)",
            previous_count,
            len(self._scheduled),
        )

    def trigger_job(self, job_type: JobType) -> asyncio.Task[None] | None:
        """Start one run of ``job_type`` now; return its task, or ``None`` when skipped."""

        if job_type in self._in_flight:
            logger.info("Skipping %s: %s", job_type.value, SKIP_REASON_IN_PROGRESS)
            self.emitter.emit(
                SchedulerEvent.JOB_SKIPPED,
                {"jobType": job_type.value, "reason": SKIP_REASON_IN_PROGRESS},
            )
            return None

        config = self._configs.get(job_type)
        if config is None:
            logger.warning("No configuration for job %s; not triggering", job_type.value)
            return None

        self._in_flight.add(job_type)
        self.emitter.emit(SchedulerEvent.JOB_TRIGGERED, {"jobType": job_type.value})
        task = asyncio.get_running_loop().create_task(self._execute(config))
        task.add_done_callback(lambda _: self._in_flight.discard(job_type))
        return task

    def get_scheduled_jobs(self) -> list[ScheduledJob]:
        return list(self._scheduled.values())

    def is_running(self) -> bool:
        return self._running

    def is_in_flight(self, job_type: JobType) -> bool:
        return job_type in self._in_flight

    def _apply(self, config: SchedulerConfig) -> None:
        self._configs = {job.type: job for job in config.job_configs}
        self._autonomy_rules = config.autonomy_rules

        for job in config.job_configs:
            if not job.schedulable:
                logger.debug("Job %s is disabled; not scheduling", job.type.value)
                continue
            if not croniter.is_valid(job.schedule.cron_expression):
                logger.error(
                    "Invalid cron expression %r for job %s; skipping",
                    job.schedule.cron_expression,
                    job.type.value,
                )
                continue
            self._schedule(job)

    def _schedule(self, job: JobConfig) -> None:
        scheduled = ScheduledJob(config=job)
        try:
            scheduled.next_run = self._next_fire(job)
        except (CroniterBadDateError, ValueError) as error:
            logger.error(
                "Cron expression %r for job %s never fires (%s); skipping",
                job.schedule.cron_expression,
                job.type.value,
                error,
            )
            return
        scheduled.timer = asyncio.get_running_loop().create_task(self._timer(scheduled))
        self._scheduled[job.type] = scheduled
        self.emitter.emit(
            SchedulerEvent.JOB_SCHEDULED,
            {"jobType": job.type.value, "cronExpression": job.schedule.cron_expression},
        )
        logger.info(
            "Scheduled %s (%s), next run at %s",
            job.type.value,
            job.schedule.cron_expression,
            scheduled.next_run.isoformat(),
        )

    async def _timer(self, scheduled: ScheduledJob) -> None:
        while True:
            next_run = scheduled.next_run or self._next_fire(scheduled.config)
            delay = (next_run - self._clock()).total_seconds()
            await asyncio.sleep(max(delay, 0))
            self.trigger_job(scheduled.config.type)
            scheduled.next_run = self._next_fire(scheduled.config)

    def _next_fire(self, job: JobConfig) -> datetime:
        return croniter(job.schedule.cron_expression, self._clock()).get_next(datetime)

    async def _execute(self, config: JobConfig) -> None:
        try:
            await self.runner.run_job(config.type, config, self._autonomy_rules)
        except Exception:
            logger.exception("Scheduled job %s failed", config.type.value)

    def _cancel_timers(self) -> None:
        for scheduled in self._scheduled.values():
            if scheduled.timer is not None:
                scheduled.timer.cancel()
        self._scheduled.clear()
