from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import allure

from locus.jobs import (
    BaseJob,
    JobConfig,
    JobContext,
    JobRegistry,
    JobResult,
    JobRunner,
    JobSchedule,
    JobScheduler,
    JobType,
    SchedulerConfig,
    SchedulerEvent,
)

pytestmark = [
    allure.epic("Maintenance Jobs"),
    allure.feature("Cron Scheduler"),
]


class GatedJob(BaseJob):
    """Job that blocks until released so overlapping triggers can be observed."""

    type = JobType.TODO_CLEANUP
    name = "Gated"

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.runs = 0

    async def run(self, context: JobContext) -> JobResult:
        self.runs += 1
        self.started.set()
        await self.release.wait()
        return JobResult(summary="done")


def _job(job_type: JobType, cron: str = "0 3 * * *", **kwargs) -> JobConfig:
    return JobConfig(type=job_type, schedule=JobSchedule(cron), **kwargs)


def _scheduler(fake_client, configs, job: BaseJob | None = None, **kwargs) -> JobScheduler:
    registry = JobRegistry()
    if job is not None:
        registry.register(job)
    runner = JobRunner(registry, fake_client, Path("/repo"), "ws-1")
    queue = list(configs)

    def load() -> SchedulerConfig:
        current = queue.pop(0) if len(queue) > 1 else queue[0]
        return SchedulerConfig(job_configs=tuple(current))

    return JobScheduler(runner, load, **kwargs)


def _record(scheduler: JobScheduler) -> list[tuple[SchedulerEvent, dict]]:
    seen: list[tuple[SchedulerEvent, dict]] = []
    for event in SchedulerEvent:
        scheduler.emitter.on(event, lambda payload, event=event: seen.append((event, payload)))
    return seen


def test_start_schedules_only_enabled_jobs_with_valid_cron(fake_client) -> None:
    configs = [
        [
            _job(JobType.LINT_SCAN, "*/10 * * * *"),
            _job(JobType.TODO_CLEANUP, enabled=False),
            _job(JobType.DEPENDENCY_CHECK, "not a cron"),
            JobConfig(type=JobType.CUSTOM, schedule=JobSchedule("0 4 * * *", enabled=False)),
        ],
    ]
    scheduler = _scheduler(fake_client, configs)
    seen = _record(scheduler)

    async def scenario() -> list[JobType]:
        scheduler.start()
        scheduled = [job.config.type for job in scheduler.get_scheduled_jobs()]
        assert all(job.next_run is not None for job in scheduler.get_scheduled_jobs())
        scheduler.stop()
        return scheduled

    assert asyncio.run(scenario()) == [JobType.LINT_SCAN]
    assert seen == [
        (SchedulerEvent.JOB_SCHEDULED, {"jobType": "LINT_SCAN", "cronExpression": "*/10 * * * *"}),
        (SchedulerEvent.SCHEDULER_STARTED, {"jobCount": 1}),
        (SchedulerEvent.SCHEDULER_STOPPED, {}),
    ]
    assert scheduler.is_running() is False


def test_overlapping_trigger_is_skipped(fake_client) -> None:
    job = GatedJob()
    scheduler = _scheduler(fake_client, [[_job(JobType.TODO_CLEANUP)]], job)
    seen = _record(scheduler)

    async def scenario() -> None:
        scheduler.start()
        first = scheduler.trigger_job(JobType.TODO_CLEANUP)
        await job.started.wait()
        assert scheduler.trigger_job(JobType.TODO_CLEANUP) is None
        assert scheduler.is_in_flight(JobType.TODO_CLEANUP)
        job.release.set()
        await first
        await asyncio.sleep(0)
        assert not scheduler.is_in_flight(JobType.TODO_CLEANUP)
        second = scheduler.trigger_job(JobType.TODO_CLEANUP)
        assert second is not None
        await second
        scheduler.stop()

    asyncio.run(scenario())

    skipped = [payload for event, payload in seen if event is SchedulerEvent.JOB_SKIPPED]
    assert skipped == [{"jobType": "TODO_CLEANUP", "reason": "Previous run still in progress"}]
    assert job.runs == 2


def test_trigger_unknown_job_is_ignored(fake_client) -> None:
    scheduler = _scheduler(fake_client, [[]])

    async def scenario() -> None:
        scheduler.start()
        assert scheduler.trigger_job(JobType.LINT_SCAN) is None
        scheduler.stop()

    asyncio.run(scenario())
    assert fake_client.calls == []


def test_reload_reschedules_and_keeps_in_flight_guard(fake_client) -> None:
    job = GatedJob()
    configs = [
        [_job(JobType.TODO_CLEANUP), _job(JobType.LINT_SCAN)],
        [_job(JobType.TODO_CLEANUP, "30 2 * * *")],
    ]
    scheduler = _scheduler(fake_client, configs, job)
    seen = _record(scheduler)

    async def scenario() -> None:
        scheduler.start()
        running = scheduler.trigger_job(JobType.TODO_CLEANUP)
        await job.started.wait()
        scheduler.reload()
        assert [item.config.type for item in scheduler.get_scheduled_jobs()] == [
            JobType.TODO_CLEANUP,
        ]
        assert scheduler.get_scheduled_jobs()[0].config.schedule.cron_expression == "30 2 * * *"
        assert scheduler.trigger_job(JobType.TODO_CLEANUP) is None
        job.release.set()
        await running
        scheduler.stop()

    asyncio.run(scenario())

    reloaded = [payload for event, payload in seen if event is SchedulerEvent.CONFIG_RELOADED]
    assert reloaded == [{"previousJobCount": 2, "newJobCount": 1}]
    assert job.runs == 1


def test_timer_fires_job_at_cron_time(fake_client) -> None:
    job = GatedJob()
    job.release.set()
    scheduler = _scheduler(
        fake_client,
        [[_job(JobType.TODO_CLEANUP, "0 10 * * *")]],
        job,
        clock=lambda: datetime(2026, 5, 1, 9, 59, 59, 950_000, tzinfo=UTC),
    )

    async def scenario() -> None:
        scheduler.start()
        await asyncio.wait_for(job.started.wait(), timeout=5)
        scheduler.stop()

    asyncio.run(scenario())

    assert job.runs >= 1
    assert fake_client.named("create_job_run")[0][0][1]["jobType"] == "TODO_CLEANUP"


def test_start_skips_cron_that_never_fires(fake_client) -> None:
    configs = [[_job(JobType.LINT_SCAN, "0 0 31 2 *"), _job(JobType.TODO_CLEANUP)]]
    scheduler = _scheduler(fake_client, configs)

    async def scenario() -> list[JobType]:
        scheduler.start()
        scheduled = [job.config.type for job in scheduler.get_scheduled_jobs()]
        scheduler.stop()
        return scheduled

    assert asyncio.run(scenario()) == [JobType.TODO_CLEANUP]


def test_reload_keeps_current_schedule_when_config_is_unreadable(fake_client) -> None:
    runner = JobRunner(JobRegistry(), fake_client, Path("/repo"), "ws-1")
    loads = iter([SchedulerConfig(job_configs=(_job(JobType.LINT_SCAN),))])

    def load() -> SchedulerConfig:
        config = next(loads, None)
        if config is None:
            raise ValueError("Expecting ',' delimiter: line 3 column 5")
        return config

    scheduler = JobScheduler(runner, load)
    seen = _record(scheduler)

    async def scenario() -> tuple[int, bool, bool]:
        scheduler.start()
        scheduler.reload()
        timer = scheduler.get_scheduled_jobs()[0].timer
        state = (len(scheduler.get_scheduled_jobs()), scheduler.is_running(), timer.done())
        scheduler.stop()
        return state

    assert asyncio.run(scenario()) == (1, True, False)
    assert SchedulerEvent.CONFIG_RELOADED not in [event for event, _ in seen]
