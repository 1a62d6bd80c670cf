"""Execute registered job handlers and record each run with the task API."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from locus.api.client import LocusClient
from locus.emitter import EventEmitter
from locus.jobs.models import (
    AutonomyRule,
    JobConfig,
    JobContext,
    JobEvent,
    JobHandlerNotFoundError,
    JobResult,
    JobStatus,
    JobType,
)
from locus.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)


class JobRunner:
    def __init__(
        self,
        registry: JobRegistry,
        client: LocusClient,
        project_path: Path,
        workspace_id: str,
        *,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.project_path = project_path
        self.workspace_id = workspace_id
        self.emitter = emitter or EventEmitter()

    async def run_job(
        self,
        job_type: JobType,
        config: JobConfig,
        autonomy_rules: Iterable[AutonomyRule] = (),
    ) -> JobResult:
        """Run one job and persist its run record.

        A handler error, or a failure to store its result, marks the run FAILED
        and is re-raised unchanged, even when recording the failure itself fails.
        """

        handler = self.registry.get(job_type)
        if handler is None:
            raise JobHandlerNotFoundError(f"No job handler registered for type: {job_type.value}")

        run = await self.client.create_job_run(
            self.workspace_id,
            {
                "jobType": job_type.value,
                "status": JobStatus.RUNNING.value,
                "startedAt": _now_iso(),
            },
        )
        run_id = str(run.get("id", ""))
        self.emitter.emit(JobEvent.JOB_STARTED, {"jobType": job_type.value, "jobRunId": run_id})
        logger.info("Job %s started (run %s)", job_type.value, run_id or "-")

        context = JobContext(
            workspace_id=self.workspace_id,
            project_path=self.project_path,
            config=config,
            autonomy_rules=tuple(autonomy_rules),
            client=self.client,
        )

        try:
            result = await handler.run(context)
            await self.client.update_job_run(
                self.workspace_id,
                run_id,
                {
                    "status": JobStatus.COMPLETED.value,
                    "completedAt": _now_iso(),
                    "result": result.to_record(),
                },
            )
            for suggestion in result.suggestions:
                await self.client.create_suggestion(
                    self.workspace_id,
                    {
                        "type": suggestion.type.value,
                        "title": suggestion.title,
                        "description": suggestion.description,
                        "jobRunId": run_id,
                        "metadata": suggestion.metadata,
                    },
                )
        except Exception as error:
            await self._record_failure(job_type, run_id, error)
            self.emitter.emit(
                JobEvent.JOB_FAILED,
                {"jobType": job_type.value, "jobRunId": run_id, "error": str(error)},
            )
            raise

        self.emitter.emit(
            JobEvent.JOB_COMPLETED,
            {"jobType": job_type.value, "jobRunId": run_id, "result": result},
        )
        logger.info("Job %s completed: %s", job_type.value, result.summary)
        return result

    async def run_all_enabled(
        self,
        configs: Iterable[JobConfig],
        autonomy_rules: Iterable[AutonomyRule] = (),
    ) -> dict[JobType, JobResult]:
        """Run every enabled job with a handler; failed jobs are left out of the result."""

        rules = tuple(autonomy_rules)
        results: dict[JobType, JobResult] = {}
        for config in configs:
            if not config.enabled or not self.registry.has(config.type):
                continue
            try:
                results[config.type] = await self.run_job(config.type, config, rules)
            except Exception:
                logger.exception("Job %s failed", config.type.value)
        return results

    async def _record_failure(self, job_type: JobType, run_id: str, error: Exception) -> None:
        payload: dict[str, Any] = {
            "status": JobStatus.FAILED.value,
            "completedAt": _now_iso(),
            "error": str(error),
        }
        try:
            await self.client.update_job_run(self.workspace_id, run_id, payload)
        except Exception as update_error:
            logger.warning(
                "Failed to record failure of job %s (run %s): %s",
                job_type.value,
                run_id,
                update_error,
            )


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()
