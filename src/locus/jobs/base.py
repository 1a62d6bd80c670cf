"""Base class for maintenance job handlers."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import ClassVar

from locus.git.process import CommandExecutor, CommandResult, run_command
from locus.jobs.models import AutonomyRule, ChangeCategory, JobContext, JobResult, JobType


class BaseJob(ABC):
    type: ClassVar[JobType]
    name: ClassVar[str]

    def __init__(self, *, executor: CommandExecutor = run_command) -> None:
        self._executor = executor

    @abstractmethod
    async def run(self, context: JobContext) -> JobResult:
        """Execute the job once and describe what was found or changed."""

    @staticmethod
    def should_auto_execute(category: ChangeCategory, rules: Iterable[AutonomyRule]) -> bool:
        """Return whether changes of ``category`` may be applied without approval.

        Categories without a rule always require approval.
        """

        for rule in rules:
            if rule.category is category:
                return rule.auto_execute
        return False

    async def exec_command(self, args: Sequence[str], cwd: Path) -> CommandResult:
        return await asyncio.to_thread(self._executor, args, cwd)
