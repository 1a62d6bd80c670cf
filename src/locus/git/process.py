"""Synchronous command execution for ``git`` and ``gh``."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_SECONDS = 120.0


@dataclass(slots=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    def __call__(
        self,
        args: Sequence[str],
        cwd: Path,
        *,
        input_text: str | None = None,
    ) -> CommandResult: ...


class CommandError(RuntimeError):
    """A ``git``/``gh`` invocation exited non-zero."""

    def __init__(self, message: str, *, result: CommandResult) -> None:
        super().__init__(message)
        self.result = result


def run_command(
    args: Sequence[str],
    cwd: Path,
    *,
    input_text: str | None = None,
) -> CommandResult:
    """Run ``args`` in ``cwd`` capturing text output; never raises on exit code."""

    argv = tuple(args)
    try:
        completed = subprocess.run(  # noqa: S603
            argv,
            cwd=str(cwd),
            input=input_text,
            capture_output=True,
            text=True,
            timeout=DEFAULT_COMMAND_TIMEOUT_SECONDS,
            check=False,
        )
    except FileNotFoundError as error:
        return CommandResult(args=argv, returncode=127, stdout="", stderr=str(error))
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %.0fs", argv[0], DEFAULT_COMMAND_TIMEOUT_SECONDS)
        return CommandResult(args=argv, returncode=124, stdout="", stderr="command timed out")
    return CommandResult(
        args=argv,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
