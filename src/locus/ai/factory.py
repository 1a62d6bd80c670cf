"""Runner construction by provider name."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from locus.ai.claude import ClaudeRunner
from locus.ai.cli_runner import CliRunner
from locus.ai.codex import CodexRunner
from locus.config import SUPPORTED_PROVIDERS

_RUNNERS: dict[str, type[CliRunner]] = {
    "claude": ClaudeRunner,
    "codex": CodexRunner,
}


def create_ai_runner(
    provider: str,
    project_path: Path | str,
    model: str | None = None,
    **options: Any,
) -> CliRunner:
    """Return a runner for provider; extra options go to the runner constructor."""

    runner_cls = _RUNNERS.get(provider.lower())
    if runner_cls is None:
        raise ValueError(
            f"Unsupported provider {provider!r}. "
            f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}.",
        )
    return runner_cls(project_path, model, **options)
