"""Deterministic per-task branch names and idempotent branch creation."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from locus.git.process import CommandError, CommandExecutor, run_command

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "task"
SLUG_MAX_LENGTH = 40

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(title: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    slug = _NON_SLUG.sub("-", title.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def task_branch_name(task_id: str, title: str) -> str:
    """Return ``task/<id>-<slug>``, or ``task/<id>`` when the title has no usable characters."""

    slug = slugify(title)
    return f"{BRANCH_PREFIX}/{task_id}-{slug}" if slug else f"{BRANCH_PREFIX}/{task_id}"


def branch_exists(
    repo_path: Path,
    branch: str,
    *,
    executor: CommandExecutor = run_command,
) -> bool:
    result = executor(
        ["git", "show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
        repo_path,
    )
    return result.ok


def ensure_branch(
    repo_path: Path,
    branch: str,
    base: str | None = None,
    *,
    executor: CommandExecutor = run_command,
) -> bool:
    """Create ``branch`` from ``base`` unless it exists; return whether it was created.

    The branch is never checked out, so the shared working copy keeps its HEAD.
    """

    if branch_exists(repo_path, branch, executor=executor):
        logger.debug("Branch %s already exists", branch)
        return False
    args = ["git", "branch", branch]
    if base:
        args.append(base)
    result = executor(args, repo_path)
    if not result.ok:
        raise CommandError(
            f"git branch {branch} failed: {result.stderr.strip()}",
            result=result,
        )
    logger.info("Created branch %s from %s", branch, base or "HEAD")
    return True
