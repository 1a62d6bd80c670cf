"""Git and GitHub CLI integration."""

from locus.git.branches import branch_exists, ensure_branch, slugify, task_branch_name
from locus.git.gh import GhClient, GhCommandError, Issue, Milestone, PullRequest
from locus.git.process import CommandError, CommandResult, run_command
from locus.git.rate_limit import RateLimiter, RateLimitLevel
from locus.git.worktree import WorktreeInfo, WorktreeManager

__all__ = [
    "CommandError",
    "CommandResult",
    "GhClient",
    "GhCommandError",
    "Issue",
    "Milestone",
    "PullRequest",
    "RateLimitLevel",
    "RateLimiter",
    "WorktreeInfo",
    "WorktreeManager",
    "branch_exists",
    "ensure_branch",
    "run_command",
    "slugify",
    "task_branch_name",
]
