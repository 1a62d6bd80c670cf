"""Per-task git worktrees so agents never share a checkout."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from locus.git.branches import branch_exists, task_branch_name
from locus.git.process import CommandError, CommandExecutor, CommandResult, run_command

logger = logging.getLogger(__name__)

DEFAULT_WORKTREE_ROOT = ".locus/worktrees"


@dataclass(slots=True)
class WorktreeInfo:
    path: Path
    branch: str
    base_branch: str
    base_commit: str


class WorktreeManager:
    """Create, commit, push and remove agent worktrees under ``<project>/.locus/worktrees``."""

    def __init__(
        self,
        project_path: Path | str,
        *,
        root_dir: str = DEFAULT_WORKTREE_ROOT,
        executor: CommandExecutor = run_command,
    ) -> None:
        self.project_path = Path(project_path).resolve()
        self.root_path = self.project_path / root_dir
        self._executor = executor

    def create(
        self,
        agent_id: str,
        task_id: str,
        title: str,
        base_branch: str | None = None,
    ) -> WorktreeInfo:
        branch = task_branch_name(task_id, title)
        path = self.root_path / f"{agent_id}-{task_id}"
        base = base_branch or self.current_branch(self.project_path)
        self.root_path.mkdir(parents=True, exist_ok=True)

        if path.exists():
            logger.warning("Removing stale worktree directory %s", path)
            self.remove(path, delete_branch=False)
        if branch_exists(self.project_path, branch, executor=self._executor):
            logger.warning("Deleting existing branch %s", branch)
            self._git(["worktree", "prune"], self.project_path)
            self._git(["branch", "-D", branch], self.project_path)

        self._git(["worktree", "add", str(path), "-b", branch, base], self.project_path)
        base_commit = self._git(["rev-parse", "HEAD"], path).strip()
        logger.info("Worktree created at %s (branch %s, base %s)", path, branch, base_commit[:8])
        return WorktreeInfo(path=path, branch=branch, base_branch=base, base_commit=base_commit)

    def has_changes(self, worktree: Path) -> bool:
        return bool(self._git(["status", "--porcelain"], worktree).strip())

    def commit(self, worktree: Path, message: str, base_commit: str | None = None) -> str | None:
        """Commit all changes; return the HEAD hash, or ``None`` when nothing changed.

        Commits the assistant already made itself count as changes when
        ``base_commit`` is given.
        """

        if not self.has_changes(worktree):
            head = self._git(["rev-parse", "HEAD"], worktree).strip()
            if base_commit and head != base_commit:
                logger.info("Assistant already committed changes (%s)", head[:8])
                return head
            logger.warning("No changes detected in worktree %s", worktree)
            return None

        self._git(["add", "-A"], worktree)
        staged = self._git(["diff", "--cached", "--name-only"], worktree).strip()
        if not staged:
            logger.warning("All changes were ignored by .gitignore, nothing to commit")
            return None
        logger.info("Staging %s file(s) for commit", len(staged.splitlines()))
        self._git(["commit", "-m", message], worktree)
        head = self._git(["rev-parse", "HEAD"], worktree).strip()
        logger.info("Committed %s", head[:8])
        return head

    def push(self, worktree: Path, remote: str = "origin") -> str:
        branch = self.current_branch(worktree)
        result = self._executor(["git", "push", "-u", remote, branch], worktree)
        if result.ok:
            return branch
        if "non-fast-forward" not in result.stderr and "rejected" not in result.stderr:
            raise CommandError(f"git push {branch} failed: {result.stderr.strip()}", result=result)
        logger.warning("Push rejected for %s, retrying with --force-with-lease", branch)
        self._executor(["git", "fetch", remote, branch], worktree)
        self._git(["push", "--force-with-lease", "-u", remote, branch], worktree)
        return branch

    def current_branch(self, worktree: Path) -> str:
        return self._git(["rev-parse", "--abbrev-ref", "HEAD"], worktree).strip()

    def remove(self, worktree: Path, *, delete_branch: bool = True) -> None:
        path = Path(worktree).resolve()
        branch: str | None = None
        if delete_branch and path.exists():
            branch = self.current_branch(path)
        result = self._executor(
            ["git", "worktree", "remove", str(path), "--force"], self.project_path
        )
        if not result.ok:
            logger.debug("git worktree remove failed, deleting %s manually", path)
            shutil.rmtree(path, ignore_errors=True)
        self._executor(["git", "worktree", "prune"], self.project_path)
        if branch and branch != "HEAD":
            self._executor(["git", "branch", "-D", branch], self.project_path)

    def remove_all(self) -> int:
        """Remove every managed worktree; return how many were removed."""

        if not self.root_path.is_dir():
            return 0
        removed = 0
        for entry in sorted(self.root_path.iterdir()):
            if entry.is_dir():
                self.remove(entry)
                removed += 1
        return removed

    def _git(self, args: list[str], cwd: Path) -> str:
        result: CommandResult = self._executor(["git", *args], cwd)
        if not result.ok:
            raise CommandError(
                f"git {' '.join(args)} failed: {result.stderr.strip()}",
                result=result,
            )
        return result.stdout
