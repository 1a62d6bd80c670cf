"""GitHub CLI wrapper: every ``gh`` invocation goes through :meth:`GhClient._call`."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from locus.git.process import CommandExecutor, CommandResult, run_command
from locus.git.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("rate limit",)
ISSUE_FIELDS = "number,title,body,state,labels,milestone,assignees,url,createdAt,updatedAt"
PR_FIELDS = "number,title,body,state,headRefName,baseRefName,labels,url,createdAt"
MILESTONE_PAGE_SIZE = 100

ReviewEvent = Literal["APPROVE", "REQUEST_CHANGES", "COMMENT"]
ItemState = Literal["open", "closed", "all"]

_ISSUE_NUMBER = re.compile(r"/issues/(\d+)")
_PR_NUMBER = re.compile(r"/pull/(\d+)")


class GhCommandError(RuntimeError):
    """``gh`` exited non-zero."""

    def __init__(self, message: str, *, stderr: str = "", rate_limited: bool = False) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.rate_limited = rate_limited


@dataclass(slots=True)
class Issue:
    number: int
    title: str
    body: str
    state: str
    url: str
    labels: list[str] = field(default_factory=list)
    milestone: str | None = None
    assignees: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PullRequest:
    number: int
    title: str
    url: str
    state: str
    head: str
    base: str
    body: str = ""
    labels: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Milestone:
    number: int
    title: str
    state: str
    description: str = ""
    due_on: str | None = None
    open_issues: int = 0
    closed_issues: int = 0


class GhClient:
    """Issue, pull request, review and milestone operations through ``gh``."""

    def __init__(
        self,
        project_path: Path | str,
        *,
        executor: CommandExecutor = run_command,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.project_path = Path(project_path)
        self._executor = executor
        self.rate_limiter = rate_limiter or RateLimiter()

    def _call(self, args: Sequence[str], *, input_text: str | None = None) -> str:
        """Run ``gh`` once, logging duration and surfacing rate-limit hits as warnings."""

        self.rate_limiter.check()
        argv = ["gh", *args]
        started = time.monotonic()
        result: CommandResult = self._executor(argv, self.project_path, input_text=input_text)
        duration_ms = (time.monotonic() - started) * 1000
        self.rate_limiter.record_call()

        if result.ok:
            logger.debug("gh %s completed in %.0fms", " ".join(args[:2]), duration_ms)
            return result.stdout

        stderr = result.stderr.strip()
        logger.debug(
            "gh %s failed in %.0fms (exit %s): %s",
            " ".join(args[:2]),
            duration_ms,
            result.returncode,
            stderr,
        )
        rate_limited = any(marker in stderr.lower() for marker in RATE_LIMIT_MARKERS)
        if rate_limited:
            self.rate_limiter.mark_exhausted()
            logger.warning("GitHub API rate limit hit: gh %s", " ".join(args[:2]))
        raise GhCommandError(
            f"gh {' '.join(args)} failed: {stderr}",
            stderr=stderr,
            rate_limited=rate_limited,
        )

    def _call_json(self, args: Sequence[str]) -> Any:
        output = self._call(args)
        if not output.strip():
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as error:
            raise GhCommandError(f"Failed to parse gh output: {output[:200]}") from error

    # -- issues -----------------------------------------------------------

    def create_issue(
        self,
        title: str,
        body: str,
        labels: Sequence[str] = (),
        milestone: str | None = None,
    ) -> int:
        args = ["issue", "create", "--title", title, "--body-file", "-"]
        for label in labels:
            args.extend(["--label", label])
        if milestone:
            args.extend(["--milestone", milestone])
        output = self._call(args, input_text=body)
        match = _ISSUE_NUMBER.search(output)
        if match is None:
            raise GhCommandError(f"Could not extract issue number from: {output.strip()}")
        return int(match.group(1))

    def list_issues(
        self,
        *,
        milestone: str | None = None,
        label: str | None = None,
        state: ItemState | None = None,
        limit: int = 100,
    ) -> list[Issue]:
        args = ["issue", "list", "--json", ISSUE_FIELDS]
        if milestone:
            args.extend(["--milestone", milestone])
        if label:
            args.extend(["--label", label])
        if state:
            args.extend(["--state", state])
        args.extend(["--limit", str(limit)])
        raw = self._call_json(args) or []
        return [
            Issue(
                number=item["number"],
                title=item.get("title", ""),
                body=item.get("body") or "",
                state=str(item.get("state", "")).lower(),
                url=item.get("url", ""),
                labels=[label["name"] for label in item.get("labels") or []],
                milestone=(item.get("milestone") or {}).get("title"),
                assignees=[user["login"] for user in item.get("assignees") or []],
            )
            for item in raw
        ]

    def edit_issue_labels(
        self,
        number: int,
        add: Sequence[str] = (),
        remove: Sequence[str] = (),
    ) -> None:
        args = ["issue", "edit", str(number)]
        for label in add:
            args.extend(["--add-label", label])
        for label in remove:
            args.extend(["--remove-label", label])
        self._call(args)

    def comment_issue(self, number: int, body: str) -> None:
        self._call(["issue", "comment", str(number), "--body-file", "-"], input_text=body)

    # -- pull requests ----------------------------------------------------

    def create_pr(self, title: str, body: str, head: str, base: str) -> tuple[str, int]:
        """Open a pull request and return its URL and number."""

        output = self._call(
            ["pr", "create", "--title", title, "--body", body, "--head", head, "--base", base],
        ).strip()
        match = _PR_NUMBER.search(output)
        if match is None:
            raise GhCommandError(f"Could not extract PR number from: {output}")
        return output.splitlines()[-1], int(match.group(1))

    def list_prs(
        self,
        *,
        label: str | None = None,
        state: Literal["open", "closed", "merged", "all"] | None = None,
        search: str | None = None,
    ) -> list[PullRequest]:
        args = ["pr", "list", "--json", PR_FIELDS, "--limit", "100"]
        if label:
            args.extend(["--label", label])
        if state:
            args.extend(["--state", state])
        if search:
            args.extend(["--search", search])
        raw = self._call_json(args) or []
        return [
            PullRequest(
                number=item["number"],
                title=item.get("title", ""),
                url=item.get("url", ""),
                state=str(item.get("state", "")).lower(),
                head=item.get("headRefName", ""),
                base=item.get("baseRefName", ""),
                body=item.get("body") or "",
                labels=[label["name"] for label in item.get("labels") or []],
            )
            for item in raw
        ]

    def pr_diff(self, pr: int | str) -> str:
        return self._call(["pr", "diff", str(pr)])

    def submit_review(self, pr: int | str, body: str, event: ReviewEvent) -> None:
        """Post a review.

        GitHub rejects REQUEST_CHANGES on one's own pull request; that case
        is posted as a plain review comment instead.
        """

        flag = f"--{event.lower().replace('_', '-')}"
        try:
            self._call(["pr", "review", str(pr), "--body", body, flag])
        except GhCommandError as error:
            if event != "REQUEST_CHANGES" or "own pull request" not in error.stderr:
                raise
            logger.info("Cannot request changes on own PR %s; posting a comment review", pr)
            self._call(["pr", "review", str(pr), "--body", body, "--comment"])

    # -- milestones -------------------------------------------------------

    def create_milestone(
        self,
        owner: str,
        repo: str,
        title: str,
        *,
        due_on: str | None = None,
        description: str | None = None,
    ) -> int:
        args = ["api", f"repos/{owner}/{repo}/milestones", "-f", f"title={title}"]
        if due_on:
            args.extend(["-f", f"due_on={due_on}"])
        if description:
            args.extend(["-f", f"description={description}"])
        payload = self._call_json(args) or {}
        return int(payload["number"])

    def list_milestones(self, owner: str, repo: str, state: ItemState = "open") -> list[Milestone]:
        milestones: list[Milestone] = []
        page = 1
        while True:
            endpoint = (
                f"repos/{owner}/{repo}/milestones?state={state}&sort=due_on&direction=asc"
                f"&per_page={MILESTONE_PAGE_SIZE}&page={page}"
            )
            raw = self._call_json(["api", endpoint])
            if not isinstance(raw, list) or not raw:
                break
            milestones.extend(
                Milestone(
                    number=item["number"],
                    title=item.get("title", ""),
                    state=item.get("state", ""),
                    description=item.get("description") or "",
                    due_on=item.get("due_on"),
                    open_issues=item.get("open_issues", 0),
                    closed_issues=item.get("closed_issues", 0),
                )
                for item in raw
            )
            if len(raw) < MILESTONE_PAGE_SIZE:
                break
            page += 1
        return milestones

    def set_milestone_state(
        self,
        owner: str,
        repo: str,
        number: int,
        state: Literal["open", "closed"],
    ) -> None:
        self._call(
            [
                "api",
                f"repos/{owner}/{repo}/milestones/{number}",
                "-X",
                "PATCH",
                "-f",
                f"state={state}",
            ],
        )

    def delete_milestone(self, owner: str, repo: str, number: int) -> None:
        self._call(["api", f"repos/{owner}/{repo}/milestones/{number}", "-X", "DELETE"])
