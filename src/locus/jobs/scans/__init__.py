"""Built-in maintenance job handlers."""

from locus.jobs.scans.lint_scan import LintScanJob
from locus.jobs.scans.todo_scan import TodoScanJob

__all__ = ["LintScanJob", "TodoScanJob"]
