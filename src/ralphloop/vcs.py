"""Git auto-commit support for iterations that changed tracked files."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

_NOTHING_TO_COMMIT_MARKERS = ("nothing to commit", "nothing added to commit", "no changes added")


@dataclass(slots=True)
class GitStatus:
    has_changes: bool = False
    staged: int = 0
    unstaged: int = 0
    untracked: int = 0


@dataclass(slots=True)
class CommitResult:
    success: bool
    error: str | None = None


class GitCommitter:
    """Stages modifications to tracked files and commits them."""

    def __init__(self, executable: str = "git", *, timeout: float = 60.0) -> None:
        self.executable = executable
        self.timeout = timeout

    def _git(self, cwd: str, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [self.executable, *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            timeout=self.timeout,
        )

    def is_repo(self, cwd: str) -> bool:
        try:
            return self._git(cwd, "rev-parse", "--git-dir").returncode == 0
        except (OSError, subprocess.TimeoutExpired):
            return False

    def status(self, cwd: str) -> GitStatus:
        try:
            completed = self._git(cwd, "status", "--porcelain")
        except (OSError, subprocess.TimeoutExpired):
            return GitStatus()
        if completed.returncode != 0:
            return GitStatus()

        status = GitStatus()
        lines = [line for line in completed.stdout.splitlines() if line]
        for line in lines:
            index_state, worktree_state = line[0], line[1] if len(line) > 1 else " "
            if index_state == "?":
                status.untracked += 1
                continue
            if index_state != " ":
                status.staged += 1
            if worktree_state != " ":
                status.unstaged += 1
        # Untracked files are never staged by `add -u`.
        status.has_changes = bool(status.staged or status.unstaged)
        return status

    def commit(self, cwd: str, message: str) -> CommitResult:
        # Tracked files only, so stray secrets such as .env never get committed.
        try:
            staged = self._git(cwd, "add", "-u")
            if staged.returncode != 0:
                return CommitResult(success=False, error=staged.stderr.strip() or "git add failed")
            completed = self._git(cwd, "commit", "-m", message)
        except (OSError, subprocess.TimeoutExpired) as exc:
            return CommitResult(success=False, error=str(exc))

        if completed.returncode == 0:
            return CommitResult(success=True)
        combined = f"{completed.stdout}{completed.stderr}"
        if any(marker in combined for marker in _NOTHING_TO_COMMIT_MARKERS):
            return CommitResult(success=True)
        return CommitResult(success=False, error=completed.stderr.strip() or "Unknown git error")

    def default_message(self, cwd: str, iteration: int) -> str:
        try:
            completed = self._git(cwd, "diff", "--stat")
        except (OSError, subprocess.TimeoutExpired):
            LOGGER.debug("git_diff_stat_failed", exc_info=True)
            completed = None
        if completed is not None and completed.returncode == 0:
            lines = completed.stdout.strip().splitlines()
            summary = lines[-1].strip() if lines else ""
            if "changed" in summary:
                return f"ralph: iteration {iteration} - {summary}"
        return f"ralph: iteration {iteration} complete"

    def auto_commit(self, cwd: str, iteration: int, message: str | None) -> CommitResult | None:
        """Commit pending changes; ``None`` when there is nothing to do."""
        if not self.is_repo(cwd):
            return None
        if not self.status(cwd).has_changes:
            return None
        return self.commit(cwd, message or self.default_message(cwd, iteration))
