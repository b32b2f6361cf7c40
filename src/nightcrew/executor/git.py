"""Narrow typed port over the git command line."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT_SECONDS = 15


class GitError(RuntimeError):
    """A git invocation failed, timed out, or could not start."""

    def __init__(self, message: str, *, args: tuple[str, ...], stderr: str = "") -> None:
        super().__init__(message)
        self.git_args = args
        self.stderr = stderr


class GitWorkspace:
    """Git operations against one project working tree.

    Callers depend only on exit status and on whether `status --porcelain`
    output is empty.
    """

    def __init__(self, project_path: Path, *, timeout_seconds: int = DEFAULT_GIT_TIMEOUT_SECONDS) -> None:
        self.project_path = project_path
        self.timeout_seconds = timeout_seconds

    def is_repository(self) -> bool:
        return (self.project_path / ".git").exists()

    def branch_exists(self, branch: str) -> bool:
        completed = self._run("rev-parse", "--verify", "--quiet", branch, check=False)
        return completed.returncode == 0

    def current_branch(self) -> str:
        return self._run("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def current_ref(self) -> str:
        """Checked-out branch name, or the commit hash on a detached HEAD."""

        branch = self.current_branch()
        if branch == "HEAD":
            return self.head()
        return branch

    def create_branch(self, branch: str) -> None:
        self._run("branch", branch)

    def checkout(self, branch: str) -> None:
        self._run("checkout", branch)

    def add_all(self) -> None:
        self._run("add", "-A")

    def status_porcelain(self) -> str:
        return self._run("status", "--porcelain").stdout.strip()

    def commit(self, message: str) -> None:
        self._run("commit", "-m", message)

    def head(self) -> str:
        return self._run("rev-parse", "HEAD").stdout.strip()

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        logger.debug("git %s (cwd=%s)", " ".join(args), self.project_path)
        try:
            completed = subprocess.run(  # noqa: S603
                ["git", *args],  # noqa: S607
                cwd=self.project_path,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            raise GitError(
                f"git {args[0]} timed out after {self.timeout_seconds}s",
                args=args,
            ) from error
        except OSError as error:
            raise GitError(f"git {args[0]} failed to start: {error}", args=args) from error

        if check and completed.returncode != 0:
            raise GitError(
                f"git {args[0]} exited with {completed.returncode}: {completed.stderr.strip()}",
                args=args,
                stderr=completed.stderr,
            )
        return completed
