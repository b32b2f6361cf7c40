"""Shared test fixtures."""

from __future__ import annotations

import subprocess
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from nightcrew.core.models import Task

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m nightcrew.executor.backend.echo_agent --prompt {{prompt}} --model {{model}}"
)


def _run_git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )
    return completed.stdout.strip()


def _make_task(  # noqa: PLR0913
    *,
    task_id: int | None = 1,
    title: str = "Fix lint warnings",
    project_path: str = "/tmp/project",
    category: str = "lint",
    source: str = "dev-tooling",
    impact: int = 3,
    confidence: int = 3,
    risk: int = 2,
    duration: int = 2,
    score: float | None = None,
) -> Task:
    return Task(
        id=task_id,
        project_path=project_path,
        project_name=Path(project_path).name,
        source=source,
        category=category,
        title=title,
        description=f"{title} in {Path(project_path).name}",
        impact=impact,
        confidence=confidence,
        risk=risk,
        duration=duration,
        score=score,
    )


@pytest.fixture()
def run_git() -> Callable[..., str]:
    """Run a git command in a repository and return stripped stdout."""

    return _run_git


@pytest.fixture()
def make_task() -> Callable[..., Task]:
    """Factory for in-memory tasks with sensible defaults."""

    return _make_task


@pytest.fixture()
def echo_agent_template() -> str:
    return ECHO_AGENT_COMMAND_TEMPLATE


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Throwaway repository on branch `main` with one commit."""

    repo = tmp_path / "project"
    repo.mkdir()
    _run_git(repo, "init", "-b", "main")
    _run_git(repo, "config", "user.email", "night@example.com")
    _run_git(repo, "config", "user.name", "Night Tester")
    _run_git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# project\n", "utf-8")
    _run_git(repo, "add", "-A")
    _run_git(repo, "commit", "-m", "initial")
    return repo
