from __future__ import annotations

from datetime import UTC, datetime

import allure

from nightcrew.core.models import (
    Execution,
    ExecutionResult,
    FailureClass,
    ModelChoice,
    SafetyCommitResult,
)
from nightcrew.executor.report import (
    REPORT_TITLE,
    REVIEW_NOTE,
    format_report_date,
    format_usd,
    render_morning_report,
)

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Morning Report"),
]

NOW = datetime(2026, 10, 17, 6, 0, tzinfo=UTC)
BRANCH = "nightmode/2026-10-17"


def _result(  # noqa: PLR0913
    task,
    *,
    success: bool,
    model: str = "haiku",
    cost: int = 0,
    tokens: int = 0,
    duration_ms: int = 0,
    branch: str = BRANCH,
    commit_hash: str | None = None,
    error: str | None = None,
    skipped: bool = False,
) -> ExecutionResult:
    return ExecutionResult(
        task=task,
        execution=Execution(
            task_id=task.id,
            model=model,
            prompt_tokens=0,
            completion_tokens=tokens,
            total_tokens=tokens,
            cost_usd_cents=cost,
            duration_ms=duration_ms,
            exit_code=0 if success else 1,
            stdout="",
            stderr=error or "",
            branch=branch,
            started_at=NOW,
            completed_at=NOW,
            commit_hash=commit_hash,
        ),
        success=success,
        error=error,
        failure_class=FailureClass.SKIPPED_BY_ROUTER if skipped else None,
        model_choice=ModelChoice(
            model="skip" if skipped else model,
            reason="Skipping: lint/dev-tooling has 0% success rate (4 runs)" if skipped else "",
            max_budget_usd=0.1,
        ),
    )


def test_report_date_and_usd_format() -> None:
    assert format_report_date(NOW) == "Saturday, October 17, 2026"
    assert format_usd(1234) == "$12.34"
    assert format_usd(5) == "$0.05"


def test_report_sections_in_order(make_task) -> None:
    done = make_task(task_id=1, title="Fix lint", project_path="/work/alpha")
    broken = make_task(task_id=2, title="Bump deps", project_path="/work/beta")
    doomed = make_task(task_id=3, title="Flaky cleanup", project_path="/work/beta")
    results = [
        _result(
            done,
            success=True,
            cost=35,
            tokens=12_345,
            duration_ms=120_000,
            commit_hash="abcdef1234567890",
        ),
        _result(broken, success=False, cost=10, duration_ms=60_000, error="x" * 300),
        _result(doomed, success=False, skipped=True, error="low success"),
    ]
    safety = [
        SafetyCommitResult(
            project_path="/work/alpha",
            skipped=False,
            commit_hash="1234567890abcdef",
            branch="main",
        ),
        SafetyCommitResult(project_path="/work/beta", skipped=True, reason="clean working tree"),
    ]

    report = render_morning_report(results, safety, now=NOW)
    lines = report.splitlines()

    assert lines[0] == REPORT_TITLE
    assert lines[1] == "Date: Saturday, October 17, 2026"
    assert "- Tasks executed: 3" in lines
    assert "- Succeeded: 1" in lines
    assert "- Failed: 2" in lines
    assert "- Total cost: $0.45" in lines
    assert "- Total tokens: 12,345" in lines
    assert "- Total duration: 3 minutes" in lines
    assert "- [alpha] [haiku] Fix lint ($0.35)" in lines
    assert f"  Branch: {BRANCH} | Commit: abcdef12" in lines
    assert "- [beta] Flaky cleanup" in lines
    assert f"  Error: {'x' * 200}" in lines
    assert "- /work/alpha (main) → 12345678" in lines
    assert "/work/beta (" not in report
    assert f"Project: /work/alpha | Branch: {BRANCH}" in lines
    assert f"  git -C /work/alpha log --oneline {BRANCH}" in lines
    assert "Project: /work/beta" not in report

    headings = [line for line in lines if line.startswith("## ")]
    assert headings == [
        "## Summary",
        "## Completed Tasks",
        "## Skipped Tasks (low success rate)",
        "## Failed Tasks",
        "## Pre-flight Safety Commits",
        "## Review",
    ]
    failed_section = report.split("## Failed Tasks")[1].split("## ")[0]
    assert "Flaky cleanup" not in failed_section
    assert "Bump deps" in failed_section


def test_empty_batch_report() -> None:
    report = render_morning_report([], now=NOW)

    assert "- Tasks executed: 0" in report
    assert "- Total cost: $0.00" in report
    assert "## Completed Tasks" not in report
    assert "## Failed Tasks" not in report
    assert report.rstrip().endswith(REVIEW_NOTE)


def test_total_duration_rounds_half_minutes_up(make_task) -> None:
    results = [
        _result(make_task(task_id=1), success=True, duration_ms=90_000),
        _result(make_task(task_id=2), success=False, duration_ms=60_000),
    ]

    report = render_morning_report(results, now=NOW)

    assert "- Total duration: 3 minutes" in report.splitlines()


def test_review_hints_follow_recorded_branches(make_task) -> None:
    before = make_task(task_id=1, title="Fix lint", project_path="/work/alpha")
    after = make_task(task_id=2, title="Fix types", project_path="/work/alpha")
    other = make_task(task_id=3, title="Bump deps", project_path="/work/beta")
    results = [
        _result(before, success=True, branch="nightmode/2026-10-17"),
        _result(after, success=True, branch="nightmode/2026-10-17"),
        _result(other, success=True, branch="nightmode/2026-10-16"),
    ]

    lines = render_morning_report(results, now=NOW).splitlines()

    assert lines.count("Project: /work/alpha | Branch: nightmode/2026-10-17") == 1
    assert "  git -C /work/beta log --oneline nightmode/2026-10-16" in lines
