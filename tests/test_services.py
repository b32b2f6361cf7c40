from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import allure

from nightcrew.config import AgentSettings, NightSettings, Settings
from nightcrew.core.models import ACCOUNT_SELF, Currency, TaskStatus
from nightcrew.executor.backend import CliAgentBackend
from nightcrew.services import NightRunService, NightRunStatus, filter_night_tasks
from nightcrew.storage.repository import NightcrewRepository

pytestmark = [
    allure.epic("Night Run"),
    allure.feature("Night Run Service"),
]

NIGHT = datetime(2026, 10, 17, 23, 0, tzinfo=UTC)
NOON = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _service(
    tmp_path: Path,
    command_template: str,
    *,
    now: datetime = NIGHT,
    night: NightSettings | None = None,
) -> NightRunService:
    settings = Settings(
        db_path=tmp_path / "nightcrew.db",
        home_dir=tmp_path / "home",
        night=night or NightSettings(),
        agent=AgentSettings(command_template=command_template),
    )
    repository = NightcrewRepository(settings.db_path)
    repository.init_schema()
    return NightRunService(
        repository=repository,
        settings=settings,
        backend=CliAgentBackend(command_template),
        clock=FixedClock(now),
    )


def test_filter_drops_non_git_and_excluded_projects(
    tmp_path: Path,
    git_repo: Path,
    make_task,
) -> None:
    plain_dir = tmp_path / "plain"
    plain_dir.mkdir()
    excluded = tmp_path / "secret"
    excluded.mkdir()
    (excluded / ".git").mkdir()
    tasks = [
        make_task(task_id=1, project_path=str(git_repo)),
        make_task(task_id=2, project_path=str(plain_dir)),
        make_task(task_id=3, project_path=str(excluded)),
    ]

    filtered = filter_night_tasks(tasks, (str(excluded),))

    assert [task.id for task in filtered.eligible] == [1]
    assert filtered.skipped_not_git == 1
    assert filtered.skipped_excluded == 1


def test_filter_excludes_whole_directories_not_name_prefixes(tmp_path: Path, make_task) -> None:
    projects = {}
    for name in ("app", "app2"):
        projects[name] = tmp_path / name
        (projects[name] / ".git").mkdir(parents=True)
    nested = projects["app"] / "packages" / "core"
    (nested / ".git").mkdir(parents=True)
    tasks = [
        make_task(task_id=1, project_path=str(projects["app"])),
        make_task(task_id=2, project_path=str(projects["app2"])),
        make_task(task_id=3, project_path=str(nested)),
    ]

    filtered = filter_night_tasks(tasks, (str(projects["app"]),))

    assert [task.id for task in filtered.eligible] == [2]
    assert filtered.skipped_excluded == 2


def test_night_run_executes_persists_and_reports(
    tmp_path: Path,
    git_repo: Path,
    run_git,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(tmp_path, f"{echo_agent_template} --write-file NIGHT.md")
    task = service.repository.add_task(
        make_task(task_id=None, title="Write night notes", project_path=str(git_repo)),
    )
    (git_repo / "wip.txt").write_text("unsaved\n", "utf-8")
    progress: list[tuple[int, int]] = []

    outcome = service.run_night(on_progress=lambda done, total, _: progress.append((done, total)))

    assert outcome.status == NightRunStatus.EXECUTED
    assert outcome.branch == "nightmode/2026-10-17"
    assert outcome.budget is not None
    assert outcome.budget.remaining_usd_cents == 5_000
    assert outcome.plan is not None
    assert outcome.plan.execution_order == [task.id]
    assert outcome.estimated_minutes == 3
    assert progress == [(1, 1)]
    assert [item.skipped for item in outcome.safety_commits] == [False]
    assert outcome.safety_commits[0].branch == "main"
    assert [result.success for result in outcome.results] == [True]

    stored = service.repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.COMPLETED
    executions = service.repository.list_executions(task_id=task.id)
    assert len(executions) == 1
    assert executions[0].commit_hash == run_git(git_repo, "rev-parse", "nightmode/2026-10-17")

    entries = service.repository.list_ledger_entries(ACCOUNT_SELF)
    assert [(entry.currency, entry.amount) for entry in entries][0] == (Currency.USD_CENTS, 1)
    assert {entry.execution_id for entry in entries} == {executions[0].id}
    assert service.ledger.get_spent_since(ACCOUNT_SELF, NIGHT) == 1

    assert outcome.report_path == tmp_path / "home" / "reports" / "2026-10-17.md"
    report = outcome.report_path.read_text("utf-8")
    assert report == outcome.report
    assert "- Succeeded: 1" in report
    assert "## Pre-flight Safety Commits" in report
    assert (tmp_path / "home" / "logs" / "2026-10-17.jsonl").exists()
    assert run_git(git_repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
    service.repository.close()


def test_night_run_outside_window_does_nothing(
    tmp_path: Path,
    git_repo: Path,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(tmp_path, echo_agent_template, now=NOON)
    task = service.repository.add_task(make_task(task_id=None, project_path=str(git_repo)))

    outcome = service.run_night()

    assert outcome.status == NightRunStatus.OUTSIDE_WINDOW
    assert outcome.plan is None
    stored = service.repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.QUEUED
    service.repository.close()


def test_dry_run_plans_outside_window_without_side_effects(
    tmp_path: Path,
    git_repo: Path,
    run_git,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(tmp_path, echo_agent_template, now=NOON)
    for index in range(3):
        service.repository.add_task(
            make_task(task_id=None, title=f"chore {index}", project_path=str(git_repo)),
        )
    risky = service.repository.add_task(
        make_task(task_id=None, title="risky", project_path=str(git_repo), risk=5),
    )

    outcome = service.run_night(dry_run=True)

    assert outcome.status == NightRunStatus.PLANNED
    assert outcome.plan is not None
    assert len(outcome.plan.tasks) == 3
    assert risky.id not in outcome.plan.execution_order
    assert outcome.estimated_minutes == 9
    assert outcome.results == []
    assert service.repository.list_executions() == []
    assert run_git(git_repo, "branch", "--list", "nightmode/*") == ""
    assert not (tmp_path / "home" / "reports").exists()
    service.repository.close()


def test_night_run_near_reset_plans_nothing(
    tmp_path: Path,
    git_repo: Path,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(
        tmp_path,
        echo_agent_template,
        now=datetime(2026, 10, 17, 23, 45, tzinfo=UTC),
    )
    service.repository.add_task(make_task(task_id=None, project_path=str(git_repo)))

    outcome = service.run_night()

    assert outcome.status == NightRunStatus.PLANNED
    assert outcome.plan is not None
    assert outcome.plan.tasks == []
    assert "credit window reset" in outcome.plan.reason
    assert outcome.safety_commits == []
    service.repository.close()


def test_disabled_and_empty_backlog(tmp_path: Path, echo_agent_template: str) -> None:
    disabled = _service(
        tmp_path / "disabled",
        echo_agent_template,
        night=NightSettings(enabled=False),
    )
    empty = _service(tmp_path / "empty", echo_agent_template)

    assert disabled.run_night().status == NightRunStatus.DISABLED
    assert empty.run_night().status == NightRunStatus.NO_TASKS
    disabled.repository.close()
    empty.repository.close()


def test_no_eligible_tasks_when_projects_are_not_repositories(
    tmp_path: Path,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(tmp_path, echo_agent_template)
    service.repository.add_task(make_task(task_id=None, project_path=str(tmp_path)))

    outcome = service.run_night()

    assert outcome.status == NightRunStatus.NO_ELIGIBLE_TASKS
    assert outcome.queued_count == 1
    assert outcome.skipped_not_git == 1
    service.repository.close()


def test_snapshot_drives_the_budget(
    tmp_path: Path,
    git_repo: Path,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(tmp_path, echo_agent_template)
    for index in range(4):
        service.repository.add_task(
            make_task(task_id=None, title=f"chore {index}", project_path=str(git_repo)),
        )

    snapshot = service.take_snapshot(balance_usd_cents=200)
    outcome = service.run_night(dry_run=True)

    assert snapshot.window_reset_at == datetime(2026, 10, 18, 0, 0, tzinfo=UTC)
    assert outcome.budget is not None
    assert outcome.budget.remaining_usd_cents == 200
    assert outcome.plan is not None
    assert outcome.plan.budget_cap_usd_cents == 150
    assert len(outcome.plan.tasks) == 3
    assert outcome.plan.tasks_skipped == 1
    service.repository.close()


def test_run_task_persists_single_attempt(
    tmp_path: Path,
    git_repo: Path,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(tmp_path, f"{echo_agent_template} --exit-code 1", now=NOON)
    task = service.repository.add_task(make_task(task_id=None, project_path=str(git_repo)))

    result = service.run_task(task.id)

    assert result.success is False
    stored = service.repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.FAILED
    executions = service.repository.list_executions(task_id=task.id)
    assert [execution.exit_code for execution in executions] == [1]
    assert len(service.repository.list_ledger_entries(ACCOUNT_SELF)) == 2
    service.repository.close()


def test_run_task_dry_run_does_not_persist(
    tmp_path: Path,
    git_repo: Path,
    make_task,
    echo_agent_template: str,
) -> None:
    service = _service(tmp_path, echo_agent_template, now=NOON)
    task = service.repository.add_task(make_task(task_id=None, project_path=str(git_repo)))

    result = service.run_task(task.id, dry_run=True)

    assert result.success is True
    assert result.execution.model == "dry-run"
    assert service.repository.list_executions() == []
    stored = service.repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.QUEUED
    service.repository.close()
