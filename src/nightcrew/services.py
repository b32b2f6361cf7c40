"""Use-case services: night runs, single-task runs, and ledger operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from nightcrew.clock import Clock, local_now
from nightcrew.config import Settings
from nightcrew.core.budget import BudgetWindow, SnapshotBudgetSource, next_window_reset
from nightcrew.core.ledger import Ledger
from nightcrew.core.models import (
    ACCOUNT_SELF,
    BatchPlan,
    CreditSnapshot,
    ExecutionResult,
    SafetyCommitResult,
    Task,
)
from nightcrew.executor.backend.base import AgentBackend
from nightcrew.executor.executor import Executor, ProgressCallback, resolve_project_path
from nightcrew.executor.git import GitWorkspace
from nightcrew.executor.planner import NightPlanner
from nightcrew.storage.repository import NightcrewRepository

logger = logging.getLogger(__name__)


class NightRunStatus(str, Enum):
    """Where a night run stopped."""

    DISABLED = "disabled"
    OUTSIDE_WINDOW = "outside_window"
    NO_TASKS = "no_tasks"
    NO_ELIGIBLE_TASKS = "no_eligible_tasks"
    PLANNED = "planned"
    EXECUTED = "executed"


@dataclass(slots=True)
class NightRunOutcome:
    """Everything a night run decided and did."""

    status: NightRunStatus
    branch: str
    queued_count: int = 0
    skipped_not_git: int = 0
    skipped_excluded: int = 0
    budget: BudgetWindow | None = None
    plan: BatchPlan | None = None
    estimated_minutes: int = 0
    safety_commits: list[SafetyCommitResult] = field(default_factory=list)
    results: list[ExecutionResult] = field(default_factory=list)
    report: str | None = None
    report_path: Path | None = None


@dataclass(slots=True)
class TaskFilterResult:
    eligible: list[Task]
    skipped_not_git: int
    skipped_excluded: int


def filter_night_tasks(tasks: list[Task], exclude_paths: tuple[str, ...]) -> TaskFilterResult:
    """Drop tasks whose project is not a git repository or sits inside an excluded directory."""

    in_git = [
        task
        for task in tasks
        if GitWorkspace(resolve_project_path(task.project_path)).is_repository()
    ]
    excluded = [Path(prefix).expanduser() for prefix in exclude_paths]
    eligible = [
        task
        for task in in_git
        if not any(resolve_project_path(task.project_path).is_relative_to(root) for root in excluded)
    ]
    return TaskFilterResult(
        eligible=eligible,
        skipped_not_git=len(tasks) - len(in_git),
        skipped_excluded=len(in_git) - len(eligible),
    )


class NightRunService:
    """Plans, safety-commits, executes, and persists night batches."""

    def __init__(
        self,
        *,
        repository: NightcrewRepository,
        settings: Settings,
        backend: AgentBackend,
        clock: Clock = local_now,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.backend = backend
        self._clock = clock
        self.planner = NightPlanner(settings.planner_config(), clock=clock)
        self.ledger = Ledger(
            persist_entry=repository.insert_ledger_entry,
            persist_snapshot=repository.insert_snapshot,
            load_entries=repository.list_ledger_entries,
            load_latest_snapshot=repository.get_latest_snapshot,
            clock=clock,
        )
        self.budget_source = SnapshotBudgetSource(
            ledger=self.ledger,
            estimated_balance_usd_cents=settings.budget.estimated_balance_usd_cents,
            window_reset_hour=settings.budget.window_reset_hour,
            clock=clock,
        )

    def run_night(
        self,
        *,
        dry_run: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> NightRunOutcome:
        """Run tonight's batch, or only plan it in dry-run mode."""

        outcome = NightRunOutcome(
            status=NightRunStatus.PLANNED,
            branch=self.planner.get_branch_name(),
        )
        if not self.settings.night.enabled:
            outcome.status = NightRunStatus.DISABLED
            return outcome
        if not dry_run and not self.planner.is_night_time():
            outcome.status = NightRunStatus.OUTSIDE_WINDOW
            return outcome

        queued = self.repository.list_queued_tasks()
        outcome.queued_count = len(queued)
        if not queued:
            outcome.status = NightRunStatus.NO_TASKS
            return outcome

        filtered = filter_night_tasks(queued, self.settings.night.exclude_paths)
        outcome.skipped_not_git = filtered.skipped_not_git
        outcome.skipped_excluded = filtered.skipped_excluded
        if not filtered.eligible:
            outcome.status = NightRunStatus.NO_ELIGIBLE_TASKS
            return outcome

        outcome.budget = self.budget_source.current()
        outcome.plan = self.planner.plan(
            filtered.eligible,
            outcome.budget.remaining_usd_cents,
            outcome.budget.window_reset_at,
        )
        outcome.estimated_minutes = self.planner.estimate_duration_minutes(outcome.plan)
        logger.info(
            "Night plan: %d of %d tasks (%s)",
            len(outcome.plan.tasks),
            len(filtered.eligible),
            outcome.plan.reason,
        )
        if dry_run or not outcome.plan.tasks:
            return outcome

        executor = self._executor(dry_run=False)
        projects = list(dict.fromkeys(task.project_path for task in outcome.plan.tasks))
        outcome.safety_commits = [executor.safety_commit(project) for project in projects]

        def _on_progress(completed: int, total: int, result: ExecutionResult) -> None:
            self._persist_result(result, description=f"Night mode: {result.task.title}")
            if on_progress is not None:
                on_progress(completed, total, result)

        outcome.results = executor.execute_batch(outcome.plan, _on_progress, branch=outcome.branch)
        outcome.report = executor.generate_morning_report(outcome.results, outcome.safety_commits)
        outcome.report_path = self._write_report(outcome.report)
        outcome.status = NightRunStatus.EXECUTED
        logger.info("Night run finished; report at %s", outcome.report_path)
        return outcome

    def run_task(self, task_id: int, *, dry_run: bool = False) -> ExecutionResult:
        """Execute one task now, regardless of the night window."""

        task = self.repository.get_task(task_id)
        if task is None:
            raise RuntimeError(f"Task not found: {task_id}")

        result = self._executor(dry_run=dry_run).execute_task(task)
        if not dry_run:
            self._persist_result(result, description=f"Task #{task_id}: {task.title}")
        return result

    def take_snapshot(self, *, balance_usd_cents: int, balance_tokens: int = 0) -> CreditSnapshot:
        return self.ledger.take_snapshot(
            account_id=ACCOUNT_SELF,
            balance_tokens=balance_tokens,
            balance_usd_cents=balance_usd_cents,
            window_reset_at=next_window_reset(self._clock(), self.settings.budget.window_reset_hour),
        )

    def _executor(self, *, dry_run: bool) -> Executor:
        return Executor(
            backend=self.backend,
            planner=self.planner,
            log_dir=self.settings.log_dir,
            dry_run=dry_run,
            default_model=self.settings.agent.model,
            agent_timeout_seconds=self.settings.agent.timeout_seconds,
            update_task_status=None if dry_run else self.repository.update_task_status,
            history=self.repository.historical_stats(),
            clock=self._clock,
        )

    def _persist_result(self, result: ExecutionResult, *, description: str) -> None:
        execution_id = self.repository.insert_execution(result.execution)
        if result.execution.cost_usd_cents > 0:
            self.ledger.record_execution(
                task_id=result.task.id,
                execution_id=execution_id,
                tokens=result.execution.total_tokens,
                cost_usd_cents=result.execution.cost_usd_cents,
                description=description,
                record_tokens=self.settings.ledger.record_tokens,
            )

    def _write_report(self, report: str) -> Path:
        report_dir = self.settings.report_dir
        report_dir.mkdir(parents=True, exist_ok=True)
        report_path = report_dir / f"{self._clock().date().isoformat()}.md"
        report_path.write_text(report, "utf-8")
        return report_path

