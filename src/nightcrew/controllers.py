"""Controllers for nightcrew CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from nightcrew.clock import Clock, from_iso, local_now
from nightcrew.config import Settings
from nightcrew.core.budget import next_window_reset
from nightcrew.core.models import (
    ACCOUNT_SELF,
    MAX_RATING,
    MIN_RATING,
    Currency,
    ExecutionResult,
    Task,
    TaskStatus,
)
from nightcrew.executor.backend import AgentBackend, CliAgentBackend
from nightcrew.executor.report import format_usd
from nightcrew.services import NightRunOutcome, NightRunService, NightRunStatus
from nightcrew.storage.repository import NightcrewRepository

BackendFactory = Callable[[Settings], AgentBackend]


@dataclass(slots=True)
class TaskAddCommand:
    """CLI input for manual task enqueue."""

    db_path: Path | None
    project_path: str
    title: str
    description: str
    category: str
    source: str
    impact: int
    confidence: int
    risk: int
    duration: int
    prompt: str | None = None
    project_name: str | None = None


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskMutateCommand:
    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class PlanCommand:
    db_path: Path | None


@dataclass(slots=True)
class RunTaskCommand:
    db_path: Path | None
    task_id: int
    dry_run: bool


@dataclass(slots=True)
class NightCommand:
    db_path: Path | None
    dry_run: bool


@dataclass(slots=True)
class LedgerSpentCommand:
    db_path: Path | None
    since: str | None


@dataclass(slots=True)
class LedgerCreditCommand:
    db_path: Path | None
    amount: int
    currency: str
    description: str


@dataclass(slots=True)
class LedgerSnapshotCommand:
    db_path: Path | None
    balance_usd_cents: int
    balance_tokens: int


def _default_backend(settings: Settings) -> AgentBackend:
    return CliAgentBackend(settings.agent.command_template)


class NightcrewCliController:
    """Coordinates task, planning, execution, and ledger CLI operations."""

    def __init__(
        self,
        *,
        clock: Clock = local_now,
        backend_factory: BackendFactory = _default_backend,
    ) -> None:
        self._clock = clock
        self._backend_factory = backend_factory

    def add_task(self, command: TaskAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        for name, value in (
            ("impact", command.impact),
            ("confidence", command.confidence),
            ("risk", command.risk),
            ("duration", command.duration),
        ):
            if not MIN_RATING <= value <= MAX_RATING:
                raise ValueError(f"{name} must be between {MIN_RATING} and {MAX_RATING}, got {value}.")
        project_path = str(Path(command.project_path).expanduser().resolve())
        with _repository(settings) as repository:
            task = repository.add_task(
                Task(
                    project_path=project_path,
                    project_name=command.project_name or Path(project_path).name,
                    source=command.source or "manual",
                    category=command.category,
                    title=command.title,
                    description=command.description,
                    impact=command.impact,
                    confidence=command.confidence,
                    risk=command.risk,
                    duration=command.duration,
                    prompt=command.prompt,
                ),
            )
        return [
            f"Task queued: #{task.id} score={task.effective_score():.2f} "
            f"risk={task.risk} project={task.project_name}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  #{task.id} [{task.effective_score():.2f}] status={task.status.value} "
                f"risk={task.risk} {task.category}/{task.source} "
                f"{task.project_name} | {task.title}",
            )
        return lines

    def skip_task(self, command: TaskMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            repository.skip_task(command.task_id)
        return [f"Task skipped: #{command.task_id}"]

    def plan(self, command: PlanCommand) -> list[str]:
        """Preview tonight's batch without executing anything."""

        settings = _validated_settings(command.db_path)
        with _repository(settings) as repository:
            outcome = self._service(repository, settings).run_night(dry_run=True)
        return _render_outcome(outcome, settings=settings)

    def run_task(self, command: RunTaskCommand) -> list[str]:
        settings = _validated_settings(command.db_path)
        with _repository(settings) as repository:
            result = self._service(repository, settings).run_task(
                command.task_id,
                dry_run=command.dry_run,
            )
        return _render_task_result(result, dry_run=command.dry_run)

    def run_night(self, command: NightCommand) -> list[str]:
        settings = _validated_settings(command.db_path)
        progress_lines: list[str] = []

        def _on_progress(completed: int, total: int, result: ExecutionResult) -> None:
            status = "OK" if result.success else "FAIL"
            progress_lines.append(f"[{completed}/{total}] [{status}] {result.task.title}")

        with _repository(settings) as repository:
            outcome = self._service(repository, settings).run_night(
                dry_run=command.dry_run,
                on_progress=_on_progress,
            )

        lines = _render_outcome(outcome, settings=settings)
        if outcome.status == NightRunStatus.PLANNED and command.dry_run:
            lines.extend(["", "[DRY RUN] No tasks will be executed."])
        if outcome.status != NightRunStatus.EXECUTED:
            return lines

        lines.extend(["", "Pre-flight safety commits:"])
        for item in outcome.safety_commits:
            if item.skipped:
                lines.append(f"  SKIP {item.project_path} ({item.reason})")
            else:
                lines.append(
                    f"  SAVED {item.project_path} ({item.branch}) → {(item.commit_hash or '')[:8]}",
                )
        lines.extend(["", "Execution:", *progress_lines, "", outcome.report or ""])
        lines.append(f"Report saved to: {outcome.report_path}")
        return lines

    def ledger_spent(self, command: LedgerSpentCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.since:
            since = from_iso(command.since)
        else:
            since = next_window_reset(self._clock(), settings.budget.window_reset_hour) - timedelta(
                days=1,
            )
        with _repository(settings) as repository:
            spent = self._service(repository, settings).ledger.get_spent_since(ACCOUNT_SELF, since)
        return [f"Spent since {since.isoformat()}: {format_usd(spent)}"]

    def ledger_credit(self, command: LedgerCreditCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        try:
            currency = Currency(command.currency)
        except ValueError as error:
            raise ValueError(f"Unsupported currency: {command.currency!r}") from error
        if command.amount <= 0:
            raise ValueError("Credit amount must be > 0.")
        with _repository(settings) as repository:
            entry = self._service(repository, settings).ledger.record_credit(
                account_id=ACCOUNT_SELF,
                amount=command.amount,
                currency=currency,
                description=command.description,
            )
        return [f"Credit recorded: #{entry.id} {entry.amount} {entry.currency.value}"]

    def ledger_snapshot(self, command: LedgerSnapshotCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.balance_usd_cents < 0 or command.balance_tokens < 0:
            raise ValueError("Snapshot balances must be >= 0.")
        with _repository(settings) as repository:
            snapshot = self._service(repository, settings).take_snapshot(
                balance_usd_cents=command.balance_usd_cents,
                balance_tokens=command.balance_tokens,
            )
        return [
            f"Snapshot recorded: {format_usd(snapshot.balance_usd_cents)} "
            f"{snapshot.balance_tokens:,} tokens, window resets at "
            f"{snapshot.window_reset_at.isoformat()}",
        ]

    def _service(self, repository: NightcrewRepository, settings: Settings) -> NightRunService:
        return NightRunService(
            repository=repository,
            settings=settings,
            backend=self._backend_factory(settings),
            clock=self._clock,
        )


def _render_outcome(outcome: NightRunOutcome, *, settings: Settings) -> list[str]:
    if outcome.status == NightRunStatus.DISABLED:
        return ["Night mode is disabled (NIGHTCREW_NIGHT_ENABLED)."]
    if outcome.status == NightRunStatus.OUTSIDE_WINDOW:
        return [
            f"Not in night mode hours ({settings.night.start_hour}:00 - "
            f"{settings.night.end_hour}:00).",
            "Use --dry-run to preview the batch plan.",
        ]
    if outcome.status == NightRunStatus.NO_TASKS:
        return ["No queued tasks. Add some with `nightcrew tasks add`."]

    lines = ["Night Mode Batch Plan", "=" * 50, f"Queued tasks: {outcome.queued_count}"]
    if outcome.skipped_not_git:
        lines.append(f"Filtered: {outcome.skipped_not_git} tasks skipped (no .git)")
    if outcome.skipped_excluded:
        lines.append(f"Filtered: {outcome.skipped_excluded} tasks skipped (excluded paths)")
    if outcome.status == NightRunStatus.NO_ELIGIBLE_TASKS or outcome.plan is None:
        lines.append("No eligible tasks after filtering.")
        return lines

    plan = outcome.plan
    if outcome.budget is not None:
        lines.append(
            f"Budget: {format_usd(outcome.budget.remaining_usd_cents)} remaining, "
            f"cap {format_usd(plan.budget_cap_usd_cents)}, "
            f"window resets at {outcome.budget.window_reset_at.isoformat()}",
        )
    lines.extend(
        [
            f"Planned for execution: {len(plan.tasks)}",
            f"Skipped: {plan.tasks_skipped}",
            f"Estimated cost: {format_usd(plan.total_estimated_cost_usd_cents)}",
            f"Estimated duration: ~{outcome.estimated_minutes} minutes",
            f"Branch: {outcome.branch}",
            f"Reason: {plan.reason}",
        ],
    )
    if plan.tasks:
        lines.extend(["", "Execution order:"])
        for index, task in enumerate(plan.tasks, start=1):
            lines.append(
                f"  {index}. [{task.effective_score():.1f}] {task.project_name} | "
                f"{task.title} (#{task.id})",
            )
    return lines


def _render_task_result(result: ExecutionResult, *, dry_run: bool) -> list[str]:
    task = result.task
    execution = result.execution
    lines = [
        f"Executed task #{task.id}: {task.title}",
        f"Project: {task.project_name}",
        f"Source: {task.source} | Category: {task.category}",
    ]
    if dry_run and result.success:
        lines.extend(["", "[DRY RUN] Would execute with prompt:", task.agent_prompt()])
        return lines
    if result.success:
        lines.extend(
            [
                "Task completed successfully!",
                f"Model: {execution.model}",
                f"Cost: {format_usd(execution.cost_usd_cents)}",
                f"Tokens: {execution.total_tokens:,}",
                f"Duration: {round(execution.duration_ms / 1000)}s",
            ],
        )
        if execution.commit_hash:
            lines.append(f"Branch: {execution.branch}")
            lines.append(f"Commit: {execution.commit_hash[:8]}")
        return lines

    lines.extend(
        [
            f"Task failed: {result.error or '(no error message)'}",
            f"Exit code: {execution.exit_code}",
            f"Failure class: {result.failure_class.value if result.failure_class else '-'}",
        ],
    )
    if execution.stdout:
        lines.append(f"Stdout (last 500 chars): {execution.stdout[-500:]}")
    return lines


def _validated_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    try:
        return TaskStatus(value)
    except ValueError as error:
        raise ValueError(f"Unsupported task status: {value!r}") from error


@contextmanager
def _repository(settings: Settings) -> Iterator[NightcrewRepository]:
    repository = NightcrewRepository(db_path=settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
