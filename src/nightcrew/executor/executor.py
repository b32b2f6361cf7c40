"""Task execution against an external agent with night-branch git management."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path

from nightcrew.clock import Clock, local_now
from nightcrew.core.models import (
    STDERR_CAP_BYTES,
    STDOUT_CAP_BYTES,
    BatchPlan,
    Execution,
    ExecutionResult,
    FailureClass,
    ModelChoice,
    SafetyCommitResult,
    Task,
    TaskStatus,
    cap_output,
)
from nightcrew.executor.backend.base import AgentBackend, AgentRunRequest, AgentRunResult
from nightcrew.executor.backend.cli_backend import BackendRunError
from nightcrew.executor.failure_classifier import classify_failure
from nightcrew.executor.git import DEFAULT_GIT_TIMEOUT_SECONDS, GitError, GitWorkspace
from nightcrew.executor.planner import NightPlanner
from nightcrew.executor.report import render_morning_report
from nightcrew.executor.router import HEAVY_MODEL, HistoricalStats, route_model

logger = logging.getLogger(__name__)

MAX_BATCH_FAILURES = 3
DEFAULT_AGENT_TIMEOUT_SECONDS = 300
COMMIT_TRAILER = "Generated-By: nightcrew night mode"
DRY_RUN_MODEL = "dry-run"
SKIPPED_MODEL = "skipped"
DRY_RUN_STDOUT = "[DRY RUN] Would execute task"
SKIPPED_EXIT_CODE = -1
BACKEND_ERROR_EXIT_CODE = 1

StatusUpdater = Callable[[int, TaskStatus], None]
ProgressCallback = Callable[[int, int, ExecutionResult], None]


def resolve_project_path(project_path: str) -> Path:
    """Expand a leading `~` in a stored project path."""

    return Path(project_path).expanduser()


def to_execution(  # noqa: PLR0913
    task: Task,
    result: AgentRunResult,
    *,
    branch: str,
    model: str,
    completed_at: datetime,
    commit_hash: str | None = None,
) -> Execution:
    """Map one agent attempt onto an immutable Execution record."""

    return Execution(
        task_id=task.id,
        model=model,
        prompt_tokens=result.prompt_tokens,
        completion_tokens=result.completion_tokens,
        total_tokens=result.total_tokens,
        cost_usd_cents=result.cost_usd_cents,
        duration_ms=result.duration_ms,
        exit_code=result.exit_code,
        stdout=cap_output(result.stdout, STDOUT_CAP_BYTES),
        stderr=cap_output(result.stderr, STDERR_CAP_BYTES),
        branch=branch,
        started_at=completed_at - timedelta(milliseconds=result.duration_ms),
        completed_at=completed_at,
        commit_hash=commit_hash,
    )


class Executor:
    """Runs tasks one at a time and keeps their git side effects on the night branch.

    Per attempt: PREPARE (ensure branch) -> RUN (agent) -> COMMIT (on exit 0).
    Git and agent-adapter failures become failed results, never exceptions;
    the batch stops once it has accumulated `max_failures` failed attempts.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: AgentBackend,
        planner: NightPlanner | None = None,
        log_dir: Path | None = None,
        dry_run: bool = False,
        default_model: str = HEAVY_MODEL,
        agent_timeout_seconds: int = DEFAULT_AGENT_TIMEOUT_SECONDS,
        git_timeout_seconds: int = DEFAULT_GIT_TIMEOUT_SECONDS,
        update_task_status: StatusUpdater | None = None,
        history: Sequence[HistoricalStats] = (),
        clock: Clock = local_now,
        max_failures: int = MAX_BATCH_FAILURES,
    ) -> None:
        self.backend = backend
        self.planner = planner or NightPlanner(clock=clock)
        self.log_dir = log_dir
        self.dry_run = dry_run
        self.default_model = default_model
        self.agent_timeout_seconds = agent_timeout_seconds
        self.git_timeout_seconds = git_timeout_seconds
        self.history = list(history)
        self.max_failures = max_failures
        self._update_task_status = update_task_status
        self._clock = clock

    def ensure_branch(self, project_path: Path, branch: str) -> None:
        """Create the night branch from HEAD if missing, leaving the operator's branch checked out."""

        git = self._git(project_path)
        if not git.is_repository():
            return
        try:
            if git.branch_exists(branch):
                return
            git.create_branch(branch)
            logger.info("Created branch %s in %s", branch, project_path)
        except GitError as error:
            logger.warning("Could not prepare %s in %s: %s", branch, project_path, error)

    def commit_changes(self, project_path: Path, branch: str, message: str) -> str | None:
        """Commit the working tree onto `branch` and switch back.

        Returns the commit hash, or None when there was nothing to commit or
        any git step failed. Whatever happens, the branch that was checked out
        before the call is checked out again afterwards.
        """

        git = self._git(project_path)
        if not git.is_repository():
            return None
        try:
            original = git.current_ref()
            git.checkout(branch)
        except GitError as error:
            logger.warning("Could not switch to %s in %s: %s", branch, project_path, error)
            return None

        commit_hash: str | None = None
        try:
            git.add_all()
            if git.status_porcelain():
                git.commit(f"{message}\n\n{COMMIT_TRAILER}")
                commit_hash = git.head()
        except GitError as error:
            logger.warning("Commit on %s failed in %s: %s", branch, project_path, error)
            commit_hash = None

        try:
            git.checkout(original)
        except GitError as error:
            logger.warning("Could not restore %s in %s: %s", original, project_path, error)
        return commit_hash

    def safety_commit(self, project_path: str) -> SafetyCommitResult:
        """Save pre-existing uncommitted work on the current branch before night mode runs."""

        git = self._git(resolve_project_path(project_path))
        if not git.is_repository():
            return SafetyCommitResult(project_path=project_path, skipped=True, reason="not a git repo")

        try:
            if not git.status_porcelain():
                return SafetyCommitResult(
                    project_path=project_path,
                    skipped=True,
                    reason="clean working tree",
                )
            branch = git.current_branch()
            git.add_all()
        except GitError as error:
            logger.warning("Safety commit failed in %s: %s", project_path, error)
            return SafetyCommitResult(project_path=project_path, skipped=True, reason="git error")

        day = self._clock().date().isoformat()
        try:
            git.commit(f"nightcrew: auto-save before night run [{day}]")
        except GitError as error:
            logger.warning("Safety commit failed in %s: %s", project_path, error)
            return SafetyCommitResult(project_path=project_path, skipped=True, reason="commit failed")

        try:
            commit_hash = git.head()
        except GitError as error:
            logger.warning("Safety commit failed in %s: %s", project_path, error)
            return SafetyCommitResult(project_path=project_path, skipped=True, reason="git error")

        logger.info("Safety commit %s on %s in %s", commit_hash[:8], branch, project_path)
        return SafetyCommitResult(
            project_path=project_path,
            skipped=False,
            commit_hash=commit_hash,
            branch=branch,
        )

    def execute_task(
        self,
        task: Task,
        history: Sequence[HistoricalStats] | None = None,
        branch: str | None = None,
    ) -> ExecutionResult:
        """Run PREPARE -> RUN -> COMMIT for one task.

        `branch` defaults to tonight's night branch; a batch passes the one it
        started on so that every task lands on the same branch.
        """

        branch = branch or self.planner.get_branch_name()
        project_path = resolve_project_path(task.project_path)
        choice = route_model(
            task,
            list(history) if history is not None else self.history,
            self.default_model,
        )

        if choice.skipped:
            logger.info("Task %s skipped by router: %s", task.id, choice.reason)
            self._set_status(task, TaskStatus.FAILED)
            return ExecutionResult(
                task=task,
                execution=self._synthetic_execution(
                    task,
                    branch=branch,
                    model=SKIPPED_MODEL,
                    exit_code=SKIPPED_EXIT_CODE,
                    stderr=choice.reason,
                ),
                success=False,
                error=choice.reason,
                failure_class=FailureClass.SKIPPED_BY_ROUTER,
                model_choice=choice,
            )

        if self.dry_run:
            return ExecutionResult(
                task=task,
                execution=self._synthetic_execution(
                    task,
                    branch=branch,
                    model=DRY_RUN_MODEL,
                    exit_code=0,
                    stdout=DRY_RUN_STDOUT,
                ),
                success=True,
                model_choice=choice,
            )

        self._set_status(task, TaskStatus.RUNNING)
        self.ensure_branch(project_path, branch)
        logger.info("Running task %s (%s) with %s in %s", task.id, task.title, choice.model, project_path)

        try:
            run_result = self.backend.run(
                AgentRunRequest(
                    prompt=task.agent_prompt(),
                    project_path=project_path,
                    model=choice.model,
                    max_budget_usd=choice.max_budget_usd,
                    timeout_seconds=self.agent_timeout_seconds,
                ),
            )
        except BackendRunError as error:
            return self._backend_failure(task, choice, branch=branch, message=str(error))
        except Exception as error:  # noqa: BLE001
            return self._backend_failure(
                task,
                choice,
                branch=branch,
                message=f"{type(error).__name__}: {error}",
            )

        success = run_result.exit_code == 0
        commit_hash = None
        if success:
            commit_hash = self.commit_changes(project_path, branch, f"nightmode: {task.title}")

        execution = to_execution(
            task,
            run_result,
            branch=branch,
            model=choice.model,
            completed_at=self._clock(),
            commit_hash=commit_hash,
        )

        if success:
            self._set_status(task, TaskStatus.COMPLETED)
            result = ExecutionResult(task=task, execution=execution, success=True, model_choice=choice)
            self._log_execution(result)
            return result

        classification = classify_failure(
            exit_code=run_result.exit_code,
            stdout=run_result.stdout,
            stderr=run_result.stderr,
        )
        logger.warning(
            "Task %s failed with exit code %d (%s)",
            task.id,
            run_result.exit_code,
            classification.reason_code,
        )
        self._set_status(task, TaskStatus.FAILED)
        result = ExecutionResult(
            task=task,
            execution=execution,
            success=False,
            error=run_result.stderr,
            failure_class=classification.failure_class,
            model_choice=choice,
        )
        self._log_execution(result)
        return result

    def execute_batch(
        self,
        plan: BatchPlan,
        on_progress: ProgressCallback | None = None,
        history: Sequence[HistoricalStats] | None = None,
        branch: str | None = None,
    ) -> list[ExecutionResult]:
        """Execute the plan strictly in order, stopping at the failure limit.

        The night branch is fixed once for the whole batch, even when the batch
        runs past midnight.
        """

        results: list[ExecutionResult] = []
        failures = 0
        total = len(plan.tasks)
        branch = branch or self.planner.get_branch_name()
        for index, task in enumerate(plan.tasks):
            result = self.execute_task(task, history, branch=branch)
            results.append(result)
            if on_progress is not None:
                on_progress(index + 1, total, result)

            if not result.success:
                failures += 1
            if failures >= self.max_failures:
                logger.warning(
                    "Stopping batch after %d failures (%d of %d tasks attempted)",
                    failures,
                    index + 1,
                    total,
                )
                break
        return results

    def generate_morning_report(
        self,
        results: Sequence[ExecutionResult],
        safety_commits: Sequence[SafetyCommitResult] | None = None,
    ) -> str:
        return render_morning_report(results, safety_commits, now=self._clock())

    def _git(self, project_path: Path) -> GitWorkspace:
        return GitWorkspace(project_path, timeout_seconds=self.git_timeout_seconds)

    def _set_status(self, task: Task, status: TaskStatus) -> None:
        task.status = status
        if self._update_task_status is not None and task.id is not None:
            self._update_task_status(task.id, status)

    def _backend_failure(
        self,
        task: Task,
        choice: ModelChoice,
        *,
        branch: str,
        message: str,
    ) -> ExecutionResult:
        logger.warning("Agent backend error for task %s: %s", task.id, message)
        self._set_status(task, TaskStatus.FAILED)
        return ExecutionResult(
            task=task,
            execution=self._synthetic_execution(
                task,
                branch=branch,
                model=choice.model,
                exit_code=BACKEND_ERROR_EXIT_CODE,
                stderr=message,
            ),
            success=False,
            error=message,
            failure_class=FailureClass.BACKEND_ERROR,
            model_choice=choice,
        )

    def _synthetic_execution(  # noqa: PLR0913
        self,
        task: Task,
        *,
        branch: str,
        model: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> Execution:
        now = self._clock()
        return Execution(
            task_id=task.id,
            model=model,
            prompt_tokens=0,
            completion_tokens=0,
            total_tokens=0,
            cost_usd_cents=0,
            duration_ms=0,
            exit_code=exit_code,
            stdout=stdout,
            stderr=cap_output(stderr, STDERR_CAP_BYTES),
            branch=branch,
            started_at=now,
            completed_at=now,
        )

    def _log_execution(self, result: ExecutionResult) -> None:
        if self.log_dir is None:
            return
        task, execution = result.task, result.execution
        now = self._clock()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_dir / f"{now.date().isoformat()}.jsonl"
        entry = {
            "timestamp": now.isoformat(),
            "task": {"id": task.id, "title": task.title, "project": task.project_name},
            "execution": {
                "model": execution.model,
                "exit_code": execution.exit_code,
                "cost_usd_cents": execution.cost_usd_cents,
                "total_tokens": execution.total_tokens,
                "duration_ms": execution.duration_ms,
                "branch": execution.branch,
                "commit_hash": execution.commit_hash,
                "failure_class": result.failure_class.value if result.failure_class else None,
            },
        }
        with log_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")

