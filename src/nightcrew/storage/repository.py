"""Persistence facade for tasks, executions, ledger entries, and snapshots."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from sqlalchemy import case, func
from sqlmodel import Session, col, select

from nightcrew.clock import utc_now
from nightcrew.core.models import (
    CreditSnapshot,
    Currency,
    EntryType,
    Execution,
    LedgerEntry,
    Task,
    TaskStatus,
)
from nightcrew.executor.router import HistoricalStats
from nightcrew.storage.alembic_runner import upgrade_head
from nightcrew.storage.common import build_sqlite_engine, to_db_datetime, to_utc_aware_datetime
from nightcrew.storage.sqlmodel_models import (
    CreditSnapshotRow,
    ExecutionRow,
    LedgerEntryRow,
    TaskRow,
)

HISTORY_MIN_RUNS = 2
_EXCLUDED_HISTORY_MODELS = ("skipped", "dry-run")


class NightcrewRepository:
    """Scheduler persistence backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def add_task(self, task: Task) -> Task:
        """Insert a task; the stored copy carries its id, score and timestamps."""

        now = utc_now()
        with Session(self.engine) as session:
            row = TaskRow(
                project_path=task.project_path,
                project_name=task.project_name,
                source=task.source,
                category=task.category,
                title=task.title,
                description=task.description,
                file_path=task.file_path,
                line_number=task.line_number,
                impact=task.impact,
                confidence=task.confidence,
                risk=task.risk,
                duration=task.duration,
                score=task.effective_score(),
                status=task.status.value,
                prompt=task.prompt,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task(row)

    def get_task(self, task_id: int) -> Task | None:
        with Session(self.engine) as session:
            row = session.get(TaskRow, task_id)
            return _to_task(row) if row is not None else None

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[Task]:
        """List tasks newest first, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(TaskRow)
            if status is not None:
                statement = statement.where(TaskRow.status == status.value)
            rows = session.exec(
                statement.order_by(col(TaskRow.id).desc()).limit(limit),
            ).all()
            return [_to_task(row) for row in rows]

    def list_queued_tasks(self) -> list[Task]:
        """Queued tasks by descending score, oldest first on ties."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(TaskRow.status == TaskStatus.QUEUED.value)
                .order_by(col(TaskRow.score).desc(), col(TaskRow.id).asc()),
            ).all()
            return [_to_task(row) for row in rows]

    def update_task_status(self, task_id: int, status: TaskStatus) -> None:
        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            row.status = status.value
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()

    def skip_task(self, task_id: int) -> None:
        """Operator action: withdraw a queued task from scheduling."""

        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            if row.status != TaskStatus.QUEUED.value:
                raise RuntimeError(f"Task cannot be skipped from status={row.status}")
            row.status = TaskStatus.SKIPPED.value
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()

    def insert_execution(self, execution: Execution) -> int:
        """Persist an execution and return its generated id."""

        with Session(self.engine) as session:
            row = ExecutionRow(
                task_id=execution.task_id,
                model=execution.model,
                prompt_tokens=execution.prompt_tokens,
                completion_tokens=execution.completion_tokens,
                total_tokens=execution.total_tokens,
                cost_usd_cents=execution.cost_usd_cents,
                duration_ms=execution.duration_ms,
                exit_code=execution.exit_code,
                stdout=execution.stdout,
                stderr=execution.stderr,
                branch=execution.branch,
                commit_hash=execution.commit_hash,
                started_at=to_db_datetime(execution.started_at),
                completed_at=to_db_datetime(execution.completed_at),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            if row.id is None:
                raise RuntimeError("Execution insert did not return an id")
            return row.id

    def get_execution(self, execution_id: int) -> Execution | None:
        with Session(self.engine) as session:
            row = session.get(ExecutionRow, execution_id)
            return _to_execution(row) if row is not None else None

    def list_executions(self, *, task_id: int | None = None, limit: int = 50) -> list[Execution]:
        with Session(self.engine) as session:
            statement = select(ExecutionRow)
            if task_id is not None:
                statement = statement.where(ExecutionRow.task_id == task_id)
            rows = session.exec(
                statement.order_by(col(ExecutionRow.id).desc()).limit(limit),
            ).all()
            return [_to_execution(row) for row in rows]

    def insert_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        with Session(self.engine) as session:
            row = LedgerEntryRow(
                account_id=entry.account_id,
                counterparty_id=entry.counterparty_id,
                entry_type=entry.entry_type.value,
                amount=entry.amount,
                currency=entry.currency.value,
                description=entry.description,
                task_id=entry.task_id,
                execution_id=entry.execution_id,
                created_at=to_db_datetime(entry.created_at),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return replace(entry, id=row.id)

    def list_ledger_entries(self, account_id: str) -> list[LedgerEntry]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(LedgerEntryRow)
                .where(LedgerEntryRow.account_id == account_id)
                .order_by(col(LedgerEntryRow.created_at).asc(), col(LedgerEntryRow.id).asc()),
            ).all()
            return [_to_ledger_entry(row) for row in rows]

    def insert_snapshot(self, snapshot: CreditSnapshot) -> CreditSnapshot:
        with Session(self.engine) as session:
            row = CreditSnapshotRow(
                account_id=snapshot.account_id,
                balance_tokens=snapshot.balance_tokens,
                balance_usd_cents=snapshot.balance_usd_cents,
                window_reset_at=to_db_datetime(snapshot.window_reset_at),
                captured_at=to_db_datetime(snapshot.captured_at),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return replace(snapshot, id=row.id)

    def get_latest_snapshot(self, account_id: str) -> CreditSnapshot | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(CreditSnapshotRow)
                .where(CreditSnapshotRow.account_id == account_id)
                .order_by(col(CreditSnapshotRow.captured_at).desc(), col(CreditSnapshotRow.id).desc())
                .limit(1),
            ).one_or_none()
            if row is None:
                return None
            return CreditSnapshot(
                account_id=row.account_id,
                balance_tokens=row.balance_tokens,
                balance_usd_cents=row.balance_usd_cents,
                window_reset_at=to_utc_aware_datetime(row.window_reset_at),
                captured_at=to_utc_aware_datetime(row.captured_at),
                id=row.id,
            )

    def historical_stats(self) -> list[HistoricalStats]:
        """Success rate per category/source over past real attempts."""

        success = func.avg(case((col(ExecutionRow.exit_code) == 0, 1.0), else_=0.0))
        runs = func.count(col(ExecutionRow.id))
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow.category, TaskRow.source, runs, success)
                .join(ExecutionRow, col(ExecutionRow.task_id) == col(TaskRow.id))
                .where(col(ExecutionRow.model).not_in(_EXCLUDED_HISTORY_MODELS))
                .group_by(col(TaskRow.category), col(TaskRow.source))
                .having(runs >= HISTORY_MIN_RUNS),
            ).all()
        return [
            HistoricalStats(
                category=category,
                source=source,
                total_runs=int(total_runs),
                success_rate=round(float(success_rate or 0.0), 2),
            )
            for category, source, total_runs, success_rate in rows
        ]

    def _get_task_row(self, *, session: Session, task_id: int) -> TaskRow:
        row = session.get(TaskRow, task_id)
        if row is None:
            raise RuntimeError(f"Task not found: {task_id}")
        return row


def _to_task(row: TaskRow) -> Task:
    return Task(
        id=row.id,
        project_path=row.project_path,
        project_name=row.project_name,
        source=row.source,
        category=row.category,
        title=row.title,
        description=row.description,
        file_path=row.file_path,
        line_number=row.line_number,
        impact=row.impact,
        confidence=row.confidence,
        risk=row.risk,
        duration=row.duration,
        score=row.score,
        status=TaskStatus(row.status),
        prompt=row.prompt,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_execution(row: ExecutionRow) -> Execution:
    return Execution(
        id=row.id,
        task_id=row.task_id,
        model=row.model,
        prompt_tokens=row.prompt_tokens,
        completion_tokens=row.completion_tokens,
        total_tokens=row.total_tokens,
        cost_usd_cents=row.cost_usd_cents,
        duration_ms=row.duration_ms,
        exit_code=row.exit_code,
        stdout=row.stdout,
        stderr=row.stderr,
        branch=row.branch,
        commit_hash=row.commit_hash,
        started_at=to_utc_aware_datetime(row.started_at),
        completed_at=to_utc_aware_datetime(row.completed_at),
    )


def _to_ledger_entry(row: LedgerEntryRow) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,
        account_id=row.account_id,
        counterparty_id=row.counterparty_id,
        entry_type=EntryType(row.entry_type),
        amount=row.amount,
        currency=Currency(row.currency),
        description=row.description,
        task_id=row.task_id,
        execution_id=row.execution_id,
        created_at=to_utc_aware_datetime(row.created_at),
    )
