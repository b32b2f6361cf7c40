"""SQLModel ORM tables for scheduler storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_status_score", "status", "score"),)

    id: int | None = Field(default=None, primary_key=True)
    project_path: str = Field(index=True)
    project_name: str
    source: str = Field(index=True)
    category: str = Field(index=True)
    title: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    file_path: str | None = None
    line_number: int | None = None
    impact: int
    confidence: int
    risk: int
    duration: int
    score: float
    status: str = Field(index=True)
    prompt: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ExecutionRow(SQLModel, table=True):
    __tablename__ = "executions"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_executions_task_time", "task_id", "completed_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: int | None = Field(
        default=None,
        sa_column=Column(ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True),
    )
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd_cents: int = 0
    duration_ms: int = 0
    exit_code: int
    stdout: str = Field(default="", sa_column=Column(Text, nullable=False))
    stderr: str = Field(default="", sa_column=Column(Text, nullable=False))
    branch: str
    commit_hash: str | None = None
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class LedgerEntryRow(SQLModel, table=True):
    __tablename__ = "ledger_entries"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ledger_account_time", "account_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    account_id: str
    counterparty_id: str
    entry_type: str
    amount: int
    currency: str
    description: str
    task_id: int | None = Field(
        default=None,
        sa_column=Column(ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True),
    )
    execution_id: int | None = Field(
        default=None,
        sa_column=Column(ForeignKey("executions.id", ondelete="SET NULL"), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CreditSnapshotRow(SQLModel, table=True):
    __tablename__ = "credit_snapshots"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_credit_snapshots_account_time", "account_id", "captured_at"),)

    id: int | None = Field(default=None, primary_key=True)
    account_id: str
    balance_tokens: int
    balance_usd_cents: int
    window_reset_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    captured_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
