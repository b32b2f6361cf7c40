"""Domain models for task scheduling, execution, and credit accounting."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

ACCOUNT_SELF = "self"
COUNTERPARTY_PROVIDER = "provider"
COUNTERPARTY_SUBSCRIPTION = "subscription"

STDOUT_CAP_BYTES = 10_000
STDERR_CAP_BYTES = 5_000

MIN_RATING = 1
MAX_RATING = 5


class TaskStatus(str, Enum):
    """Task lifecycle states.

    The scheduling core only ever writes RUNNING, COMPLETED and FAILED;
    SKIPPED is an operator action on a queued task.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class EntryType(str, Enum):
    """Ledger entry side."""

    DEBIT = "debit"
    CREDIT = "credit"


class Currency(str, Enum):
    """Ledger amount denomination."""

    TOKENS = "tokens"
    USD_CENTS = "usd_cents"


class FailureClass(str, Enum):
    """Normalized failure classes for a task attempt."""

    TIMEOUT = "timeout"
    SPAWN_FAILURE = "spawn_failure"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    RATE_LIMITED = "rate_limited"
    AGENT_REPORTED = "agent_reported"
    BACKEND_ERROR = "backend_error"
    SKIPPED_BY_ROUTER = "skipped_by_router"


def compute_score(*, impact: int, confidence: int, risk: int, duration: int) -> float:
    """Priority score, rounded half-up to two decimals.

    Increases with impact and confidence, decreases with risk and duration.
    """

    numerator = impact * 3 + confidence * 2
    denominator = risk * 2 + duration
    return math.floor(numerator / denominator * 100 + 0.5) / 100


@dataclass(slots=True)
class Task:
    """A unit of discovered, automatable work."""

    project_path: str
    project_name: str
    source: str
    category: str
    title: str
    description: str
    impact: int
    confidence: int
    risk: int
    duration: int
    status: TaskStatus = TaskStatus.QUEUED
    id: int | None = None
    file_path: str | None = None
    line_number: int | None = None
    score: float | None = None
    prompt: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def effective_score(self) -> float:
        """Precomputed score if present, otherwise the derived one."""

        if self.score is not None:
            return self.score
        return compute_score(
            impact=self.impact,
            confidence=self.confidence,
            risk=self.risk,
            duration=self.duration,
        )

    def agent_prompt(self) -> str:
        """Prompt handed to the execution agent."""

        return self.prompt or self.description


@dataclass(slots=True)
class BatchPlan:
    """Transient result of one scheduling decision."""

    tasks: list[Task]
    total_estimated_cost_usd_cents: int
    budget_cap_usd_cents: int
    tasks_skipped: int
    execution_order: list[int]
    reason: str = ""


@dataclass(frozen=True, slots=True)
class Execution:
    """Immutable record of one task attempt."""

    task_id: int | None
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost_usd_cents: int
    duration_ms: int
    exit_code: int
    stdout: str
    stderr: str
    branch: str
    started_at: datetime
    completed_at: datetime
    commit_hash: str | None = None
    id: int | None = None


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """One leg of a double-entry transaction."""

    account_id: str
    counterparty_id: str
    entry_type: EntryType
    amount: int
    currency: Currency
    description: str
    created_at: datetime
    task_id: int | None = None
    execution_id: int | None = None
    id: int | None = None


@dataclass(frozen=True, slots=True)
class CreditSnapshot:
    """Point-in-time balance capture for one account."""

    account_id: str
    balance_tokens: int
    balance_usd_cents: int
    window_reset_at: datetime
    captured_at: datetime
    id: int | None = None


@dataclass(slots=True)
class GovernorConfig:
    """Spending policy knobs."""

    credit_cap_percent: int = 75
    max_budget_per_task_usd_cents: int = 50
    hard_stop_minutes_before_reset: int = 30
    window_reset_hour: int = 0


@dataclass(slots=True)
class NightPlannerConfig:
    """Night window and the embedded spending policy."""

    start_hour: int = 23
    end_hour: int = 6
    governor: GovernorConfig = field(default_factory=GovernorConfig)


@dataclass(slots=True)
class GovernorDecision:
    """Summary admission decision for a candidate pool."""

    allowed: bool
    reason: str
    remaining_budget_usd_cents: int
    capped_budget_usd_cents: int
    tasks_approved: int
    tasks_rejected: int


@dataclass(slots=True)
class ModelChoice:
    """Model selected for one task, or `skip`."""

    model: str
    reason: str
    max_budget_usd: float

    @property
    def skipped(self) -> bool:
        return self.model == "skip"


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one task attempt as seen by the batch loop."""

    task: Task
    execution: Execution
    success: bool
    error: str | None = None
    failure_class: FailureClass | None = None
    model_choice: ModelChoice | None = None


@dataclass(slots=True)
class SafetyCommitResult:
    """Pre-flight save of operator work in one project."""

    project_path: str
    skipped: bool
    reason: str | None = None
    commit_hash: str | None = None
    branch: str | None = None


def cap_output(text: str, limit_bytes: int) -> str:
    """Truncate text to at most `limit_bytes` of UTF-8."""

    encoded = text.encode("utf-8")
    if len(encoded) <= limit_bytes:
        return text
    return encoded[:limit_bytes].decode("utf-8", errors="ignore")
