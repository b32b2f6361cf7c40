"""Per-task model routing with historical skip of doomed task kinds."""

from __future__ import annotations

from dataclasses import dataclass

from nightcrew.core.models import ModelChoice, Task

SKIP_MODEL = "skip"
SKIP_MIN_RUNS = 3
SKIP_MAX_SUCCESS_RATE = 0.25

LIGHT_MODEL = "haiku"
HEAVY_MODEL = "sonnet"

LIGHT_CATEGORIES = frozenset(
    {"lint", "test", "cleanup", "docs", "build", "maintenance", "organization"},
)
HEAVY_CATEGORIES = frozenset({"bug-fix", "refactor", "security", "update", "system"})


@dataclass(slots=True)
class HistoricalStats:
    """Past success rate for one category/source pair."""

    category: str
    source: str
    total_runs: int
    success_rate: float


def route_model(
    task: Task,
    history: list[HistoricalStats] | tuple[HistoricalStats, ...] = (),
    default_model: str = HEAVY_MODEL,
) -> ModelChoice:
    """Pick a model and agent budget for `task`, or `skip`."""

    stats = next(
        (
            item
            for item in history
            if item.category == task.category and item.source == task.source
        ),
        None,
    )
    if (
        stats is not None
        and stats.total_runs >= SKIP_MIN_RUNS
        and stats.success_rate < SKIP_MAX_SUCCESS_RATE
    ):
        return ModelChoice(
            model=SKIP_MODEL,
            reason=(
                f"Skipping: {task.category}/{task.source} has "
                f"{round(stats.success_rate * 100)}% success rate ({stats.total_runs} runs)"
            ),
            max_budget_usd=0.0,
        )

    if task.category in LIGHT_CATEGORIES:
        return ModelChoice(
            model=LIGHT_MODEL,
            reason=f"{task.category} task, light model",
            max_budget_usd=0.10,
        )

    if task.category in HEAVY_CATEGORIES:
        return ModelChoice(
            model=HEAVY_MODEL,
            reason=f"{task.category} task, heavy model",
            max_budget_usd=0.30 if task.confidence >= 4 else 0.50,
        )

    return ModelChoice(
        model=default_model,
        reason=f"Default model for {task.category}",
        max_budget_usd=0.50,
    )
