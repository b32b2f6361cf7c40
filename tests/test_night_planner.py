from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import allure
import pytest

from nightcrew.core.models import GovernorConfig, NightPlannerConfig, TaskStatus
from nightcrew.executor.planner import NightPlanner

pytestmark = [
    allure.epic("Scheduling Core"),
    allure.feature("Night Planner"),
]


def _at(hour: int) -> datetime:
    return datetime(2026, 10, 17, hour, 15, tzinfo=UTC)


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(23, True), (0, True), (5, True), (6, False), (12, False), (22, False)],
)
def test_window_wrapping_midnight(hour: int, expected: bool) -> None:
    planner = NightPlanner(NightPlannerConfig(start_hour=23, end_hour=6))

    assert planner.is_night_time(_at(hour)) is expected


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(0, False), (1, True), (3, True), (5, True), (6, False), (7, False)],
)
def test_window_within_one_day(hour: int, expected: bool) -> None:
    planner = NightPlanner(NightPlannerConfig(start_hour=1, end_hour=6))

    assert planner.is_night_time(_at(hour)) is expected


def test_window_defaults_to_clock() -> None:
    planner = NightPlanner(clock=lambda: _at(2))

    assert planner.is_night_time() is True


def test_branch_name_is_zero_padded() -> None:
    planner = NightPlanner()

    assert planner.get_branch_name(date(2026, 3, 7)) == "nightmode/2026-03-07"


def test_branch_name_uses_clock_date() -> None:
    planner = NightPlanner(clock=lambda: datetime(2026, 1, 2, 23, 59, tzinfo=UTC))

    assert planner.get_branch_name() == "nightmode/2026-01-02"


def test_plan_keeps_only_queued_low_risk_tasks(make_task) -> None:
    now = _at(23)
    planner = NightPlanner(clock=lambda: now)
    risky = make_task(task_id=1, risk=4)
    running = make_task(task_id=2)
    running.status = TaskStatus.RUNNING
    boundary = make_task(task_id=3, risk=3)
    safe = make_task(task_id=4, risk=1)

    plan = planner.plan([risky, running, boundary, safe], 10_000, now + timedelta(hours=6))

    assert sorted(plan.execution_order) == [3, 4]
    assert plan.tasks_skipped == 0


def test_plan_respects_governor_policy(make_task) -> None:
    now = _at(23)
    planner = NightPlanner(
        NightPlannerConfig(
            governor=GovernorConfig(credit_cap_percent=50, max_budget_per_task_usd_cents=100),
        ),
        clock=lambda: now,
    )
    tasks = [make_task(task_id=index, score=float(index)) for index in range(1, 6)]

    plan = planner.plan(tasks, 400, now + timedelta(hours=6))

    assert plan.execution_order == [5, 4]
    assert plan.tasks_skipped == 3


def test_duration_estimate_is_three_minutes_per_task(make_task) -> None:
    now = _at(23)
    planner = NightPlanner(clock=lambda: now)
    plan = planner.plan(
        [make_task(task_id=index) for index in range(1, 5)],
        10_000,
        now + timedelta(hours=6),
    )

    assert planner.estimate_duration_minutes(plan) == 12
