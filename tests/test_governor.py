from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import allure
import pytest

from nightcrew.core.governor import Governor
from nightcrew.core.models import GovernorConfig, compute_score

pytestmark = [
    allure.epic("Scheduling Core"),
    allure.feature("Credit Governor"),
]

NOW = datetime(2026, 10, 17, 23, 0, tzinfo=UTC)


class SequenceClock:
    """Returns the given instants in order, then repeats the last one."""

    def __init__(self, *instants: datetime) -> None:
        self._instants = list(instants)

    def __call__(self) -> datetime:
        if len(self._instants) > 1:
            return self._instants.pop(0)
        return self._instants[0]


def test_compute_score_reference_value() -> None:
    assert compute_score(impact=5, confidence=5, risk=1, duration=1) == 8.33


def test_compute_score_is_monotonic_in_each_rating() -> None:
    ratings = range(1, 6)
    for impact in ratings:
        for confidence in ratings:
            for risk in ratings:
                for duration in ratings:
                    base = compute_score(
                        impact=impact, confidence=confidence, risk=risk, duration=duration
                    )
                    if impact < 5:
                        assert compute_score(
                            impact=impact + 1, confidence=confidence, risk=risk, duration=duration
                        ) >= base
                    if confidence < 5:
                        assert compute_score(
                            impact=impact, confidence=confidence + 1, risk=risk, duration=duration
                        ) >= base
                    if risk < 5:
                        assert compute_score(
                            impact=impact, confidence=confidence, risk=risk + 1, duration=duration
                        ) <= base
                    if duration < 5:
                        assert compute_score(
                            impact=impact, confidence=confidence, risk=risk, duration=duration + 1
                        ) <= base


def test_capped_budget_floors_the_percentage() -> None:
    governor = Governor(GovernorConfig(credit_cap_percent=75))

    assert governor.get_capped_budget(1000) == 750
    assert governor.get_capped_budget(0) == 0
    assert governor.get_capped_budget(999) == 749


@pytest.mark.parametrize(
    ("offset_minutes", "expected"),
    [(30, True), (0, True), (15, True), (31, False), (-1, False), (600, False)],
)
def test_hard_stop_window_boundaries(offset_minutes: int, expected: bool) -> None:
    governor = Governor(GovernorConfig(hard_stop_minutes_before_reset=30))

    reset_at = NOW + timedelta(minutes=offset_minutes)

    assert governor.is_within_hard_stop(reset_at, NOW) is expected


def test_hard_stop_uses_injected_clock_when_now_is_omitted() -> None:
    governor = Governor(GovernorConfig(hard_stop_minutes_before_reset=30), clock=lambda: NOW)

    assert governor.is_within_hard_stop(NOW + timedelta(minutes=30)) is True
    assert governor.is_within_hard_stop(NOW + timedelta(minutes=31)) is False


def test_batch_plan_fills_cap_with_highest_scores_in_order(make_task) -> None:
    governor = Governor(
        GovernorConfig(credit_cap_percent=75, max_budget_per_task_usd_cents=50),
        clock=lambda: NOW,
    )
    scores = list(range(1, 21))
    random.Random(7).shuffle(scores)
    tasks = [
        make_task(task_id=index + 1, title=f"task {index}", score=float(score))
        for index, score in enumerate(scores)
    ]

    plan = governor.build_batch_plan(tasks, 1000, NOW + timedelta(hours=6))

    assert len(plan.tasks) == 15
    assert plan.tasks_skipped == 5
    assert plan.total_estimated_cost_usd_cents == 750
    assert plan.budget_cap_usd_cents == 750
    assert [task.score for task in plan.tasks] == [float(value) for value in range(20, 5, -1)]
    assert plan.execution_order == [task.id for task in plan.tasks]


def test_batch_plan_keeps_input_order_for_equal_scores(make_task) -> None:
    governor = Governor(clock=lambda: NOW)
    tasks = [make_task(task_id=task_id, score=2.0) for task_id in (5, 3, 9, 1)]

    plan = governor.build_batch_plan(tasks, 10_000, NOW + timedelta(hours=6))

    assert plan.execution_order == [5, 3, 9, 1]


def test_batch_plan_computes_missing_scores(make_task) -> None:
    governor = Governor(clock=lambda: NOW)
    weak = make_task(task_id=1, impact=1, confidence=1, risk=3, duration=3)
    strong = make_task(task_id=2, impact=5, confidence=5, risk=1, duration=1)

    plan = governor.build_batch_plan([weak, strong], 10_000, NOW + timedelta(hours=6))

    assert plan.execution_order == [2, 1]
    assert plan.tasks[0].score == 8.33
    assert weak.score is None


def test_batch_plan_inside_hard_stop_selects_nothing(make_task) -> None:
    governor = Governor(clock=lambda: NOW)
    tasks = [make_task(task_id=index) for index in range(1, 4)]

    plan = governor.build_batch_plan(tasks, 10_000, NOW + timedelta(minutes=10))

    assert plan.tasks == []
    assert plan.tasks_skipped == 3
    assert plan.total_estimated_cost_usd_cents == 0
    assert "minutes of credit window reset" in plan.reason


def test_batch_plan_keeps_tasks_selected_before_hard_stop_begins(make_task) -> None:
    reset_at = NOW + timedelta(minutes=31)
    clock = SequenceClock(NOW, NOW + timedelta(minutes=1))
    governor = Governor(GovernorConfig(hard_stop_minutes_before_reset=30), clock=clock)
    tasks = [make_task(task_id=index, score=float(10 - index)) for index in range(1, 5)]

    plan = governor.build_batch_plan(tasks, 10_000, reset_at)

    assert plan.execution_order == [1]
    assert plan.tasks_skipped == 3


def test_batch_plan_with_no_budget(make_task) -> None:
    governor = Governor(clock=lambda: NOW)

    plan = governor.build_batch_plan([make_task()], 0, NOW + timedelta(hours=6))

    assert plan.tasks == []
    assert plan.tasks_skipped == 1
    assert plan.reason == "No budget remaining after applying credit cap"


def test_evaluate_counts_approved_tasks(make_task) -> None:
    governor = Governor(clock=lambda: NOW)
    tasks = [make_task(task_id=index) for index in range(1, 21)]

    decision = governor.evaluate(tasks, 1000, NOW + timedelta(hours=6))

    assert decision.allowed is True
    assert decision.capped_budget_usd_cents == 750
    assert decision.tasks_approved == 15
    assert decision.tasks_rejected == 5
    assert all(task.score is None for task in tasks)


def test_evaluate_rejects_everything_inside_hard_stop(make_task) -> None:
    governor = Governor(clock=lambda: NOW)

    decision = governor.evaluate([make_task()], 1000, NOW + timedelta(minutes=5))

    assert decision.allowed is False
    assert decision.capped_budget_usd_cents == 0
    assert decision.tasks_rejected == 1


def test_evaluate_rejects_when_cap_is_below_one_task(make_task) -> None:
    governor = Governor(clock=lambda: NOW)

    decision = governor.evaluate([make_task()], 60, NOW + timedelta(hours=6))

    assert decision.allowed is False
    assert decision.capped_budget_usd_cents == 45
    assert decision.tasks_approved == 0
