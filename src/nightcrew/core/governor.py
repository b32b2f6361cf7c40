"""Credit governor: spending caps and greedy batch selection."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from nightcrew.clock import Clock, local_now
from nightcrew.core.models import BatchPlan, GovernorConfig, GovernorDecision, Task


class Governor:
    """Stateless policy engine.

    Answers "given the remaining budget, the reset deadline and these
    candidates, what may run now and in which order".
    """

    def __init__(self, config: GovernorConfig | None = None, *, clock: Clock = local_now) -> None:
        self.config = config or GovernorConfig()
        self._clock = clock

    def is_within_hard_stop(self, window_reset_at: datetime, now: datetime | None = None) -> bool:
        """True iff the reset is at most `hard_stop_minutes_before_reset` away.

        A reset already in the past means a new window has begun, which is not
        a hard stop.
        """

        current = now if now is not None else self._clock()
        diff_minutes = (window_reset_at - current).total_seconds() / 60
        return 0 <= diff_minutes <= self.config.hard_stop_minutes_before_reset

    def get_capped_budget(self, remaining_usd_cents: int) -> int:
        return remaining_usd_cents * self.config.credit_cap_percent // 100

    def evaluate(
        self,
        tasks: list[Task],
        remaining_usd_cents: int,
        window_reset_at: datetime,
    ) -> GovernorDecision:
        """Count-only admission decision; does not select or mutate tasks."""

        if self.is_within_hard_stop(window_reset_at):
            return GovernorDecision(
                allowed=False,
                reason=(
                    f"Within {self.config.hard_stop_minutes_before_reset} minutes "
                    "of credit window reset"
                ),
                remaining_budget_usd_cents=remaining_usd_cents,
                capped_budget_usd_cents=0,
                tasks_approved=0,
                tasks_rejected=len(tasks),
            )

        capped_budget = self.get_capped_budget(remaining_usd_cents)
        if capped_budget <= 0:
            return GovernorDecision(
                allowed=False,
                reason="No budget remaining after applying credit cap",
                remaining_budget_usd_cents=remaining_usd_cents,
                capped_budget_usd_cents=0,
                tasks_approved=0,
                tasks_rejected=len(tasks),
            )

        max_tasks = capped_budget // self.config.max_budget_per_task_usd_cents
        approved = min(len(tasks), max_tasks)
        return GovernorDecision(
            allowed=approved > 0,
            reason=(
                f"Approved {approved}/{len(tasks)} tasks within {capped_budget}¢ budget"
                if approved > 0
                else "Budget too low for any tasks at current per-task cap"
            ),
            remaining_budget_usd_cents=remaining_usd_cents,
            capped_budget_usd_cents=capped_budget,
            tasks_approved=approved,
            tasks_rejected=len(tasks) - approved,
        )

    def build_batch_plan(
        self,
        tasks: list[Task],
        remaining_usd_cents: int,
        window_reset_at: datetime,
    ) -> BatchPlan:
        """Greedy fill of the capped budget by descending score.

        Every selected task is charged the configured per-task maximum, so
        the batch cannot overrun its cap even if each task spends its limit.
        Ties keep their input order.
        """

        capped_budget = self.get_capped_budget(remaining_usd_cents)
        per_task_cost = self.config.max_budget_per_task_usd_cents
        scored = sorted(
            (replace(task, score=task.effective_score()) for task in tasks),
            key=lambda task: task.score,
            reverse=True,
        )

        selected: list[Task] = []
        total_cost = 0
        skipped = 0
        hard_stop = False
        for task in scored:
            # Time only moves forward: once inside the hard stop, stay there.
            hard_stop = hard_stop or self.is_within_hard_stop(window_reset_at)
            if not hard_stop and total_cost + per_task_cost <= capped_budget:
                selected.append(task)
                total_cost += per_task_cost
            else:
                skipped += 1

        return BatchPlan(
            tasks=selected,
            total_estimated_cost_usd_cents=total_cost,
            budget_cap_usd_cents=capped_budget,
            tasks_skipped=skipped,
            execution_order=[task.id for task in selected if task.id is not None],
            reason=_plan_reason(
                selected=len(selected),
                candidates=len(tasks),
                capped_budget=capped_budget,
                hard_stop=hard_stop,
                hard_stop_minutes=self.config.hard_stop_minutes_before_reset,
            ),
        )


def _plan_reason(
    *,
    selected: int,
    candidates: int,
    capped_budget: int,
    hard_stop: bool,
    hard_stop_minutes: int,
) -> str:
    if candidates == 0:
        return "No candidate tasks"
    if hard_stop and selected == 0:
        return f"Within {hard_stop_minutes} minutes of credit window reset"
    if capped_budget <= 0:
        return "No budget remaining after applying credit cap"
    if selected == 0:
        return "Budget too low for any tasks at current per-task cap"
    reason = f"Selected {selected}/{candidates} tasks within {capped_budget}¢ budget"
    if hard_stop:
        reason += f"; remainder rejected within {hard_stop_minutes} minutes of reset"
    return reason
