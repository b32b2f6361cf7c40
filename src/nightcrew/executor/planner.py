"""Night planner: time-of-day gating, risk filtering, and branch identity."""

from __future__ import annotations

from datetime import date, datetime

from nightcrew.clock import Clock, local_now
from nightcrew.core.governor import Governor
from nightcrew.core.models import BatchPlan, NightPlannerConfig, Task, TaskStatus

BRANCH_PREFIX = "nightmode/"
MAX_NIGHT_RISK = 3
MINUTES_PER_TASK_ESTIMATE = 3


class NightPlanner:
    """Decides what runs during off-hours on top of the Governor."""

    def __init__(self, config: NightPlannerConfig | None = None, *, clock: Clock = local_now) -> None:
        self.config = config or NightPlannerConfig()
        self._clock = clock
        self.governor = Governor(self.config.governor, clock=clock)

    def is_night_time(self, now: datetime | None = None) -> bool:
        """Whether `now` falls inside the configured window.

        A window with start > end wraps midnight (23 -> 6).
        """

        hour = (now if now is not None else self._clock()).hour
        start, end = self.config.start_hour, self.config.end_hour
        if start > end:
            return hour >= start or hour < end
        return start <= hour < end

    def plan(self, tasks: list[Task], remaining_usd_cents: int, window_reset_at: datetime) -> BatchPlan:
        """Plan tonight's batch from queued tasks of risk 3 or lower."""

        eligible = [
            task
            for task in tasks
            if task.status == TaskStatus.QUEUED and task.risk <= MAX_NIGHT_RISK
        ]
        return self.governor.build_batch_plan(eligible, remaining_usd_cents, window_reset_at)

    def get_branch_name(self, day: date | None = None) -> str:
        """One branch per calendar day, shared by every project touched."""

        current = day if day is not None else self._clock().date()
        return f"{BRANCH_PREFIX}{current.year:04d}-{current.month:02d}-{current.day:02d}"

    def estimate_duration_minutes(self, plan: BatchPlan) -> int:
        return len(plan.tasks) * MINUTES_PER_TASK_ESTIMATE
