"""Budget source feeding the governor: remaining spend and the reset deadline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from nightcrew.clock import Clock, local_now
from nightcrew.core.ledger import Ledger
from nightcrew.core.models import ACCOUNT_SELF

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BudgetWindow:
    """Spendable balance inside the current credit window."""

    remaining_usd_cents: int
    window_reset_at: datetime


class BudgetSource(Protocol):
    """Anything able to report the current budget window."""

    def current(self) -> BudgetWindow:
        """Return remaining spendable cents and the next reset time."""


def next_window_reset(now: datetime, reset_hour: int) -> datetime:
    """Next occurrence of `reset_hour:00` strictly after `now`."""

    reset = now.replace(hour=reset_hour, minute=0, second=0, microsecond=0)
    if reset <= now:
        reset += timedelta(days=1)
    return reset


class SnapshotBudgetSource:
    """Derive the remaining budget from the latest snapshot and ledger spend.

    A snapshot captured inside the current window is authoritative for the
    balance at capture time; otherwise the configured estimate applies from
    the start of the window. Ledger debits since then are subtracted.
    """

    def __init__(
        self,
        *,
        ledger: Ledger,
        estimated_balance_usd_cents: int,
        window_reset_hour: int,
        account_id: str = ACCOUNT_SELF,
        clock: Clock = local_now,
    ) -> None:
        self.ledger = ledger
        self.estimated_balance_usd_cents = estimated_balance_usd_cents
        self.window_reset_hour = window_reset_hour
        self.account_id = account_id
        self._clock = clock

    def current(self) -> BudgetWindow:
        now = self._clock()
        reset_at = next_window_reset(now, self.window_reset_hour)
        window_start = reset_at - timedelta(days=1)

        snapshot = self.ledger.get_latest_snapshot(self.account_id)
        if snapshot is not None and snapshot.captured_at >= window_start:
            balance = snapshot.balance_usd_cents
            since = snapshot.captured_at
            basis = "snapshot"
        else:
            balance = self.estimated_balance_usd_cents
            since = window_start
            basis = "estimate"

        spent = self.ledger.get_spent_since(self.account_id, since)
        remaining = max(0, balance - spent)
        logger.info(
            "Budget window: basis=%s balance=%d spent=%d remaining=%d reset_at=%s",
            basis,
            balance,
            spent,
            remaining,
            reset_at.isoformat(),
        )
        return BudgetWindow(remaining_usd_cents=remaining, window_reset_at=reset_at)
