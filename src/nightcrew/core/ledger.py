"""Append-only double-entry credit ledger."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from nightcrew.clock import Clock, from_iso, utc_now
from nightcrew.core.models import (
    ACCOUNT_SELF,
    COUNTERPARTY_PROVIDER,
    COUNTERPARTY_SUBSCRIPTION,
    CreditSnapshot,
    Currency,
    EntryType,
    LedgerEntry,
)

PersistEntry = Callable[[LedgerEntry], LedgerEntry]
PersistSnapshot = Callable[[CreditSnapshot], CreditSnapshot]
LoadEntries = Callable[[str], list[LedgerEntry]]
LoadLatestSnapshot = Callable[[str], CreditSnapshot | None]


class Ledger:
    """Records value transfers between the operator and the execution provider.

    Storage is delegated to the injected callables; entries are never
    updated or deleted here. Corrections are new offsetting entries written
    by the caller.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        persist_entry: PersistEntry,
        persist_snapshot: PersistSnapshot,
        load_entries: LoadEntries,
        load_latest_snapshot: LoadLatestSnapshot,
        clock: Clock = utc_now,
    ) -> None:
        self._persist_entry = persist_entry
        self._persist_snapshot = persist_snapshot
        self._load_entries = load_entries
        self._load_latest_snapshot = load_latest_snapshot
        self._clock = clock

    def record_execution(  # noqa: PLR0913
        self,
        *,
        task_id: int | None,
        execution_id: int | None,
        tokens: int,
        cost_usd_cents: int,
        description: str,
        record_tokens: bool = True,
    ) -> list[LedgerEntry]:
        """Debit `self` against the provider for one task attempt."""

        now = self._clock()
        legs = [(cost_usd_cents, Currency.USD_CENTS)]
        if record_tokens:
            legs.append((tokens, Currency.TOKENS))
        return [
            self._persist_entry(
                LedgerEntry(
                    account_id=ACCOUNT_SELF,
                    counterparty_id=COUNTERPARTY_PROVIDER,
                    entry_type=EntryType.DEBIT,
                    amount=amount,
                    currency=currency,
                    description=description,
                    task_id=task_id,
                    execution_id=execution_id,
                    created_at=now,
                ),
            )
            for amount, currency in legs
        ]

    def record_credit(
        self,
        *,
        account_id: str,
        amount: int,
        currency: Currency,
        description: str,
    ) -> LedgerEntry:
        """Credit an account from the subscription (renewal, top-up)."""

        return self._persist_entry(
            LedgerEntry(
                account_id=account_id,
                counterparty_id=COUNTERPARTY_SUBSCRIPTION,
                entry_type=EntryType.CREDIT,
                amount=amount,
                currency=currency,
                description=description,
                created_at=self._clock(),
            ),
        )

    def get_spent_since(self, account_id: str, since: datetime | str) -> int:
        """Sum of USD-cent debits for the account at or after `since`."""

        cutoff = from_iso(since) if isinstance(since, str) else since
        return sum(
            entry.amount
            for entry in self._load_entries(account_id)
            if entry.entry_type == EntryType.DEBIT
            and entry.currency == Currency.USD_CENTS
            and entry.created_at >= cutoff
        )

    def take_snapshot(
        self,
        *,
        account_id: str,
        balance_tokens: int,
        balance_usd_cents: int,
        window_reset_at: datetime,
    ) -> CreditSnapshot:
        return self._persist_snapshot(
            CreditSnapshot(
                account_id=account_id,
                balance_tokens=balance_tokens,
                balance_usd_cents=balance_usd_cents,
                window_reset_at=window_reset_at,
                captured_at=self._clock(),
            ),
        )

    def get_latest_snapshot(self, account_id: str) -> CreditSnapshot | None:
        return self._load_latest_snapshot(account_id)


@dataclass(slots=True)
class InMemoryLedgerStore:
    """Working-set storage for a Ledger, used in tests and dry runs."""

    entries: list[LedgerEntry] = field(default_factory=list)
    snapshots: list[CreditSnapshot] = field(default_factory=list)

    def persist_entry(self, entry: LedgerEntry) -> LedgerEntry:
        stored = replace(entry, id=len(self.entries) + 1)
        self.entries.append(stored)
        return stored

    def persist_snapshot(self, snapshot: CreditSnapshot) -> CreditSnapshot:
        stored = replace(snapshot, id=len(self.snapshots) + 1)
        self.snapshots.append(stored)
        return stored

    def load_entries(self, account_id: str) -> list[LedgerEntry]:
        return [entry for entry in self.entries if entry.account_id == account_id]

    def load_latest_snapshot(self, account_id: str) -> CreditSnapshot | None:
        matching = [item for item in self.snapshots if item.account_id == account_id]
        if not matching:
            return None
        return max(matching, key=lambda item: (item.captured_at, item.id or 0))

    def ledger(self, *, clock: Clock = utc_now) -> Ledger:
        """Build a Ledger bound to this store."""

        return Ledger(
            persist_entry=self.persist_entry,
            persist_snapshot=self.persist_snapshot,
            load_entries=self.load_entries,
            load_latest_snapshot=self.load_latest_snapshot,
            clock=clock,
        )
