from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from ledger import (
    ChainState,
    DailyBalance,
    MonthBalance,
    aggregate,
    chain_step,
    daily_breakdown,
)
from models import Entry, EntryKind, MonthlyBalance, ReceiptItem
from periods import MonthPeriod, months_between, months_from
from recurrence import local_today
from schemas import EntryIn, ReceiptItemIn, StartingBalanceIn
from store import LedgerStore, MissingAnchorBalance, PersistenceFailure

logger = logging.getLogger(__name__)

Anchor = Union[date, MonthPeriod]


def get_current_user_id() -> int:
    return 1


_user_locks: dict[int, threading.RLock] = {}
_user_locks_guard = threading.Lock()


def user_lock(user_id: int) -> threading.RLock:
    """Process-wide lock serializing balance writes for one user."""
    with _user_locks_guard:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = threading.RLock()
            _user_locks[user_id] = lock
        return lock


@dataclass
class PropagationResult:
    user_id: int
    months: list[MonthBalance] = field(default_factory=list)
    state: ChainState = ChainState.done

    @property
    def first(self) -> Optional[MonthPeriod]:
        return self.months[0].period if self.months else None

    @property
    def last(self) -> Optional[MonthPeriod]:
        return self.months[-1].period if self.months else None


class BalancePropagator:
    """Recomputes the chain of monthly balances forward from an anchor month.

    The anchor month keeps its persisted starting balance (zero when it has
    none); every following month starts where the previous one ended. The
    whole walk is one transaction and holds the user's lock until it commits,
    so a failed run leaves the stored chain untouched.
    """

    def __init__(
        self,
        session: Session,
        store: Optional[LedgerStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.store = store or LedgerStore(session)
        self.settings = settings or get_settings()

    def propagate(
        self,
        user_id: int,
        anchor: Anchor,
        horizon_months: Optional[int] = None,
    ) -> PropagationResult:
        horizon = (
            horizon_months
            if horizon_months is not None
            else self.settings.balance_horizon_months
        )
        if horizon < 1:
            raise ValueError("Propagation horizon must cover at least one month")
        first = anchor if isinstance(anchor, MonthPeriod) else MonthPeriod.of(anchor)

        with user_lock(user_id):
            try:
                months = self._walk(user_id, first, horizon)
                self.session.commit()
            except PersistenceFailure as exc:
                self.session.rollback()
                logger.exception(
                    f"propagate_failed: user_id={user_id} anchor={first} "
                    f"failed_month={exc.period}"
                )
                raise
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.exception(
                    f"propagate_commit_failed: user_id={user_id} anchor={first}"
                )
                raise PersistenceFailure(
                    f"Failed to commit balances from {first}",
                    user_id=user_id,
                    period=first,
                ) from exc
            except Exception:
                self.session.rollback()
                logger.exception(f"propagate_aborted: user_id={user_id} anchor={first}")
                raise

        logger.info(
            f"propagate: user_id={user_id} anchor={first} months={len(months)} "
            f"final_remaining_cents={months[-1].remaining_cents}"
        )
        return PropagationResult(user_id=user_id, months=months)

    def rebuild(
        self, user_id: int, start: MonthPeriod, end: MonthPeriod
    ) -> PropagationResult:
        span = months_between(start, end)
        if span < 1:
            raise ValueError("Rebuild range must end on or after its start")
        return self.propagate(user_id, start, span)

    def refresh_users(self, anchor: Anchor) -> int:
        refreshed = 0
        for user_id in self.store.user_ids_with_entries():
            try:
                self.propagate(user_id, anchor)
            except Exception:
                logger.exception(
                    f"refresh_user_failed: user_id={user_id} anchor={anchor}"
                )
                continue
            refreshed += 1
        return refreshed

    def _opening_balance(self, user_id: int, period: MonthPeriod) -> int:
        try:
            balance = self.store.require_monthly_balance(
                user_id, period.year, period.month
            )
        except MissingAnchorBalance:
            logger.info(
                f"propagate_anchor_missing: user_id={user_id} month={period} "
                "starting_cents=0"
            )
            return 0
        return balance.starting_cents

    def _walk(
        self, user_id: int, first: MonthPeriod, horizon: int
    ) -> list[MonthBalance]:
        opening = self._opening_balance(user_id, first)
        produced: list[MonthBalance] = []
        step: Optional[MonthBalance] = None
        for period in months_from(first, horizon):
            window = (period.start, period.end)
            entries = self.store.list_entries(
                user_id, EntryKind.income, window
            ) + self.store.list_entries(user_id, EntryKind.expense, window)
            totals = aggregate(user_id, period.year, period.month, entries)
            step = chain_step(step, period, totals, opening_cents=opening)
            self.store.upsert_monthly_balance(
                user_id,
                period.year,
                period.month,
                step.starting_cents,
                step.remaining_cents,
            )
            logger.debug(
                f"propagate_month: user_id={user_id} month={period} "
                f"state={step.state.value} starting_cents={step.starting_cents} "
                f"income_cents={step.income_cents} "
                f"expense_cents={step.expense_cents} "
                f"remaining_cents={step.remaining_cents}"
            )
            produced.append(step)
        return produced


class EntryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.propagator = BalancePropagator(session)

    def get(self, entry_id: int) -> Entry:
        entry = self.session.get(Entry, entry_id)
        if not entry or entry.user_id != self.user_id:
            raise ValueError("Entry not found")
        return entry

    def list(self, kind: Optional[EntryKind] = None) -> list[Entry]:
        stmt = select(Entry).where(Entry.user_id == self.user_id)
        if kind:
            stmt = stmt.where(Entry.kind == kind)
        stmt = stmt.order_by(Entry.date.desc(), Entry.id.desc())
        return list(self.session.scalars(stmt).all())

    def create(self, data: EntryIn) -> Entry:
        entry = Entry(
            user_id=self.user_id,
            kind=data.kind,
            amount_cents=data.amount_cents,
            date=data.date,
            recurrence_interval=data.recurrence_interval.value,
            recurrence_end=data.recurrence_end,
            description=data.description,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        self.propagator.propagate(self.user_id, entry.date)
        return entry

    def update(self, entry_id: int, data: EntryIn) -> Entry:
        entry = self.get(entry_id)
        previous_date = entry.date
        entry.kind = data.kind
        entry.amount_cents = data.amount_cents
        entry.date = data.date
        entry.recurrence_interval = data.recurrence_interval.value
        entry.recurrence_end = data.recurrence_end
        entry.description = data.description
        self.session.commit()
        self.session.refresh(entry)
        self.propagator.propagate(self.user_id, min(previous_date, entry.date))
        return entry

    def delete(self, entry_id: int) -> None:
        entry = self.get(entry_id)
        anchor = entry.date
        self.session.delete(entry)
        self.session.commit()
        # Rows already in the chain stay; they are recomputed without the entry.
        self.propagator.propagate(self.user_id, anchor)


class ReceiptService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.propagator = BalancePropagator(session)

    def add_items(self, items: list[ReceiptItemIn]) -> list[ReceiptItem]:
        if not items:
            raise ValueError("Receipt has no items")
        rows = [
            ReceiptItem(
                user_id=self.user_id,
                date=item.date,
                total_cents=item.total_cents,
                description=item.description,
            )
            for item in items
        ]
        self.session.add_all(rows)
        self.session.commit()
        self.propagator.propagate(self.user_id, min(row.date for row in rows))
        return rows

    def delete(self, item_id: int) -> None:
        item = self.session.get(ReceiptItem, item_id)
        if not item or item.user_id != self.user_id:
            raise ValueError("Receipt item not found")
        anchor = item.date
        self.session.delete(item)
        self.session.commit()
        self.propagator.propagate(self.user_id, anchor)


class MonthlyBalanceService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session)
        self.propagator = BalancePropagator(session, store=self.store)

    def list(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[MonthlyBalance]:
        return self.store.list_monthly_balances(self.user_id, year, month)

    def get(self, year: int, month: int) -> MonthlyBalance:
        return self.store.require_monthly_balance(self.user_id, year, month)

    def set_starting_balance(self, data: StartingBalanceIn) -> PropagationResult:
        period = MonthPeriod(data.year, data.month)
        with user_lock(self.user_id):
            try:
                self.store.upsert_monthly_balance(
                    self.user_id,
                    period.year,
                    period.month,
                    data.starting_cents,
                    data.starting_cents,
                )
            except PersistenceFailure:
                self.session.rollback()
                raise
            return self.propagator.propagate(self.user_id, period)

    def daily(self, year: int, month: int) -> list[DailyBalance]:
        period = MonthPeriod(year, month)
        balance = self.store.require_monthly_balance(self.user_id, year, month)
        window = (period.start, period.end)
        entries = self.store.list_entries(
            self.user_id, EntryKind.income, window
        ) + self.store.list_entries(self.user_id, EntryKind.expense, window)
        return daily_breakdown(self.user_id, period, balance.starting_cents, entries)

    def initialize(self, today: Optional[date] = None) -> PropagationResult:
        today = today or local_today()
        settings = self.propagator.settings
        start = MonthPeriod(today.year - settings.initialize_years_back, 1)
        end = MonthPeriod(today.year + settings.initialize_years_ahead, 12)
        return self.propagator.rebuild(self.user_id, start, end)
