"""Pure balance arithmetic: aggregation and the month-to-month chain step.

Nothing here touches the database. ``services.BalancePropagator`` feeds these
functions with rows read through ``store.LedgerStore``.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Optional

from models import EntryKind, RecurrenceInterval
from periods import MonthPeriod
from recurrence import occurrences


@dataclass(frozen=True)
class LedgerEntry:
    user_id: int
    kind: EntryKind
    amount_cents: int
    origin: date
    interval: RecurrenceInterval = RecurrenceInterval.none
    recurrence_end: Optional[date] = None

    def count_between(self, start: date, end: date) -> int:
        return occurrences(
            self.origin, self.interval, self.recurrence_end, start, end
        ).count()


@dataclass(frozen=True)
class MonthlyTotals:
    income_cents: int = 0
    expense_cents: int = 0

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents


def _sum_window(
    user_id: int, entries: Iterable[LedgerEntry], start: date, end: date
) -> MonthlyTotals:
    income = 0
    expense = 0
    for entry in entries:
        if entry.user_id != user_id:
            continue
        contribution = entry.amount_cents * entry.count_between(start, end)
        if entry.kind == EntryKind.income:
            income += contribution
        else:
            expense += contribution
    return MonthlyTotals(income_cents=income, expense_cents=expense)


def aggregate(
    user_id: int, year: int, month: int, entries: Iterable[LedgerEntry]
) -> MonthlyTotals:
    period = MonthPeriod(year, month)
    return _sum_window(user_id, entries, period.start, period.end)


class ChainState(str, Enum):
    anchor_month = "anchor_month"
    chained_month = "chained_month"
    done = "done"


@dataclass(frozen=True)
class MonthBalance:
    period: MonthPeriod
    state: ChainState
    starting_cents: int
    income_cents: int
    expense_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.starting_cents + self.income_cents - self.expense_cents


def chain_step(
    previous: Optional[MonthBalance],
    period: MonthPeriod,
    totals: MonthlyTotals,
    *,
    opening_cents: int = 0,
) -> MonthBalance:
    """Close ``period`` given the step before it.

    Without a previous step the month is the anchor and opens with
    ``opening_cents``; otherwise it opens with the previous remaining balance.
    """
    if previous is None:
        state = ChainState.anchor_month
        starting = opening_cents
    else:
        if period != previous.period.next():
            raise ValueError(
                f"Chain step for {period} does not follow {previous.period}"
            )
        state = ChainState.chained_month
        starting = previous.remaining_cents
    return MonthBalance(
        period=period,
        state=state,
        starting_cents=starting,
        income_cents=totals.income_cents,
        expense_cents=totals.expense_cents,
    )


@dataclass(frozen=True)
class DailyBalance:
    day: date
    starting_cents: int
    income_cents: int
    expense_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.starting_cents + self.income_cents - self.expense_cents


def daily_breakdown(
    user_id: int,
    period: MonthPeriod,
    starting_cents: int,
    entries: Iterable[LedgerEntry],
) -> list[DailyBalance]:
    entries = [e for e in entries if e.user_id == user_id]
    days: list[DailyBalance] = []
    running = starting_cents
    day = period.start
    while day < period.end:
        totals = _sum_window(user_id, entries, day, day + timedelta(days=1))
        row = DailyBalance(
            day=day,
            starting_cents=running,
            income_cents=totals.income_cents,
            expense_cents=totals.expense_cents,
        )
        days.append(row)
        running = row.remaining_cents
        day += timedelta(days=1)
    return days
