import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import and_, func, not_, or_, select, union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger import LedgerEntry
from models import (
    RECURRING_INTERVALS,
    Entry,
    EntryKind,
    MonthlyBalance,
    ReceiptItem,
)
from periods import MonthPeriod
from recurrence import parse_interval

logger = logging.getLogger(__name__)


class MissingAnchorBalance(LookupError):
    def __init__(self, user_id: int, period: MonthPeriod) -> None:
        super().__init__(f"No balance recorded for {period}")
        self.user_id = user_id
        self.period = period


class PersistenceFailure(RuntimeError):
    def __init__(
        self, message: str, *, user_id: int, period: Optional[MonthPeriod] = None
    ) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.period = period


def _is_recurring():
    tag = func.upper(func.trim(func.coalesce(Entry.recurrence_interval, "")))
    return tag.in_(RECURRING_INTERVALS)


class LedgerStore:
    """Reads entries and reads/writes monthly balance rows for the propagator.

    Database errors leave as ``PersistenceFailure``; nothing here commits.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _guard(
        self, action: str, user_id: int, period: Optional[MonthPeriod] = None
    ) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            where = f" for {period}" if period else ""
            raise PersistenceFailure(
                f"Failed to {action}{where}", user_id=user_id, period=period
            ) from exc

    def list_entries(
        self,
        user_id: int,
        kind: EntryKind,
        window: Optional[tuple[date, date]] = None,
    ) -> list[LedgerEntry]:
        """Entries of one kind, receipt items included, that may touch ``window``.

        ``window`` is half-open. Recurring entries are kept when they start
        before the window closes and do not end before it opens.
        """
        stmt = select(Entry).where(Entry.user_id == user_id, Entry.kind == kind)
        items_stmt = select(ReceiptItem).where(ReceiptItem.user_id == user_id)
        if kind == EntryKind.income:
            items_stmt = items_stmt.where(ReceiptItem.total_cents > 0)
        else:
            items_stmt = items_stmt.where(ReceiptItem.total_cents < 0)

        if window is not None:
            start, end = window
            recurring = _is_recurring()
            stmt = stmt.where(
                or_(
                    and_(not_(recurring), Entry.date >= start, Entry.date < end),
                    and_(
                        recurring,
                        Entry.date < end,
                        or_(
                            Entry.recurrence_end.is_(None),
                            Entry.recurrence_end >= start,
                        ),
                    ),
                )
            )
            items_stmt = items_stmt.where(
                ReceiptItem.date >= start, ReceiptItem.date < end
            )

        period = MonthPeriod.of(window[0]) if window else None
        with self._guard(f"list {kind.value} entries", user_id, period):
            rows = self.session.scalars(stmt.order_by(Entry.date, Entry.id)).all()
            items = self.session.scalars(
                items_stmt.order_by(ReceiptItem.date, ReceiptItem.id)
            ).all()

        entries = [
            LedgerEntry(
                user_id=row.user_id,
                kind=row.kind,
                amount_cents=row.amount_cents,
                origin=row.date,
                interval=parse_interval(row.recurrence_interval),
                recurrence_end=row.recurrence_end,
            )
            for row in rows
        ]
        entries.extend(
            LedgerEntry(
                user_id=item.user_id,
                kind=kind,
                amount_cents=abs(item.total_cents),
                origin=item.date,
            )
            for item in items
        )
        return entries

    def get_monthly_balance(
        self, user_id: int, year: int, month: int
    ) -> Optional[MonthlyBalance]:
        period = MonthPeriod(year, month)
        with self._guard("read monthly balance", user_id, period):
            return self.session.scalar(
                select(MonthlyBalance).where(
                    MonthlyBalance.user_id == user_id,
                    MonthlyBalance.year == year,
                    MonthlyBalance.month == month,
                )
            )

    def require_monthly_balance(
        self, user_id: int, year: int, month: int
    ) -> MonthlyBalance:
        balance = self.get_monthly_balance(user_id, year, month)
        if balance is None:
            raise MissingAnchorBalance(user_id, MonthPeriod(year, month))
        return balance

    def list_monthly_balances(
        self, user_id: int, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[MonthlyBalance]:
        stmt = select(MonthlyBalance).where(MonthlyBalance.user_id == user_id)
        if year is not None:
            stmt = stmt.where(MonthlyBalance.year == year)
        if month is not None:
            stmt = stmt.where(MonthlyBalance.month == month)
        stmt = stmt.order_by(MonthlyBalance.year.desc(), MonthlyBalance.month.desc())
        with self._guard("list monthly balances", user_id):
            return list(self.session.scalars(stmt).all())

    def upsert_monthly_balance(
        self,
        user_id: int,
        year: int,
        month: int,
        starting_cents: int,
        remaining_cents: int,
    ) -> MonthlyBalance:
        balance = self.get_monthly_balance(user_id, year, month)
        period = MonthPeriod(year, month)
        with self._guard("write monthly balance", user_id, period):
            if balance is None:
                balance = MonthlyBalance(user_id=user_id, year=year, month=month)
                self.session.add(balance)
            balance.starting_cents = starting_cents
            balance.remaining_cents = remaining_cents
            self.session.flush()
        return balance

    def user_ids_with_entries(self) -> list[int]:
        stmt = union(
            select(Entry.user_id).distinct(), select(ReceiptItem.user_id).distinct()
        )
        with self._guard("list users", user_id=0):
            return sorted(int(user_id) for user_id in self.session.scalars(stmt))
