from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class EntryKind(str, Enum):
    income = "income"
    expense = "expense"


class RecurrenceInterval(str, Enum):
    none = "NONE"
    daily = "DAILY"
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    yearly = "YEARLY"


RECURRING_INTERVALS = tuple(
    member.value for member in RecurrenceInterval if member != RecurrenceInterval.none
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Entry(Base, TimestampMixin):
    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    kind: Mapped[EntryKind] = mapped_column(SAEnum(EntryKind), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    # Free text: upstream importers may hand us tags we do not know.
    recurrence_interval: Mapped[Optional[str]] = mapped_column(String(20))
    recurrence_end: Mapped[Optional[date]] = mapped_column(Date)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_entries_user_kind_date", "user_id", "kind", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_entries_amount_positive"),
    )


class ReceiptItem(Base, TimestampMixin):
    __tablename__ = "receipt_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    # Signed: positive totals are refunds/income, negative totals are spend.
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("ix_receipt_items_user_date", "user_id", "date"),)


class MonthlyBalance(Base, TimestampMixin):
    __tablename__ = "monthly_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_balance_user_month"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_balance_month_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    starting_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remaining_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
