from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import EntryKind, RecurrenceInterval
from recurrence import parse_interval


class EntryIn(BaseModel):
    kind: EntryKind
    amount_cents: int = Field(..., ge=0)
    date: date
    recurrence_interval: RecurrenceInterval = RecurrenceInterval.none
    recurrence_end: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator("recurrence_interval", mode="before")
    @classmethod
    def _parse_interval(cls, value: object) -> RecurrenceInterval:
        return parse_interval(value, strict=True)

    @model_validator(mode="after")
    def _end_not_before_origin(self) -> "EntryIn":
        if self.recurrence_end is not None and self.recurrence_end < self.date:
            raise ValueError("Recurrence end must not be before the entry date")
        return self


class ReceiptItemIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: date
    total_cents: int
    description: Optional[str] = Field(default=None, max_length=200)


class StartingBalanceIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    starting_cents: int


class PropagateIn(BaseModel):
    anchor: date
    horizon_months: Optional[int] = Field(default=None, ge=1, le=600)


class EntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: EntryKind
    amount_cents: int
    date: date
    recurrence_interval: Optional[str]
    recurrence_end: Optional[date]
    description: Optional[str]


class MonthlyBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    year: int
    month: int
    starting_cents: int
    remaining_cents: int


class DailyBalanceOut(BaseModel):
    date: date
    starting_cents: int
    income_cents: int
    expense_cents: int
    remaining_cents: int
