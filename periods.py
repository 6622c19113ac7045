from dataclasses import dataclass
from datetime import date
from typing import Iterator


@dataclass(frozen=True, order=True)
class MonthPeriod:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")

    @classmethod
    def of(cls, day: date) -> "MonthPeriod":
        return cls(day.year, day.month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        """First day of the following month; windows are half-open."""
        return self.next().start

    def next(self) -> "MonthPeriod":
        if self.month == 12:
            return MonthPeriod(self.year + 1, 1)
        return MonthPeriod(self.year, self.month + 1)

    def shift(self, months: int) -> "MonthPeriod":
        total = self.year * 12 + (self.month - 1) + months
        return MonthPeriod(total // 12, total % 12 + 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def months_between(first: MonthPeriod, last: MonthPeriod) -> int:
    """Number of months from ``first`` to ``last`` inclusive (0 if reversed)."""
    span = (last.year - first.year) * 12 + (last.month - first.month) + 1
    return max(0, span)


def months_from(anchor: MonthPeriod, count: int) -> Iterator[MonthPeriod]:
    current = anchor
    for _ in range(count):
        yield current
        current = current.next()
