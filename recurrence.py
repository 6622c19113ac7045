import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from models import RecurrenceInterval

logger = logging.getLogger(__name__)

IntervalTag = Union[RecurrenceInterval, str, None]

_DAY_STEPS = {
    RecurrenceInterval.daily: 1,
    RecurrenceInterval.weekly: 7,
}
_MONTH_STEPS = {
    RecurrenceInterval.monthly: 1,
    RecurrenceInterval.quarterly: 3,
    RecurrenceInterval.yearly: 12,
}


class InvalidRecurrenceInterval(ValueError):
    def __init__(self, tag: object) -> None:
        super().__init__(f"Unknown recurrence interval: {tag!r}")
        self.tag = tag


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def parse_interval(tag: IntervalTag, *, strict: bool = False) -> RecurrenceInterval:
    """Map a stored interval tag onto ``RecurrenceInterval``.

    Missing or blank tags mean a one-time entry. Unknown tags raise
    ``InvalidRecurrenceInterval`` when ``strict`` is set; otherwise they are
    logged and treated as ``NONE``.
    """
    if isinstance(tag, RecurrenceInterval):
        return tag
    if tag is None:
        return RecurrenceInterval.none
    clean = str(tag).strip().upper()
    if not clean:
        return RecurrenceInterval.none
    try:
        return RecurrenceInterval(clean)
    except ValueError as exc:
        if strict:
            raise InvalidRecurrenceInterval(tag) from exc
        logger.warning(f"recurrence_interval_unknown: tag={tag!r} fallback=NONE")
        return RecurrenceInterval.none


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift ``base`` by whole months, snapping the day to the month's end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(desired_day or base.day, days_in_month(year, month))
    return date(year, month, day)


@dataclass(frozen=True)
class OccurrenceSeries:
    """Occurrence dates of one entry inside ``[window_start, window_end)``.

    Every iteration starts over, and the sequence never runs past the window
    or the (inclusive) recurrence end.
    """

    origin: date
    interval: RecurrenceInterval
    recurrence_end: Optional[date]
    window_start: date
    window_end: date

    def _limit(self) -> date:
        # Open-ended markers such as 9999-12-31 have no following day.
        if self.recurrence_end is None or self.recurrence_end >= self.window_end:
            return self.window_end
        return self.recurrence_end + timedelta(days=1)

    def _first_day_index(self, step: int) -> int:
        if self.window_start <= self.origin:
            return 0
        elapsed = (self.window_start - self.origin).days
        return -(-elapsed // step)

    def _first_month_index(self, step: int) -> int:
        months_ahead = (self.window_start.year - self.origin.year) * 12 + (
            self.window_start.month - self.origin.month
        )
        index = max(0, months_ahead // step)
        # Lands at most one step short of the window, so this runs twice at most.
        while add_months(self.origin, index * step) < self.window_start:
            index += 1
        return index

    def __iter__(self) -> Iterator[date]:
        limit = self._limit()
        if self.window_start >= limit:
            return

        if self.interval in _DAY_STEPS:
            step = _DAY_STEPS[self.interval]
            current = self.origin + timedelta(
                days=step * self._first_day_index(step)
            )
            while current < limit:
                yield current
                current += timedelta(days=step)
        elif self.interval in _MONTH_STEPS:
            step = _MONTH_STEPS[self.interval]
            index = self._first_month_index(step)
            current = add_months(self.origin, index * step)
            while current < limit:
                yield current
                index += 1
                current = add_months(self.origin, index * step)
        elif self.window_start <= self.origin < limit:
            yield self.origin

    def count(self) -> int:
        return sum(1 for _ in self)


def occurrences(
    origin: date,
    interval: IntervalTag,
    recurrence_end: Optional[date],
    window_start: date,
    window_end: date,
) -> OccurrenceSeries:
    return OccurrenceSeries(
        origin=origin,
        interval=parse_interval(interval),
        recurrence_end=recurrence_end,
        window_start=window_start,
        window_end=window_end,
    )
