from datetime import date

import pytest

from models import RecurrenceInterval
from recurrence import (
    InvalidRecurrenceInterval,
    add_months,
    occurrences,
    parse_interval,
)


def _dates(origin, interval, end, start, stop):
    return list(occurrences(origin, interval, end, start, stop))


def test_one_time_entry_yields_origin_inside_window():
    assert _dates(
        date(2024, 1, 10), "NONE", None, date(2024, 1, 1), date(2024, 2, 1)
    ) == [date(2024, 1, 10)]


def test_one_time_entry_outside_window_is_empty():
    assert _dates(
        date(2024, 2, 1), "NONE", None, date(2024, 1, 1), date(2024, 2, 1)
    ) == []
    assert _dates(
        date(2023, 12, 31), None, None, date(2024, 1, 1), date(2024, 2, 1)
    ) == []


def test_one_time_entry_after_recurrence_end_is_empty():
    assert _dates(
        date(2024, 1, 10),
        RecurrenceInterval.none,
        date(2024, 1, 9),
        date(2024, 1, 1),
        date(2024, 2, 1),
    ) == []


def test_monthly_on_the_fifteenth_hits_every_spanned_month():
    result = _dates(
        date(2023, 11, 15), "MONTHLY", None, date(2024, 1, 1), date(2024, 7, 1)
    )
    assert result == [date(2024, m, 15) for m in range(1, 7)]


def test_weekly_expense_in_march():
    series = occurrences(
        date(2024, 3, 4), "WEEKLY", None, date(2024, 3, 1), date(2024, 4, 1)
    )
    assert list(series) == [
        date(2024, 3, 4),
        date(2024, 3, 11),
        date(2024, 3, 18),
        date(2024, 3, 25),
    ]
    assert series.count() == 4


def test_yearly_income_stops_at_recurrence_end():
    assert _dates(
        date(2023, 6, 1), "YEARLY", date(2023, 12, 31), date(2024, 6, 1), date(2024, 7, 1)
    ) == []


def test_recurrence_end_before_window_contributes_nothing():
    assert _dates(
        date(2020, 1, 1), "DAILY", date(2024, 2, 29), date(2024, 3, 1), date(2024, 4, 1)
    ) == []


def test_open_ended_marker_as_recurrence_end():
    assert _dates(
        date(2024, 1, 1), "MONTHLY", date.max, date(2024, 3, 1), date(2024, 4, 1)
    ) == [date(2024, 3, 1)]
    assert _dates(
        date(2024, 1, 1), "NONE", date(9999, 12, 31), date(2024, 1, 1), date(2024, 2, 1)
    ) == [date(2024, 1, 1)]


def test_recurrence_end_is_inclusive():
    assert _dates(
        date(2024, 3, 4), "WEEKLY", date(2024, 3, 18), date(2024, 3, 1), date(2024, 4, 1)
    ) == [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18)]


def test_daily_entry_from_long_ago_starts_at_window():
    series = occurrences(
        date(1900, 1, 1), "DAILY", None, date(2024, 3, 1), date(2024, 4, 1)
    )
    result = list(series)
    assert len(result) == 31
    assert result[0] == date(2024, 3, 1)
    assert result[-1] == date(2024, 3, 31)


def test_weekly_entry_from_long_ago_keeps_its_weekday():
    origin = date(1990, 1, 1)  # a Monday
    result = _dates(origin, "WEEKLY", None, date(2024, 3, 1), date(2024, 4, 1))
    assert result[0] == date(2024, 3, 4)
    assert all(d.weekday() == 0 for d in result)


def test_monthly_snaps_to_month_end_without_drifting():
    assert _dates(
        date(2024, 1, 31), "MONTHLY", None, date(2024, 1, 1), date(2024, 4, 1)
    ) == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]


def test_monthly_first_occurrence_after_mid_month_window_start():
    assert _dates(
        date(2024, 1, 20), "MONTHLY", None, date(2024, 3, 25), date(2024, 5, 1)
    ) == [date(2024, 4, 20)]


def test_quarterly_from_old_origin():
    assert _dates(
        date(2021, 1, 31), "QUARTERLY", None, date(2024, 4, 1), date(2024, 5, 1)
    ) == [date(2024, 4, 30)]
    assert _dates(
        date(2021, 1, 31), "QUARTERLY", None, date(2024, 5, 1), date(2024, 7, 1)
    ) == []


def test_yearly_leap_day_origin():
    assert _dates(
        date(2020, 2, 29), "YEARLY", None, date(2023, 1, 1), date(2025, 1, 1)
    ) == [date(2023, 2, 28), date(2024, 2, 29)]


def test_unknown_interval_behaves_like_one_time():
    assert _dates(
        date(2024, 1, 10), "FORTNIGHTLY", None, date(2024, 1, 1), date(2024, 3, 1)
    ) == [date(2024, 1, 10)]


def test_series_can_be_iterated_again():
    series = occurrences(
        date(2024, 1, 1), "WEEKLY", None, date(2024, 1, 1), date(2024, 2, 1)
    )
    assert list(series) == list(series)
    assert series.count() == 5


def test_parse_interval():
    assert parse_interval(None) == RecurrenceInterval.none
    assert parse_interval("") == RecurrenceInterval.none
    assert parse_interval(" monthly ") == RecurrenceInterval.monthly
    assert parse_interval("biweekly") == RecurrenceInterval.none
    with pytest.raises(InvalidRecurrenceInterval):
        parse_interval("biweekly", strict=True)


def test_add_months_across_year_boundary():
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 15), -2) == date(2023, 11, 15)
