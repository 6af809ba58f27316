from datetime import date, datetime, time

import pytest

from app.date_range import PERIODS, is_single_day_period, resolve_date_range

WEDNESDAY = date(2024, 5, 15)


def test_today_spans_whole_day() -> None:
    dr = resolve_date_range("today", today=WEDNESDAY)
    assert dr.start == datetime(2024, 5, 15, 0, 0, 0)
    assert dr.end == datetime(2024, 5, 15, 23, 59, 59)
    assert dr.end_exclusive == datetime(2024, 5, 16, 0, 0, 0)


def test_yesterday() -> None:
    dr = resolve_date_range("yesterday", today=WEDNESDAY)
    assert dr.start_date == dr.end_date == date(2024, 5, 14)


def test_week_starts_on_monday() -> None:
    dr = resolve_date_range("week", today=WEDNESDAY)
    assert dr.start_date == date(2024, 5, 13)
    assert dr.end_date == WEDNESDAY


def test_week_on_a_monday_is_one_day() -> None:
    monday = date(2024, 5, 13)
    dr = resolve_date_range("week", today=monday)
    assert dr.start_date == dr.end_date == monday


def test_last7days_includes_today() -> None:
    dr = resolve_date_range("last7days", today=WEDNESDAY)
    assert dr.start_date == date(2024, 5, 9)
    assert dr.end_date == WEDNESDAY


def test_month_and_lastmonth() -> None:
    month = resolve_date_range("month", today=WEDNESDAY)
    assert month.start_date == date(2024, 5, 1)
    assert month.end_date == WEDNESDAY

    last = resolve_date_range("lastmonth", today=WEDNESDAY)
    assert last.start_date == date(2024, 4, 1)
    assert last.end_date == date(2024, 4, 30)


def test_lastmonth_crosses_year_boundary() -> None:
    dr = resolve_date_range("lastmonth", today=date(2024, 1, 10))
    assert dr.start_date == date(2023, 12, 1)
    assert dr.end_date == date(2023, 12, 31)


def test_custom_bounds_are_inclusive() -> None:
    dr = resolve_date_range("custom", "2024-03-01", "2024-03-31", today=WEDNESDAY)
    assert dr.start == datetime(2024, 3, 1, 0, 0, 0)
    assert dr.end.time() == time(23, 59, 59)
    assert dr.end_date == date(2024, 3, 31)


def test_custom_swapped_bounds_are_reordered() -> None:
    dr = resolve_date_range("custom", "2024-03-31", "2024-03-01", today=WEDNESDAY)
    assert dr.start_date == date(2024, 3, 1)
    assert dr.end_date == date(2024, 3, 31)


@pytest.mark.parametrize("start,end", [(None, "2024-03-01"), ("2024-03-01", None), ("not-a-date", "2024-03-01")])
def test_custom_requires_valid_bounds(start, end) -> None:
    with pytest.raises(ValueError):
        resolve_date_range("custom", start, end, today=WEDNESDAY)


def test_unknown_period_falls_back_to_today() -> None:
    assert resolve_date_range("fortnight", today=WEDNESDAY) == resolve_date_range("today", today=WEDNESDAY)
    assert resolve_date_range(None, today=WEDNESDAY).start_date == WEDNESDAY


@pytest.mark.parametrize("period", [p for p in PERIODS if p != "custom"])
def test_every_period_is_deterministic_and_ordered(period) -> None:
    first = resolve_date_range(period, today=WEDNESDAY)
    second = resolve_date_range(period, today=WEDNESDAY)
    assert first == second
    assert first.start <= first.end


def test_single_day_periods() -> None:
    assert is_single_day_period("today")
    assert is_single_day_period("yesterday")
    assert not is_single_day_period("week")
    assert not is_single_day_period(None)
