from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from app import config

PERIODS = ("today", "yesterday", "week", "last7days", "month", "lastmonth", "custom")
SINGLE_DAY_PERIODS = ("today", "yesterday")


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> date:
        return self.end.date()

    @property
    def end_exclusive(self) -> datetime:
        """Midnight after the last day, for half-open timestamp filters."""
        return datetime.combine(self.end_date + timedelta(days=1), time.min)

    def as_dict(self) -> dict:
        return {"start": self.start_date.isoformat(), "end": self.end_date.isoformat()}


def current_date() -> date:
    if config.REPORT_TIMEZONE:
        from zoneinfo import ZoneInfo

        return datetime.now(ZoneInfo(config.REPORT_TIMEZONE)).date()
    return date.today()


def is_single_day_period(period: Optional[str]) -> bool:
    return period in SINGLE_DAY_PERIODS


def _parse_day(value: Optional[str], name: str) -> date:
    if not value:
        raise ValueError(f"'{name}' is required for a custom period")
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValueError(f"'{name}' must be a YYYY-MM-DD date, got {value!r}")


def _span(first: date, last: date) -> DateRange:
    return DateRange(
        start=datetime.combine(first, time(0, 0, 0)),
        end=datetime.combine(last, time(23, 59, 59)),
    )


def resolve_date_range(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    today: Optional[date] = None,
) -> DateRange:
    """Map a period token (and custom bounds) to inclusive day boundaries.

    Unknown tokens fall back to ``today``. ``custom`` requires both bounds.
    """
    today = today or current_date()

    if period == "yesterday":
        day = today - timedelta(days=1)
        return _span(day, day)
    if period == "week":
        return _span(today - timedelta(days=today.weekday()), today)
    if period == "last7days":
        return _span(today - timedelta(days=6), today)
    if period == "month":
        return _span(today.replace(day=1), today)
    if period == "lastmonth":
        last_day = today.replace(day=1) - timedelta(days=1)
        return _span(last_day.replace(day=1), last_day)
    if period == "custom":
        first = _parse_day(start, "start_date")
        last = _parse_day(end, "end_date")
        if last < first:
            first, last = last, first
        return _span(first, last)
    return _span(today, today)
