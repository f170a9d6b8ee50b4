"""Date windows used to filter transactions.

Ranges are inclusive on both ends. A missing bound means unbounded on that
side.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

PRESETS = ("this_month", "last_month", "last_30_days", "last_90_days", "year_to_date", "all_time")


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def end_of_day(d: date) -> datetime:
    return datetime.combine(d, time.max)


def month_start(reference: date) -> date:
    return date(reference.year, reference.month, 1)


def previous_month(reference: date) -> date:
    """First day of the month before ``reference``."""
    return month_start(reference) - relativedelta(months=1)


def next_month(reference: date) -> date:
    """First day of the month after ``reference``."""
    return month_start(reference) + relativedelta(months=1)


@dataclass(frozen=True)
class DateRange:
    """Inclusive [start, end] window; None bounds are open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.start and self.end and self.end < self.start:
            raise ValueError("Range end must not precede its start")

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(
        self, moment: Optional[datetime], pending_at: Optional[datetime] = None
    ) -> bool:
        """Check whether a timestamp falls inside the range.

        A missing timestamp (pending server write) is taken as ``pending_at``,
        or the current time when that is not given.
        """
        if moment is None:
            moment = pending_at or datetime.now()
        if self.start and moment < self.start:
            return False
        if self.end and moment > self.end:
            return False
        return True

    @classmethod
    def all_time(cls) -> "DateRange":
        return cls()

    @classmethod
    def between(cls, start: Optional[date], end: Optional[date]) -> "DateRange":
        """Whole-day range from the start of ``start`` to the end of ``end``."""
        return cls(
            start=start_of_day(start) if start else None,
            end=end_of_day(end) if end else None,
        )


def month_bounds(reference: date) -> DateRange:
    """Range covering the calendar month containing ``reference``."""
    first = month_start(reference)
    last = next_month(reference) - timedelta(days=1)
    return DateRange.between(first, last)


def preset_range(name: str, today: Optional[date] = None) -> DateRange:
    """Resolve a named preset relative to ``today``.

    Args:
        name: One of PRESETS
        today: Reference date (defaults to today)

    Raises:
        ValueError: If the preset is unknown
    """
    today = today or date.today()
    if name == "this_month":
        return month_bounds(today)
    if name == "last_month":
        return month_bounds(previous_month(today))
    if name == "last_30_days":
        return DateRange.between(today - timedelta(days=29), today)
    if name == "last_90_days":
        return DateRange.between(today - timedelta(days=89), today)
    if name == "year_to_date":
        return DateRange.between(date(today.year, 1, 1), today)
    if name == "all_time":
        return DateRange.all_time()
    raise ValueError(f"Unknown range preset: {name}")


def label_for(date_range: DateRange) -> str:
    """Human-readable label, e.g. "March 2024" or "Mar 3 - Apr 2, 2024"."""
    start, end = date_range.start, date_range.end
    if start and end:
        if month_bounds(start.date()) == date_range:
            return start.strftime("%B %Y")
        if start.year == end.year:
            return f"{start:%b} {start.day} - {end:%b} {end.day}, {end.year}"
        return f"{start:%b} {start.day}, {start.year} - {end:%b} {end.day}, {end.year}"
    if start:
        return f"Since {start:%b} {start.day}, {start.year}"
    if end:
        return f"Until {end:%b} {end.day}, {end.year}"
    return "All time"
