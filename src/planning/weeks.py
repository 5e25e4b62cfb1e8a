"""Calendar helpers: Monday-anchored weeks, weekday expansion, recurrence selectors."""

from datetime import date, datetime, timedelta

from src.planning.errors import InvalidTemplateError
from src.planning.models import DayOfWeek, WeekParity


def parse_iso_date(value: date | str) -> date:
    """Accept a date or a YYYY-MM-DD string.

    Raises:
        InvalidTemplateError: If the value is not a valid ISO date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError) as e:
        raise InvalidTemplateError(f"Malformed date {value!r}") from e


def monday_of(d: date) -> date:
    """Monday of the ISO week containing d."""
    return d - timedelta(days=d.weekday())


def date_for_day_of_week(monday: date, day: DayOfWeek) -> date:
    """Date of `day` in the week starting at `monday`."""
    return monday + timedelta(days=day.weekday)


def notification_window(today: date, weeks: int = 2) -> tuple[date, date]:
    """Inclusive window [Monday(today), Monday(today) + 7*weeks - 1].

    With the default two weeks this is the current and the next week.
    """
    if weeks < 1:
        raise ValueError(f"weeks must be >= 1, got {weeks}")
    start = monday_of(today)
    return start, start + timedelta(days=7 * weeks - 1)


def week_windows(today: date, weeks: int = 2) -> list[tuple[date, date]]:
    """Consecutive seven-day windows starting at Monday(today)."""
    start = monday_of(today)
    return [
        (start + timedelta(days=7 * i), start + timedelta(days=7 * i + 6))
        for i in range(weeks)
    ]


def dates_for_weekday(start: date, end: date, day: DayOfWeek) -> list[date]:
    """All dates in [start, end] falling on `day`, ascending."""
    if start > end:
        return []
    first = start + timedelta(days=(day.weekday - start.weekday()) % 7)
    dates = []
    current = first
    while current <= end:
        dates.append(current)
        current += timedelta(days=7)
    return dates


def iso_week_parity(d: date) -> WeekParity:
    week = d.isocalendar()[1]
    return WeekParity.EVEN if week % 2 == 0 else WeekParity.ODD


def nth_weekday_of_month(d: date) -> int:
    """1-based rank of d among the same weekdays of its month.

    Days 1-7 are the 1st, 8-14 the 2nd, and so on up to 5.
    """
    return (d.day - 1) // 7 + 1
