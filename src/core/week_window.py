"""Week window calculator — pure business logic.

Works out which calendar days make up a displayed treatment week. A missed
dose pushes every later day's content back by one day, so:

- past weeks are shown exactly as they were: 7 days from their base start;
- the current week keeps its start but grows by one trailing make-up day
  per missed dose recorded inside it;
- future weeks keep 7 days but start later by the number of missed doses
  recorded in all earlier weeks.

Week offsets are 0-based (offset 0 is week 1). No I/O: this module only
transforms data.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timedelta

DAYS_PER_WEEK = 7


def _today(today: date | None) -> date:
    return today if today is not None else date.today()


def current_week_offset(start: date, today: date | None = None) -> int:
    """0-based offset of the week containing ``today``.

    Negative before the cycle starts, so no week counts as current then.
    """
    return (_today(today) - start).days // DAYS_PER_WEEK


def week_number_for(start: date, day: date) -> int:
    """1-based week number that ``day`` falls in."""
    return (day - start).days // DAYS_PER_WEEK + 1


def base_week_start(start: date, offset: int) -> date:
    return start + timedelta(days=offset * DAYS_PER_WEEK)


def missed_doses_in_week(
    start: date, week_number: int, missed: Iterable[date],
) -> list[date]:
    """Missed days that fall inside the unshifted 7 days of ``week_number``."""
    first = base_week_start(start, week_number - 1)
    last = first + timedelta(days=DAYS_PER_WEEK - 1)
    return sorted(d for d in set(missed) if first <= d <= last)


def missed_doses_before_week(start: date, week_number: int, missed: Iterable[date]) -> int:
    """Total missed days recorded in weeks 1 .. week_number - 1."""
    missed = set(missed)
    return sum(len(missed_doses_in_week(start, w, missed)) for w in range(1, week_number))


def week_start_date(
    start: date, offset: int, missed: Iterable[date], today: date | None = None,
) -> date:
    """First calendar day of the displayed week."""
    base = base_week_start(start, offset)
    if offset > current_week_offset(start, today):
        return base + timedelta(days=missed_doses_before_week(start, offset + 1, missed))
    return base


def days_in_week(
    start: date, offset: int, missed: Iterable[date], today: date | None = None,
) -> int:
    """7, plus one make-up day per missed dose when showing the current week."""
    if offset == current_week_offset(start, today):
        return DAYS_PER_WEEK + len(missed_doses_in_week(start, offset + 1, missed))
    return DAYS_PER_WEEK


def week_window(
    start: date, offset: int, missed: Iterable[date] = (), today: date | None = None,
) -> list[date]:
    """Ordered calendar days for the week at ``offset``.

    Args:
        start: Cycle start date.
        offset: 0-based week offset within the cycle.
        missed: Dates of every missed dose recorded for the cycle.
        today: Reference "today"; defaults to the real date.
    """
    missed = set(missed)
    first = week_start_date(start, offset, missed, today)
    length = days_in_week(start, offset, missed, today)
    return [first + timedelta(days=i) for i in range(length)]


def weeks_in_cycle(start: date, food_challenge: date) -> int:
    """Number of navigable weeks between cycle start and the food challenge."""
    return max(0, (food_challenge - start).days) // DAYS_PER_WEEK + 1


def adjusted_current_week_number(
    start: date, missed: Iterable[date], today: date | None = None,
) -> int:
    """Treatment week the patient is actually on once missed days are taken out."""
    days_since_start = (_today(today) - start).days
    adjusted = max(0, days_since_start - len(set(missed)))
    return adjusted // DAYS_PER_WEEK + 1
