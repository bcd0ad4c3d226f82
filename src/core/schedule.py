"""Schedule predicate — pure business logic.

Decides whether an item is due on a calendar day given its schedule
(everyday, every other day from an anchor date, or a set of weekdays), and
derives the per-week counts and labels built on top of that.

Weekdays use the 1=Sunday .. 7=Saturday numbering of the stored documents.
No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from src.data.models import Item, ScheduleType

logger = logging.getLogger(__name__)

_DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
_WEEKDAYS = {2, 3, 4, 5, 6}
_WEEKENDS = {1, 7}


class ScheduleValidationError(ValueError):
    """Raised when an item's schedule or dosing cannot be saved."""


def weekday_number(day: date) -> int:
    """Return 1 for Sunday through 7 for Saturday."""
    return day.isoweekday() % 7 + 1


def is_item_due(item: Item, day: date, cycle_start: date | None = None) -> bool:
    """Return True if the item should be taken on ``day``.

    Items without a schedule are due every day. Every-other-day items are
    due on even day-differences from their own anchor date, falling back to
    ``cycle_start``; missed doses do not move that anchor. A custom schedule
    with no weekdays is due on no day at all (validate_item rejects it).
    """
    schedule = item.schedule_type
    if schedule is None or schedule is ScheduleType.EVERYDAY:
        return True

    if schedule is ScheduleType.EVERY_OTHER_DAY:
        anchor = item.every_other_day_start or cycle_start
        if anchor is None:
            logger.warning("Every-other-day item '%s' has no anchor date", item.name)
            anchor = day
        return (day - anchor).days % 2 == 0

    if not item.custom_schedule_days:
        return False
    return weekday_number(day) in item.custom_schedule_days


def scheduled_days_in_week(
    item: Item, week_start: date, cycle_start: date | None = None,
) -> int:
    """Count the days in the 7 days from ``week_start`` the item is due."""
    return sum(
        1 for offset in range(7)
        if is_item_due(item, week_start + timedelta(days=offset), cycle_start)
    )


def expected_weekly_count(
    item: Item, week_start: date, cycle_start: date | None = None,
) -> int:
    """How many logs make a full week for this item (7 if unscheduled)."""
    if item.schedule_type is None:
        return 7
    return scheduled_days_in_week(item, week_start, cycle_start)


def schedule_display_text(item: Item) -> str | None:
    """Short human label for the item's schedule, or None for everyday."""
    schedule = item.schedule_type
    if schedule is None or schedule is ScheduleType.EVERYDAY:
        return None
    if schedule is ScheduleType.EVERY_OTHER_DAY:
        return "Every other day"

    days = item.custom_schedule_days
    if not days:
        return None
    if days == _WEEKDAYS:
        return "Weekdays only"
    if days == _WEEKENDS:
        return "Weekends only"
    ordered = sorted(days)
    if len(ordered) <= 3:
        return ", ".join(_DAY_NAMES[d - 1] for d in ordered)
    return f"{len(ordered)} days per week"


def validate_item(item: Item) -> None:
    """Reject items the form layer must not save.

    Raises ScheduleValidationError describing the first problem found.
    """
    if not item.name.strip():
        raise ScheduleValidationError("Item name is required")

    if item.schedule_type is ScheduleType.CUSTOM:
        if not item.custom_schedule_days:
            raise ScheduleValidationError("Custom schedule needs at least one weekday")
        bad = [d for d in item.custom_schedule_days if not 1 <= d <= 7]
        if bad:
            raise ScheduleValidationError(f"Weekday out of range 1..7: {sorted(bad)}")

    if item.weekly_doses and item.dose is not None:
        raise ScheduleValidationError("Item has both a constant dose and a weekly dose table")

    if item.weekly_doses:
        bad_weeks = [w for w in item.weekly_doses if w < 1]
        if bad_weeks:
            raise ScheduleValidationError(f"Week numbers start at 1: {sorted(bad_weeks)}")
