"""Dose resolver — pure business logic.

Resolves the dose and unit to show or log for an item in a given treatment
week, and renders dose values the way caregivers read them on a syringe or
scoop ("1/4", "2", "2.5").

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.core.schedule import schedule_display_text
from src.data.models import Item

logger = logging.getLogger(__name__)

FRACTION_TOLERANCE = 0.01


@dataclass(frozen=True)
class Fraction:
    numerator: int
    denominator: int

    @property
    def value(self) -> float:
        return self.numerator / self.denominator

    def __str__(self) -> str:
        return f"{self.numerator}/{self.denominator}"


COMMON_FRACTIONS: tuple[Fraction, ...] = (
    Fraction(1, 8),
    Fraction(1, 4),
    Fraction(1, 3),
    Fraction(1, 2),
    Fraction(2, 3),
    Fraction(3, 4),
)


@dataclass
class ResolvedDose:
    """Effective dose for an item in a week."""

    dose: float
    unit: str
    week: int | None     # weekly-table week the dose came from; None if constant
    display: str         # e.g. "1/2 mL"


def fraction_for_decimal(
    value: float, tolerance: float = FRACTION_TOLERANCE,
) -> Fraction | None:
    """Return the common fraction within ``tolerance`` of ``value``, if any."""
    for fraction in COMMON_FRACTIONS:
        if abs(fraction.value - value) < tolerance:
            return fraction
    return None


def format_dose(value: float) -> str:
    """Render a dose: common fractions as n/d, else whole or one decimal."""
    if value == 1.0:
        return "1"
    fraction = fraction_for_decimal(value)
    if fraction is not None:
        return str(fraction)
    if value == int(value):
        return str(int(value))
    return f"{value:.1f}"


def _pick_week(weeks: list[int], target: int) -> int:
    """Exact week, else the last week before target, else the earliest."""
    if target in weeks:
        return target
    earlier = [w for w in weeks if w <= target]
    if earlier:
        return max(earlier)
    return min(weeks)


def resolve_dose(item: Item, week: int) -> ResolvedDose | None:
    """Resolve the dose for ``item`` in 1-based treatment ``week``.

    Returns None when the item has no dosing configured at all; callers
    render that as blank rather than inventing a default.
    """
    if item.weekly_doses:
        source_week = _pick_week(sorted(item.weekly_doses), week)
        weekly = item.weekly_doses[source_week]
        if source_week != week:
            logger.debug(
                "Item '%s' has no dose for week %d, using week %d",
                item.name, week, source_week,
            )
        return ResolvedDose(
            dose=weekly.dose,
            unit=weekly.unit,
            week=source_week,
            display=f"{format_dose(weekly.dose)} {weekly.unit}".strip(),
        )

    if item.dose is None:
        return None
    unit = item.unit or ""
    return ResolvedDose(
        dose=item.dose,
        unit=unit,
        week=None,
        display=f"{format_dose(item.dose)} {unit}".strip(),
    )


def item_display_text(item: Item, week: int) -> str:
    """One-line label, e.g. "Peanut - 1/4 g (Week 3) • Every other day"."""
    resolved = resolve_dose(item, week)
    if resolved is None:
        text = item.name
    elif resolved.week is not None:
        text = f"{item.name} - {resolved.display} (Week {resolved.week})"
    else:
        text = f"{item.name} - {resolved.display}"

    schedule_text = schedule_display_text(item)
    if schedule_text:
        return f"{text} • {schedule_text}"
    return text
