"""
TIPs Tracker — Application State.

The state of one user looking at one room: its cycles, their items, missed
days, consumption logs and reactions. It is built explicitly (usually via
AppState.load) and passed to whoever needs it; there is no global instance.

When constructed with a RoomDB, mutations are written through to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import TYPE_CHECKING

from src.core import week_window as weeks
from src.core.dose_resolver import ResolvedDose, resolve_dose
from src.core.schedule import is_item_due, validate_item
from src.data.models import (
    Category,
    Cycle,
    Item,
    LogEntry,
    MissedDose,
    Reaction,
    RoomSettings,
    User,
)

if TYPE_CHECKING:
    from src.data.db import RoomDB

logger = logging.getLogger(__name__)

_CATEGORY_ORDER = {
    Category.MEDICINE: 0,
    Category.MAINTENANCE: 1,
    Category.TREATMENT: 2,
    Category.RECOMMENDED: 3,
}


class NotAuthorizedError(Exception):
    """Raised when a non-admin attempts an admin-only change."""


@dataclass
class AppState:
    user: User
    room_id: str
    cycles: list[Cycle] = field(default_factory=list)
    items: dict[str, list[Item]] = field(default_factory=dict)
    missed_doses: dict[str, list[MissedDose]] = field(default_factory=dict)
    consumption_logs: dict[str, dict[str, list[LogEntry]]] = field(default_factory=dict)
    reactions: dict[str, list[Reaction]] = field(default_factory=dict)
    tz: tzinfo = timezone.utc
    store: RoomDB | None = None

    @classmethod
    def load(
        cls, room_db: RoomDB, user: User, room_id: str, tz: tzinfo = timezone.utc,
    ) -> AppState:
        """Hydrate the state for ``user`` in ``room_id`` from storage."""
        state = cls(user=user, room_id=room_id, tz=tz, store=room_db)
        state.cycles = room_db.get_cycles(room_id)
        for cycle in state.cycles:
            state.items[cycle.id] = room_db.get_items(cycle.id)
            state.missed_doses[cycle.id] = room_db.get_missed_doses(cycle.id)
            state.consumption_logs[cycle.id] = room_db.get_consumption_logs(cycle.id)
            state.reactions[cycle.id] = room_db.list_reactions(cycle.id)
        logger.debug(
            "Loaded room %s for user %s: %d cycles", room_id, user.id, len(state.cycles),
        )
        return state

    # -- accessors ----------------------------------------------------------

    def current_cycle(self) -> Cycle | None:
        """The most recent cycle, by cycle number."""
        if not self.cycles:
            return None
        return max(self.cycles, key=lambda c: c.number)

    def _cycle(self, cycle_id: str | None) -> Cycle:
        if cycle_id is None:
            cycle = self.current_cycle()
            if cycle is None:
                raise LookupError(f"Room {self.room_id} has no cycles")
            return cycle
        for cycle in self.cycles:
            if cycle.id == cycle_id:
                return cycle
        raise LookupError(f"Cycle {cycle_id} not found in room {self.room_id}")

    def is_admin(self) -> bool:
        if self.user.is_super_admin:
            return True
        access = (self.user.room_access or {}).get(self.room_id)
        return access is not None and access.is_admin

    def room_settings(self) -> RoomSettings:
        return (self.user.room_settings or {}).get(self.room_id) or RoomSettings()

    def today(self, now: datetime | None = None) -> date:
        now = now or datetime.now(timezone.utc)
        return now.astimezone(self.tz).date()

    def missed_dates(self, cycle_id: str | None = None) -> set[date]:
        cycle = self._cycle(cycle_id)
        return {m.date for m in self.missed_doses.get(cycle.id, [])}

    def has_missed_dose(self, day: date, cycle_id: str | None = None) -> bool:
        return day in self.missed_dates(cycle_id)

    def items_for(self, cycle_id: str | None = None) -> list[Item]:
        cycle = self._cycle(cycle_id)
        return sorted(
            self.items.get(cycle.id, []),
            key=lambda i: (_CATEGORY_ORDER[i.category], i.order),
        )

    def find_item(self, item_id: str, cycle_id: str | None = None) -> Item | None:
        for item in self.items_for(cycle_id):
            if item.id == item_id:
                return item
        return None

    # -- weeks --------------------------------------------------------------

    def current_week_number(self, today: date | None = None, cycle_id: str | None = None) -> int:
        cycle = self._cycle(cycle_id)
        today = today if today is not None else self.today()
        return max(1, weeks.current_week_offset(cycle.start_date, today) + 1)

    def adjusted_current_week_number(
        self, today: date | None = None, cycle_id: str | None = None,
    ) -> int:
        cycle = self._cycle(cycle_id)
        today = today if today is not None else self.today()
        return weeks.adjusted_current_week_number(
            cycle.start_date, self.missed_dates(cycle.id), today,
        )

    def week_window(
        self, offset: int, today: date | None = None, cycle_id: str | None = None,
    ) -> list[date]:
        cycle = self._cycle(cycle_id)
        today = today if today is not None else self.today()
        return weeks.week_window(cycle.start_date, offset, self.missed_dates(cycle.id), today)

    def weeks_in_cycle(self, cycle_id: str | None = None) -> int:
        cycle = self._cycle(cycle_id)
        return weeks.weeks_in_cycle(cycle.start_date, cycle.food_challenge_date)

    def items_for_day(
        self, day: date, category: Category | None = None, cycle_id: str | None = None,
    ) -> list[Item]:
        """Items due on ``day``; treatment items are skipped on missed days."""
        cycle = self._cycle(cycle_id)
        missed = self.has_missed_dose(day, cycle.id)
        result = []
        for item in self.items_for(cycle.id):
            if category is not None and item.category is not category:
                continue
            if missed and item.category is Category.TREATMENT:
                continue
            if is_item_due(item, day, cycle.start_date):
                result.append(item)
        return result

    def dose_for(self, item: Item, week: int | None = None) -> ResolvedDose | None:
        if week is None:
            week = self.current_week_number()
        return resolve_dose(item, week)

    # -- mutations ----------------------------------------------------------

    def _require_admin(self, action: str) -> None:
        if not self.is_admin():
            logger.warning(
                "User %s is not an admin of room %s; refusing to %s",
                self.user.id, self.room_id, action,
            )
            raise NotAuthorizedError(f"Only room admins can {action}")

    def save_item(self, item: Item, cycle_id: str | None = None) -> Item:
        """Add or replace an item after validating its schedule and dosing."""
        self._require_admin("edit items")
        validate_item(item)
        cycle = self._cycle(cycle_id)
        items = [i for i in self.items.get(cycle.id, []) if i.id != item.id]
        items.append(item)
        self.items[cycle.id] = items
        if self.store is not None:
            self.store.save_item(cycle.id, item)
        return item

    def delete_item(self, item_id: str, cycle_id: str | None = None) -> bool:
        self._require_admin("edit items")
        cycle = self._cycle(cycle_id)
        before = self.items.get(cycle.id, [])
        after = [i for i in before if i.id != item_id]
        if len(after) == len(before):
            return False
        self.items[cycle.id] = after
        self.consumption_logs.get(cycle.id, {}).pop(item_id, None)
        if self.store is not None:
            self.store.delete_item(item_id)
        logger.info("Item %s removed from cycle %d", item_id, cycle.number)
        return True

    def record_missed_dose(self, day: date, cycle_id: str | None = None) -> MissedDose | None:
        """Mark ``day`` as missed. Returns None if it already was."""
        self._require_admin("record missed doses")
        cycle = self._cycle(cycle_id)
        if self.has_missed_dose(day, cycle.id):
            return None
        missed = MissedDose(date=day, cycle_id=cycle.id)
        self.missed_doses.setdefault(cycle.id, []).append(missed)
        if self.store is not None:
            self.store.add_missed_dose(missed)
        logger.info("Missed dose recorded on %s in cycle %d", day, cycle.number)
        return missed

    def remove_missed_dose(self, day: date, cycle_id: str | None = None) -> bool:
        self._require_admin("remove missed doses")
        cycle = self._cycle(cycle_id)
        before = self.missed_doses.get(cycle.id, [])
        after = [m for m in before if m.date != day]
        if len(after) == len(before):
            return False
        self.missed_doses[cycle.id] = after
        if self.store is not None:
            self.store.remove_missed_dose(cycle.id, day)
        logger.info("Missed dose on %s removed from cycle %d", day, cycle.number)
        return True

    def log_consumption(
        self, item_id: str, at: datetime | None = None, cycle_id: str | None = None,
    ) -> LogEntry:
        cycle = self._cycle(cycle_id)
        if self.find_item(item_id, cycle.id) is None:
            raise LookupError(f"Item {item_id} not found in cycle {cycle.id}")
        entry = LogEntry(timestamp=at or datetime.now(timezone.utc), user_id=self.user.id)
        self.consumption_logs.setdefault(cycle.id, {}).setdefault(item_id, []).append(entry)
        if self.store is not None:
            self.store.log_consumption(cycle.id, item_id, entry)
        return entry

    def _logs_on(self, item_id: str, day: date, cycle_id: str) -> list[LogEntry]:
        logs = self.consumption_logs.get(cycle_id, {}).get(item_id, [])
        return [e for e in logs if e.timestamp.astimezone(self.tz).date() == day]

    def undo_consumption(
        self, item_id: str, day: date, cycle_id: str | None = None,
    ) -> LogEntry | None:
        """Remove the latest log of the item on ``day``, if any."""
        cycle = self._cycle(cycle_id)
        on_day = self._logs_on(item_id, day, cycle.id)
        if not on_day:
            return None
        latest = max(on_day, key=lambda e: e.timestamp)
        self.consumption_logs[cycle.id][item_id].remove(latest)
        if self.store is not None:
            self.store.remove_consumption(cycle.id, item_id, latest)
        return latest

    def was_taken_on(self, item_id: str, day: date, cycle_id: str | None = None) -> bool:
        cycle = self._cycle(cycle_id)
        return bool(self._logs_on(item_id, day, cycle.id))

    def weekly_progress(
        self, item: Item, offset: int, today: date | None = None, cycle_id: str | None = None,
    ) -> tuple[int, int]:
        """(days taken, days expected) over the displayed week at ``offset``.

        Both counts cover the whole window, make-up days included.
        """
        cycle = self._cycle(cycle_id)
        window = self.week_window(offset, today, cycle.id)
        missed = self.missed_dates(cycle.id)
        taken = sum(1 for day in window if self.was_taken_on(item.id, day, cycle.id))
        expected = sum(
            1 for day in window
            if is_item_due(item, day, cycle.start_date)
            and not (day in missed and item.category is Category.TREATMENT)
        )
        return taken, expected

    def add_reaction(self, reaction: Reaction, cycle_id: str | None = None) -> Reaction:
        cycle = self._cycle(cycle_id)
        self.reactions.setdefault(cycle.id, []).insert(0, reaction)
        if self.store is not None:
            self.store.add_reaction(cycle.id, reaction)
        logger.info(
            "Reaction logged in cycle %d: %s",
            cycle.number, ", ".join(s.value for s in reaction.symptoms) or "no symptoms",
        )
        return reaction
