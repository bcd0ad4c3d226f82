"""
TIPs Tracker — Dose Reminders.

Each user can switch reminders on per room and per category, with a time of
day for each. When that time comes round, the user gets one message listing
the items in that category still due today and not yet logged.

pending_reminders() is pure; send_due_reminders() does the I/O and is
provider-agnostic: it depends on the NotificationPort protocol only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING

from src.core.app_state import AppState
from src.core.dose_resolver import item_display_text
from src.data.models import Category

if TYPE_CHECKING:
    from src.data.db import RoomDB, UserDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class Reminder:
    category: Category
    room_id: str
    lines: list[str]

    def render(self, room_name: str | None = None) -> str:
        where = f" ({room_name})" if room_name else ""
        header = f"Reminder{where}: {self.category.value} still to take today"
        return "\n".join([header] + [f"  • {line}" for line in self.lines])


def _is_due_now(at_hour: int, at_minute: int, now_local: datetime, window: timedelta) -> bool:
    target = now_local.replace(hour=at_hour, minute=at_minute, second=0, microsecond=0)
    return target <= now_local < target + window


def pending_reminders(
    state: AppState, now: datetime, window: timedelta = timedelta(minutes=1),
) -> list[Reminder]:
    """Reminders that fall in [reminder time, reminder time + window) at ``now``."""
    cycle = state.current_cycle()
    if cycle is None:
        return []

    room_settings = state.room_settings()
    now_local = now.astimezone(state.tz)
    today = now_local.date()
    if today < cycle.start_date or today > cycle.food_challenge_date:
        return []
    week = state.current_week_number(today)

    reminders = []
    for category in Category:
        if not room_settings.reminders_enabled.get(category):
            continue
        at = room_settings.reminder_times.get(category)
        if at is None or not _is_due_now(at.hour, at.minute, now_local, window):
            continue

        outstanding = [
            item for item in state.items_for_day(today, category)
            if not state.was_taken_on(item.id, today)
        ]
        if outstanding:
            reminders.append(Reminder(
                category=category,
                room_id=state.room_id,
                lines=[item_display_text(item, week) for item in outstanding],
            ))
    return reminders


async def send_due_reminders(
    notifier: NotificationPort,
    user_db: UserDB,
    room_db: RoomDB,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
    window: timedelta = timedelta(minutes=1),
) -> int:
    """Send every reminder due at ``now`` to users with a linked chat.

    A failure for one user is logged and does not stop the others.
    Returns the number of messages sent.
    """
    now = now or datetime.now(timezone.utc)
    sent = 0
    for user in user_db.list_users():
        if user.telegram_chat_id is None or not user.room_settings:
            continue
        for room_id in user.room_settings:
            access = (user.room_access or {}).get(room_id)
            if access is None or not access.is_active:
                continue
            try:
                state = AppState.load(room_db, user, room_id, tz=tz)
                room = room_db.get_room(room_id)
                for reminder in pending_reminders(state, now, window):
                    await notifier.send_message(
                        user.telegram_chat_id,
                        reminder.render(room.name if room else None),
                    )
                    sent += 1
                    logger.info(
                        "Reminder sent to user %s for %s in room %s",
                        user.id, reminder.category.value, room_id,
                    )
            except Exception as exc:
                logger.error(
                    "Failed to send reminders to user %s for room %s: %s",
                    user.id, room_id, exc,
                )
    return sent
