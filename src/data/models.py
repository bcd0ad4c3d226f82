"""
TIPs Tracker — Data Models.

Plain records for one treatment room: cycles, their items and missed days,
consumption logs, reactions, users and room-ownership transfer requests.
The realtime-database document shape lives in src.data.documents; these
classes know nothing about it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum


class Category(Enum):
    MEDICINE = "Medicine"
    MAINTENANCE = "Maintenance"
    TREATMENT = "Treatment"
    RECOMMENDED = "Recommended"


class ScheduleType(Enum):
    EVERYDAY = "Everyday"
    EVERY_OTHER_DAY = "Every Other Day"
    CUSTOM = "Custom"


class SymptomType(Enum):
    HIVES = "Hives"
    ITCHING = "Itching"
    REDNESS = "Redness"
    COUGHING = "Coughing"
    VOMITING = "Vomiting"
    ANAPHYLAXIS = "Anaphylaxis"
    OTHER = "Other"


class TransferStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ACCEPTED_PENDING_SUBSCRIPTION = "accepted_pending_subscription"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


def _new_id() -> str:
    return str(uuid.uuid4()).upper()


@dataclass
class WeeklyDose:
    dose: float
    unit: str


@dataclass
class Item:
    """A medicine, food, maintenance or treatment entry in a cycle.

    Dosing is either constant (dose + unit) or a weekly table keyed by the
    1-based week number, never both.
    """

    name: str
    category: Category
    dose: float | None = None
    unit: str | None = None
    weekly_doses: dict[int, WeeklyDose] | None = None
    order: int = 0
    schedule_type: ScheduleType | None = None       # None = legacy "everyday"
    custom_schedule_days: set[int] | None = None    # 1=Sunday .. 7=Saturday
    every_other_day_start: date | None = None
    id: str = field(default_factory=_new_id)


@dataclass
class MissedDose:
    """A treatment day that was skipped; everything after it shifts by a day."""

    date: date
    cycle_id: str
    id: str = field(default_factory=_new_id)


@dataclass
class Cycle:
    number: int
    patient_name: str
    start_date: date
    food_challenge_date: date
    missed_doses: list[MissedDose] | None = None
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class LogEntry:
    """One "item was taken" record."""

    timestamp: datetime
    user_id: str


@dataclass
class Reaction:
    date: datetime
    symptoms: list[SymptomType]
    description: str
    user_id: str
    item_id: str | None = None          # None = unknown cause
    other_symptom: str | None = None
    id: str = field(default_factory=_new_id)


@dataclass
class RoomAccess:
    is_active: bool
    joined_at: datetime
    is_admin: bool
    is_super_admin_access: bool = False


@dataclass
class RoomSettings:
    treatment_food_timer_enabled: bool = False
    reminders_enabled: dict[Category, bool] = field(default_factory=dict)
    reminder_times: dict[Category, time] = field(default_factory=dict)


@dataclass
class User:
    """A caregiver account, possibly owning rooms and invited into others."""

    name: str
    email: str | None = None
    auth_id: str | None = None
    owned_rooms: list[str] | None = None
    subscription_plan: str | None = None   # store product id
    room_limit: int = 0
    is_super_admin: bool = False
    pending_transfer_requests: list[str] | None = None
    room_access: dict[str, RoomAccess] | None = None
    room_settings: dict[str, RoomSettings] | None = None
    is_in_grace_period: bool = False
    grace_period_end: datetime | None = None
    telegram_chat_id: int | None = None
    id: str = field(default_factory=_new_id)

    @property
    def owned_room_count(self) -> int:
        return len(self.owned_rooms or [])


@dataclass
class Room:
    """Local stand-in for a remote room node."""

    name: str
    owner_id: str
    id: str = field(default_factory=_new_id)


@dataclass
class TransferRequest:
    """A proposal to move ownership of a room to another user.

    recipient_user_id is who must answer; new_owner_id is who ends up owning
    the room (the same person in the owner-to-user flow).
    """

    initiator_user_id: str
    initiator_user_name: str
    recipient_user_id: str
    new_owner_id: str
    room_id: str
    room_name: str
    request_date: datetime
    expires_at: datetime
    status: TransferStatus = TransferStatus.PENDING
    id: str = field(default_factory=_new_id)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def can_be_accepted(self, now: datetime) -> bool:
        return self.status is TransferStatus.PENDING and not self.is_expired(now)

    def can_be_cancelled(self, now: datetime) -> bool:
        return self.status is TransferStatus.PENDING and not self.is_expired(now)
