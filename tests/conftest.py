"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides temp-file stores and a small seeded room.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import date, datetime, timezone

import pytest


@pytest.fixture
def room_db(tmp_path):
    """Return a RoomDB instance backed by a temp file."""
    from src.data.db import RoomDB
    return RoomDB(db_path=str(tmp_path / "test_rooms.db"))


@pytest.fixture
def user_db(tmp_path):
    """Return a UserDB instance backed by a temp file."""
    from src.data.db import UserDB
    return UserDB(db_path=str(tmp_path / "test_users.db"))


@pytest.fixture
def transfer_db(tmp_path):
    """Return a TransferRequestDB instance backed by a temp file."""
    from src.data.db import TransferRequestDB
    return TransferRequestDB(db_path=str(tmp_path / "test_transfers.db"))


@pytest.fixture
def room_service(room_db, user_db, transfer_db):
    from src.core.room_service import RoomService
    return RoomService(room_db, user_db, transfer_db, grace_period_days=16)


@pytest.fixture
def seeded_room(room_db, user_db):
    """An admin user with one room, one cycle starting 2025-01-01 and three items.

    Returns (user, room, cycle, items) where items is a dict by name.
    """
    from src.data.models import (
        Category,
        Cycle,
        Item,
        Room,
        RoomAccess,
        ScheduleType,
        User,
        WeeklyDose,
    )

    user = User(name="Dana", subscription_plan="com.zthreesolutions.tolerancetracker.room01")
    room = room_db.add_room(Room(name="Noa's room", owner_id=user.id))
    user.owned_rooms = [room.id]
    user.room_access = {
        room.id: RoomAccess(
            is_active=True,
            joined_at=datetime(2024, 12, 20, tzinfo=timezone.utc),
            is_admin=True,
        ),
    }
    user_db.save_user(user)

    cycle = room_db.save_cycle(room.id, Cycle(
        number=1,
        patient_name="Noa",
        start_date=date(2025, 1, 1),
        food_challenge_date=date(2025, 3, 26),
    ))
    items = {
        "Peanut": Item(
            name="Peanut",
            category=Category.TREATMENT,
            weekly_doses={1: WeeklyDose(0.5, "g"), 3: WeeklyDose(1.0, "g")},
            order=0,
        ),
        "Zyrtec": Item(
            name="Zyrtec", category=Category.MEDICINE, dose=0.5, unit="tablet", order=0,
        ),
        "Almond": Item(
            name="Almond",
            category=Category.MAINTENANCE,
            dose=3,
            unit="nuts",
            schedule_type=ScheduleType.CUSTOM,
            custom_schedule_days={2, 4, 6},
            order=0,
        ),
    }
    for item in items.values():
        room_db.save_item(cycle.id, item)
    return user, room, cycle, items
