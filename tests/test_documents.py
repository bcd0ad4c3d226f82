"""Tests for src.data.documents — realtime-database document codec."""

from datetime import date, datetime, time, timezone

from src.data.documents import (
    cycle_from_doc,
    format_day,
    format_timestamp,
    item_from_doc,
    item_to_doc,
    parse_day,
    parse_timestamp,
    reaction_from_doc,
    room_settings_from_doc,
    transfer_request_from_doc,
    user_from_doc,
    user_to_doc,
)
from src.data.models import (
    Category,
    Item,
    RoomAccess,
    ScheduleType,
    SymptomType,
    TransferStatus,
    User,
    WeeklyDose,
)


class TestTimestamps:
    def test_format_is_utc_with_z(self):
        value = datetime(2025, 1, 1, 14, 30, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2025-01-01T14:30:00Z"

    def test_keeps_sub_second_precision(self):
        value = datetime(2025, 1, 1, 14, 30, 0, 100, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2025-01-01T14:30:00.000100Z"
        assert parse_timestamp(format_timestamp(value)) == value

    def test_parse_z_suffix(self):
        assert parse_timestamp("2025-01-01T14:30:00Z") == datetime(
            2025, 1, 1, 14, 30, tzinfo=timezone.utc,
        )

    def test_naive_is_utc(self):
        assert parse_timestamp("2025-01-01T14:30:00").tzinfo == timezone.utc

    def test_days(self):
        assert format_day(date(2025, 1, 1)) == "2025-01-01T00:00:00Z"
        assert parse_day("2025-01-01T00:00:00Z") == date(2025, 1, 1)
        assert parse_day("2025-01-01") == date(2025, 1, 1)


class TestItemDocs:
    def test_camel_case_keys(self):
        item = Item(
            name="Almond",
            category=Category.MAINTENANCE,
            dose=3.0,
            unit="nuts",
            schedule_type=ScheduleType.CUSTOM,
            custom_schedule_days={6, 2},
            every_other_day_start=date(2025, 1, 2),
        )
        doc = item_to_doc(item)
        assert doc["category"] == "Maintenance"
        assert doc["scheduleType"] == "Custom"
        assert doc["customScheduleDays"] == [2, 6]
        assert doc["everyOtherDayStartDate"] == "2025-01-02T00:00:00Z"
        assert "weeklyDoses" not in doc

    def test_weekly_doses_keyed_by_week_string(self):
        item = Item(
            name="Peanut",
            category=Category.TREATMENT,
            weekly_doses={3: WeeklyDose(1.0, "g"), 1: WeeklyDose(0.5, "g")},
        )
        assert item_to_doc(item)["weeklyDoses"] == {
            "1": {"dose": 0.5, "unit": "g"},
            "3": {"dose": 1.0, "unit": "g"},
        }

    def test_decodes_legacy_weekly_numbers(self):
        doc = {
            "id": "A", "name": "Peanut", "category": "Treatment", "unit": "g",
            "weeklyDoses": {"1": 0.25, "2": {"dose": 0.5, "unit": "mg"}},
        }
        item = item_from_doc(doc)
        assert item.weekly_doses[1] == WeeklyDose(0.25, "g")
        assert item.weekly_doses[2] == WeeklyDose(0.5, "mg")

    def test_decodes_list_weekly_doses(self):
        doc = {
            "id": "A", "name": "Peanut", "category": "Treatment",
            "weeklyDoses": [None, {"dose": 0.5, "unit": "g"}],
        }
        assert item_from_doc(doc).weekly_doses == {1: WeeklyDose(0.5, "g")}

    def test_unknown_category_is_skipped(self):
        assert item_from_doc({"id": "A", "name": "X", "category": "Snack"}) is None

    def test_missing_schedule_is_none(self):
        item = item_from_doc({"id": "A", "name": "X", "category": "Medicine", "dose": 1})
        assert item.schedule_type is None
        assert item.dose == 1.0


class TestCycleDocs:
    def test_missed_doses_decoded(self):
        doc = {
            "id": "C", "number": 2, "patientName": "Noa",
            "startDate": "2025-01-01T00:00:00Z",
            "foodChallengeDate": "2025-03-01T00:00:00Z",
            "missedDoses": [
                {"id": "M", "date": "2025-01-03T00:00:00Z", "cycleId": "C"},
                {"id": "bad"},
            ],
        }
        cycle = cycle_from_doc(doc)
        assert cycle.number == 2
        assert [m.date for m in cycle.missed_doses] == [date(2025, 1, 3)]

    def test_missing_start_is_skipped(self):
        assert cycle_from_doc({"id": "C", "number": 1, "patientName": "Noa"}) is None


class TestReactionDocs:
    def test_unknown_symptoms_dropped(self):
        doc = {
            "id": "R", "date": "2025-01-02T08:00:00Z", "symptoms": ["Hives", "Sneezing"],
            "description": "after dose", "userId": "U",
        }
        reaction = reaction_from_doc(doc)
        assert reaction.symptoms == [SymptomType.HIVES]
        assert reaction.item_id is None


class TestUserDocs:
    def test_round_trip_keeps_access_and_chat(self):
        user = User(
            name="Dana",
            owned_rooms=["R"],
            subscription_plan="com.zthreesolutions.tolerancetracker.room01",
            room_access={
                "R": RoomAccess(
                    is_active=True,
                    joined_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
                    is_admin=True,
                ),
            },
            telegram_chat_id=777,
        )
        doc = user_to_doc(user)
        assert doc["roomAccess"]["R"]["isAdmin"] is True
        assert doc["telegramChatId"] == 777
        decoded = user_from_doc(doc)
        assert decoded == user

    def test_missing_name_is_skipped(self):
        assert user_from_doc({"id": "U"}) is None

    def test_room_settings(self):
        settings = room_settings_from_doc({
            "remindersEnabled": {"Treatment": True, "Snack": True},
            "reminderTimes": {"Treatment": "08:30"},
        })
        assert settings.reminders_enabled == {Category.TREATMENT: True}
        assert settings.reminder_times[Category.TREATMENT] == time(8, 30)


class TestTransferRequestDocs:
    def test_decodes_status(self):
        doc = {
            "id": "T", "initiatorUserId": "A", "initiatorUserName": "Dana",
            "recipientUserId": "B", "newOwnerId": "B", "roomId": "R", "roomName": "Room",
            "requestDate": "2025-01-01T00:00:00Z", "expiresAt": "2025-01-08T00:00:00Z",
            "status": "accepted_pending_subscription",
        }
        request = transfer_request_from_doc(doc)
        assert request.status is TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION

    def test_unknown_status_is_skipped(self):
        doc = {
            "id": "T", "initiatorUserId": "A", "initiatorUserName": "Dana",
            "recipientUserId": "B", "newOwnerId": "B", "roomId": "R", "roomName": "Room",
            "requestDate": "2025-01-01T00:00:00Z", "expiresAt": "2025-01-08T00:00:00Z",
            "status": "lost",
        }
        assert transfer_request_from_doc(doc) is None
