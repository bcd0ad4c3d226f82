"""Tests for src.core.app_state — per-room state, missed doses and logging."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.core.app_state import AppState, NotAuthorizedError
from src.core.schedule import ScheduleValidationError
from src.data.models import (
    Category,
    Cycle,
    Item,
    Reaction,
    RoomAccess,
    ScheduleType,
    SymptomType,
)


@pytest.fixture
def state(room_db, seeded_room):
    user, room, _, _ = seeded_room
    return AppState.load(room_db, user, room.id)


class TestLoad:
    def test_loads_cycle_and_items(self, state, seeded_room):
        _, _, cycle, items = seeded_room
        assert state.current_cycle().id == cycle.id
        assert {i.name for i in state.items_for()} == set(items)

    def test_items_sorted_by_category(self, state):
        assert [i.name for i in state.items_for()] == ["Zyrtec", "Almond", "Peanut"]

    def test_current_cycle_is_highest_number(self, state):
        later = Cycle(
            number=2, patient_name="Noa",
            start_date=date(2025, 4, 1), food_challenge_date=date(2025, 6, 1),
        )
        state.cycles.append(later)
        assert state.current_cycle() is later

    def test_no_cycles(self, room_db, seeded_room):
        user, _, _, _ = seeded_room
        empty = AppState(user=user, room_id="other")
        assert empty.current_cycle() is None
        with pytest.raises(LookupError):
            empty.items_for()


class TestWeeks:
    def test_current_week_number(self, state):
        assert state.current_week_number(date(2025, 1, 1)) == 1
        assert state.current_week_number(date(2025, 1, 15)) == 3

    def test_before_start_is_week_one(self, state):
        assert state.current_week_number(date(2024, 12, 20)) == 1

    def test_weeks_in_cycle(self, state):
        assert state.weeks_in_cycle() == 13

    def test_window_grows_with_missed_dose(self, state):
        state.record_missed_dose(date(2025, 1, 2))
        window = state.week_window(0, today=date(2025, 1, 4))
        assert len(window) == 8
        assert window[-1] == date(2025, 1, 8)

    def test_adjusted_week(self, state):
        state.record_missed_dose(date(2025, 1, 2))
        assert state.adjusted_current_week_number(date(2025, 1, 15)) == 2

    def test_default_today_follows_room_timezone(self, state, seeded_room, monkeypatch):
        _, _, _, items = seeded_room
        monkeypatch.setattr(state, "today", lambda now=None: date(2025, 1, 15))
        assert state.current_week_number() == 3
        assert state.week_window(0)[0] == date(2025, 1, 1)
        assert state.dose_for(items["Peanut"]).display == "1 g"

    def test_today_uses_timezone(self, state):
        state.tz = timezone(timedelta(hours=10))
        assert state.today(datetime(2025, 1, 1, 20, tzinfo=timezone.utc)) == date(2025, 1, 2)


class TestItemsForDay:
    def test_custom_schedule_filters(self, state):
        assert [i.name for i in state.items_for_day(date(2025, 1, 1))] == [
            "Zyrtec", "Almond", "Peanut",
        ]
        assert [i.name for i in state.items_for_day(date(2025, 1, 2))] == ["Zyrtec", "Peanut"]

    def test_missed_day_skips_treatment(self, state):
        state.record_missed_dose(date(2025, 1, 2))
        assert [i.name for i in state.items_for_day(date(2025, 1, 2))] == ["Zyrtec"]

    def test_dose_for_week(self, state, seeded_room):
        _, _, _, items = seeded_room
        assert state.dose_for(items["Peanut"], 2).display == "1/2 g"
        assert state.dose_for(items["Peanut"], 4).display == "1 g"


class TestMissedDoses:
    def test_recorded_once(self, state, room_db, seeded_room):
        _, _, cycle, _ = seeded_room
        assert state.record_missed_dose(date(2025, 1, 2)) is not None
        assert state.record_missed_dose(date(2025, 1, 2)) is None
        assert len(room_db.get_missed_doses(cycle.id)) == 1

    def test_remove(self, state, room_db, seeded_room):
        _, _, cycle, _ = seeded_room
        state.record_missed_dose(date(2025, 1, 2))
        assert state.remove_missed_dose(date(2025, 1, 2)) is True
        assert state.remove_missed_dose(date(2025, 1, 2)) is False
        assert room_db.get_missed_doses(cycle.id) == []

    def test_non_admin_refused(self, state):
        state.user.room_access[state.room_id] = RoomAccess(
            is_active=True, joined_at=datetime(2025, 1, 1, tzinfo=timezone.utc), is_admin=False,
        )
        with pytest.raises(NotAuthorizedError):
            state.record_missed_dose(date(2025, 1, 2))

    def test_super_admin_allowed(self, state):
        state.user.room_access = {}
        state.user.is_super_admin = True
        assert state.record_missed_dose(date(2025, 1, 2)) is not None


class TestConsumption:
    def test_log_and_undo(self, state, room_db, seeded_room):
        _, _, cycle, items = seeded_room
        peanut = items["Peanut"]
        at = datetime(2025, 1, 2, 9, 0, tzinfo=timezone.utc)
        state.log_consumption(peanut.id, at)
        assert state.was_taken_on(peanut.id, date(2025, 1, 2)) is True
        assert len(room_db.get_consumption_logs(cycle.id)[peanut.id]) == 1

        assert state.undo_consumption(peanut.id, date(2025, 1, 2)).timestamp == at
        assert state.was_taken_on(peanut.id, date(2025, 1, 2)) is False
        assert room_db.get_consumption_logs(cycle.id) == {}
        assert state.undo_consumption(peanut.id, date(2025, 1, 2)) is None

    def test_undo_keeps_other_log_in_same_second(self, state, room_db, seeded_room):
        _, _, cycle, items = seeded_room
        peanut = items["Peanut"]
        first = datetime(2025, 1, 2, 9, 0, 0, 100, tzinfo=timezone.utc)
        second = datetime(2025, 1, 2, 9, 0, 0, 900, tzinfo=timezone.utc)
        state.log_consumption(peanut.id, first)
        state.log_consumption(peanut.id, second)

        assert state.undo_consumption(peanut.id, date(2025, 1, 2)).timestamp == second
        assert len(state.consumption_logs[cycle.id][peanut.id]) == 1
        stored = room_db.get_consumption_logs(cycle.id)[peanut.id]
        assert [e.timestamp for e in stored] == [first]

    def test_unknown_item(self, state):
        with pytest.raises(LookupError):
            state.log_consumption("nope")

    def test_weekly_progress(self, state, seeded_room):
        _, _, _, items = seeded_room
        almond = items["Almond"]
        state.log_consumption(almond.id, datetime(2025, 1, 1, 8, tzinfo=timezone.utc))
        state.log_consumption(almond.id, datetime(2025, 1, 3, 8, tzinfo=timezone.utc))
        assert state.weekly_progress(almond, 0, today=date(2025, 1, 4)) == (2, 3)

        zyrtec = items["Zyrtec"]
        assert state.weekly_progress(zyrtec, 0, today=date(2025, 1, 4)) == (0, 7)

    def test_weekly_progress_counts_make_up_days(self, state, seeded_room):
        _, _, _, items = seeded_room
        state.record_missed_dose(date(2025, 1, 2))
        today = date(2025, 1, 4)
        assert state.weekly_progress(items["Zyrtec"], 0, today=today) == (0, 8)
        # Mon/Wed/Fri over 1-8 Jan
        assert state.weekly_progress(items["Almond"], 0, today=today) == (0, 4)
        # treatment skipped on the missed day
        assert state.weekly_progress(items["Peanut"], 0, today=today) == (0, 7)


class TestReactions:
    def test_add_reaction_newest_first(self, state, room_db, seeded_room):
        _, _, cycle, items = seeded_room
        reaction = Reaction(
            date=datetime(2025, 1, 2, 10, tzinfo=timezone.utc),
            symptoms=[SymptomType.HIVES],
            description="hives on arms",
            user_id=state.user.id,
            item_id=items["Peanut"].id,
        )
        state.add_reaction(reaction)
        assert state.reactions[cycle.id][0] is reaction
        assert room_db.list_reactions(cycle.id)[0].id == reaction.id


class TestItemEdits:
    def test_save_item_persists(self, state, room_db, seeded_room):
        _, _, cycle, _ = seeded_room
        item = Item(name="Egg", category=Category.TREATMENT, dose=0.25, unit="g", order=1)
        state.save_item(item)
        assert state.find_item(item.id) is item
        assert item.id in {i.id for i in room_db.get_items(cycle.id)}

    def test_invalid_item_rejected(self, state):
        item = Item(
            name="Egg", category=Category.TREATMENT,
            schedule_type=ScheduleType.CUSTOM, custom_schedule_days=set(),
        )
        with pytest.raises(ScheduleValidationError):
            state.save_item(item)

    def test_delete_item(self, state, room_db, seeded_room):
        _, _, cycle, items = seeded_room
        assert state.delete_item(items["Almond"].id) is True
        assert state.delete_item(items["Almond"].id) is False
        assert "Almond" not in {i.name for i in room_db.get_items(cycle.id)}

    def test_non_admin_cannot_edit(self, state, seeded_room):
        _, _, _, items = seeded_room
        state.user.room_access[state.room_id].is_admin = False
        with pytest.raises(NotAuthorizedError):
            state.delete_item(items["Almond"].id)
