"""Tests for src.core.room_service — rooms, plans and ownership transfers."""

from datetime import datetime, timedelta, timezone

import pytest

from src.core.room_service import RoomLimitError
from src.core.transfers import TransferError
from src.data.models import TransferStatus, User

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
ONE_ROOM = "com.zthreesolutions.tolerancetracker.room01"
TWO_ROOMS = "com.zthreesolutions.tolerancetracker.room02"


@pytest.fixture
def eli(user_db):
    return user_db.save_user(User(name="Eli"))


class TestCreateRoom:
    def test_creates_admin_room(self, room_service, user_db, room_db):
        user = user_db.save_user(User(name="Dana", subscription_plan=TWO_ROOMS))
        room = room_service.create_room(user.id, "Noa's room", now=T0)

        stored = user_db.get_user(user.id)
        assert stored.owned_rooms == [room.id]
        assert stored.room_access[room.id].is_admin is True
        assert room_db.get_room(room.id).owner_id == user.id

    def test_refused_at_limit(self, room_service, seeded_room):
        owner, _, _, _ = seeded_room
        with pytest.raises(RoomLimitError, match="1 Room Plan"):
            room_service.create_room(owner.id, "Second room", now=T0)

    def test_refused_during_grace(self, room_service, user_db):
        user = user_db.save_user(User(name="Dana", subscription_plan=TWO_ROOMS))
        room_service.start_grace_period(user.id, now=T0)
        with pytest.raises(RoomLimitError):
            room_service.create_room(user.id, "Room", now=T0 + timedelta(days=1))

    def test_allowed_after_grace_cleared(self, room_service, user_db):
        user = user_db.save_user(User(name="Dana", subscription_plan=TWO_ROOMS))
        room_service.start_grace_period(user.id, now=T0)
        room_service.clear_grace_period(user.id)
        room_service.create_room(user.id, "Room", now=T0)

    def test_unknown_user(self, room_service):
        with pytest.raises(LookupError):
            room_service.create_room("nope", "Room")


class TestChangePlan:
    def test_upgrade_sets_limit(self, room_service, seeded_room):
        owner, _, _, _ = seeded_room
        user = room_service.change_plan(owner.id, TWO_ROOMS)
        assert user.room_limit == 2
        assert user.subscription_plan == TWO_ROOMS

    def test_downgrade_below_owned_refused(self, room_service, user_db):
        user = user_db.save_user(User(name="Dana", subscription_plan=TWO_ROOMS))
        room_service.create_room(user.id, "A", now=T0)
        room_service.create_room(user.id, "B", now=T0)
        with pytest.raises(RoomLimitError, match="delete 1 room"):
            room_service.change_plan(user.id, ONE_ROOM)

    def test_grace_period_end_is_sixteen_days(self, room_service, seeded_room):
        owner, _, _, _ = seeded_room
        user = room_service.start_grace_period(owner.id, now=T0)
        assert user.grace_period_end == T0 + timedelta(days=16)
        assert user.is_in_grace_period is True


class TestTransfers:
    def test_send_adds_pending(self, room_service, user_db, seeded_room, eli):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        assert request.status is TransferStatus.PENDING
        assert user_db.get_user(eli.id).pending_transfer_requests == [request.id]

    def test_send_unowned_room_refused(self, room_service, seeded_room, eli):
        _, room, _, _ = seeded_room
        with pytest.raises(PermissionError):
            room_service.send_transfer_request(eli.id, room.id, eli.id, now=T0)

    def test_resend_supersedes(self, room_service, transfer_db, user_db, seeded_room, eli):
        owner, room, _, _ = seeded_room
        first = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        second = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        assert transfer_db.get(first.id).status is TransferStatus.CANCELLED
        assert user_db.get_user(eli.id).pending_transfer_requests == [second.id]

    def test_accept_with_plan_moves_room(self, room_service, user_db, room_db, seeded_room, eli):
        owner, room, _, _ = seeded_room
        eli.subscription_plan = ONE_ROOM
        user_db.save_user(eli)

        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        room_service.accept_transfer_request(request.id, now=T0 + timedelta(hours=1))

        new_owner = user_db.get_user(eli.id)
        old_owner = user_db.get_user(owner.id)
        assert new_owner.owned_rooms == [room.id]
        assert new_owner.room_access[room.id].is_admin is True
        assert new_owner.pending_transfer_requests is None
        assert old_owner.owned_rooms is None
        assert room_db.get_room(room.id).owner_id == eli.id

    def test_accept_without_plan_parks_then_resumes(
        self, room_service, user_db, room_db, transfer_db, seeded_room, eli,
    ):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        room_service.accept_transfer_request(request.id, now=T0 + timedelta(hours=1))

        parked = transfer_db.get(request.id)
        assert parked.status is TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION
        assert user_db.get_user(eli.id).pending_transfer_requests is None
        assert room_db.get_room(room.id).owner_id == owner.id

        room_service.change_plan(eli.id, ONE_ROOM)
        assert transfer_db.get(request.id).status is TransferStatus.ACCEPTED
        assert room_db.get_room(room.id).owner_id == eli.id
        assert user_db.get_user(eli.id).owned_rooms == [room.id]

    def test_accept_expired_refused(self, room_service, seeded_room, eli):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        with pytest.raises(TransferError):
            room_service.accept_transfer_request(request.id, now=T0 + timedelta(days=8))

    def test_decline_clears_pending(self, room_service, user_db, seeded_room, eli):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        declined = room_service.decline_transfer_request(request.id, now=T0 + timedelta(days=1))
        assert declined.status is TransferStatus.DECLINED
        assert user_db.get_user(eli.id).pending_transfer_requests is None

    def test_decline_after_expiry_stores_expired(
        self, room_service, user_db, transfer_db, seeded_room, eli,
    ):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        with pytest.raises(TransferError):
            room_service.decline_transfer_request(request.id, now=T0 + timedelta(days=8))
        assert transfer_db.get(request.id).status is TransferStatus.EXPIRED
        assert user_db.get_user(eli.id).pending_transfer_requests is None

    def test_failed_transfer_leaves_request_pending(
        self, room_service, user_db, room_db, transfer_db, seeded_room, eli,
    ):
        owner, room, _, _ = seeded_room
        eli.subscription_plan = ONE_ROOM
        user_db.save_user(eli)
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        room_db.delete_room(room.id)

        with pytest.raises(LookupError):
            room_service.accept_transfer_request(request.id, now=T0 + timedelta(hours=1))
        assert transfer_db.get(request.id).status is TransferStatus.PENDING
        assert user_db.get_user(eli.id).owned_rooms is None

    def test_failed_resume_stays_parked(
        self, room_service, room_db, transfer_db, seeded_room, eli,
    ):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        room_service.accept_transfer_request(request.id, now=T0 + timedelta(hours=1))
        room_db.delete_room(room.id)

        with pytest.raises(LookupError):
            room_service.change_plan(eli.id, ONE_ROOM)
        assert transfer_db.get(request.id).status is TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION

    def test_cancel(self, room_service, transfer_db, seeded_room, eli):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)
        room_service.cancel_transfer_request(request.id, now=T0)
        assert transfer_db.get(request.id).status is TransferStatus.CANCELLED

    def test_cleanup_expired(self, room_service, user_db, transfer_db, seeded_room, eli):
        owner, room, _, _ = seeded_room
        request = room_service.send_transfer_request(owner.id, room.id, eli.id, now=T0)

        assert room_service.cleanup_expired_requests(now=T0 + timedelta(days=6)) == []
        assert room_service.cleanup_expired_requests(now=T0 + timedelta(days=8)) == [request.id]
        assert transfer_db.get(request.id).status is TransferStatus.EXPIRED
        assert user_db.get_user(eli.id).pending_transfer_requests is None
