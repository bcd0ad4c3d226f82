"""
TIPs Tracker — Room Service.

Orchestrates room creation, subscription changes and ownership transfers:
load records -> consult the room gate / transfer state machine -> persist.
Raises domain errors instead of returning status tuples; UI adapters turn
them into messages.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from src.core import transfers
from src.core.room_gate import (
    RoomGateDecision,
    SubscriptionPlan,
    check_downgrade,
    evaluate_room_gate,
    grace_period_end,
    is_in_grace_period,
)
from src.data.models import Room, RoomAccess, TransferRequest, TransferStatus, User

if TYPE_CHECKING:
    from src.data.db import RoomDB, TransferRequestDB, UserDB

logger = logging.getLogger(__name__)


class RoomLimitError(Exception):
    """Raised when an action would exceed the user's room allowance."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomService:
    def __init__(
        self,
        room_db: RoomDB,
        user_db: UserDB,
        transfer_db: TransferRequestDB,
        grace_period_days: int | None = None,
    ) -> None:
        if grace_period_days is None:
            from src.config import settings
            grace_period_days = settings.GRACE_PERIOD_DAYS
        self._rooms = room_db
        self._users = user_db
        self._transfers = transfer_db
        self._grace_period_days = grace_period_days

    # -- helpers ------------------------------------------------------------

    def _require_user(self, user_id: str) -> User:
        user = self._users.get_user(user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")
        return user

    def _require_request(self, request_id: str) -> TransferRequest:
        request = self._transfers.get(request_id)
        if request is None:
            raise LookupError(f"Transfer request {request_id} not found")
        return request

    def gate_for(self, user: User, now: datetime | None = None) -> RoomGateDecision:
        in_grace = is_in_grace_period(
            user.is_in_grace_period, user.grace_period_end, now or _utcnow(),
        )
        return evaluate_room_gate(user.subscription_plan, user.owned_room_count, in_grace)

    # -- rooms --------------------------------------------------------------

    def create_room(self, owner_id: str, name: str, now: datetime | None = None) -> Room:
        """Create a room owned (and administered) by ``owner_id``."""
        now = now or _utcnow()
        owner = self._require_user(owner_id)
        gate = self.gate_for(owner, now)
        if not gate.allowed:
            logger.warning(
                "Room creation refused for %s: %d/%d rooms on %s",
                owner.id, gate.owned_rooms, gate.room_limit, gate.plan.value,
            )
            raise RoomLimitError(
                f"Your {gate.plan.display_name} allows {gate.room_limit} room(s) "
                f"and you own {gate.owned_rooms}."
            )

        room = self._rooms.add_room(Room(name=name, owner_id=owner.id))
        owner.owned_rooms = (owner.owned_rooms or []) + [room.id]
        owner.room_access = dict(owner.room_access or {})
        owner.room_access[room.id] = RoomAccess(is_active=True, joined_at=now, is_admin=True)
        self._users.save_user(owner)
        return room

    def change_plan(self, user_id: str, plan_id: str) -> User:
        """Store a new subscription plan, refusing downgrades below owned rooms."""
        user = self._require_user(user_id)
        error = check_downgrade(plan_id, user.owned_room_count)
        if error:
            logger.warning("Plan change refused for %s: %s", user.id, error)
            raise RoomLimitError(error)

        plan = SubscriptionPlan.from_product_id(plan_id)
        user.subscription_plan = plan.value
        user.room_limit = plan.room_limit
        user.is_in_grace_period = False
        user.grace_period_end = None
        self._users.save_user(user)
        logger.info("User %s now on %s", user.id, plan.display_name)
        self.resume_pending_transfers(user.id)
        return user

    def start_grace_period(self, user_id: str, now: datetime | None = None) -> User:
        """Subscription lapsed: keep rooms reachable but block new ones."""
        user = self._require_user(user_id)
        user.is_in_grace_period = True
        user.grace_period_end = grace_period_end(now or _utcnow(), self._grace_period_days)
        self._users.save_user(user)
        logger.info("User %s in grace period until %s", user.id, user.grace_period_end)
        return user

    def clear_grace_period(self, user_id: str) -> User:
        user = self._require_user(user_id)
        user.is_in_grace_period = False
        user.grace_period_end = None
        self._users.save_user(user)
        return user

    # -- transfers ----------------------------------------------------------

    def send_transfer_request(
        self,
        initiator_id: str,
        room_id: str,
        recipient_id: str,
        now: datetime | None = None,
    ) -> TransferRequest:
        """Offer ownership of an owned room to another user."""
        initiator = self._require_user(initiator_id)
        recipient = self._require_user(recipient_id)
        if room_id not in (initiator.owned_rooms or []):
            raise PermissionError("You don't own this room")
        room = self._rooms.get_room(room_id)
        if room is None:
            raise LookupError(f"Room {room_id} does not exist")

        for old in transfers.supersede_pending(
            self._transfers.list_sent(initiator.id), room_id, recipient.id,
        ):
            self._transfers.save(old)

        request = transfers.new_transfer_request(
            initiator, recipient.id, room.id, room.name, now=now,
        )
        self._transfers.save(request)

        pending = [
            r for r in (recipient.pending_transfer_requests or [])
            if self._is_pending(r)
        ]
        recipient.pending_transfer_requests = pending + [request.id]
        self._users.save_user(recipient)
        logger.info(
            "Transfer request %s sent: room %s from %s to %s",
            request.id, room_id, initiator.id, recipient.id,
        )
        return request

    def accept_transfer_request(
        self, request_id: str, now: datetime | None = None,
    ) -> TransferRequest:
        """Accept a request; completes it or parks it pending subscription."""
        now = now or _utcnow()
        request = self._require_request(request_id)
        new_owner = self._require_user(request.new_owner_id)

        transfers.accept(request, self.gate_for(new_owner, now), now)

        if request.status is TransferStatus.ACCEPTED:
            # Stored as accepted only once ownership has actually moved.
            self._execute_transfer(request)
            self._transfers.save(request)
        else:
            self._transfers.save(request)
            recipient = self._require_user(request.recipient_user_id)
            recipient.pending_transfer_requests = [
                r for r in (recipient.pending_transfer_requests or []) if r != request.id
            ] or None
            self._users.save_user(recipient)
        return request

    def decline_transfer_request(
        self, request_id: str, now: datetime | None = None,
    ) -> TransferRequest:
        now = now or _utcnow()
        request = self._require_request(request_id)
        if transfers.expire(request, now):
            self._transfers.save(request)
            self._drop_pending(request)
        transfers.decline(request, now)
        self._transfers.save(request)
        self._drop_pending(request)
        return request

    def cancel_transfer_request(
        self, request_id: str, now: datetime | None = None,
    ) -> TransferRequest:
        request = self._require_request(request_id)
        transfers.cancel(request, now)
        self._transfers.save(request)
        self._drop_pending(request)
        return request

    def resume_pending_transfers(self, user_id: str, now: datetime | None = None) -> list[TransferRequest]:
        """Complete requests parked for ``user_id`` now that their gate may be open."""
        completed = []
        parked = [
            r for r in self._transfers.list_for_recipient(user_id)
            if r.status is TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION
        ]
        for request in parked:
            new_owner = self._require_user(request.new_owner_id)
            if transfers.resume_pending_subscription(request, self.gate_for(new_owner, now)):
                self._execute_transfer(request)
                self._transfers.save(request)
                completed.append(request)
        return completed

    def cleanup_expired_requests(self, now: datetime | None = None) -> list[str]:
        """Expire lapsed pending requests and prune them from recipients."""
        now = now or _utcnow()
        expired_ids = []
        for user in self._users.list_users():
            for request in self._transfers.list_for_recipient(user.id):
                if transfers.expire(request, now):
                    self._transfers.save(request)
                    expired_ids.append(request.id)
            if user.pending_transfer_requests:
                remaining = [r for r in user.pending_transfer_requests if r not in expired_ids]
                if len(remaining) != len(user.pending_transfer_requests):
                    user.pending_transfer_requests = remaining or None
                    self._users.save_user(user)
        if expired_ids:
            logger.info("Expired %d transfer requests", len(expired_ids))
        return expired_ids

    def _is_pending(self, request_id: str) -> bool:
        request = self._transfers.get(request_id)
        return request is not None and request.status is TransferStatus.PENDING

    def _drop_pending(self, request: TransferRequest) -> None:
        recipient = self._users.get_user(request.recipient_user_id)
        if recipient is None or not recipient.pending_transfer_requests:
            return
        if request.id in recipient.pending_transfer_requests:
            recipient.pending_transfer_requests = [
                r for r in recipient.pending_transfer_requests if r != request.id
            ] or None
            self._users.save_user(recipient)

    def _execute_transfer(self, request: TransferRequest) -> None:
        if self._rooms.get_room(request.room_id) is None:
            logger.error("Room %s vanished before transfer %s", request.room_id, request.id)
            raise LookupError(f"Room {request.room_id} does not exist")

        self._rooms.set_room_owner(request.room_id, request.new_owner_id)
        users = self._users.list_users()
        for user in transfers.apply_ownership_transfer(request, users):
            if user.id == request.new_owner_id:
                user.room_access = dict(user.room_access or {})
                access = user.room_access.get(request.room_id)
                user.room_access[request.room_id] = RoomAccess(
                    is_active=True,
                    joined_at=access.joined_at if access else _utcnow(),
                    is_admin=True,
                )
            self._users.save_user(user)
        logger.info(
            "Room %s transferred to %s (request %s)",
            request.room_id, request.new_owner_id, request.id,
        )
