"""Room-ownership transfer requests — pure state machine.

    pending ──► accepted
            ├─► accepted_pending_subscription ──► accepted
            ├─► declined
            ├─► cancelled
            └─► expired            (once now > expires_at)

accepted, declined, expired and cancelled are terminal. A request parked in
accepted_pending_subscription waits for the new owner's room gate to open.

Functions here mutate the request/user objects they are handed and return
them; persisting the result is the caller's job (see room_service).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from src.core.room_gate import RoomGateDecision
from src.data.models import TransferRequest, TransferStatus, User

logger = logging.getLogger(__name__)

TRANSFER_REQUEST_TTL = timedelta(days=7)

TERMINAL_STATUSES = frozenset({
    TransferStatus.ACCEPTED,
    TransferStatus.DECLINED,
    TransferStatus.EXPIRED,
    TransferStatus.CANCELLED,
})

_ALLOWED_TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({
        TransferStatus.ACCEPTED,
        TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION,
        TransferStatus.DECLINED,
        TransferStatus.CANCELLED,
        TransferStatus.EXPIRED,
    }),
    TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION: frozenset({TransferStatus.ACCEPTED}),
}


class TransferError(Exception):
    """Raised on a transition the state machine does not allow."""


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def _transition(request: TransferRequest, target: TransferStatus) -> TransferRequest:
    allowed = _ALLOWED_TRANSITIONS.get(request.status, frozenset())
    if target not in allowed:
        raise TransferError(
            f"Transfer request {request.id} cannot move from "
            f"{request.status.value} to {target.value}"
        )
    logger.info(
        "Transfer request %s: %s -> %s", request.id, request.status.value, target.value,
    )
    request.status = target
    return request


def new_transfer_request(
    initiator: User,
    recipient_user_id: str,
    room_id: str,
    room_name: str,
    new_owner_id: str | None = None,
    now: datetime | None = None,
) -> TransferRequest:
    """Create a pending request expiring seven days after creation.

    In the owner-to-user flow the recipient becomes the new owner, which is
    the default when ``new_owner_id`` is omitted.
    """
    created = _now(now)
    return TransferRequest(
        initiator_user_id=initiator.id,
        initiator_user_name=initiator.name,
        recipient_user_id=recipient_user_id,
        new_owner_id=new_owner_id or recipient_user_id,
        room_id=room_id,
        room_name=room_name,
        request_date=created,
        expires_at=created + TRANSFER_REQUEST_TTL,
    )


def effective_status(request: TransferRequest, now: datetime | None = None) -> TransferStatus:
    """Stored status, reading a lapsed pending request as expired."""
    if request.status is TransferStatus.PENDING and request.is_expired(_now(now)):
        return TransferStatus.EXPIRED
    return request.status


def accept(
    request: TransferRequest, new_owner_gate: RoomGateDecision, now: datetime | None = None,
) -> TransferRequest:
    """Accept a pending request.

    Moves to accepted if the new owner has room under their plan, otherwise
    parks it as accepted_pending_subscription until they upgrade.
    """
    if not request.can_be_accepted(_now(now)):
        raise TransferError(
            f"Transfer request {request.id} has expired or is no longer valid"
        )
    if new_owner_gate.allowed:
        return _transition(request, TransferStatus.ACCEPTED)
    logger.info(
        "New owner at %d/%d rooms on %s; parking request %s",
        new_owner_gate.owned_rooms, new_owner_gate.room_limit,
        new_owner_gate.plan.value, request.id,
    )
    return _transition(request, TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION)


def decline(request: TransferRequest, now: datetime | None = None) -> TransferRequest:
    if effective_status(request, now) is TransferStatus.EXPIRED:
        raise TransferError(f"Transfer request {request.id} has expired")
    return _transition(request, TransferStatus.DECLINED)


def cancel(request: TransferRequest, now: datetime | None = None) -> TransferRequest:
    if not request.can_be_cancelled(_now(now)):
        raise TransferError(f"Transfer request {request.id} can no longer be cancelled")
    return _transition(request, TransferStatus.CANCELLED)


def expire(request: TransferRequest, now: datetime | None = None) -> bool:
    """Mark a lapsed pending request as expired. Returns True if it changed."""
    if request.status is not TransferStatus.PENDING or not request.is_expired(_now(now)):
        return False
    _transition(request, TransferStatus.EXPIRED)
    return True


def resume_pending_subscription(
    request: TransferRequest, new_owner_gate: RoomGateDecision,
) -> bool:
    """Complete a parked request once the new owner's gate opens."""
    if request.status is not TransferStatus.ACCEPTED_PENDING_SUBSCRIPTION:
        return False
    if not new_owner_gate.allowed:
        return False
    _transition(request, TransferStatus.ACCEPTED)
    return True


def supersede_pending(
    existing: Iterable[TransferRequest], room_id: str, recipient_user_id: str,
) -> list[TransferRequest]:
    """Cancel earlier pending requests for the same room and recipient."""
    superseded = []
    for request in existing:
        if (
            request.room_id == room_id
            and request.recipient_user_id == recipient_user_id
            and request.status is TransferStatus.PENDING
        ):
            _transition(request, TransferStatus.CANCELLED)
            superseded.append(request)
    return superseded


def apply_ownership_transfer(
    request: TransferRequest, users: Iterable[User],
) -> list[User]:
    """Move the room to the new owner in the given user records.

    Every other user claiming the room loses it; if that leaves them with no
    rooms their grace-period state is cleared. The request id leaves the
    recipient's pending list. Returns the users that changed.
    """
    if request.status is not TransferStatus.ACCEPTED:
        raise TransferError(f"Transfer request {request.id} is not accepted")

    changed = []
    for user in users:
        touched = False
        owned = list(user.owned_rooms or [])

        if user.id == request.new_owner_id:
            if request.room_id not in owned:
                owned.append(request.room_id)
                touched = True
        elif request.room_id in owned:
            owned.remove(request.room_id)
            touched = True
            if not owned:
                user.is_in_grace_period = False
                user.grace_period_end = None

        if user.id == request.recipient_user_id and user.pending_transfer_requests:
            if request.id in user.pending_transfer_requests:
                user.pending_transfer_requests = [
                    r for r in user.pending_transfer_requests if r != request.id
                ] or None
                touched = True

        if touched:
            user.owned_rooms = owned or None
            changed.append(user)
    return changed
