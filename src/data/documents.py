"""
TIPs Tracker — Document codec.

Converts models to and from the realtime-database document shape: camelCase
keys, upper-case UUID strings and ISO-8601 timestamps. Decoders return None
for records that are missing required keys or hold malformed values, so a
single bad node never breaks loading a whole room.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone

from src.data.models import (
    Category,
    Cycle,
    Item,
    LogEntry,
    MissedDose,
    Reaction,
    Room,
    RoomAccess,
    RoomSettings,
    ScheduleType,
    SymptomType,
    TransferRequest,
    TransferStatus,
    User,
    WeeklyDose,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def format_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if value.microsecond:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Raises ValueError on malformed input.
    """
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def format_day(value: date) -> str:
    """Calendar days are stored as midnight UTC timestamps."""
    return f"{value.isoformat()}T00:00:00Z"


def parse_day(raw: str) -> date:
    if "T" not in raw:
        return date.fromisoformat(raw)
    return parse_timestamp(raw).date()


def _format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def _parse_clock(raw: str) -> time:
    if "T" in raw:
        return parse_timestamp(raw).time().replace(tzinfo=None)
    hour, minute = raw.split(":")[:2]
    return time(int(hour), int(minute))


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def _decode_weekly_doses(raw: object, fallback_unit: str) -> dict[int, WeeklyDose]:
    parsed: dict[int, WeeklyDose] = {}
    if isinstance(raw, dict):
        entries = raw.items()
    elif isinstance(raw, list):
        entries = ((str(index), value) for index, value in enumerate(raw))
    else:
        return parsed

    for week_key, value in entries:
        try:
            week = int(week_key)
        except (TypeError, ValueError):
            logger.warning("Invalid week key %r in weeklyDoses", week_key)
            continue
        if isinstance(value, dict) and "dose" in value and "unit" in value:
            try:
                parsed[week] = WeeklyDose(dose=float(value["dose"]), unit=str(value["unit"]))
            except (TypeError, ValueError):
                logger.warning("Malformed weekly dose for week %s: %r", week_key, value)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            # Legacy shape: bare number, unit comes from the item
            parsed[week] = WeeklyDose(dose=float(value), unit=fallback_unit)
        elif value is not None:
            logger.warning("Malformed weekly dose for week %s: %r", week_key, value)
    return parsed


def item_to_doc(item: Item) -> dict:
    doc: dict = {
        "id": item.id,
        "name": item.name,
        "category": item.category.value,
        "order": item.order,
    }
    if item.dose is not None:
        doc["dose"] = item.dose
    if item.unit is not None:
        doc["unit"] = item.unit
    if item.weekly_doses:
        doc["weeklyDoses"] = {
            str(week): {"dose": wd.dose, "unit": wd.unit}
            for week, wd in sorted(item.weekly_doses.items())
        }
    if item.schedule_type is not None:
        doc["scheduleType"] = item.schedule_type.value
    if item.custom_schedule_days:
        doc["customScheduleDays"] = sorted(item.custom_schedule_days)
    if item.every_other_day_start is not None:
        doc["everyOtherDayStartDate"] = format_day(item.every_other_day_start)
    return doc


def item_from_doc(doc: dict) -> Item | None:
    try:
        category = Category(doc["category"])
        item_id = str(doc["id"])
        name = str(doc["name"])
    except (KeyError, ValueError) as exc:
        logger.warning("Skipping item document: %s", exc)
        return None

    unit = doc.get("unit")
    dose = doc.get("dose")
    weekly = _decode_weekly_doses(doc.get("weeklyDoses"), unit or "")

    schedule_type = None
    if doc.get("scheduleType") is not None:
        try:
            schedule_type = ScheduleType(doc["scheduleType"])
        except ValueError:
            logger.warning("Unknown scheduleType %r on item %s", doc["scheduleType"], item_id)

    custom_days = doc.get("customScheduleDays")
    every_other_start = None
    if doc.get("everyOtherDayStartDate"):
        try:
            every_other_start = parse_day(doc["everyOtherDayStartDate"])
        except ValueError:
            logger.warning("Bad everyOtherDayStartDate on item %s", item_id)

    return Item(
        id=item_id,
        name=name,
        category=category,
        dose=float(dose) if dose is not None else None,
        unit=unit,
        weekly_doses=weekly or None,
        order=int(doc.get("order", 0)),
        schedule_type=schedule_type,
        custom_schedule_days=set(custom_days) if custom_days is not None else None,
        every_other_day_start=every_other_start,
    )


# ---------------------------------------------------------------------------
# Cycles and missed doses
# ---------------------------------------------------------------------------


def missed_dose_to_doc(missed: MissedDose) -> dict:
    return {
        "id": missed.id,
        "date": format_day(missed.date),
        "cycleId": missed.cycle_id,
    }


def missed_dose_from_doc(doc: dict) -> MissedDose | None:
    try:
        return MissedDose(
            id=str(doc["id"]),
            date=parse_day(doc["date"]),
            cycle_id=str(doc["cycleId"]),
        )
    except (KeyError, ValueError, TypeError) as exc:
        logger.warning("Skipping missed dose document: %s", exc)
        return None


def cycle_to_doc(cycle: Cycle) -> dict:
    doc = {
        "id": cycle.id,
        "number": cycle.number,
        "patientName": cycle.patient_name,
        "startDate": format_day(cycle.start_date),
        "foodChallengeDate": format_day(cycle.food_challenge_date),
    }
    if cycle.missed_doses:
        doc["missedDoses"] = [missed_dose_to_doc(m) for m in cycle.missed_doses]
    return doc


def cycle_from_doc(doc: dict) -> Cycle | None:
    try:
        cycle = Cycle(
            id=str(doc["id"]),
            number=int(doc["number"]),
            patient_name=str(doc["patientName"]),
            start_date=parse_day(doc["startDate"]),
            food_challenge_date=parse_day(doc["foodChallengeDate"]),
        )
    except (KeyError, ValueError, TypeError) as exc:
        logger.warning("Skipping cycle document: %s", exc)
        return None

    raw_missed = doc.get("missedDoses")
    if isinstance(raw_missed, list):
        cycle.missed_doses = [
            m for m in (missed_dose_from_doc(d) for d in raw_missed) if m is not None
        ]
    return cycle


# ---------------------------------------------------------------------------
# Logs and reactions
# ---------------------------------------------------------------------------


def log_entry_to_doc(entry: LogEntry) -> dict:
    return {"timestamp": format_timestamp(entry.timestamp), "userId": entry.user_id}


def log_entry_from_doc(doc: dict) -> LogEntry | None:
    try:
        return LogEntry(timestamp=parse_timestamp(doc["timestamp"]), user_id=str(doc["userId"]))
    except (KeyError, ValueError, TypeError) as exc:
        logger.warning("Skipping log entry document: %s", exc)
        return None


def reaction_to_doc(reaction: Reaction) -> dict:
    doc = {
        "id": reaction.id,
        "date": format_timestamp(reaction.date),
        "symptoms": [s.value for s in reaction.symptoms],
        "description": reaction.description,
        "userId": reaction.user_id,
    }
    if reaction.item_id is not None:
        doc["itemId"] = reaction.item_id
    if reaction.other_symptom is not None:
        doc["otherSymptom"] = reaction.other_symptom
    return doc


def reaction_from_doc(doc: dict) -> Reaction | None:
    try:
        symptoms_raw = doc["symptoms"]
        reaction = Reaction(
            id=str(doc["id"]),
            date=parse_timestamp(doc["date"]),
            symptoms=[],
            description=str(doc["description"]),
            user_id=str(doc["userId"]),
            item_id=doc.get("itemId"),
            other_symptom=doc.get("otherSymptom"),
        )
    except (KeyError, ValueError, TypeError) as exc:
        logger.warning("Skipping reaction document: %s", exc)
        return None

    # Unknown symptom tags are dropped, not fatal
    for raw in symptoms_raw:
        try:
            reaction.symptoms.append(SymptomType(raw))
        except ValueError:
            logger.warning("Unknown symptom %r on reaction %s", raw, reaction.id)
    return reaction


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def room_access_to_doc(access: RoomAccess) -> dict:
    doc = {
        "isActive": access.is_active,
        "joinedAt": format_timestamp(access.joined_at),
        "isAdmin": access.is_admin,
    }
    if access.is_super_admin_access:
        doc["isSuperAdminAccess"] = True
    return doc


def room_access_from_doc(doc: dict) -> RoomAccess | None:
    try:
        return RoomAccess(
            is_active=bool(doc["isActive"]),
            joined_at=parse_timestamp(doc["joinedAt"]),
            is_admin=bool(doc["isAdmin"]),
            is_super_admin_access=bool(doc.get("isSuperAdminAccess", False)),
        )
    except (KeyError, ValueError, TypeError) as exc:
        logger.warning("Skipping room access document: %s", exc)
        return None


def room_settings_to_doc(room_settings: RoomSettings) -> dict:
    doc: dict = {"treatmentFoodTimerEnabled": room_settings.treatment_food_timer_enabled}
    if room_settings.reminders_enabled:
        doc["remindersEnabled"] = {
            cat.value: enabled for cat, enabled in room_settings.reminders_enabled.items()
        }
    if room_settings.reminder_times:
        doc["reminderTimes"] = {
            cat.value: _format_clock(at) for cat, at in room_settings.reminder_times.items()
        }
    return doc


def room_settings_from_doc(doc: dict) -> RoomSettings:
    result = RoomSettings(
        treatment_food_timer_enabled=bool(doc.get("treatmentFoodTimerEnabled", False)),
    )
    for key, enabled in (doc.get("remindersEnabled") or {}).items():
        try:
            result.reminders_enabled[Category(key)] = bool(enabled)
        except ValueError:
            logger.warning("Unknown reminder category %r", key)
    for key, raw in (doc.get("reminderTimes") or {}).items():
        try:
            result.reminder_times[Category(key)] = _parse_clock(raw)
        except (ValueError, TypeError):
            logger.warning("Bad reminder time %r for %r", raw, key)
    return result


def user_to_doc(user: User) -> dict:
    doc: dict = {
        "id": user.id,
        "name": user.name,
        "roomLimit": user.room_limit,
        "isSuperAdmin": user.is_super_admin,
        "isInGracePeriod": user.is_in_grace_period,
    }
    if user.email is not None:
        doc["email"] = user.email
    if user.auth_id is not None:
        doc["authId"] = user.auth_id
    if user.owned_rooms:
        doc["ownedRooms"] = list(user.owned_rooms)
    if user.subscription_plan is not None:
        doc["subscriptionPlan"] = user.subscription_plan
    if user.pending_transfer_requests:
        doc["pendingTransferRequests"] = list(user.pending_transfer_requests)
    if user.room_access:
        doc["roomAccess"] = {
            room_id: room_access_to_doc(a) for room_id, a in user.room_access.items()
        }
    if user.room_settings:
        doc["roomSettings"] = {
            room_id: room_settings_to_doc(s) for room_id, s in user.room_settings.items()
        }
    if user.grace_period_end is not None:
        doc["subscriptionGracePeriodEnd"] = format_timestamp(user.grace_period_end)
    if user.telegram_chat_id is not None:
        doc["telegramChatId"] = user.telegram_chat_id
    return doc


def user_from_doc(doc: dict) -> User | None:
    try:
        user = User(id=str(doc["id"]), name=str(doc["name"]))
    except KeyError as exc:
        logger.warning("Skipping user document: missing %s", exc)
        return None

    user.email = doc.get("email")
    user.auth_id = doc.get("authId")
    user.owned_rooms = list(doc["ownedRooms"]) if doc.get("ownedRooms") else None
    user.subscription_plan = doc.get("subscriptionPlan")
    user.room_limit = int(doc.get("roomLimit", 0))
    user.is_super_admin = bool(doc.get("isSuperAdmin", False))
    user.is_in_grace_period = bool(doc.get("isInGracePeriod", False))
    user.telegram_chat_id = doc.get("telegramChatId")
    if doc.get("pendingTransferRequests"):
        user.pending_transfer_requests = list(doc["pendingTransferRequests"])

    if doc.get("roomAccess"):
        access = {
            room_id: room_access_from_doc(raw) for room_id, raw in doc["roomAccess"].items()
        }
        user.room_access = {k: v for k, v in access.items() if v is not None}
    if doc.get("roomSettings"):
        user.room_settings = {
            room_id: room_settings_from_doc(raw) for room_id, raw in doc["roomSettings"].items()
        }
    if doc.get("subscriptionGracePeriodEnd"):
        try:
            user.grace_period_end = parse_timestamp(doc["subscriptionGracePeriodEnd"])
        except ValueError:
            logger.warning("Bad grace period end on user %s", user.id)
    return user


# ---------------------------------------------------------------------------
# Rooms and transfer requests
# ---------------------------------------------------------------------------


def room_to_doc(room: Room) -> dict:
    return {"id": room.id, "name": room.name, "ownerId": room.owner_id}


def room_from_doc(doc: dict) -> Room | None:
    try:
        return Room(id=str(doc["id"]), name=str(doc["name"]), owner_id=str(doc["ownerId"]))
    except KeyError as exc:
        logger.warning("Skipping room document: missing %s", exc)
        return None


def transfer_request_to_doc(request: TransferRequest) -> dict:
    return {
        "id": request.id,
        "initiatorUserId": request.initiator_user_id,
        "initiatorUserName": request.initiator_user_name,
        "recipientUserId": request.recipient_user_id,
        "newOwnerId": request.new_owner_id,
        "roomId": request.room_id,
        "roomName": request.room_name,
        "requestDate": format_timestamp(request.request_date),
        "expiresAt": format_timestamp(request.expires_at),
        "status": request.status.value,
    }


def transfer_request_from_doc(doc: dict) -> TransferRequest | None:
    try:
        return TransferRequest(
            id=str(doc["id"]),
            initiator_user_id=str(doc["initiatorUserId"]),
            initiator_user_name=str(doc["initiatorUserName"]),
            recipient_user_id=str(doc["recipientUserId"]),
            new_owner_id=str(doc["newOwnerId"]),
            room_id=str(doc["roomId"]),
            room_name=str(doc["roomName"]),
            request_date=parse_timestamp(doc["requestDate"]),
            expires_at=parse_timestamp(doc["expiresAt"]),
            status=TransferStatus(doc["status"]),
        )
    except (KeyError, ValueError, TypeError) as exc:
        logger.warning("Skipping transfer request document: %s", exc)
        return None
