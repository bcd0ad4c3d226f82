"""
TIPs Tracker — Room Database.

SQLite stand-in for the realtime database. Each collection is a table keyed
by the record id; the row keeps the encoded document (the same JSON shape
the remote store uses) plus the columns needed to query it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime
from pathlib import Path

from src.data.documents import (
    cycle_from_doc,
    cycle_to_doc,
    format_timestamp,
    item_from_doc,
    item_to_doc,
    missed_dose_from_doc,
    missed_dose_to_doc,
    parse_timestamp,
    reaction_from_doc,
    reaction_to_doc,
    room_from_doc,
    room_to_doc,
    transfer_request_from_doc,
    transfer_request_to_doc,
    user_from_doc,
    user_to_doc,
)
from src.data.models import (
    Cycle,
    Item,
    LogEntry,
    MissedDose,
    Reaction,
    Room,
    TransferRequest,
    TransferStatus,
    User,
)

logger = logging.getLogger(__name__)


class _SQLiteStore:
    """Connection handling shared by the stores below."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class RoomDB(_SQLiteStore):
    """Rooms and everything hanging off their cycles."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS rooms (
                    id        TEXT PRIMARY KEY,
                    owner_id  TEXT NOT NULL,
                    doc       TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS cycles (
                    id        TEXT PRIMARY KEY,
                    room_id   TEXT NOT NULL,
                    number    INTEGER NOT NULL,
                    doc       TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS items (
                    id         TEXT PRIMARY KEY,
                    cycle_id   TEXT NOT NULL,
                    item_order INTEGER NOT NULL DEFAULT 0,
                    doc        TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS missed_doses (
                    id        TEXT PRIMARY KEY,
                    cycle_id  TEXT NOT NULL,
                    day       TEXT NOT NULL,
                    doc       TEXT NOT NULL,
                    UNIQUE (cycle_id, day)
                );
                CREATE TABLE IF NOT EXISTS consumption_logs (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    cycle_id  TEXT NOT NULL,
                    item_id   TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    user_id   TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS reactions (
                    id          TEXT PRIMARY KEY,
                    cycle_id    TEXT NOT NULL,
                    reported_at TEXT NOT NULL,
                    doc         TEXT NOT NULL
                );
            """)
        logger.debug("Room tables initialized at %s", self._db_path)

    # -- rooms --------------------------------------------------------------

    def add_room(self, room: Room) -> Room:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO rooms (id, owner_id, doc) VALUES (?, ?, ?)",
                (room.id, room.owner_id, json.dumps(room_to_doc(room))),
            )
        logger.info("Room added: %s '%s' owner=%s", room.id, room.name, room.owner_id)
        return room

    def get_room(self, room_id: str) -> Room | None:
        with self._connect() as conn:
            row = conn.execute("SELECT doc FROM rooms WHERE id = ?", (room_id,)).fetchone()
        if row is None:
            return None
        return room_from_doc(json.loads(row["doc"]))

    def set_room_owner(self, room_id: str, owner_id: str) -> None:
        room = self.get_room(room_id)
        if room is None:
            raise ValueError(f"Room {room_id} not found")
        room.owner_id = owner_id
        with self._connect() as conn:
            conn.execute(
                "UPDATE rooms SET owner_id = ?, doc = ? WHERE id = ?",
                (owner_id, json.dumps(room_to_doc(room)), room_id),
            )
        logger.info("Room %s now owned by %s", room_id, owner_id)

    def delete_room(self, room_id: str) -> bool:
        """Delete a room together with its cycles and their contents."""
        cycle_ids = [c.id for c in self.get_cycles(room_id)]
        with self._connect() as conn:
            for cycle_id in cycle_ids:
                for table in ("items", "missed_doses", "consumption_logs", "reactions"):
                    conn.execute(f"DELETE FROM {table} WHERE cycle_id = ?", (cycle_id,))
            conn.execute("DELETE FROM cycles WHERE room_id = ?", (room_id,))
            cursor = conn.execute("DELETE FROM rooms WHERE id = ?", (room_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Room %s deleted (%d cycles)", room_id, len(cycle_ids))
        return deleted

    # -- cycles -------------------------------------------------------------

    def save_cycle(self, room_id: str, cycle: Cycle) -> Cycle:
        """Insert or replace a cycle. Missed doses are stored separately."""
        doc = cycle_to_doc(cycle)
        doc.pop("missedDoses", None)
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cycles (id, room_id, number, doc) VALUES (?, ?, ?, ?)",
                (cycle.id, room_id, cycle.number, json.dumps(doc)),
            )
        for missed in cycle.missed_doses or []:
            self.add_missed_dose(missed)
        logger.info("Cycle %d saved in room %s", cycle.number, room_id)
        return cycle

    def get_cycle(self, cycle_id: str) -> Cycle | None:
        with self._connect() as conn:
            row = conn.execute("SELECT doc FROM cycles WHERE id = ?", (cycle_id,)).fetchone()
        if row is None:
            return None
        cycle = cycle_from_doc(json.loads(row["doc"]))
        if cycle is not None:
            cycle.missed_doses = self.get_missed_doses(cycle.id) or None
        return cycle

    def get_cycles(self, room_id: str) -> list[Cycle]:
        """Return a room's cycles ordered by cycle number."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc FROM cycles WHERE room_id = ? ORDER BY number", (room_id,),
            ).fetchall()
        cycles = []
        for row in rows:
            cycle = cycle_from_doc(json.loads(row["doc"]))
            if cycle is None:
                continue
            cycle.missed_doses = self.get_missed_doses(cycle.id) or None
            cycles.append(cycle)
        return cycles

    # -- items --------------------------------------------------------------

    def save_item(self, cycle_id: str, item: Item) -> Item:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO items (id, cycle_id, item_order, doc) VALUES (?, ?, ?, ?)",
                (item.id, cycle_id, item.order, json.dumps(item_to_doc(item))),
            )
        logger.info("Item '%s' saved in cycle %s", item.name, cycle_id)
        return item

    def get_items(self, cycle_id: str) -> list[Item]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc FROM items WHERE cycle_id = ? ORDER BY item_order, rowid",
                (cycle_id,),
            ).fetchall()
        items = [item_from_doc(json.loads(r["doc"])) for r in rows]
        return [i for i in items if i is not None]

    def delete_item(self, item_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
            conn.execute("DELETE FROM consumption_logs WHERE item_id = ?", (item_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Item %s deleted", item_id)
        return deleted

    # -- missed doses -------------------------------------------------------

    def add_missed_dose(self, missed: MissedDose) -> bool:
        """Record a missed day. Returns False if that day is already recorded."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO missed_doses (id, cycle_id, day, doc) VALUES (?, ?, ?, ?)",
                (
                    missed.id, missed.cycle_id, missed.date.isoformat(),
                    json.dumps(missed_dose_to_doc(missed)),
                ),
            )
        added = cursor.rowcount > 0
        if added:
            logger.info("Missed dose recorded for cycle %s on %s", missed.cycle_id, missed.date)
        return added

    def remove_missed_dose(self, cycle_id: str, day: date) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM missed_doses WHERE cycle_id = ? AND day = ?",
                (cycle_id, day.isoformat()),
            )
        removed = cursor.rowcount > 0
        if removed:
            logger.info("Missed dose removed for cycle %s on %s", cycle_id, day)
        return removed

    def get_missed_doses(self, cycle_id: str) -> list[MissedDose]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc FROM missed_doses WHERE cycle_id = ? ORDER BY day", (cycle_id,),
            ).fetchall()
        missed = [missed_dose_from_doc(json.loads(r["doc"])) for r in rows]
        return [m for m in missed if m is not None]

    # -- consumption logs ---------------------------------------------------

    def log_consumption(self, cycle_id: str, item_id: str, entry: LogEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO consumption_logs (cycle_id, item_id, timestamp, user_id)
                VALUES (?, ?, ?, ?)
                """,
                (cycle_id, item_id, format_timestamp(entry.timestamp), entry.user_id),
            )
        logger.info("Item %s logged by %s", item_id, entry.user_id)

    def remove_consumption(self, cycle_id: str, item_id: str, entry: LogEntry) -> bool:
        """Delete one stored log matching ``entry``; duplicates are left alone."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM consumption_logs WHERE id = (
                    SELECT id FROM consumption_logs
                    WHERE cycle_id = ? AND item_id = ? AND timestamp = ? AND user_id = ?
                    ORDER BY id DESC LIMIT 1
                )
                """,
                (cycle_id, item_id, format_timestamp(entry.timestamp), entry.user_id),
            )
        return cursor.rowcount > 0

    def get_consumption_logs(self, cycle_id: str) -> dict[str, list[LogEntry]]:
        """Return {item_id: [LogEntry, ...]} in chronological order."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT item_id, timestamp, user_id FROM consumption_logs
                WHERE cycle_id = ? ORDER BY timestamp, id
                """,
                (cycle_id,),
            ).fetchall()
        logs: dict[str, list[LogEntry]] = {}
        for row in rows:
            entry = LogEntry(timestamp=parse_timestamp(row["timestamp"]), user_id=row["user_id"])
            logs.setdefault(row["item_id"], []).append(entry)
        return logs

    # -- reactions ----------------------------------------------------------

    def add_reaction(self, cycle_id: str, reaction: Reaction) -> Reaction:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO reactions (id, cycle_id, reported_at, doc) VALUES (?, ?, ?, ?)",
                (
                    reaction.id, cycle_id, format_timestamp(reaction.date),
                    json.dumps(reaction_to_doc(reaction)),
                ),
            )
        logger.info("Reaction %s logged in cycle %s", reaction.id, cycle_id)
        return reaction

    def list_reactions(self, cycle_id: str) -> list[Reaction]:
        """Newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc FROM reactions WHERE cycle_id = ? ORDER BY reported_at DESC",
                (cycle_id,),
            ).fetchall()
        reactions = [reaction_from_doc(json.loads(r["doc"])) for r in rows]
        return [r for r in reactions if r is not None]

    def delete_reaction(self, reaction_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM reactions WHERE id = ?", (reaction_id,))
        return cursor.rowcount > 0


class UserDB(_SQLiteStore):
    """SQLite-backed storage for caregiver accounts."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id               TEXT PRIMARY KEY,
                    telegram_chat_id INTEGER UNIQUE,
                    doc              TEXT NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    def save_user(self, user: User) -> User:
        """Insert or replace a user."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (id, telegram_chat_id, doc) VALUES (?, ?, ?)",
                (user.id, user.telegram_chat_id, json.dumps(user_to_doc(user))),
            )
        logger.debug("User %s saved", user.id)
        return user

    def get_user(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT doc FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return user_from_doc(json.loads(row["doc"]))

    def get_user_by_chat(self, chat_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc FROM users WHERE telegram_chat_id = ?", (chat_id,),
            ).fetchone()
        if row is None:
            return None
        return user_from_doc(json.loads(row["doc"]))

    def list_users(self) -> list[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT doc FROM users ORDER BY rowid").fetchall()
        users = [user_from_doc(json.loads(r["doc"])) for r in rows]
        return [u for u in users if u is not None]

    def list_room_members(self, room_id: str) -> list[User]:
        """Users holding an active access record for the room."""
        return [
            u for u in self.list_users()
            if u.room_access and room_id in u.room_access and u.room_access[room_id].is_active
        ]


class TransferRequestDB(_SQLiteStore):
    """SQLite-backed storage for room-ownership transfer requests."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS transfer_requests (
                    id                TEXT PRIMARY KEY,
                    initiator_user_id TEXT NOT NULL,
                    recipient_user_id TEXT NOT NULL,
                    room_id           TEXT NOT NULL,
                    status            TEXT NOT NULL,
                    expires_at        TEXT NOT NULL,
                    doc               TEXT NOT NULL
                )
            """)
        logger.debug("Transfer request table initialized at %s", self._db_path)

    def save(self, request: TransferRequest) -> TransferRequest:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO transfer_requests
                    (id, initiator_user_id, recipient_user_id, room_id, status, expires_at, doc)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request.id, request.initiator_user_id, request.recipient_user_id,
                    request.room_id, request.status.value,
                    format_timestamp(request.expires_at),
                    json.dumps(transfer_request_to_doc(request)),
                ),
            )
        return request

    def get(self, request_id: str) -> TransferRequest | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc FROM transfer_requests WHERE id = ?", (request_id,),
            ).fetchone()
        if row is None:
            return None
        return transfer_request_from_doc(json.loads(row["doc"]))

    def _query(self, where: str, params: list) -> list[TransferRequest]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT doc FROM transfer_requests WHERE {where} ORDER BY rowid", params,
            ).fetchall()
        requests = [transfer_request_from_doc(json.loads(r["doc"])) for r in rows]
        return [r for r in requests if r is not None]

    def list_for_recipient(
        self, user_id: str, status: TransferStatus | None = None,
    ) -> list[TransferRequest]:
        if status is None:
            return self._query("recipient_user_id = ?", [user_id])
        return self._query("recipient_user_id = ? AND status = ?", [user_id, status.value])

    def list_sent(self, user_id: str) -> list[TransferRequest]:
        return self._query("initiator_user_id = ?", [user_id])

    def list_for_room(self, room_id: str) -> list[TransferRequest]:
        return self._query("room_id = ?", [room_id])

    def delete_expired(self, now: datetime) -> list[str]:
        """Delete every request whose expiry has passed. Returns deleted ids."""
        cutoff = format_timestamp(now)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM transfer_requests WHERE expires_at < ?", (cutoff,),
            ).fetchall()
            ids = [r["id"] for r in rows]
            conn.executemany("DELETE FROM transfer_requests WHERE id = ?", [(i,) for i in ids])
        if ids:
            logger.info("Deleted %d expired transfer requests", len(ids))
        return ids
