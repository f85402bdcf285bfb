"""Queue of writes made while the primary backend was unreachable."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from kronos.database import StoreError, parse_time, utc_now

_CREATE_SQL = """
CREATE TABLE IF NOT EXISTS sync_queue (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT    NOT NULL,
    payload     TEXT    NOT NULL,
    created_at  TEXT    NOT NULL
)"""


@dataclass
class SyncEntry:
    """One queued operation and its JSON payload."""

    id: int
    entity_type: str
    payload: str
    created_at: datetime | None = None


class SyncQueue:
    """A FIFO of pending operations kept in the buffer database."""

    def __init__(self, connection: Any) -> None:
        """Attach to a database and create the queue table when missing."""
        self._db = connection
        try:
            self._db._execute(_CREATE_SQL)
        except sqlite3.Error as exc:
            raise StoreError(f"create sync_queue: {exc}") from exc

    def enqueue(self, entity_type: str, payload: Any) -> None:
        """Append an operation; the payload must be JSON-serialisable."""
        try:
            data = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"encode {entity_type} payload: {exc}") from exc
        try:
            self._db._execute(
                "INSERT INTO sync_queue(entity_type, payload, created_at) VALUES (?, ?, ?)",
                (entity_type, data, utc_now()),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"enqueue {entity_type}: {exc}") from exc

    def pending(self, limit: int = 200) -> list[SyncEntry]:
        """The oldest queued operations, in insertion order."""
        try:
            rows = self._db._fetch_all(
                "SELECT id, entity_type, payload, created_at FROM sync_queue "
                "ORDER BY id ASC LIMIT ?",
                (limit,),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"read sync_queue: {exc}") from exc
        return [
            SyncEntry(
                id=int(row["id"]),
                entity_type=row["entity_type"],
                payload=row["payload"],
                created_at=parse_time(row["created_at"]),
            )
            for row in rows
        ]

    def delete(self, entry_id: int) -> None:
        """Drop an operation once it has been replayed."""
        try:
            self._db._execute("DELETE FROM sync_queue WHERE id = ?", (entry_id,))
        except sqlite3.Error as exc:
            raise StoreError(f"delete sync entry {entry_id}: {exc}") from exc

    def is_empty(self) -> bool:
        """True when nothing is waiting; an unreadable queue counts as empty."""
        try:
            row = self._db._fetch_one("SELECT COUNT(*) FROM sync_queue")
        except sqlite3.Error:
            return True
        return not row or int(row[0]) == 0