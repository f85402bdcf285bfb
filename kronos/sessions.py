"""Agent sessions: creation, lookup and per-session bookkeeping."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from typing import Any

from kronos.database import StoreError, parse_time, utc_now
from kronos.models import Session

_COLUMNS = (
    "id, project, directory, started_at, ended_at, summary, "
    "injected_observation_ids, search_count"
)


def _decode_ids(raw: Any) -> list[str] | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return value


def session_from_row(row: sqlite3.Row | None) -> Session | None:
    """Build a Session from a sessions row, or None when there is no row."""
    if row is None:
        return None
    keys = row.keys()
    injected = _decode_ids(row["injected_observation_ids"]) if (
        "injected_observation_ids" in keys
    ) else None
    search_count = int(row["search_count"]) if "search_count" in keys else 0
    return Session(
        id=row["id"],
        project=row["project"],
        directory=row["directory"] or "",
        started_at=parse_time(row["started_at"]),
        ended_at=parse_time(row["ended_at"]),
        summary=row["summary"] or "",
        injected_observation_ids=injected,
        search_count=search_count,
    )


class SessionsMixin:
    """Session operations for a migrated Database."""

    def create_session(self, session_id: str, project: str, directory: str = "") -> Session:
        """Start a new session."""
        started_at = utc_now()
        try:
            self._execute(
                "INSERT INTO sessions(id, project, directory, started_at) VALUES (?, ?, ?, ?)",
                (session_id, project, directory, started_at),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"create session: {exc}") from exc
        return Session(
            id=session_id,
            project=project,
            directory=directory,
            started_at=parse_time(started_at),
        )

    def end_session(self, session_id: str, summary: str = "") -> None:
        """Close a session with a summary; raise when it does not exist."""
        try:
            cursor = self._execute(
                "UPDATE sessions SET ended_at = ?, summary = ? WHERE id = ?",
                (utc_now(), summary, session_id),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"end session: {exc}") from exc
        if cursor.rowcount == 0:
            raise StoreError(f"session not found: {session_id}")

    def get_session(self, session_id: str) -> Session | None:
        """The live session with this id, or None."""
        return self._session_one(
            f"SELECT {_COLUMNS} FROM sessions WHERE id = ? AND deleted_at IS NULL",
            (session_id,),
        )

    def get_active_session(self, project: str) -> Session | None:
        """The most recently started open session of a project, or None."""
        return self._session_one(
            f"SELECT {_COLUMNS} FROM sessions "
            "WHERE project = ? AND ended_at IS NULL AND deleted_at IS NULL "
            "ORDER BY started_at DESC LIMIT 1",
            (project,),
        )

    def delete_session(self, session_id: str) -> None:
        """Soft-delete a session."""
        try:
            self._execute(
                "UPDATE sessions SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (utc_now(), session_id),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"delete session: {exc}") from exc

    def list_sessions(self, project: str, limit: int = 20) -> list[Session]:
        """Newest live sessions of a project."""
        if limit <= 0:
            limit = 20
        return self._session_many(
            f"SELECT {_COLUMNS} FROM sessions WHERE project = ? AND deleted_at IS NULL "
            "ORDER BY started_at DESC LIMIT ?",
            (project, limit),
        )

    def persist_injected_ids(self, session_id: str, ids: Iterable[str] | None) -> None:
        """Store the observation ids already injected into a session."""
        payload = json.dumps(list(ids) if ids is not None else [])
        try:
            self._execute(
                "UPDATE sessions SET injected_observation_ids = ? WHERE id = ?",
                (payload, session_id),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"persist injected ids: {exc}") from exc

    def load_injected_ids(self, session_id: str) -> list[str]:
        """Injected observation ids of a session; empty when unset or unreadable."""
        try:
            row = self._fetch_one(
                "SELECT injected_observation_ids FROM sessions WHERE id = ?", (session_id,)
            )
        except sqlite3.Error as exc:
            raise StoreError(f"load injected ids: {exc}") from exc
        if row is None:
            return []
        return _decode_ids(row[0]) or []

    def increment_search_count(self, session_id: str) -> None:
        """Count one more search in a session; unknown sessions are ignored."""
        try:
            self._execute(
                "UPDATE sessions SET search_count = search_count + 1 WHERE id = ?",
                (session_id,),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"increment search count: {exc}") from exc

    def _session_one(self, sql: str, args: tuple[Any, ...]) -> Session | None:
        try:
            return session_from_row(self._fetch_one(sql, args))
        except sqlite3.Error as exc:
            raise StoreError(f"query session: {exc}") from exc

    def _session_many(self, sql: str, args: tuple[Any, ...]) -> list[Session]:
        try:
            rows = self._fetch_all(sql, args)
        except sqlite3.Error as exc:
            raise StoreError(f"query sessions: {exc}") from exc
        return [session_from_row(row) for row in rows]