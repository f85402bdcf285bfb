"""Saving, reading and maintaining observations."""

from __future__ import annotations

import hashlib
import secrets
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from kronos.database import StoreError, parse_time, utc_now
from kronos.models import (
    Observation,
    ObservationType,
    SaveParams,
    Scope,
    UpdateParams,
)

_COLUMNS = (
    "id, sync_id, session_id, type, title, content, tool_name, project, scope, topic_key, "
    "normalized_hash, revision_count, duplicate_count, created_at, updated_at, deleted_at"
)

_TITLE_STRIP = "0123456789.-) \t"
_MAX_TITLE = 80


def normalized_hash(title: str, content: str) -> str:
    """SHA-256 hex digest of the case-folded, trimmed title and content."""
    key = f"{title.strip()}|{content.strip()}".lower()
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def passive_title(content: str) -> str:
    """Title for a passive capture: its first line without list markers, at most 80 chars."""
    first_line = content.strip().split("\n")[0]
    title = first_line.lstrip(_TITLE_STRIP)
    if len(title) > _MAX_TITLE:
        title = title[: _MAX_TITLE - 3] + "..."
    return title


def new_sync_id() -> str:
    """A random 128-bit identifier as 32 lower-case hex characters."""
    return secrets.token_hex(16)


def _enum_or_text(enum_type: Any, value: Any) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        return value


def observation_from_row(row: sqlite3.Row | None) -> Observation | None:
    """Build an Observation from a row of the standard column list."""
    if row is None:
        return None
    return Observation(
        id=int(row["id"]),
        sync_id=row["sync_id"] or "",
        session_id=row["session_id"] or "",
        type=_enum_or_text(ObservationType, row["type"]),
        title=row["title"],
        content=row["content"],
        tool_name=row["tool_name"] or "",
        project=row["project"],
        scope=_enum_or_text(Scope, row["scope"]),
        topic_key=row["topic_key"] or "",
        normalized_hash=row["normalized_hash"] or "",
        revision_count=int(row["revision_count"]),
        duplicate_count=int(row["duplicate_count"]),
        created_at=parse_time(row["created_at"]),
        updated_at=parse_time(row["updated_at"]),
        deleted_at=parse_time(row["deleted_at"]),
    )


def _cutoff(days: int) -> str:
    moment = datetime.now(timezone.utc) - timedelta(days=days)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


class ObservationsMixin:
    """Observation operations for a migrated Database."""

    def save_observation(self, params: SaveParams) -> Observation:
        """Save with upsert by topic key, dedup by content hash, or a fresh insert."""
        if not params.title or not params.content:
            raise StoreError("title and content are required")
        if not params.project:
            raise StoreError("project is required")
        scope = str(params.scope) if params.scope else str(Scope.PROJECT)
        obs_type = str(params.type)
        digest = normalized_hash(params.title, params.content)
        ts = utc_now()

        with self._lock:
            if params.topic_key:
                existing = self._select_one(
                    f"SELECT {_COLUMNS} FROM observations "
                    "WHERE project = ? AND topic_key = ? AND deleted_at IS NULL "
                    "ORDER BY created_at DESC LIMIT 1",
                    (params.project, params.topic_key),
                )
                if existing is not None:
                    return self._rewrite(
                        existing.id, params.title, params.content, obs_type,
                        params.tool_name, digest, ts,
                    )

            existing = self._select_one(
                f"SELECT {_COLUMNS} FROM observations "
                "WHERE normalized_hash = ? AND project = ? AND deleted_at IS NULL LIMIT 1",
                (digest, params.project),
            )
            if existing is not None:
                return self._bump_duplicate(existing.id, ts)

            sync_id = params.sync_id or new_sync_id()
            try:
                cursor = self._execute(
                    "INSERT OR IGNORE INTO observations "
                    "(sync_id, session_id, type, title, content, tool_name, project, scope, "
                    "topic_key, normalized_hash, revision_count, duplicate_count, "
                    "last_seen_at, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, 1, ?, ?, ?)",
                    (
                        sync_id, params.session_id or None, obs_type, params.title,
                        params.content, params.tool_name, params.project, scope,
                        params.topic_key, digest, ts, ts, ts,
                    ),
                )
            except sqlite3.Error as exc:
                raise StoreError(f"insert observation: {exc}") from exc
            if cursor.rowcount == 0:
                saved = self.get_observation_by_sync_id(sync_id)
            else:
                saved = self.get_observation(cursor.lastrowid)
        if saved is None:
            raise StoreError("insert observation: row not found after insert")
        return saved

    def get_observation(self, obs_id: int) -> Observation | None:
        """The observation with this id, including soft-deleted ones, or None."""
        return self._select_one(
            f"SELECT {_COLUMNS} FROM observations WHERE id = ?", (obs_id,)
        )

    def update_observation(self, params: UpdateParams) -> Observation:
        """Apply a partial update and bump the revision count."""
        existing = self.get_observation(params.id)
        if existing is None:
            raise StoreError(f"observation {params.id} not found")
        if existing.deleted_at is not None:
            raise StoreError(f"observation {params.id} has been deleted")
        title = params.title if params.title is not None else existing.title
        content = params.content if params.content is not None else existing.content
        obs_type = str(params.type) if params.type is not None else str(existing.type)
        return self._rewrite(
            params.id, title, content, obs_type, existing.tool_name,
            normalized_hash(title, content), utc_now(),
        )

    def delete_observation(self, obs_id: int) -> None:
        """Soft-delete an observation."""
        self._write(
            "UPDATE observations SET deleted_at = ? WHERE id = ?",
            (utc_now(), obs_id),
            "delete observation",
        )

    def list_observations(self, project: str, limit: int = 50) -> list[Observation]:
        """Newest live observations of a project plus global ones."""
        if limit <= 0:
            limit = 50
        return self._select_many(
            f"SELECT {_COLUMNS} FROM observations "
            "WHERE (project = ? OR scope = 'global') AND deleted_at IS NULL "
            "ORDER BY created_at DESC LIMIT ?",
            (project, limit),
        )

    def list_all(self, project: str = "") -> list[Observation]:
        """Every live observation, optionally limited to a project and global ones."""
        if not project:
            return self._select_many(
                f"SELECT {_COLUMNS} FROM observations WHERE deleted_at IS NULL "
                "ORDER BY project ASC, created_at ASC"
            )
        return self._select_many(
            f"SELECT {_COLUMNS} FROM observations "
            "WHERE (project = ? OR scope = 'global') AND deleted_at IS NULL "
            "ORDER BY created_at ASC",
            (project,),
        )

    def list_session_observations(self, session_id: str) -> list[Observation]:
        """Live observations of a session, oldest first."""
        return self._select_many(
            f"SELECT {_COLUMNS} FROM observations "
            "WHERE session_id = ? AND deleted_at IS NULL ORDER BY created_at ASC",
            (session_id,),
        )

    def get_observation_by_sync_id(self, sync_id: str) -> Observation | None:
        """The observation with this global sync id, or None."""
        return self._select_one(
            f"SELECT {_COLUMNS} FROM observations WHERE sync_id = ?", (sync_id,)
        )

    def save_passive(self, session_id: str, project: str, content: str) -> Observation:
        """Save a learning captured from sub-agent output."""
        return self.save_observation(
            SaveParams(
                session_id=session_id,
                type=ObservationType.PASSIVE,
                title=passive_title(content),
                content=content,
                project=project,
                scope=Scope.PROJECT,
            )
        )

    def gc_stale(self, retention_days: int = 90) -> int:
        """Soft-delete never revised, never re-seen observations older than the retention."""
        if retention_days <= 0:
            retention_days = 90
        cursor = self._write(
            "UPDATE observations SET deleted_at = ? "
            "WHERE deleted_at IS NULL AND revision_count = 1 AND duplicate_count = 1 "
            "AND last_seen_at < ?",
            (utc_now(), _cutoff(retention_days)),
            "gc stale",
        )
        return max(cursor.rowcount, 0)

    def rename_project(self, old: str, new: str) -> int:
        """Move live observations from one project to another; return how many moved."""
        cursor = self._write(
            "UPDATE observations SET project = ? WHERE project = ? AND deleted_at IS NULL",
            (new, old),
            "rename project",
        )
        return max(cursor.rowcount, 0)

    def count_observations(self, project: str = "") -> int:
        """Live observations of a project, or of all projects when it is empty."""
        if project:
            sql = "SELECT COUNT(*) FROM observations WHERE project = ? AND deleted_at IS NULL"
            args: tuple[Any, ...] = (project,)
        else:
            sql = "SELECT COUNT(*) FROM observations WHERE deleted_at IS NULL"
            args = ()
        try:
            row = self._fetch_one(sql, args)
        except sqlite3.Error as exc:
            raise StoreError(f"count observations: {exc}") from exc
        return int(row[0]) if row else 0

    def touch_last_seen(self, ids: Iterable[int]) -> None:
        """Mark observations as just seen so stale collection keeps them."""
        id_list = list(ids)
        if not id_list:
            return
        placeholders = ",".join("?" * len(id_list))
        self._write(
            f"UPDATE observations SET last_seen_at = ? WHERE id IN ({placeholders})",
            (utc_now(), *id_list),
            "touch last seen",
        )

    def list_recent(self, limit: int = 200) -> list[Observation]:
        """Most recently updated live observations across all projects."""
        if limit <= 0:
            limit = 200
        return self._select_many(
            f"SELECT {_COLUMNS} FROM observations WHERE deleted_at IS NULL "
            "ORDER BY updated_at DESC LIMIT ?",
            (limit,),
        )

    # internal helpers

    def _select_one(self, sql: str, args: tuple[Any, ...] = ()) -> Observation | None:
        try:
            return observation_from_row(self._fetch_one(sql, args))
        except sqlite3.Error as exc:
            raise StoreError(f"query observation: {exc}") from exc

    def _select_many(self, sql: str, args: tuple[Any, ...] = ()) -> list[Observation]:
        try:
            rows = self._fetch_all(sql, args)
        except sqlite3.Error as exc:
            raise StoreError(f"query observations: {exc}") from exc
        return [observation_from_row(row) for row in rows]

    def _write(self, sql: str, args: tuple[Any, ...], what: str) -> sqlite3.Cursor:
        try:
            return self._execute(sql, args)
        except sqlite3.Error as exc:
            raise StoreError(f"{what}: {exc}") from exc

    def _rewrite(
        self, obs_id: int, title: str, content: str, obs_type: str,
        tool_name: str, digest: str, ts: str,
    ) -> Observation:
        self._write(
            "UPDATE observations SET title = ?, content = ?, type = ?, tool_name = ?, "
            "normalized_hash = ?, revision_count = revision_count + 1, "
            "last_seen_at = ?, updated_at = ? WHERE id = ?",
            (title, content, obs_type, tool_name, digest, ts, ts, obs_id),
            "update observation",
        )
        updated = self.get_observation(obs_id)
        if updated is None:
            raise StoreError(f"observation {obs_id} not found")
        return updated

    def _bump_duplicate(self, obs_id: int, ts: str) -> Observation:
        self._write(
            "UPDATE observations SET duplicate_count = duplicate_count + 1, "
            "last_seen_at = ? WHERE id = ?",
            (ts, obs_id),
            "bump duplicate",
        )
        updated = self.get_observation(obs_id)
        if updated is None:
            raise StoreError(f"observation {obs_id} not found")
        return updated