"""SQLite connection, schema migrations and shared query helpers."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager, suppress
from datetime import datetime, timezone
from os import PathLike
from typing import Any

# Applied in order. Never edit an existing entry; only append new ones.
MIGRATIONS: tuple[str, ...] = (
    """CREATE TABLE IF NOT EXISTS schema_migrations (
        version    INTEGER PRIMARY KEY,
        applied_at TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS sessions (
        id          TEXT PRIMARY KEY,
        project     TEXT NOT NULL,
        directory   TEXT NOT NULL DEFAULT '',
        started_at  TEXT NOT NULL,
        ended_at    TEXT,
        summary     TEXT NOT NULL DEFAULT ''
    )""",
    """CREATE TABLE IF NOT EXISTS observations (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id       TEXT REFERENCES sessions(id),
        type             TEXT NOT NULL,
        title            TEXT NOT NULL,
        content          TEXT NOT NULL,
        project          TEXT NOT NULL,
        scope            TEXT NOT NULL DEFAULT 'project',
        topic_key        TEXT NOT NULL DEFAULT '',
        normalized_hash  TEXT NOT NULL DEFAULT '',
        revision_count   INTEGER NOT NULL DEFAULT 1,
        duplicate_count  INTEGER NOT NULL DEFAULT 1,
        last_seen_at     TEXT NOT NULL,
        created_at       TEXT NOT NULL,
        updated_at       TEXT NOT NULL,
        deleted_at       TEXT
    )""",
    "CREATE INDEX IF NOT EXISTS idx_observations_project ON observations(project)",
    "CREATE INDEX IF NOT EXISTS idx_observations_topic_key ON observations(project, topic_key) "
    "WHERE topic_key != ''",
    "CREATE INDEX IF NOT EXISTS idx_observations_hash ON observations(normalized_hash) "
    "WHERE normalized_hash != ''",
    "CREATE INDEX IF NOT EXISTS idx_observations_session ON observations(session_id)",
    "CREATE INDEX IF NOT EXISTS idx_observations_created ON observations(created_at DESC)",
    """CREATE VIRTUAL TABLE IF NOT EXISTS observations_fts USING fts5(
        title,
        content,
        type,
        project,
        topic_key,
        content='observations',
        content_rowid='id',
        tokenize='unicode61'
    )""",
    """CREATE TRIGGER IF NOT EXISTS obs_fts_insert AFTER INSERT ON observations BEGIN
        INSERT INTO observations_fts(rowid, title, content, type, project, topic_key)
        VALUES (new.id, new.title, new.content, new.type, new.project, new.topic_key);
    END""",
    """CREATE TRIGGER IF NOT EXISTS obs_fts_delete AFTER DELETE ON observations BEGIN
        INSERT INTO observations_fts(observations_fts, rowid, title, content, type, project, topic_key)
        VALUES ('delete', old.id, old.title, old.content, old.type, old.project, old.topic_key);
    END""",
    """CREATE TRIGGER IF NOT EXISTS obs_fts_update AFTER UPDATE ON observations BEGIN
        INSERT INTO observations_fts(observations_fts, rowid, title, content, type, project, topic_key)
        VALUES ('delete', old.id, old.title, old.content, old.type, old.project, old.topic_key);
        INSERT INTO observations_fts(rowid, title, content, type, project, topic_key)
        VALUES (new.id, new.title, new.content, new.type, new.project, new.topic_key);
    END""",
    """CREATE TABLE IF NOT EXISTS user_prompts (
        id         INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT REFERENCES sessions(id),
        content    TEXT NOT NULL,
        project    TEXT NOT NULL,
        created_at TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_prompts_project ON user_prompts(project)",
    "CREATE INDEX IF NOT EXISTS idx_prompts_session ON user_prompts(session_id)",
    # sync_id and tool_name columns
    "ALTER TABLE observations ADD COLUMN sync_id TEXT NOT NULL DEFAULT ''",
    "ALTER TABLE observations ADD COLUMN tool_name TEXT NOT NULL DEFAULT ''",
    "UPDATE observations SET sync_id = lower(hex(randomblob(16))) WHERE sync_id = ''",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_observations_sync_id ON observations(sync_id) "
    "WHERE sync_id != ''",
    # rebuild the full-text index with tool_name
    "DROP TRIGGER IF EXISTS obs_fts_insert",
    "DROP TRIGGER IF EXISTS obs_fts_delete",
    "DROP TRIGGER IF EXISTS obs_fts_update",
    "DROP TABLE IF EXISTS observations_fts",
    """CREATE VIRTUAL TABLE IF NOT EXISTS observations_fts USING fts5(
        title,
        content,
        tool_name,
        type,
        project,
        topic_key,
        content='observations',
        content_rowid='id',
        tokenize='unicode61'
    )""",
    """CREATE TRIGGER IF NOT EXISTS obs_fts_insert AFTER INSERT ON observations BEGIN
        INSERT INTO observations_fts(rowid, title, content, tool_name, type, project, topic_key)
        VALUES (new.id, new.title, new.content, new.tool_name, new.type, new.project, new.topic_key);
    END""",
    """CREATE TRIGGER IF NOT EXISTS obs_fts_delete AFTER DELETE ON observations BEGIN
        INSERT INTO observations_fts(observations_fts, rowid, title, content, tool_name, type, project, topic_key)
        VALUES ('delete', old.id, old.title, old.content, old.tool_name, old.type, old.project, old.topic_key);
    END""",
    """CREATE TRIGGER IF NOT EXISTS obs_fts_update AFTER UPDATE ON observations BEGIN
        INSERT INTO observations_fts(observations_fts, rowid, title, content, tool_name, type, project, topic_key)
        VALUES ('delete', old.id, old.title, old.content, old.tool_name, old.type, old.project, old.topic_key);
        INSERT INTO observations_fts(rowid, title, content, tool_name, type, project, topic_key)
        VALUES (new.id, new.title, new.content, new.tool_name, new.type, new.project, new.topic_key);
    END""",
    "INSERT INTO observations_fts(observations_fts) VALUES('rebuild')",
    # relations between observations, for conflict surfacing
    """CREATE TABLE IF NOT EXISTS memory_relations (
        id                        INTEGER PRIMARY KEY AUTOINCREMENT,
        sync_id                   TEXT UNIQUE NOT NULL,
        source_id                 TEXT,
        target_id                 TEXT,
        relation                  TEXT NOT NULL DEFAULT 'pending',
        reason                    TEXT,
        evidence                  TEXT,
        confidence                REAL,
        judgment_status           TEXT NOT NULL DEFAULT 'pending',
        marked_by_actor           TEXT,
        marked_by_kind            TEXT,
        marked_by_model           TEXT,
        session_id                TEXT,
        superseded_at             TEXT,
        superseded_by_relation_id INTEGER REFERENCES memory_relations(id),
        created_at                TEXT NOT NULL,
        updated_at                TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_memrel_source ON memory_relations(source_id, judgment_status)",
    "CREATE INDEX IF NOT EXISTS idx_memrel_target ON memory_relations(target_id, judgment_status)",
    "CREATE INDEX IF NOT EXISTS idx_memrel_status ON memory_relations(judgment_status)",
    # import dedup chunks
    """CREATE TABLE IF NOT EXISTS sync_chunks (
        target_key  TEXT NOT NULL,
        chunk_id    TEXT NOT NULL,
        imported_at TEXT NOT NULL,
        PRIMARY KEY (target_key, chunk_id)
    )""",
    "CREATE INDEX IF NOT EXISTS idx_sync_chunks_target ON sync_chunks(target_key)",
    # soft delete for relations, sessions and prompts
    "ALTER TABLE memory_relations ADD COLUMN deleted_at TEXT",
    "CREATE INDEX IF NOT EXISTS idx_memrel_deleted ON memory_relations(deleted_at)",
    "ALTER TABLE sessions ADD COLUMN deleted_at TEXT",
    "CREATE INDEX IF NOT EXISTS idx_sessions_deleted ON sessions(deleted_at)",
    "ALTER TABLE user_prompts ADD COLUMN deleted_at TEXT",
    "CREATE INDEX IF NOT EXISTS idx_prompts_deleted ON user_prompts(deleted_at)",
    # observation ids already injected into a session
    "ALTER TABLE sessions ADD COLUMN injected_observation_ids TEXT NULL",
    # number of searches made in a session
    "ALTER TABLE sessions ADD COLUMN search_count INTEGER NOT NULL DEFAULT 0",
)

_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 5000",
)


class StoreError(Exception):
    """Raised when the store cannot complete an operation."""


def utc_now() -> str:
    """Current UTC time as an RFC 3339 string with second precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp; return None when it is missing or invalid."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


class Database:
    """A migrated SQLite database with one shared, lock-guarded connection."""

    def __init__(self, path: str | PathLike[str]) -> None:
        self.path = str(path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                self.path, isolation_level=None, check_same_thread=False, timeout=5.0
            )
        except sqlite3.Error as exc:
            raise StoreError(f"open db: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        try:
            for pragma in _PRAGMAS:
                self._conn.execute(pragma)
            self._migrate()
        except (sqlite3.Error, StoreError) as exc:
            self._conn.close()
            raise StoreError(f"migrate: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        """The underlying connection, for components sharing this database."""
        return self._conn

    def schema_version(self) -> int:
        """Highest migration version applied to this database."""
        try:
            row = self._fetch_one("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
        except sqlite3.Error as exc:
            raise StoreError(f"schema version: {exc}") from exc
        return int(row[0]) if row else 0

    def count_session_prompts(self, session_id: str) -> int:
        """Number of live prompts saved for a session; 0 on any failure."""
        return self._count(
            "SELECT COUNT(*) FROM user_prompts WHERE session_id = ? AND deleted_at IS NULL",
            (session_id,),
        )

    def count_session_observations(self, session_id: str) -> int:
        """Live observations of a session that are neither passive nor session notes."""
        return self._count(
            "SELECT COUNT(*) FROM observations WHERE session_id = ? "
            "AND type NOT IN ('passive','session') AND deleted_at IS NULL",
            (session_id,),
        )

    def sync_queue_count(self) -> int:
        """Entries waiting to be replayed; 0 when there is no sync queue."""
        return self._count("SELECT COUNT(*) FROM sync_queue")

    # shared helpers for the store components

    def _migrate(self) -> None:
        current = self._current_version()
        for version, statement in enumerate(MIGRATIONS, start=1):
            if version <= current:
                continue
            try:
                self._conn.execute(statement)
            except sqlite3.Error as exc:
                raise StoreError(f"migration v{version}: {exc}") from exc
            if version > 1:
                with suppress(sqlite3.Error):
                    self._conn.execute(
                        "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                        (version, utc_now()),
                    )
        with suppress(sqlite3.Error):
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_migrations(version, applied_at) VALUES (1, ?)",
                (utc_now(),),
            )

    def _current_version(self) -> int:
        try:
            row = self._conn.execute(
                "SELECT COALESCE(MAX(version), 0) FROM schema_migrations"
            ).fetchone()
        except sqlite3.Error:
            return 0
        return int(row[0]) if row else 0

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, tuple(params))

    def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchone()

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def _count(self, sql: str, params: Sequence[Any] = ()) -> int:
        try:
            row = self._fetch_one(sql, params)
        except sqlite3.Error:
            return 0
        return int(row[0]) if row else 0

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")