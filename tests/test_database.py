import sqlite3
from datetime import datetime, timezone

import pytest

from kronos.database import MIGRATIONS, Database, StoreError, parse_time, utc_now


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "kronos.db")
    yield database
    database.close()


def _insert_session(conn, session_id, project="p"):
    conn.execute(
        "INSERT INTO sessions(id, project, directory, started_at) VALUES (?, ?, ?, ?)",
        (session_id, project, "/tmp", utc_now()),
    )


def _insert_observation(conn, session_id, obs_type, title, sync_id):
    ts = utc_now()
    conn.execute(
        """INSERT INTO observations
           (sync_id, session_id, type, title, content, tool_name, project, scope, topic_key,
            normalized_hash, revision_count, duplicate_count, last_seen_at, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, '', 'p', 'project', '', '', 1, 1, ?, ?, ?)""",
        (sync_id, session_id, obs_type, title, title + " content", ts, ts, ts),
    )


def test_parse_time_of_utc_now_round_trips():
    stamp = utc_now()
    parsed = parse_time(stamp)
    assert parsed.tzinfo is not None
    assert parsed.utcoffset().total_seconds() == 0
    assert parsed.strftime("%Y-%m-%dT%H:%M:%SZ") == stamp


def test_parse_time_reads_rfc3339():
    assert parse_time("2024-01-02T03:04:05Z") == datetime(
        2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc
    )


@pytest.mark.parametrize("value", [None, "", "garbage", "2024-01-02T03:04:05"])
def test_parse_time_rejects_invalid(value):
    assert parse_time(value) is None


def test_schema_version_matches_migrations(db):
    assert db.schema_version() == len(MIGRATIONS)


def test_reopen_keeps_schema(tmp_path):
    path = tmp_path / "again.db"
    with Database(path) as first:
        version = first.schema_version()
    with Database(path) as second:
        assert second.schema_version() == version
        rows = second.connection.execute(
            "SELECT COUNT(*) FROM schema_migrations"
        ).fetchone()
        assert rows[0] == len(MIGRATIONS)


def test_open_in_missing_directory_fails(tmp_path):
    with pytest.raises(StoreError):
        Database(tmp_path / "missing" / "nested" / "kronos.db")


def test_closed_database_raises_store_error(tmp_path):
    with Database(tmp_path / "closed.db") as database:
        pass
    with pytest.raises(StoreError):
        database.schema_version()


def test_foreign_keys_enforced(db):
    with pytest.raises(sqlite3.IntegrityError):
        _insert_observation(db.connection, "no-such-session", "decision", "t", "sync-a")
    assert db.count_session_observations("no-such-session") == 0


def test_full_text_index_follows_inserts(db):
    conn = db.connection
    _insert_session(conn, "s1")
    _insert_observation(conn, "s1", "decision", "Elegimos SQLite", "sync-a")
    rows = conn.execute(
        "SELECT rowid FROM observations_fts WHERE observations_fts MATCH ?", ("sqlite",)
    ).fetchall()
    assert len(rows) == 1


def test_count_session_prompts(db):
    conn = db.connection
    _insert_session(conn, "s1")
    assert db.count_session_prompts("s1") == 0
    for text in ("uno", "dos"):
        conn.execute(
            "INSERT INTO user_prompts(session_id, content, project, created_at) VALUES (?, ?, ?, ?)",
            ("s1", text, "p", utc_now()),
        )
    assert db.count_session_prompts("s1") == 2
    conn.execute("UPDATE user_prompts SET deleted_at = ? WHERE content = 'uno'", (utc_now(),))
    assert db.count_session_prompts("s1") == 1


def test_count_session_observations_skips_passive_and_session(db):
    conn = db.connection
    _insert_session(conn, "s1")
    _insert_observation(conn, "s1", "decision", "a", "sync-a")
    _insert_observation(conn, "s1", "bugfix", "b", "sync-b")
    _insert_observation(conn, "s1", "passive", "c", "sync-c")
    _insert_observation(conn, "s1", "session", "d", "sync-d")
    assert db.count_session_observations("s1") == 2
    assert db.count_session_observations("other") == 0


def test_sync_queue_count_without_table_is_zero(db):
    assert db.sync_queue_count() == 0


def test_sync_queue_count_counts_entries(db):
    conn = db.connection
    conn.execute(
        "CREATE TABLE sync_queue (id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "entity_type TEXT NOT NULL, payload TEXT NOT NULL, created_at TEXT NOT NULL)"
    )
    for kind in ("save_observation", "end_session", "save_prompt"):
        conn.execute(
            "INSERT INTO sync_queue(entity_type, payload, created_at) VALUES (?, '{}', ?)",
            (kind, utc_now()),
        )
    assert db.sync_queue_count() == 3


def test_transaction_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        with db._transaction() as conn:
            _insert_session(conn, "s-rollback")
            raise RuntimeError("boom")
    row = db.connection.execute(
        "SELECT COUNT(*) FROM sessions WHERE id = 's-rollback'"
    ).fetchone()
    assert row[0] == 0