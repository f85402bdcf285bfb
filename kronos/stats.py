"""Aggregate statistics, session listings and observation timelines."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

from kronos.database import StoreError
from kronos.models import Observation, Session
from kronos.observations import observation_from_row
from kronos.sessions import session_from_row

_OBS_COLUMNS = (
    "id, sync_id, session_id, type, title, content, tool_name, project, scope, topic_key, "
    "normalized_hash, revision_count, duplicate_count, created_at, updated_at, deleted_at"
)


@dataclass
class Stats:
    """Aggregate counts for the whole database."""

    total_observations: int = 0
    total_sessions: int = 0
    total_prompts: int = 0
    projects: list[str] = field(default_factory=list)


class StatsMixin:
    """Reporting queries for a migrated Database."""

    def stats(self) -> Stats:
        """Counts of live observations, sessions and prompts, and the projects in use."""
        try:
            observations = self._fetch_one(
                "SELECT COUNT(*) FROM observations WHERE deleted_at IS NULL"
            )[0]
            sessions = self._fetch_one(
                "SELECT COUNT(*) FROM sessions WHERE deleted_at IS NULL"
            )[0]
            rows = self._fetch_all(
                "SELECT DISTINCT project FROM observations WHERE deleted_at IS NULL "
                "ORDER BY project ASC"
            )
        except sqlite3.Error as exc:
            raise StoreError(f"stats: {exc}") from exc
        try:
            prompts = self._fetch_one(
                "SELECT COUNT(*) FROM user_prompts WHERE deleted_at IS NULL"
            )[0]
        except sqlite3.Error:
            prompts = 0
        return Stats(
            total_observations=int(observations),
            total_sessions=int(sessions),
            total_prompts=int(prompts),
            projects=[row[0] for row in rows if row[0]],
        )

    def all_sessions(self, limit: int = 50) -> list[Session]:
        """Newest live sessions across all projects."""
        if limit <= 0:
            limit = 50
        try:
            rows = self._fetch_all(
                "SELECT id, project, directory, started_at, ended_at, summary, "
                "injected_observation_ids, search_count "
                "FROM sessions WHERE deleted_at IS NULL ORDER BY started_at DESC LIMIT ?",
                (limit,),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"all sessions: {exc}") from exc
        return [session_from_row(row) for row in rows]

    def timeline_observations(self, obs_id: int, n: int = 5) -> list[Observation]:
        """Up to ``n`` observations before and after one, within its session."""
        if n <= 0:
            n = 5
        try:
            target = self._fetch_one(
                "SELECT COALESCE(session_id, ''), created_at FROM observations WHERE id = ?",
                (obs_id,),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"timeline: {exc}") from exc
        if target is None:
            raise StoreError(f"observation {obs_id} not found")
        session_id = target[0]
        if not session_id:
            return []
        try:
            rows = self._fetch_all(
                f"SELECT {_OBS_COLUMNS} FROM observations "
                "WHERE session_id = ? AND deleted_at IS NULL ORDER BY created_at ASC",
                (session_id,),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"timeline: {exc}") from exc
        observations = [observation_from_row(row) for row in rows]
        index = next((i for i, o in enumerate(observations) if o.id == obs_id), None)
        if index is None:
            return observations
        return observations[max(index - n, 0): index + n + 1]