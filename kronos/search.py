"""Full-text search over observations."""

from __future__ import annotations

import sqlite3
from dataclasses import fields

from kronos.database import StoreError
from kronos.models import Observation, SearchParams, SearchResult
from kronos.observations import observation_from_row

_DEFAULT_LIMIT = 20
_FTS_OPERATORS = (" OR ", " AND ", " NOT ")
_FTS_SPECIAL = set('"*^()')

_SELECT = (
    "SELECT o.id, o.sync_id, o.session_id, o.type, o.title, o.content, o.tool_name, "
    "o.project, o.scope, o.topic_key, o.normalized_hash, "
    "o.revision_count, o.duplicate_count, o.created_at, o.updated_at, o.deleted_at, "
    "bm25(observations_fts) AS rank "
    "FROM observations_fts "
    "JOIN observations o ON observations_fts.rowid = o.id "
    "WHERE observations_fts MATCH ? "
)


def sanitize_fts_query(query: str) -> str:
    """Prepare a user query for FTS5, quoting plain multi-word text as a phrase."""
    query = query.strip()
    if not query:
        return query
    if any(ch in _FTS_SPECIAL for ch in query) or any(op in query for op in _FTS_OPERATORS):
        return query
    if " " in query:
        return '"' + query.replace('"', "") + '"'
    return query


def _result_from_row(row: sqlite3.Row) -> SearchResult:
    obs = observation_from_row(row)
    values = {f.name: getattr(obs, f.name) for f in fields(Observation)}
    return SearchResult(**values, rank=float(row["rank"]))


class SearchMixin:
    """Search operations for a migrated Database."""

    def search(self, params: SearchParams) -> list[SearchResult]:
        """Live observations matching the query, best match first."""
        if not params.query:
            raise StoreError("query is required")
        limit = params.limit if params.limit > 0 else _DEFAULT_LIMIT
        query = sanitize_fts_query(params.query)
        if params.project:
            sql = (
                _SELECT
                + "AND (o.project = ? OR o.scope = 'global') AND o.deleted_at IS NULL "
                "ORDER BY rank LIMIT ?"
            )
            args: tuple = (query, params.project, limit)
        else:
            sql = _SELECT + "AND o.deleted_at IS NULL ORDER BY rank LIMIT ?"
            args = (query, limit)
        try:
            rows = self._fetch_all(sql, args)
        except sqlite3.Error as exc:
            raise StoreError(f"fts search: {exc}") from exc
        return [_result_from_row(row) for row in rows]