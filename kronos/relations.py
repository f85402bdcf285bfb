"""Relations between observations: candidate discovery, judgments and cleanup."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from kronos.database import StoreError, utc_now
from kronos.models import Observation, ObservationType, Scope
from kronos.observations import new_sync_id

RELATION_PENDING = "pending"
RELATION_RELATED = "related"
RELATION_COMPATIBLE = "compatible"
RELATION_SCOPED = "scoped"
RELATION_CONFLICTS_WITH = "conflicts_with"
RELATION_SUPERSEDES = "supersedes"
RELATION_NOT_CONFLICT = "not_conflict"

JUDGMENT_PENDING = "pending"
JUDGMENT_JUDGED = "judged"
JUDGMENT_ORPHANED = "orphaned"
JUDGMENT_IGNORED = "ignored"

VALID_RELATION_VERBS: tuple[str, ...] = (
    RELATION_RELATED,
    RELATION_COMPATIBLE,
    RELATION_SCOPED,
    RELATION_CONFLICTS_WITH,
    RELATION_SUPERSEDES,
    RELATION_NOT_CONFLICT,
)

_DEFAULT_CANDIDATES = 3
_DEFAULT_BM25_FLOOR = -2.0
_DEFAULT_LIST_LIMIT = 50
_DEFAULT_STALE_DAYS = 30
_MIN_WORD_BYTES = 3


class InvalidRelationError(StoreError):
    """Raised when a relation verb is not one of the accepted verbs."""


class CrossProjectRelationError(StoreError):
    """Raised when a relation would link observations of different projects."""


@dataclass
class Relation:
    """A link between two observations, identified by their sync ids."""

    id: int = 0
    sync_id: str = ""
    source_id: str = ""
    target_id: str = ""
    relation: str = RELATION_PENDING
    reason: str = ""
    evidence: str = ""
    confidence: float = 0.0
    judgment_status: str = JUDGMENT_PENDING
    marked_by_actor: str = ""
    marked_by_kind: str = ""
    marked_by_model: str = ""
    session_id: str = ""
    superseded_at: str = ""
    superseded_by_relation_id: int | None = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: str | None = None
    # details of the linked observations, filled in by listings
    source_int_id: int = 0
    source_title: str = ""
    source_project: str = ""
    target_int_id: int = 0
    target_title: str = ""
    target_project: str = ""


@dataclass
class Candidate:
    """An observation that may conflict with a freshly saved one."""

    id: int
    sync_id: str
    title: str
    type: ObservationType | str
    topic_key: str = ""
    score: float = 0.0
    judgment_id: int = 0


@dataclass
class CandidateOptions:
    """Controls candidate search; zero values pick the defaults."""

    project: str = ""
    scope: Scope | str = ""
    limit: int = 0
    bm25_floor: float = 0.0
    skip_insert: bool = False


@dataclass
class JudgeRelationParams:
    """An agent's verdict on a pending relation."""

    judgment_id: int
    relation: str
    reason: str = ""
    evidence: str = ""
    confidence: float = 0.0
    marked_by_actor: str = ""
    marked_by_kind: str = ""
    marked_by_model: str = ""
    session_id: str = ""


@dataclass
class RelationStats:
    """Relation counts for one project."""

    project: str
    total: int = 0
    pending: int = 0
    judged: int = 0
    orphaned: int = 0
    by_relation: dict[str, int] = field(default_factory=dict)


def sanitize_fts_candidates(title: str) -> str:
    """Turn a title into a broad FTS5 query: its longer words joined with OR."""
    parts = [
        '"' + word.replace('"', '""') + '"'
        for word in title.lower().split()
        if len(word.encode("utf-8")) >= _MIN_WORD_BYTES
    ]
    return " OR ".join(parts)


def _observation_type(value: Any) -> ObservationType | str:
    try:
        return ObservationType(value)
    except ValueError:
        return value


def _cutoff(days: int) -> str:
    moment = datetime.now(timezone.utc) - timedelta(days=days)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


class RelationsMixin:
    """Relation operations for a migrated Database with observation support."""

    def find_candidates(
        self, saved: Observation, options: CandidateOptions | None = None
    ) -> list[Candidate]:
        """Observations whose titles overlap with ``saved``, recorded as pending relations."""
        options = options or CandidateOptions()
        limit = options.limit if options.limit > 0 else _DEFAULT_CANDIDATES
        floor = options.bm25_floor if options.bm25_floor != 0 else _DEFAULT_BM25_FLOOR
        project = options.project or saved.project

        query = sanitize_fts_candidates(saved.title)
        if not query:
            return []

        with self._lock:
            try:
                rows = self._fetch_all(
                    "SELECT o.id, o.sync_id, o.title, o.type, o.topic_key, "
                    "bm25(observations_fts) AS rank "
                    "FROM observations_fts "
                    "JOIN observations o ON observations_fts.rowid = o.id "
                    "WHERE observations_fts MATCH ? AND o.id != ? "
                    "AND (o.project = ? OR o.scope = 'global') AND o.deleted_at IS NULL "
                    "ORDER BY rank LIMIT ?",
                    (query, saved.id, project, limit * 3),
                )
            except sqlite3.Error as exc:
                raise StoreError(f"find candidates: {exc}") from exc

            raw = [
                Candidate(
                    id=int(row["id"]),
                    sync_id=row["sync_id"],
                    title=row["title"],
                    type=_observation_type(row["type"]),
                    topic_key=row["topic_key"] or "",
                    score=float(row["rank"]),
                )
                for row in rows
                if float(row["rank"]) >= floor
            ]

            candidates: list[Candidate] = []
            for candidate in raw:
                if self._relation_exists(saved.sync_id, candidate.sync_id):
                    continue
                if not options.skip_insert:
                    try:
                        candidate.judgment_id = self._insert_pending(
                            saved.sync_id, candidate.sync_id
                        )
                    except sqlite3.Error:
                        continue
                candidates.append(candidate)
                if len(candidates) >= limit:
                    break
        return candidates

    def judge_relation(self, params: JudgeRelationParams) -> Relation:
        """Record an agent's verdict on a relation and return the updated relation."""
        if params.relation not in VALID_RELATION_VERBS:
            raise InvalidRelationError(
                f"invalid relation verb {params.relation!r}; "
                f"valid: {', '.join(VALID_RELATION_VERBS)}"
            )
        existing = self._relation_by_id(params.judgment_id)
        if existing is None:
            raise StoreError(f"relation {params.judgment_id} not found")
        self._check_cross_project(existing.source_id, existing.target_id)

        try:
            self._execute(
                "UPDATE memory_relations SET relation = ?, reason = ?, evidence = ?, "
                "confidence = ?, judgment_status = 'judged', marked_by_actor = ?, "
                "marked_by_kind = ?, marked_by_model = ?, session_id = ?, updated_at = ? "
                "WHERE id = ?",
                (
                    params.relation, params.reason, params.evidence, params.confidence,
                    params.marked_by_actor, params.marked_by_kind, params.marked_by_model,
                    params.session_id, utc_now(), params.judgment_id,
                ),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"judge relation: {exc}") from exc

        judged = self._relation_by_id(params.judgment_id)
        if judged is None:
            raise StoreError(f"relation {params.judgment_id} not found")
        return judged

    def judge_by_semantic(
        self,
        source_id: str,
        target_id: str,
        relation: str,
        confidence: float,
        reason: str,
        model: str,
    ) -> str:
        """Store a model-made verdict, updating a relation in either direction.

        Returns the relation's sync id, or an empty string for ``not_conflict``.
        """
        if relation == RELATION_NOT_CONFLICT:
            return ""
        if relation not in VALID_RELATION_VERBS:
            raise InvalidRelationError(f"invalid relation verb {relation!r}")

        ts = utc_now()
        with self._lock:
            try:
                existing = self._fetch_one(
                    "SELECT id, sync_id FROM memory_relations WHERE deleted_at IS NULL "
                    "AND ((source_id = ? AND target_id = ?) OR (source_id = ? AND target_id = ?)) "
                    "LIMIT 1",
                    (source_id, target_id, target_id, source_id),
                )
            except sqlite3.Error as exc:
                raise StoreError(f"find relation: {exc}") from exc

            if existing is not None:
                try:
                    self._execute(
                        "UPDATE memory_relations SET relation = ?, confidence = ?, reason = ?, "
                        "judgment_status = 'judged', marked_by_kind = 'system', "
                        "marked_by_actor = 'kronos', marked_by_model = ?, updated_at = ? "
                        "WHERE id = ?",
                        (relation, confidence, reason, model, ts, existing["id"]),
                    )
                except sqlite3.Error as exc:
                    raise StoreError(f"update semantic relation: {exc}") from exc
                return existing["sync_id"]

            sync_id = new_sync_id()
            try:
                self._execute(
                    "INSERT INTO memory_relations (sync_id, source_id, target_id, relation, "
                    "confidence, reason, judgment_status, marked_by_kind, marked_by_actor, "
                    "marked_by_model, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, 'judged', 'system', 'kronos', ?, ?, ?)",
                    (sync_id, source_id, target_id, relation, confidence, reason, model, ts, ts),
                )
            except sqlite3.Error as exc:
                raise StoreError(f"insert semantic relation: {exc}") from exc
        return sync_id

    def list_relations(
        self, project: str = "", status: str = "", limit: int = 50, offset: int = 0
    ) -> list[Relation]:
        """Live relations, newest first, optionally filtered by project and status."""
        if limit <= 0:
            limit = _DEFAULT_LIST_LIMIT
        conditions = ["r.deleted_at IS NULL"]
        args: list[Any] = []
        if status:
            conditions.append("r.judgment_status = ?")
            args.append(status)
        if project:
            conditions.append("(src.project = ? OR tgt.project = ?)")
            args.extend((project, project))
        args.extend((limit, offset))

        try:
            rows = self._fetch_all(
                "SELECT r.id, r.sync_id, r.source_id, r.target_id, r.relation, "
                "r.judgment_status, COALESCE(r.reason, '') AS reason, "
                "COALESCE(r.confidence, 0) AS confidence, "
                "COALESCE(r.marked_by_actor, '') AS marked_by_actor, "
                "COALESCE(r.marked_by_kind, '') AS marked_by_kind, "
                "r.created_at, r.updated_at, "
                "COALESCE(src.id, 0) AS source_int_id, COALESCE(src.title, '') AS source_title, "
                "COALESCE(src.project, '') AS source_project, "
                "COALESCE(tgt.id, 0) AS target_int_id, COALESCE(tgt.title, '') AS target_title, "
                "COALESCE(tgt.project, '') AS target_project "
                "FROM memory_relations r "
                "LEFT JOIN observations src ON src.sync_id = r.source_id "
                "LEFT JOIN observations tgt ON tgt.sync_id = r.target_id "
                f"WHERE {' AND '.join(conditions)} "
                "ORDER BY r.created_at DESC LIMIT ? OFFSET ?",
                args,
            )
        except sqlite3.Error as exc:
            raise StoreError(f"list relations: {exc}") from exc

        return [
            Relation(
                id=int(row["id"]),
                sync_id=row["sync_id"],
                source_id=row["source_id"] or "",
                target_id=row["target_id"] or "",
                relation=row["relation"],
                judgment_status=row["judgment_status"],
                reason=row["reason"],
                confidence=float(row["confidence"]),
                marked_by_actor=row["marked_by_actor"],
                marked_by_kind=row["marked_by_kind"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                source_int_id=int(row["source_int_id"]),
                source_title=row["source_title"],
                source_project=row["source_project"],
                target_int_id=int(row["target_int_id"]),
                target_title=row["target_title"],
                target_project=row["target_project"],
            )
            for row in rows
        ]

    def get_relation_stats(self, project: str) -> RelationStats:
        """Counts of a project's live relations by judgment status and verb."""
        try:
            rows = self._fetch_all(
                "SELECT r.judgment_status, r.relation, COUNT(*) AS n "
                "FROM memory_relations r "
                "LEFT JOIN observations src ON src.sync_id = r.source_id "
                "LEFT JOIN observations tgt ON tgt.sync_id = r.target_id "
                "WHERE r.deleted_at IS NULL AND (src.project = ? OR tgt.project = ?) "
                "GROUP BY r.judgment_status, r.relation",
                (project, project),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"relation stats: {exc}") from exc

        stats = RelationStats(project=project)
        for row in rows:
            status, relation, count = row[0], row[1], int(row[2])
            stats.total += count
            if status == JUDGMENT_PENDING:
                stats.pending += count
            elif status == JUDGMENT_JUDGED:
                stats.judged += count
            elif status == JUDGMENT_ORPHANED:
                stats.orphaned += count
            if relation != RELATION_PENDING:
                stats.by_relation[relation] = stats.by_relation.get(relation, 0) + count
        return stats

    def gc_relations(self, stale_days: int = 30) -> int:
        """Soft-delete dangling relations and pending ones older than ``stale_days``."""
        if stale_days <= 0:
            stale_days = _DEFAULT_STALE_DAYS
        ts = utc_now()
        try:
            dangling = self._execute(
                "UPDATE memory_relations SET deleted_at = ?, updated_at = ? "
                "WHERE deleted_at IS NULL AND ("
                "NOT EXISTS (SELECT 1 FROM observations "
                "WHERE sync_id = source_id AND deleted_at IS NULL) "
                "OR NOT EXISTS (SELECT 1 FROM observations "
                "WHERE sync_id = target_id AND deleted_at IS NULL))",
                (ts, ts),
            ).rowcount
        except sqlite3.Error as exc:
            raise StoreError(f"gc dangling relations: {exc}") from exc
        try:
            stale = self._execute(
                "UPDATE memory_relations SET deleted_at = ?, updated_at = ? "
                "WHERE deleted_at IS NULL AND judgment_status = 'pending' AND created_at < ?",
                (ts, ts, _cutoff(stale_days)),
            ).rowcount
        except sqlite3.Error as exc:
            raise StoreError(f"gc stale relations: {exc}") from exc
        return max(dangling, 0) + max(stale, 0)

    # internal helpers

    def _insert_pending(self, source_id: str, target_id: str) -> int:
        ts = utc_now()
        cursor = self._execute(
            "INSERT INTO memory_relations "
            "(sync_id, source_id, target_id, relation, judgment_status, created_at, updated_at) "
            "VALUES (?, ?, ?, 'pending', 'pending', ?, ?)",
            (new_sync_id(), source_id, target_id, ts, ts),
        )
        return int(cursor.lastrowid)

    def _relation_exists(self, source_id: str, target_id: str) -> bool:
        try:
            row = self._fetch_one(
                "SELECT COUNT(*) FROM memory_relations WHERE deleted_at IS NULL "
                "AND ((source_id = ? AND target_id = ?) OR (source_id = ? AND target_id = ?))",
                (source_id, target_id, target_id, source_id),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"relation exists: {exc}") from exc
        return bool(row and row[0] > 0)

    def _relation_by_id(self, relation_id: int) -> Relation | None:
        try:
            row = self._fetch_one(
                "SELECT id, sync_id, source_id, target_id, relation, judgment_status, "
                "COALESCE(reason, '') AS reason, COALESCE(evidence, '') AS evidence, "
                "COALESCE(confidence, 0) AS confidence, "
                "COALESCE(marked_by_actor, '') AS marked_by_actor, "
                "COALESCE(marked_by_kind, '') AS marked_by_kind, "
                "COALESCE(marked_by_model, '') AS marked_by_model, "
                "COALESCE(session_id, '') AS session_id, created_at, updated_at "
                "FROM memory_relations WHERE id = ? AND deleted_at IS NULL",
                (relation_id,),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"relation {relation_id}: {exc}") from exc
        if row is None:
            return None
        return Relation(
            id=int(row["id"]),
            sync_id=row["sync_id"],
            source_id=row["source_id"] or "",
            target_id=row["target_id"] or "",
            relation=row["relation"],
            judgment_status=row["judgment_status"],
            reason=row["reason"],
            evidence=row["evidence"],
            confidence=float(row["confidence"]),
            marked_by_actor=row["marked_by_actor"],
            marked_by_kind=row["marked_by_kind"],
            marked_by_model=row["marked_by_model"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _check_cross_project(self, source_id: str, target_id: str) -> None:
        try:
            source = self.get_observation_by_sync_id(source_id)
            target = self.get_observation_by_sync_id(target_id)
        except StoreError:
            return
        if source is None or target is None:
            return
        if source.project != target.project:
            raise CrossProjectRelationError(
                "relations between different projects are not allowed: "
                f"{source.project!r} vs {target.project!r}"
            )