"""Value types shared by the memory store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ObservationType(str, Enum):
    """Kind of knowledge an observation records."""

    BUGFIX = "bugfix"
    DECISION = "decision"
    ARCHITECTURE = "architecture"
    DISCOVERY = "discovery"
    PATTERN = "pattern"
    CONFIG = "config"
    PREFERENCE = "preference"
    PASSIVE = "passive"
    SESSION = "session"

    def __str__(self) -> str:
        return self.value


class Scope(str, Enum):
    """Visibility of an observation: its own project or every project."""

    PROJECT = "project"
    GLOBAL = "global"

    def __str__(self) -> str:
        return self.value


@dataclass
class Session:
    """A working session of an agent inside a project."""

    id: str
    project: str
    directory: str = ""
    started_at: datetime | None = None
    ended_at: datetime | None = None
    summary: str = ""
    injected_observation_ids: list[str] | None = None
    search_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


@dataclass
class Observation:
    """A stored piece of memory."""

    id: int = 0
    sync_id: str = ""
    session_id: str = ""
    type: ObservationType | str = ""
    title: str = ""
    content: str = ""
    tool_name: str = ""
    project: str = ""
    scope: Scope | str = Scope.PROJECT
    topic_key: str = ""
    normalized_hash: str = ""
    revision_count: int = 0
    duplicate_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class SaveParams:
    """Input for saving an observation.

    A non-empty ``sync_id`` is used instead of generating one; a non-empty
    ``topic_key`` turns the save into an upsert within the project.
    """

    type: ObservationType | str = ""
    title: str = ""
    content: str = ""
    project: str = ""
    session_id: str = ""
    tool_name: str = ""
    scope: Scope | str = Scope.PROJECT
    topic_key: str = ""
    sync_id: str = ""


@dataclass
class UpdateParams:
    """Partial update of an observation; ``None`` fields are left unchanged."""

    id: int
    title: str | None = None
    content: str | None = None
    type: ObservationType | str | None = None


@dataclass
class SearchParams:
    """Full-text search request. An empty scope searches project and global."""

    query: str
    project: str = ""
    scope: Scope | str = ""
    limit: int = 0


@dataclass
class SearchResult(Observation):
    """An observation returned by a search, with its relevance rank."""

    rank: float = 0.0


@dataclass
class UserPrompt:
    """A prompt submitted by the user during a session."""

    id: int
    session_id: str
    content: str
    project: str
    created_at: datetime | None = None