"""The SQLite-backed memory store and the interface every backend offers."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from kronos.database import Database
from kronos.models import (
    Observation,
    SaveParams,
    SearchParams,
    SearchResult,
    Session,
    UpdateParams,
)
from kronos.observations import ObservationsMixin
from kronos.prompts import PromptsMixin
from kronos.relations import RelationsMixin
from kronos.search import SearchMixin
from kronos.sessions import SessionsMixin
from kronos.stats import StatsMixin


@runtime_checkable
class Storer(Protocol):
    """Operations shared by a single store and the primary/buffer pair."""

    def save_observation(self, params: SaveParams) -> Observation: ...

    def get_observation(self, obs_id: int) -> Observation | None: ...

    def update_observation(self, params: UpdateParams) -> Observation: ...

    def delete_observation(self, obs_id: int) -> None: ...

    def list_observations(self, project: str, limit: int = 50) -> list[Observation]: ...

    def list_all(self, project: str = "") -> list[Observation]: ...

    def list_session_observations(self, session_id: str) -> list[Observation]: ...

    def save_passive(self, session_id: str, project: str, content: str) -> Observation: ...

    def create_session(self, session_id: str, project: str, directory: str = "") -> Session: ...

    def end_session(self, session_id: str, summary: str = "") -> None: ...

    def get_session(self, session_id: str) -> Session | None: ...

    def get_active_session(self, project: str) -> Session | None: ...

    def list_sessions(self, project: str, limit: int = 20) -> list[Session]: ...

    def persist_injected_ids(self, session_id: str, ids: Iterable[str] | None) -> None: ...

    def load_injected_ids(self, session_id: str) -> list[str]: ...

    def count_observations(self, project: str = "") -> int: ...

    def increment_search_count(self, session_id: str) -> None: ...

    def save_prompt(self, session_id: str, project: str, content: str) -> None: ...

    def search(self, params: SearchParams) -> list[SearchResult]: ...

    def close(self) -> None: ...


class Store(
    ObservationsMixin,
    SearchMixin,
    SessionsMixin,
    PromptsMixin,
    StatsMixin,
    RelationsMixin,
    Database,
):
    """A migrated SQLite database with every memory operation."""