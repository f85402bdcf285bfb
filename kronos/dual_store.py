"""A primary backend with a local SQLite buffer that takes over while it is down."""

from __future__ import annotations

import contextlib
import json
import threading
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, replace
from datetime import timedelta
from typing import Any, TypeVar

from kronos.database import StoreError
from kronos.models import (
    Observation,
    ObservationType,
    SaveParams,
    Scope,
    SearchParams,
    SearchResult,
    Session,
    UpdateParams,
)
from kronos.observations import passive_title
from kronos.store import Store, Storer
from kronos.sync_queue import SyncEntry, SyncQueue

T = TypeVar("T")

# 3×60s → 3×5min → 3×10min → 3×20min → 3×30min → 60min forever
RETRY_SCHEDULE: tuple[tuple[timedelta, int], ...] = (
    (timedelta(seconds=60), 3),
    (timedelta(minutes=5), 3),
    (timedelta(minutes=10), 3),
    (timedelta(minutes=20), 3),
    (timedelta(minutes=30), 3),
    (timedelta(minutes=60), 0),
)
_FINAL_INTERVAL = timedelta(minutes=60)
_FLUSH_BATCH = 200
_COUNT_BATCH = 1_000_000

_MISS = object()


@dataclass
class RetryState:
    """Position in the staged reconnect schedule."""

    phase: int = 0
    attempts: int = 0

    def next_interval(self) -> timedelta:
        """The wait before the next attempt, advancing through the schedule."""
        if self.phase >= len(RETRY_SCHEDULE):
            return _FINAL_INTERVAL
        interval, max_attempts = RETRY_SCHEDULE[self.phase]
        self.attempts += 1
        if max_attempts > 0 and self.attempts >= max_attempts:
            self.phase += 1
            self.attempts = 0
        return interval

    def reset(self) -> None:
        """Start the schedule over."""
        self.phase = 0
        self.attempts = 0


class DualStore:
    """Reads and writes go to the primary; while it is down they go to the buffer.

    Writes made to the buffer are queued and replayed to the primary, in order,
    once it can be reached again, either by the background loop or on demand.
    """

    def __init__(self, buffer: Store, connect_primary: Callable[[], Storer]) -> None:
        self._buffer = buffer
        self._connect_primary = connect_primary
        self._queue = SyncQueue(buffer)
        self._state_lock = threading.Lock()
        self._primary: Storer | None
        try:
            self._primary = connect_primary()
        except Exception:
            self._primary = None
        self._down = self._primary is None
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._sync_loop, name="kronos-sync", daemon=True
        )
        self._thread.start()

    # primary state

    def _live_primary(self) -> Storer | None:
        with self._state_lock:
            if self._down or self._primary is None:
                return None
            return self._primary

    def _mark_down(self) -> None:
        with self._state_lock:
            self._down = True

    def _mark_up(self, primary: Storer) -> None:
        with self._state_lock:
            self._primary = primary
            self._down = False

    def _try_primary(self, op: Callable[[Storer], T]) -> Any:
        primary = self._live_primary()
        if primary is None:
            return _MISS
        try:
            return op(primary)
        except Exception:
            self._mark_down()
            return _MISS

    def _read(self, op: Callable[[Storer], T]) -> T:
        result = self._try_primary(op)
        if result is _MISS:
            return op(self._buffer)
        return result

    def _write(
        self,
        op: Callable[[Storer], T],
        entity_type: str,
        payload: Callable[[T], Any],
    ) -> T:
        result = self._try_primary(op)
        if result is not _MISS:
            return result
        result = op(self._buffer)
        with contextlib.suppress(StoreError):
            self._queue.enqueue(entity_type, payload(result))
        return result

    # writes

    def save_observation(self, params: SaveParams) -> Observation:
        return self._write(
            lambda s: s.save_observation(params),
            "save_observation",
            lambda obs: asdict(replace(params, sync_id=obs.sync_id)),
        )

    def update_observation(self, params: UpdateParams) -> Observation:
        return self._write(
            lambda s: s.update_observation(params),
            "update_observation",
            lambda _: asdict(params),
        )

    def delete_observation(self, obs_id: int) -> None:
        self._write(
            lambda s: s.delete_observation(obs_id),
            "delete_observation",
            lambda _: {"id": obs_id},
        )

    def save_passive(self, session_id: str, project: str, content: str) -> Observation:
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

    def create_session(self, session_id: str, project: str, directory: str = "") -> Session:
        return self._write(
            lambda s: s.create_session(session_id, project, directory),
            "create_session",
            lambda _: {"id": session_id, "project": project, "directory": directory},
        )

    def end_session(self, session_id: str, summary: str = "") -> None:
        self._write(
            lambda s: s.end_session(session_id, summary),
            "end_session",
            lambda _: {"id": session_id, "summary": summary},
        )

    def save_prompt(self, session_id: str, project: str, content: str) -> None:
        self._write(
            lambda s: s.save_prompt(session_id, project, content),
            "save_prompt",
            lambda _: {"session_id": session_id, "project": project, "content": content},
        )

    # reads

    def get_observation(self, obs_id: int) -> Observation | None:
        return self._read(lambda s: s.get_observation(obs_id))

    def list_observations(self, project: str, limit: int = 50) -> list[Observation]:
        return self._read(lambda s: s.list_observations(project, limit))

    def list_all(self, project: str = "") -> list[Observation]:
        return self._read(lambda s: s.list_all(project))

    def list_session_observations(self, session_id: str) -> list[Observation]:
        return self._read(lambda s: s.list_session_observations(session_id))

    def get_session(self, session_id: str) -> Session | None:
        return self._read(lambda s: s.get_session(session_id))

    def get_active_session(self, project: str) -> Session | None:
        return self._read(lambda s: s.get_active_session(project))

    def list_sessions(self, project: str, limit: int = 20) -> list[Session]:
        return self._read(lambda s: s.list_sessions(project, limit))

    def search(self, params: SearchParams) -> list[SearchResult]:
        return self._read(lambda s: s.search(params))

    def persist_injected_ids(self, session_id: str, ids: Iterable[str] | None) -> None:
        id_list = list(ids) if ids is not None else None
        self._read(lambda s: s.persist_injected_ids(session_id, id_list))

    def load_injected_ids(self, session_id: str) -> list[str]:
        return self._read(lambda s: s.load_injected_ids(session_id))

    def count_observations(self, project: str = "") -> int:
        return self._read(lambda s: s.count_observations(project))

    def increment_search_count(self, session_id: str) -> None:
        self._read(lambda s: s.increment_search_count(session_id))

    def local_store(self) -> Store:
        """The local SQLite buffer, for work that always stays local."""
        return self._buffer

    def close(self) -> None:
        """Stop the sync loop and close both backends."""
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        with self._state_lock:
            primary = self._primary
        if primary is not None:
            with contextlib.suppress(Exception):
                primary.close()
        self._buffer.close()

    # synchronisation

    def _sync_loop(self) -> None:
        state = RetryState()
        while True:
            interval = state.next_interval()
            if self._stop.wait(interval.total_seconds()):
                return
            if self._live_primary() is not None and self._queue.is_empty():
                state.reset()
                continue
            if self.flush_pending():
                state.reset()

    def _ensure_primary(self) -> Storer:
        with self._state_lock:
            primary, down = self._primary, self._down
        if not down and primary is not None:
            return primary
        try:
            connection = self._connect_primary()
        except Exception as exc:
            raise StoreError(f"connect to primary: {exc}") from exc
        self._mark_up(connection)
        return connection

    def _replay_all(self, primary: Storer, entries: list[SyncEntry]) -> None:
        for entry in entries:
            try:
                self._replay(primary, entry)
            except Exception as exc:
                self._mark_down()
                raise StoreError(f"replay {entry.entity_type}: {exc}") from exc
            with contextlib.suppress(StoreError):
                self._queue.delete(entry.id)

    def flush_pending_verbose(self) -> bool:
        """Reconnect and replay queued operations; raise StoreError on failure."""
        primary = self._ensure_primary()
        try:
            entries = self._queue.pending(_FLUSH_BATCH)
        except StoreError as exc:
            raise StoreError(f"read sync_queue: {exc}") from exc
        self._replay_all(primary, entries)
        return True

    def flush_pending(self) -> bool:
        """Reconnect and replay queued operations; True once the batch is drained."""
        try:
            primary = self._ensure_primary()
        except StoreError:
            return False
        try:
            entries = self._queue.pending(_FLUSH_BATCH)
        except StoreError:
            return True
        try:
            self._replay_all(primary, entries)
        except StoreError:
            return False
        return True

    def pending_count(self) -> int:
        """Number of operations waiting to reach the primary."""
        try:
            return len(self._queue.pending(_COUNT_BATCH))
        except StoreError:
            return 0

    @staticmethod
    def _replay(primary: Storer, entry: SyncEntry) -> None:
        try:
            data = json.loads(entry.payload)
            action = _replay_action(entry.entity_type, data)
        except (ValueError, TypeError, KeyError, AttributeError):
            return  # corrupt entry: discard
        if action is not None:
            action(primary)


def _replay_action(entity_type: str, data: Any) -> Callable[[Storer], Any] | None:
    if entity_type == "save_observation":
        save = SaveParams(**data)
        return lambda s: s.save_observation(save)
    if entity_type == "update_observation":
        update = UpdateParams(**data)
        return lambda s: s.update_observation(update)
    if entity_type == "delete_observation":
        obs_id = int(data["id"])
        return lambda s: s.delete_observation(obs_id)
    if entity_type == "create_session":
        sid, project, directory = data["id"], data["project"], data["directory"]
        return lambda s: s.create_session(sid, project, directory)
    if entity_type == "end_session":
        sid, summary = data["id"], data["summary"]
        return lambda s: s.end_session(sid, summary)
    if entity_type == "save_prompt":
        sid, project, content = data["session_id"], data["project"], data["content"]
        return lambda s: s.save_prompt(sid, project, content)
    return None