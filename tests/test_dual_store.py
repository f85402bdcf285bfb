from datetime import timedelta

import pytest

from kronos.database import StoreError
from kronos.dual_store import DualStore, RetryState
from kronos.models import ObservationType, SaveParams, SearchParams
from kronos.store import Store
from kronos.sync_queue import SyncQueue


class FlakyPrimary:
    """Wraps a real store; raises on every call while ``up`` is False."""

    def __init__(self, store):
        self.store = store
        self.up = True
        self.closed = False

    def close(self):
        self.closed = True

    def __getattr__(self, name):
        attr = getattr(self.store, name)

        def call(*args, **kwargs):
            if not self.up:
                raise ConnectionError("primary unreachable")
            return attr(*args, **kwargs)

        return call


class Connector:
    def __init__(self, primary, available=True):
        self.primary = primary
        self.available = available
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if not self.available:
            raise ConnectionError("primary unreachable")
        return self.primary


@pytest.fixture
def primary_store(tmp_path):
    s = Store(tmp_path / "primary.db")
    yield s
    s.close()


@pytest.fixture
def make_dual(tmp_path, primary_store):
    created = []

    def factory(available=True):
        flaky = FlakyPrimary(primary_store)
        connector = Connector(flaky, available)
        dual = DualStore(Store(tmp_path / f"buffer{len(created)}.db"), connector)
        created.append(dual)
        return dual, flaky, connector

    yield factory
    for dual in created:
        dual.close()


def _params(title="Elegimos Go", content="Go compila a binario único sin dependencias."):
    return SaveParams(type=ObservationType.DECISION, title=title, content=content, project="p")


def test_retry_schedule_stages():
    state = RetryState()
    got = [state.next_interval() for _ in range(17)]
    assert got[:3] == [timedelta(seconds=60)] * 3
    assert got[3:6] == [timedelta(minutes=5)] * 3
    assert got[6:9] == [timedelta(minutes=10)] * 3
    assert got[9:12] == [timedelta(minutes=20)] * 3
    assert got[12:15] == [timedelta(minutes=30)] * 3
    assert got[15:] == [timedelta(minutes=60)] * 2


def test_retry_reset_restarts_schedule():
    state = RetryState()
    for _ in range(5):
        state.next_interval()
    state.reset()
    assert (state.phase, state.attempts) == (0, 0)
    assert state.next_interval() == timedelta(seconds=60)


def test_writes_go_to_primary_when_up(make_dual, primary_store):
    dual, _, connector = make_dual()
    obs = dual.save_observation(_params())
    assert primary_store.get_observation(obs.id).title == "Elegimos Go"
    assert dual.local_store().count_observations("p") == 0
    assert dual.pending_count() == 0
    assert connector.calls == 1


def test_unreachable_primary_buffers_and_queues(make_dual, primary_store):
    dual, _, connector = make_dual(available=False)
    obs = dual.save_observation(_params())
    assert dual.local_store().get_observation(obs.id).title == "Elegimos Go"
    assert dual.get_observation(obs.id).id == obs.id
    assert dual.pending_count() == 1
    assert dual.flush_pending() is False
    assert dual.pending_count() == 1

    connector.available = True
    assert dual.flush_pending() is True
    assert dual.pending_count() == 0
    replayed = primary_store.get_observation_by_sync_id(obs.sync_id)
    assert replayed.title == obs.title


def test_failure_midway_marks_primary_down(make_dual, primary_store):
    dual, flaky, _ = make_dual()
    flaky.up = False
    obs = dual.save_observation(_params())
    flaky.up = True
    # still considered down until a flush reconnects
    assert dual.count_observations("p") == 1
    assert primary_store.count_observations("p") == 0
    assert dual.get_observation(obs.id).title == obs.title

    assert dual.flush_pending() is True
    assert primary_store.count_observations("p") == 1
    assert dual.pending_count() == 0


def test_session_and_prompt_replay_in_order(make_dual, primary_store):
    dual, _, connector = make_dual(available=False)
    dual.create_session("s1", "proj", "/tmp")
    dual.save_prompt("s1", "proj", "how do we deploy")
    dual.end_session("s1", "resumen")
    assert dual.pending_count() == 3

    connector.available = True
    assert dual.flush_pending_verbose() is True
    session = primary_store.get_session("s1")
    assert session.summary == "resumen"
    assert session.ended_at is not None
    assert [p.content for p in primary_store.list_prompts("proj")] == ["how do we deploy"]


def test_delete_is_replayed(make_dual, primary_store):
    dual, _, connector = make_dual(available=False)
    obs = dual.save_observation(_params(title="para borrar", content="registro con soft delete"))
    dual.delete_observation(obs.id)
    connector.available = True
    assert dual.flush_pending() is True
    replayed = primary_store.get_observation_by_sync_id(obs.sync_id)
    assert replayed.deleted_at is not None


def test_flush_verbose_raises_when_unreachable(make_dual):
    dual, _, _ = make_dual(available=False)
    dual.save_passive("", "p", "1. learning kept while the primary is away")
    with pytest.raises(StoreError):
        dual.flush_pending_verbose()
    assert dual.pending_count() == 1


def test_corrupt_and_unknown_entries_are_discarded(make_dual, primary_store):
    dual, _, _ = make_dual()
    queue = SyncQueue(dual.local_store())
    queue.enqueue("save_observation", {"unexpected": 1})
    queue.enqueue("mystery_operation", {"id": 1})
    assert dual.pending_count() == 2
    assert dual.flush_pending() is True
    assert dual.pending_count() == 0
    assert primary_store.count_observations() == 0


def test_session_bookkeeping_reaches_primary(make_dual, primary_store):
    dual, _, _ = make_dual()
    dual.create_session("s1", "proj", "/tmp")
    dual.persist_injected_ids("s1", ["obs-1", "obs-2"])
    dual.increment_search_count("s1")
    assert dual.load_injected_ids("s1") == ["obs-1", "obs-2"]
    assert primary_store.get_session("s1").search_count == 1
    assert dual.get_active_session("proj").id == "s1"
    assert [s.id for s in dual.list_sessions("proj")] == ["s1"]


def test_search_falls_back_to_buffer(make_dual):
    dual, flaky, _ = make_dual(available=False)
    dual.save_observation(
        _params(title="Elegimos SQLite", content="SQLite es la base de datos embebida.")
    )
    results = dual.search(SearchParams(query="sqlite", project="p", limit=10))
    assert [r.title for r in results] == ["Elegimos SQLite"]
    assert flaky.closed is False


def test_close_closes_primary(tmp_path, primary_store):
    flaky = FlakyPrimary(primary_store)
    dual = DualStore(Store(tmp_path / "buffer.db"), Connector(flaky))
    dual.close()
    assert flaky.closed is True