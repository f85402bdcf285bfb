from kronos.models import ObservationType, SaveParams, SearchParams
from kronos.store import Store, Storer
from kronos.sync_queue import SyncQueue

import pytest


@pytest.fixture
def store(tmp_path):
    s = Store(tmp_path / "kronos.db")
    yield s
    s.close()


def test_store_satisfies_storer_and_round_trips(store):
    assert isinstance(store, Storer)
    saved = store.save_observation(
        SaveParams(
            type=ObservationType.DECISION,
            title="Elegimos SQLite",
            content="SQLite es la base de datos embebida más usada del mundo.",
            project="p",
        )
    )
    assert store.get_observation(saved.id).title == "Elegimos SQLite"
    results = store.search(SearchParams(query="sqlite", project="p", limit=10))
    assert [r.id for r in results] == [saved.id]


def test_context_manager_and_reopen_keep_data(tmp_path):
    path = tmp_path / "reopen.db"
    with Store(path) as first:
        first.create_session("s1", "proj", "/tmp")
        version = first.schema_version()
    with Store(path) as second:
        assert second.get_session("s1").project == "proj"
        assert second.schema_version() == version
        assert version >= 1


def test_count_session_observations_skips_passive(store):
    store.create_session("s1", "proj", "/tmp")
    store.save_observation(
        SaveParams(
            type=ObservationType.DISCOVERY,
            title="regular note",
            content="a regular observation saved inside the session",
            project="proj",
            session_id="s1",
        )
    )
    store.save_passive("s1", "proj", "- passive learning captured from a sub agent run")
    assert store.count_session_observations("s1") == 1
    assert store.count_observations("proj") == 2


def test_count_session_prompts(store):
    store.create_session("s1", "proj", "/tmp")
    store.save_prompt("s1", "proj", "first prompt")
    store.save_prompt("s1", "proj", "second prompt")
    store.save_prompt("s1", "", "ignored without project")
    assert store.count_session_prompts("s1") == 2
    assert store.count_session_prompts("other") == 0


def test_sync_queue_count_follows_queue(store):
    assert store.sync_queue_count() == 0
    queue = SyncQueue(store)
    queue.enqueue("save_prompt", {"session_id": "", "project": "p", "content": "c"})
    assert store.sync_queue_count() == 1