import pytest

from kronos.database import Database, StoreError
from kronos.models import ObservationType, SaveParams
from kronos.observations import ObservationsMixin
from kronos.prompts import PromptsMixin
from kronos.sessions import SessionsMixin
from kronos.stats import StatsMixin


class _Store(StatsMixin, PromptsMixin, SessionsMixin, ObservationsMixin, Database):
    pass


@pytest.fixture
def store(tmp_path):
    db = _Store(tmp_path / "kronos.db")
    yield db
    db.close()


def _save(store, title, project="alpha", session_id=""):
    return store.save_observation(SaveParams(
        type=ObservationType.DECISION, title=title,
        content=f"contenido de {title}", project=project, session_id=session_id,
    ))


def test_stats_empty(store):
    st = StatsMixin.stats(store)
    assert (st.total_observations, st.total_sessions, st.total_prompts) == (0, 0, 0)
    assert st.projects == []


def test_stats_counts_live_rows(store):
    store.create_session("s1", "alpha", "/tmp")
    saved = [_save(store, "uno"), _save(store, "dos", "beta"), _save(store, "tres", "beta")]
    store.delete_observation(saved[0].id)
    store.save_prompt("s1", "alpha", "hola")
    st = store.stats()
    assert st.total_observations == len(store.list_all())
    assert st.total_sessions == len(store.all_sessions())
    assert st.total_prompts == len(store.list_prompts("alpha"))
    assert st.projects == ["beta"]


def test_stats_projects_sorted(store):
    _save(store, "x", "zeta")
    _save(store, "y", "alpha")
    assert store.stats().projects == ["alpha", "zeta"]


def test_all_sessions_limit_and_deleted(store):
    for name in ("a", "b", "c"):
        store.create_session(name, f"proj-{name}", "/tmp")
    store.delete_session("b")
    assert {s.id for s in StatsMixin.all_sessions(store)} == {"a", "c"}
    assert len(StatsMixin.all_sessions(store, 1)) == 1


def test_timeline_window(store):
    store.create_session("s1", "alpha", "/tmp")
    saved = [_save(store, f"paso {i}", session_id="s1") for i in range(5)]
    for i, obs in enumerate(saved):
        store.connection.execute(
            "UPDATE observations SET created_at = ? WHERE id = ?",
            (f"2024-01-01T00:00:0{i}Z", obs.id),
        )
    timeline = store.timeline_observations(saved[2].id, 1)
    assert [o.id for o in timeline] == [saved[1].id, saved[2].id, saved[3].id]
    edge = store.timeline_observations(saved[0].id, 1)
    assert [o.id for o in edge] == [saved[0].id, saved[1].id]


def test_timeline_without_session(store):
    obs = _save(store, "suelta")
    assert store.timeline_observations(obs.id) == []


def test_timeline_missing_observation(store):
    with pytest.raises(StoreError):
        StatsMixin.timeline_observations(store, 999)