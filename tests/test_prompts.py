import pytest

from kronos.database import Database
from kronos.prompts import PromptsMixin, extract_learnings
from kronos.sessions import SessionsMixin


class _Store(PromptsMixin, SessionsMixin, Database):
    pass


@pytest.fixture
def store(tmp_path):
    db = _Store(tmp_path / "kronos.db")
    yield db
    db.close()


@pytest.mark.parametrize(
    "text, want",
    [
        (
            "## Key Learnings:\n"
            "1. ncruces/go-sqlite3 no necesita CGO para compilar en Windows\n"
            "2. FTS5 con content= requiere triggers manuales de sincronización\n"
            "3. bm25() retorna negativos, ORDER BY ASC da mejor match primero",
            3,
        ),
        (
            "## Key Learnings:\n"
            "- El tokenizador unicode61 soporta español sin configuración adicional\n"
            "- Los índices en project+topic_key mejoran mucho el rendimiento de upsert",
            2,
        ),
        (
            "Hice cosas.\n1. item uno sin header de learnings\n2. item dos sin header",
            0,
        ),
        ("", 0),
        (
            "## Key Learnings:\n1. Corto\n"
            "2. Este item tiene suficiente longitud y palabras para pasar el filtro mínimo",
            1,
        ),
        (
            "## Key Learnings:\n1. Solo tres palabras\n"
            "2. Este item tiene suficiente contenido con más de cuatro palabras en total",
            1,
        ),
        (
            "## Key Learnings:\n"
            "1. Este aprendizaje aparece dos veces en el mismo bloque de learnings\n"
            "2. Este aprendizaje aparece dos veces en el mismo bloque de learnings",
            1,
        ),
        (
            "## Key Learnings:\n"
            "1. Este aprendizaje debe incluirse en la extracción de learnings\n\n"
            "## Otra sección\n"
            "- Este item NO debe incluirse porque está bajo otro header",
            1,
        ),
        (
            "### Aprendizajes Clave:\n"
            "1. El header en español también funciona para la extracción automática\n"
            "2. Kronos soporta múltiples idiomas en los headers de learnings",
            2,
        ),
    ],
    ids=[
        "numbered", "bullets", "no-header", "empty", "too-short",
        "too-few-words", "dedup", "stops-at-next-header", "spanish-header",
    ],
)
def test_extract_learnings_counts(text, want):
    assert len(extract_learnings(text)) == want


def test_extract_learnings_item_text():
    text = (
        "## Learnings\n"
        "1)   El texto del item se devuelve sin el marcador inicial  \n"
    )
    assert extract_learnings(text) == ["El texto del item se devuelve sin el marcador inicial"]


def test_save_and_list_prompts(store):
    store.create_session("s1", "p", "/tmp")
    PromptsMixin.save_prompt(store, "s1", "p", "primer prompt")
    PromptsMixin.save_prompt(store, "", "p", "segundo prompt")
    PromptsMixin.save_prompt(store, "", "q", "otro proyecto")
    prompts = PromptsMixin.list_prompts(store, "p")
    assert {p.content for p in prompts} == {"primer prompt", "segundo prompt"}
    assert {p.session_id for p in prompts} == {"s1", ""}
    assert store.count_session_prompts("s1") == 1


def test_save_prompt_ignores_empty(store):
    PromptsMixin.save_prompt(store, "", "p", "")
    PromptsMixin.save_prompt(store, "", "", "contenido")
    assert PromptsMixin.list_prompts(store, "p") == []
    assert PromptsMixin.list_prompts(store, "") == []


def test_delete_prompt(store):
    store.save_prompt("", "p", "borrar esto")
    (prompt,) = store.list_prompts("p")
    PromptsMixin.delete_prompt(store, prompt.id)
    assert PromptsMixin.list_prompts(store, "p") == []


def test_list_prompts_limit(store):
    for i in range(5):
        store.save_prompt("", "p", f"prompt {i}")
    assert len(PromptsMixin.list_prompts(store, "p", 2)) == 2
    assert len(PromptsMixin.list_prompts(store, "p")) == 5