"""Common test fixtures for the notetree store."""

from typing import Optional

import pytest

from notetree.config import config
from notetree.models.db_models import init_db
from notetree.models.schema import OwnerKind
from notetree.observability import metrics
from notetree.services.batch_engine import BatchMutationEngine
from notetree.services.note_service import NoteService
from notetree.services.property_resolver import PropertyResolver
from notetree.storage.entity_store import EntityStore


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Point the global config at temporary paths (auto-restored)."""
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "notetree.db")
    monkeypatch.setattr(config, "log_dir", tmp_path / "logs")
    monkeypatch.setattr(config, "in_memory_db", False)
    yield config


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector isolated between tests."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def db_engine():
    """A private in-memory database per test."""
    engine = init_db(url="sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return EntityStore(db_engine)


@pytest.fixture
def resolver(store):
    return PropertyResolver(store)


@pytest.fixture
def sleeps():
    """Records the delays the batch engine asked to sleep for."""
    return []


@pytest.fixture
def batch_engine(store, resolver, sleeps):
    return BatchMutationEngine(
        store, resolver=resolver, max_retries=3, retry_base_ms=10, sleep=sleeps.append
    )


@pytest.fixture
def note_service(store, resolver, batch_engine):
    return NoteService(store, resolver=resolver, engine=batch_engine)


@pytest.fixture
def page(store):
    """A page to put notes on."""
    with store.transaction() as session:
        return store.create_page(session, "Test Page")


@pytest.fixture
def make_note(store, page):
    """Factory: create a note and return its id."""
    def _make(content: str = "", parent: Optional[str] = None, **kwargs) -> str:
        with store.transaction() as session:
            note = store.create_note(
                session, kwargs.pop("page_id", page.id), content=content,
                parent_note_id=parent, **kwargs
            )
            return note.id
    return _make


@pytest.fixture
def add_props(store):
    """Factory: attach (name, value[, weight]) properties to a note."""
    def _add(note_id: str, *props) -> None:
        with store.transaction() as session:
            for prop in props:
                name, value = prop[0], prop[1]
                weight = prop[2] if len(prop) > 2 else 2
                store.add_property(session, OwnerKind.NOTE, note_id, name, value, weight)
    return _add


@pytest.fixture
def set_parent(store):
    """Factory: rewrite a parent pointer without any validation.

    Used to build corrupt chains (cycles) that the store API refuses to make.
    """
    def _set(note_id: str, parent_id: Optional[str]) -> None:
        with store.transaction() as session:
            store.notes.update_fields(session, note_id, {"parent_note_id": parent_id})
    return _set


@pytest.fixture
def dangle_parent(db_engine):
    """Factory: point a note at a parent id that does not exist.

    Foreign keys are switched off on the raw connection for the write, the
    only way to get a dangling reference into the table.
    """
    def _dangle(note_id: str, missing_parent_id: str) -> None:
        raw = db_engine.raw_connection()
        try:
            cursor = raw.cursor()
            cursor.execute("PRAGMA foreign_keys=OFF")
            cursor.execute(
                "UPDATE notes SET parent_note_id = ? WHERE id = ?",
                (missing_parent_id, note_id),
            )
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        finally:
            raw.close()
    return _dangle
