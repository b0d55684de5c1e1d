# test/conftest.py
import pytest

from kbengine.config import Settings
from kbengine.corpus.schema import SqliteStore
from kbengine.kb import KnowledgeBase


@pytest.fixture
def store(tmp_path):
    """A fresh SQLite-backed store per test."""
    s = SqliteStore(tmp_path / "kb.db")
    yield s
    s.close()


@pytest.fixture
def settings(tmp_path):
    # small chunks so short test texts span several chunks
    return Settings(sqlite_path=str(tmp_path / "kb.db"), chunk_size=20, chunk_overlap=5)


@pytest.fixture
def kb(store, settings):
    return KnowledgeBase(store=store, settings=settings)


@pytest.fixture
def client(kb):
    """TestClient whose routes all see the per-test knowledge base."""
    from fastapi.testclient import TestClient

    import kbengine.api as api

    api.app.dependency_overrides[api.get_kb] = lambda: kb
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()
