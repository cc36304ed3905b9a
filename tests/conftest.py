"""Common test fixtures for the Knowling notebook."""

import pytest

from knowling.config import config
from knowling.services.embedding_service import EmbeddingService
from knowling.services.notebook_service import NotebookService
from knowling.storage.note_repository import NoteRepository
from knowling.storage.vector_index import VectorIndex
from tests.fakes import TEST_DIM, FakeEmbeddingProvider


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "notebook.db")
    monkeypatch.setattr(config, "vector_db_path", tmp_path / "db" / "vectors.db")
    monkeypatch.setattr(config, "log_dir", tmp_path / "logs")
    monkeypatch.setattr(config, "embedding_dim", TEST_DIM)
    monkeypatch.setattr(config, "log_to_console", False)
    yield config

@pytest.fixture
def fake_embedder():
    """A FakeEmbeddingProvider matching the test vector dimension."""
    return FakeEmbeddingProvider(dim=TEST_DIM)

@pytest.fixture
def embedding_service(fake_embedder):
    service = EmbeddingService(fake_embedder, batch_size=4)
    yield service
    service.shutdown()

@pytest.fixture
def note_repository(test_config):
    """A repository over a fresh SQLite file."""
    repository = NoteRepository(db_url=test_config.get_db_url())
    yield repository
    repository.engine.dispose()

@pytest.fixture
def vector_index(test_config, embedding_service):
    """A sqlite-vec index over a fresh SQLite file."""
    index = VectorIndex(
        embedding_service,
        dimension=TEST_DIM,
        db_url=test_config.get_vector_db_url(),
    )
    yield index
    index.close()

@pytest.fixture
def notebook(note_repository, vector_index, embedding_service):
    """A NotebookService wired to the test stores and the fake embedder."""
    service = NotebookService(
        repository=note_repository,
        vector_index=vector_index,
        embedding_service=embedding_service,
    )
    yield service
