"""
Shared fixtures: a temporary SQLite file and an in-memory vector index per test.
"""

import pytest

from cardstore.core.errors import VectorIndexError
from cardstore.core.services import build_services
from cardstore.vector.adapter import EmbeddingVectorIndex
from cardstore.vector.embeddings import DeterministicHashEmbedding
from cardstore.vector.index import SimpleInMemoryVectorStore


class RecordingIndex(EmbeddingVectorIndex):
    """In-memory index that records calls and can be told to fail."""

    def __init__(self):
        super().__init__(SimpleInMemoryVectorStore(), DeterministicHashEmbedding(dimension=256))
        self.calls = []
        self.fail_add = 0
        self.fail_remove = 0

    def add(self, documents):
        self.calls.append(("add", list(documents)))
        if self.fail_add:
            self.fail_add -= 1
            raise VectorIndexError("index unavailable")
        super().add(documents)

    def remove_where(self, where):
        self.calls.append(("remove_where", dict(where)))
        if self.fail_remove:
            self.fail_remove -= 1
            raise VectorIndexError("index unavailable")
        return super().remove_where(where)

    def calls_named(self, name):
        return [args for call, args in self.calls if call == name]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cards.db")


@pytest.fixture
def index():
    return RecordingIndex()


@pytest.fixture
def services(db_path, index):
    services = build_services(db_path=db_path, vector_index=index, retry_attempts=2, retry_delay=0)
    yield services
    services.close()


@pytest.fixture
def dao(services):
    return services.dao


@pytest.fixture
def coordinator(services):
    return services.coordinator
