"""
Pytest configuration for the rag_assistant test suite.

Provides:
- an isolated environment (ROOT_DIR in a temp dir, no stray engine settings)
- a HelperConfig with a mock logger
- in-memory stand-ins for the vector index and the embedding model
- real local storage and a file-backed SQLite metadata store
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.clients.rag.models.VectorPoint import SearchHit, VectorRecord
from shared.helper.HelperConfig import HelperConfig

_ENV_PREFIXES = ("EMBED_", "LLM_", "RAG_", "STORAGE_", "INGEST_", "CHUNK_", "WATCHER_", "QUERY_", "KNOWLEDGE_BASE_")
EMBED_DIMS = 4


class InMemoryVectorIndex:
    """Dict-backed vector index with per-owner collections."""

    def __init__(self):
        self.collections: dict[str, dict[str, VectorRecord]] = {}
        self.upsert_calls = 0
        self.upsert_error: Exception | None = None
        # records silently dropped from the next upsert, to simulate partial writes
        self.drop_next_upsert = 0

    def get_collection_name(self, owner_id: str) -> str:
        return f"documents_{owner_id}"

    async def do_ensure_collection(self, owner_id: str, vector_size: int) -> None:
        self.collections.setdefault(owner_id, {})

    async def do_upsert_points(self, owner_id: str, records: list[VectorRecord]) -> None:
        self.upsert_calls += 1
        if self.upsert_error is not None:
            raise self.upsert_error
        collection = self.collections.setdefault(owner_id, {})
        keep = records[self.drop_next_upsert:]
        self.drop_next_upsert = 0
        for record in keep:
            collection[record.id] = record

    async def do_search(self, owner_id: str, vector: list[float], limit: int) -> list[SearchHit]:
        collection = self.collections.get(owner_id, {})
        hits = [
            SearchHit(id=record.id, score=sum(a * b for a, b in zip(vector, record.vector)), payload=record.payload)
            for record in collection.values()
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def do_delete_by_document(self, owner_id: str, document_id: str) -> None:
        collection = self.collections.get(owner_id, {})
        for point_id in [pid for pid, r in collection.items() if r.payload.document_id == document_id]:
            del collection[point_id]

    async def do_count_by_document(self, owner_id: str, document_id: str) -> int:
        collection = self.collections.get(owner_id, {})
        return sum(1 for r in collection.values() if r.payload.document_id == document_id)


def fake_vector(text: str) -> list[float]:
    """Deterministic toy embedding."""
    return [1.0, float(len(text) % 7), float(text.count("e")), 0.5]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    import os

    for key in list(os.environ):
        if key.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ROOT_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def logger():
    return MagicMock()


@pytest.fixture
def helper_config(logger):
    return HelperConfig(logger=logger)


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def embed_client():
    client = MagicMock()
    client.get_dimensions.return_value = EMBED_DIMS
    client.do_embed = AsyncMock(side_effect=lambda texts: [fake_vector(t) for t in texts])
    client.do_embed_one = AsyncMock(side_effect=fake_vector)
    return client


@pytest.fixture
async def storage(helper_config, monkeypatch, tmp_path):
    from shared.clients.storage.local.StorageClientLocal import StorageClientLocal

    monkeypatch.setenv("STORAGE_LOCAL_PATH", str(tmp_path / "uploads"))
    client = StorageClientLocal(helper_config=helper_config)
    await client.boot()
    return client


@pytest.fixture
async def metadata_store(helper_config, tmp_path):
    from shared.store.MetadataStore import MetadataStore

    store = MetadataStore(helper_config=helper_config, database_url=f"sqlite:///{tmp_path / 'data' / 'rag.db'}")
    await store.boot()
    yield store
    await store.close()


@pytest.fixture
def ingestion_service(helper_config, embed_client, vector_index, storage, metadata_store):
    from services.ingestion.IngestionService import IngestionService

    return IngestionService(
        helper_config=helper_config,
        embed_client=embed_client,
        rag_client=vector_index,
        storage=storage,
        metadata_store=metadata_store,
    )
