"""
Tests for shared/store/MetadataStore.py
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from shared.models.document import Document
from shared.models.errors import DuplicateContentError, PersistenceError
from shared.models.query import QueryRecord, Source


def _document(owner_id: str = "alice", content_hash: str = "h1", **overrides) -> Document:
    values = dict(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        filename="notes.txt",
        file_type=".txt",
        file_size=12,
        content_hash=content_hash,
        storage_key=f"{owner_id}/{content_hash}/notes.txt",
        chunk_count=2,
        created_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return Document(**values)


@pytest.mark.asyncio
class TestDocuments:
    """Test the documents table."""

    async def test_insert_and_lookup(self, metadata_store):
        document = await metadata_store.do_insert_document(_document())

        assert (await metadata_store.do_get_document("alice", document.id)).id == document.id
        assert (await metadata_store.do_get_document_by_hash("alice", "h1")).id == document.id

    async def test_same_hash_same_owner_is_rejected(self, metadata_store):
        await metadata_store.do_insert_document(_document())
        with pytest.raises(DuplicateContentError) as exc_info:
            await metadata_store.do_insert_document(_document())
        assert exc_info.value.owner_id == "alice"
        assert exc_info.value.content_hash == "h1"

    async def test_same_hash_different_owner_is_allowed(self, metadata_store):
        await metadata_store.do_insert_document(_document(owner_id="alice"))
        await metadata_store.do_insert_document(_document(owner_id="bob"))
        assert len(await metadata_store.do_list_documents("bob")) == 1

    async def test_documents_are_owner_scoped(self, metadata_store):
        document = await metadata_store.do_insert_document(_document(owner_id="alice"))
        assert await metadata_store.do_get_document("bob", document.id) is None
        assert await metadata_store.do_delete_document("bob", document.id) is False
        assert await metadata_store.do_get_document("alice", document.id) is not None

    async def test_list_newest_first(self, metadata_store):
        now = datetime.now(timezone.utc)
        older = await metadata_store.do_insert_document(_document(content_hash="a", created_at=now - timedelta(days=1)))
        newer = await metadata_store.do_insert_document(_document(content_hash="b", created_at=now))
        assert [d.id for d in await metadata_store.do_list_documents("alice")] == [newer.id, older.id]

    async def test_delete(self, metadata_store):
        document = await metadata_store.do_insert_document(_document())
        assert await metadata_store.do_delete_document("alice", document.id) is True
        assert await metadata_store.do_get_document("alice", document.id) is None

    async def test_update_chunk_count(self, metadata_store):
        document = await metadata_store.do_insert_document(_document())
        await metadata_store.do_update_chunk_count("alice", document.id, 9)
        assert (await metadata_store.do_get_document("alice", document.id)).chunk_count == 9


@pytest.mark.asyncio
class TestQueryHistory:
    async def test_insert_and_list(self, metadata_store):
        source = Source(document_id="d1", filename="policy.txt", chunk_index=0, score=0.9)
        for i in range(3):
            await metadata_store.do_insert_query_record(QueryRecord(
                id=str(uuid.uuid4()),
                owner_id="alice",
                question=f"q{i}",
                answer=f"a{i}",
                sources=[source],
                created_at=datetime.now(timezone.utc) + timedelta(seconds=i),
            ))

        history = await metadata_store.do_list_query_history("alice", limit=2)

        assert [record.question for record in history] == ["q2", "q1"]
        assert history[0].sources[0].filename == "policy.txt"
        assert await metadata_store.do_list_query_history("bob") == []


@pytest.mark.asyncio
class TestStoreFailures:
    async def test_database_errors_become_persistence_errors(self, helper_config, tmp_path):
        from shared.store.MetadataStore import MetadataStore

        store = MetadataStore(helper_config=helper_config, database_url=f"sqlite:///{tmp_path / 'db' / 'rag.db'}")
        # tables were never created
        with pytest.raises(PersistenceError):
            await store.do_list_documents("alice")
        await store.close()

    async def test_file_database_directory_is_created(self, helper_config, tmp_path):
        from shared.store.MetadataStore import MetadataStore

        store = MetadataStore(helper_config=helper_config, database_url=f"sqlite:///{tmp_path / 'nested' / 'rag.db'}")
        await store.boot()
        await store.do_insert_document(_document())
        assert (tmp_path / "nested" / "rag.db").exists()
        await store.close()


@pytest.mark.asyncio
class TestInMemoryDatabase:
    async def test_tables_visible_across_worker_threads(self, helper_config):
        from shared.store.MetadataStore import MetadataStore

        store = MetadataStore(helper_config=helper_config, database_url="sqlite://")
        await store.boot()
        document = await store.do_insert_document(_document())
        assert (await store.do_get_document("alice", document.id)).id == document.id
        await store.close()
