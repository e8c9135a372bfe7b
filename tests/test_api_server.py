"""
Tests for server/*
Routes, API-key check, owner header and error-to-status mapping.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from shared.models.document import SyncReport
from shared.models.errors import (
    CompletionError,
    DocumentNotFound,
    EmbeddingError,
    PersistenceError,
    RAGAssistantError,
    StorageUnavailable,
    ValidationError,
    VectorIndexError,
)

API_KEY = "test-key"
POLICY = b"Returns are accepted within 30 days of purchase."


def _headers(owner_id: str = "alice") -> dict:
    return {"X-API-Key": API_KEY, "X-Owner-Id": owner_id}


@pytest.fixture
def llm_client():
    client = MagicMock()
    client.do_chat = AsyncMock(return_value="Within 30 days (policy.txt).")

    async def stream(messages):
        for part in ["Within ", "30 days."]:
            yield part

    client.do_chat_stream = MagicMock(side_effect=stream)
    return client


@pytest.fixture
def app(monkeypatch, helper_config, logger, ingestion_service, embed_client, vector_index, llm_client, metadata_store):
    from server.api_server import app
    from services.query.QueryService import QueryService

    monkeypatch.setenv("APP_API_KEY", API_KEY)
    app.state.logging = logger
    app.state.helper_config = helper_config
    app.state.ingestion_service = ingestion_service
    app.state.query_service = QueryService(
        helper_config=helper_config,
        embed_client=embed_client,
        rag_client=vector_index,
        llm_client=llm_client,
        metadata_store=metadata_store,
    )
    app.state.watcher = None
    return app


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


async def _upload(client, content: bytes = POLICY, filename: str = "policy.txt", owner_id: str = "alice"):
    return await client.post("/documents", headers=_headers(owner_id), files={"file": (filename, content, "text/plain")})


class TestErrorMapping:
    @pytest.mark.parametrize("error,status", [
        (ValidationError("x"), 400),
        (DocumentNotFound("x"), 404),
        (EmbeddingError("x"), 502),
        (CompletionError("x"), 502),
        (VectorIndexError("x"), 502),
        (StorageUnavailable("x"), 503),
        (PersistenceError("x"), 500),
        (RAGAssistantError("x"), 500),
    ])
    def test_status_codes(self, error, status):
        from server.api_server import status_code_for

        assert status_code_for(error) == status


@pytest.mark.asyncio
class TestAuth:
    async def test_wrong_api_key_is_rejected(self, client):
        response = await client.get("/documents", headers={"X-API-Key": "wrong", "X-Owner-Id": "alice"})
        assert response.status_code == 401

    async def test_missing_api_key_is_rejected(self, client):
        response = await client.get("/documents", headers={"X-Owner-Id": "alice"})
        assert response.status_code == 422

    async def test_blank_owner_is_rejected(self, client):
        response = await client.get("/documents", headers=_headers(owner_id=" "))
        assert response.status_code == 400

    @pytest.mark.parametrize("owner_id", ["..", "x/../bob", "a\\b"])
    async def test_owner_with_path_parts_is_rejected(self, client, owner_id):
        response = await _upload(client, owner_id=owner_id)
        assert response.status_code == 400

    async def test_healthz_needs_no_key(self, client):
        response = await client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


@pytest.mark.asyncio
class TestDocumentRoutes:
    async def test_upload_and_reupload(self, client):
        first = await _upload(client)
        second = await _upload(client)

        assert first.status_code == 201
        assert first.json()["duplicate"] is False
        assert second.json()["duplicate"] is True
        assert second.json()["document"]["id"] == first.json()["document"]["id"]

    async def test_upload_unsupported_type(self, client):
        response = await _upload(client, content=b"MZ", filename="setup.exe")
        assert response.status_code == 400
        assert "Unsupported" in response.json()["detail"]

    async def test_list_get_download_delete(self, client):
        document_id = (await _upload(client)).json()["document"]["id"]

        listing = await client.get("/documents", headers=_headers())
        assert listing.json()["total"] == 1

        assert (await client.get(f"/documents/{document_id}", headers=_headers())).json()["filename"] == "policy.txt"

        content = await client.get(f"/documents/{document_id}/content", headers=_headers())
        assert content.content == POLICY
        assert content.headers["content-type"].startswith("text/plain")

        assert (await client.delete(f"/documents/{document_id}", headers=_headers())).status_code == 204
        assert (await client.get(f"/documents/{document_id}", headers=_headers())).status_code == 404

    async def test_documents_are_owner_scoped(self, client):
        document_id = (await _upload(client, owner_id="alice")).json()["document"]["id"]

        assert (await client.get(f"/documents/{document_id}", headers=_headers("bob"))).status_code == 404
        assert (await client.delete(f"/documents/{document_id}", headers=_headers("bob"))).status_code == 404

    async def test_repair_and_reconcile(self, client, vector_index):
        document_id = (await _upload(client)).json()["document"]["id"]

        intact = await client.post(f"/documents/{document_id}/repair", headers=_headers())
        assert intact.json() == {"document_id": document_id, "repaired": False}

        await vector_index.do_delete_by_document("alice", document_id)
        reconcile = await client.post("/documents/reconcile", headers=_headers())
        assert reconcile.json() == {"repaired": [document_id]}


@pytest.mark.asyncio
class TestQueryRoutes:
    async def test_query(self, client):
        await _upload(client)

        response = await client.post("/query", headers=_headers(), json={"question": "What is the return policy?"})

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "Within 30 days (policy.txt)."
        assert body["sources"][0]["filename"] == "policy.txt"

    async def test_blank_question_is_bad_request(self, client):
        response = await client.post("/query", headers=_headers(), json={"question": "   "})
        assert response.status_code == 400

    async def test_embedding_outage_is_bad_gateway(self, client, embed_client):
        embed_client.do_embed_one.side_effect = EmbeddingError("model down")
        response = await client.post("/query", headers=_headers(), json={"question": "anything"})
        assert response.status_code == 502

    async def test_stream(self, client):
        await _upload(client)

        response = await client.post("/query/stream", headers=_headers(), json={"question": "Return policy?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [block for block in response.text.split("\n\n") if block]
        assert [block.split("\n")[0] for block in events] == ["event: delta", "event: delta", "event: sources"]

    async def test_history(self, client):
        await _upload(client)
        await client.post("/query", headers=_headers(), json={"question": "What is the return policy?"})

        response = await client.get("/query/history", headers=_headers())
        assert [record["question"] for record in response.json()] == ["What is the return policy?"]


@pytest.mark.asyncio
class TestKnowledgeBaseRoutes:
    async def test_sync_without_watcher_conflicts(self, client):
        response = await client.post("/knowledge-base/sync", headers={"X-API-Key": API_KEY})
        assert response.status_code == 409

    async def test_sync_returns_report(self, client, app):
        app.state.watcher = MagicMock()
        app.state.watcher.do_sync = AsyncMock(return_value=SyncReport(indexed=2, skipped=1, failed=0))

        response = await client.post("/knowledge-base/sync", headers={"X-API-Key": API_KEY})
        assert response.json() == {"indexed": 2, "skipped": 1, "failed": 0}
