"""
Tests for services/query/QueryService.py
Retrieval, prompt assembly, citations, streaming and the best-effort audit trail.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.models.errors import CompletionError, PersistenceError, ValidationError

POLICY = b"Returns are accepted within 30 days of purchase. Refunds go to the original payment method."


@pytest.fixture
def llm_client():
    client = MagicMock()
    client.do_chat = AsyncMock(return_value="Returns are accepted within 30 days of purchase (policy.txt).")

    async def stream(messages):
        for part in ["Returns are accepted ", "within 30 days ", "(policy.txt)."]:
            yield part

    client.do_chat_stream = MagicMock(side_effect=stream)
    return client


@pytest.fixture
def query_service(helper_config, embed_client, vector_index, llm_client, metadata_store):
    from services.query.QueryService import QueryService

    return QueryService(
        helper_config=helper_config,
        embed_client=embed_client,
        rag_client=vector_index,
        llm_client=llm_client,
        metadata_store=metadata_store,
    )


@pytest.mark.asyncio
class TestQuery:
    """Test the blocking question-answering path."""

    async def test_return_policy_answer_cites_filename(self, ingestion_service, query_service, llm_client, metadata_store):
        await ingestion_service.do_ingest("alice", POLICY, "policy.txt")

        result = await query_service.do_query("alice", "What is the return policy?")

        assert "30 days" in result.answer
        assert result.sources[0].filename == "policy.txt"
        messages = llm_client.do_chat.await_args.args[0]
        assert messages[0]["role"] == "system"
        user_prompt = messages[1]["content"]
        assert user_prompt.startswith("Context from the user's documents:\n\n[Document 1] (policy.txt):\n")
        assert "Returns are accepted within 30 days" in user_prompt
        assert user_prompt.endswith("Question: What is the return policy?\n\nAnswer based only on the context above:")

        history = await metadata_store.do_list_query_history("alice")
        assert history[0].question == "What is the return policy?"
        assert history[0].sources[0].filename == "policy.txt"

    async def test_no_documents_gives_fixed_answer_without_completion(self, query_service, llm_client):
        from services.query.QueryService import NO_CONTEXT_ANSWER

        result = await query_service.do_query("alice", "What is the return policy?")

        assert result.answer == NO_CONTEXT_ANSWER
        assert result.sources == []
        llm_client.do_chat.assert_not_awaited()

    async def test_other_owners_documents_are_never_used(self, ingestion_service, query_service, llm_client):
        from services.query.QueryService import NO_CONTEXT_ANSWER

        await ingestion_service.do_ingest("bob", POLICY, "policy.txt")

        result = await query_service.do_query("alice", "What is the return policy?")
        assert result.answer == NO_CONTEXT_ANSWER

    async def test_top_k_limits_sources(self, ingestion_service, query_service):
        long_policy = b"Returns are accepted within 30 days. " * 100
        document = (await ingestion_service.do_ingest("alice", long_policy, "policy.txt")).document
        assert document.chunk_count > 2

        result = await query_service.do_query("alice", "Returns?", top_k=2)
        assert len(result.sources) == 2

    async def test_question_is_embedded_as_single_item(self, query_service, embed_client):
        await query_service.do_query("alice", "  Where is my order?  ")
        embed_client.do_embed_one.assert_awaited_once_with("Where is my order?")

    @pytest.mark.parametrize("question", ["", "   "])
    async def test_blank_question_rejected(self, query_service, embed_client, question):
        with pytest.raises(ValidationError):
            await query_service.do_query("alice", question)
        embed_client.do_embed_one.assert_not_awaited()

    async def test_invalid_top_k_rejected(self, query_service):
        with pytest.raises(ValidationError):
            await query_service.do_query("alice", "question", top_k=0)

    async def test_completion_failure_propagates(self, ingestion_service, query_service, llm_client):
        await ingestion_service.do_ingest("alice", POLICY, "policy.txt")
        llm_client.do_chat.side_effect = CompletionError("model down")

        with pytest.raises(CompletionError):
            await query_service.do_query("alice", "What is the return policy?")

    async def test_audit_failure_does_not_fail_query(self, ingestion_service, query_service, metadata_store, logger):
        await ingestion_service.do_ingest("alice", POLICY, "policy.txt")
        metadata_store.do_insert_query_record = AsyncMock(side_effect=PersistenceError("db down"))

        result = await query_service.do_query("alice", "What is the return policy?")

        assert "30 days" in result.answer
        logger.warning.assert_called()


class TestContext:
    def test_pages_are_cited(self):
        from services.query.QueryService import build_context
        from shared.clients.rag.models.VectorPoint import SearchHit, VectorPoint

        hits = [
            SearchHit(id="p1", score=0.9, payload=VectorPoint(
                document_id="d1", owner_id="alice", filename="guide.pdf", file_type=".pdf",
                chunk_index=3, text="Chapter two.", page=2,
            )),
            SearchHit(id="p2", score=0.5, payload=VectorPoint(
                document_id="d2", owner_id="alice", filename="notes.md", file_type=".md",
                chunk_index=0, text="Misc.",
            )),
        ]
        assert build_context(hits) == "[Document 1] (guide.pdf, page 2):\nChapter two.\n\n[Document 2] (notes.md):\nMisc."


@pytest.mark.asyncio
class TestQueryStream:
    """Test the streaming path."""

    async def test_deltas_then_one_sources_event(self, ingestion_service, query_service, metadata_store):
        await ingestion_service.do_ingest("alice", POLICY, "policy.txt")

        events = [event async for event in query_service.do_query_stream("alice", "What is the return policy?")]

        assert [e.type for e in events] == ["delta", "delta", "delta", "sources"]
        assert "".join(e.content for e in events[:-1]) == "Returns are accepted within 30 days (policy.txt)."
        assert events[-1].sources[0].filename == "policy.txt"
        history = await metadata_store.do_list_query_history("alice")
        assert history[0].answer == "Returns are accepted within 30 days (policy.txt)."

    async def test_no_context_stream(self, query_service, llm_client):
        from services.query.QueryService import NO_CONTEXT_ANSWER

        events = [event async for event in query_service.do_query_stream("alice", "anything?")]

        assert [e.type for e in events] == ["delta", "sources"]
        assert events[0].content == NO_CONTEXT_ANSWER
        assert events[1].sources == []
        llm_client.do_chat_stream.assert_not_called()

    async def test_closing_early_closes_completion_stream_and_skips_audit(
        self, ingestion_service, query_service, llm_client, metadata_store
    ):
        await ingestion_service.do_ingest("alice", POLICY, "policy.txt")
        closed = {"value": False}

        async def endless(messages):
            try:
                while True:
                    yield "token "
            finally:
                closed["value"] = True

        llm_client.do_chat_stream = MagicMock(side_effect=endless)

        stream = query_service.do_query_stream("alice", "What is the return policy?")
        first = await anext(stream)
        await stream.aclose()

        assert first.type == "delta"
        assert closed["value"] is True
        assert await metadata_store.do_list_query_history("alice") == []
