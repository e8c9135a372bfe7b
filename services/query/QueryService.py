"""Retrieval-augmented question answering over an owner's documents."""

import uuid
from contextlib import aclosing
from datetime import datetime, timezone
from typing import AsyncIterator

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import SearchHit
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import ValidationError
from shared.models.query import QueryEvent, QueryRecord, QueryResult, Source
from shared.store.MetadataStore import MetadataStore

DEFAULT_TOP_K = 5

NO_CONTEXT_ANSWER = "I couldn't find any relevant information in your documents to answer this question."

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions using only the documents the user has uploaded. "
    "Answer strictly from the provided context and do not use outside knowledge. "
    "Cite the documents you used by their filename. "
    "If the context does not contain the information needed to answer, say so clearly."
)

USER_PROMPT_TEMPLATE = (
    "Context from the user's documents:\n\n{context}\n\n"
    "Question: {question}\n\n"
    "Answer based only on the context above:"
)


def build_context(hits: list[SearchHit]) -> str:
    """Render retrieved chunks in rank order, each tagged with its document number and origin."""
    blocks: list[str] = []
    for i, hit in enumerate(hits, start=1):
        payload = hit.payload
        origin = payload.filename if payload.page is None else f"{payload.filename}, page {payload.page}"
        blocks.append(f"[Document {i}] ({origin}):\n{payload.text}")
    return "\n\n".join(blocks)


def build_messages(question: str, hits: list[SearchHit]) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": USER_PROMPT_TEMPLATE.format(context=build_context(hits), question=question)},
    ]


def hits_to_sources(hits: list[SearchHit]) -> list[Source]:
    return [
        Source(
            document_id=hit.payload.document_id,
            filename=hit.payload.filename,
            chunk_index=hit.payload.chunk_index,
            page=hit.payload.page,
            offset=hit.payload.offset,
            score=hit.score,
        )
        for hit in hits
    ]


class QueryService:
    """Handles questions: embed -> search owner collection -> complete -> cite."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        llm_client: LLMClientInterface,
        metadata_store: MetadataStore,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._llm_client = llm_client
        self._store = metadata_store
        self.default_top_k = int(helper_config.get_number_val("QUERY_TOP_K", default=DEFAULT_TOP_K))

    ##########################################
    ############### RETRIEVAL ################
    ##########################################

    async def _retrieve(self, owner_id: str, question: str, top_k: int | None) -> tuple[str, list[SearchHit]]:
        """Validate the question and return it stripped, together with the top-K hits."""
        if not owner_id or not str(owner_id).strip():
            raise ValidationError("Owner id is required.")
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question must not be empty.")
        limit = self.default_top_k if top_k is None else top_k
        if limit < 1:
            raise ValidationError("top_k must be at least 1.")

        query_vector = await self._embed_client.do_embed_one(question)
        hits = await self._rag_client.do_search(owner_id, query_vector, limit)
        self.logging.debug("Retrieved %d chunk(s) for owner '%s'.", len(hits), owner_id)
        return question, hits

    ##########################################
    ################# QUERY ##################
    ##########################################

    async def do_query(self, owner_id: str, question: str, top_k: int | None = None) -> QueryResult:
        """Answer a question from the owner's documents.

        Args:
            owner_id (str): Owner whose collection is searched. No other collection is read.
            question (str): The natural-language question.
            top_k (int | None): Number of chunks to retrieve. Defaults to QUERY_TOP_K.

        Returns:
            QueryResult: The model's answer and the chunks it was given, in rank order.

        Raises:
            ValidationError: On an empty question or invalid top_k.
            EmbeddingError, CompletionError: If the remote models fail.
            VectorIndexError, StorageUnavailable: If the vector index fails.
        """
        question, hits = await self._retrieve(owner_id, question, top_k)
        if not hits:
            self.logging.info("No relevant chunks for owner '%s'. Returning no-context answer.", owner_id)
            result = QueryResult(answer=NO_CONTEXT_ANSWER, sources=[])
        else:
            try:
                answer = await self._llm_client.do_chat(build_messages(question, hits))
            except Exception as exc:
                self.logging.error("Completion failed for owner '%s': %s", owner_id, exc)
                raise
            result = QueryResult(answer=answer, sources=hits_to_sources(hits))

        await self._record(owner_id, question, result)
        return result

    async def do_query_stream(self, owner_id: str, question: str, top_k: int | None = None) -> AsyncIterator[QueryEvent]:
        """Streaming variant of do_query().

        Yields "delta" events as the answer is generated, then exactly one
        "sources" event. Closing the generator closes the in-flight completion
        response. The query is recorded only once the stream has completed.
        """
        question, hits = await self._retrieve(owner_id, question, top_k)
        sources = hits_to_sources(hits)

        if not hits:
            yield QueryEvent(type="delta", content=NO_CONTEXT_ANSWER)
            yield QueryEvent(type="sources", sources=[])
            await self._record(owner_id, question, QueryResult(answer=NO_CONTEXT_ANSWER, sources=[]))
            return

        parts: list[str] = []
        try:
            async with aclosing(self._llm_client.do_chat_stream(build_messages(question, hits))) as stream:
                async for delta in stream:
                    parts.append(delta)
                    yield QueryEvent(type="delta", content=delta)
        except Exception as exc:
            self.logging.error("Streaming completion failed for owner '%s': %s", owner_id, exc)
            raise

        yield QueryEvent(type="sources", sources=sources)
        await self._record(owner_id, question, QueryResult(answer="".join(parts), sources=sources))

    async def do_history(self, owner_id: str, limit: int = 50) -> list[QueryRecord]:
        """Most recent answered questions of the owner, newest first."""
        return await self._store.do_list_query_history(owner_id, limit=limit)

    ##########################################
    ################# AUDIT ##################
    ##########################################

    async def _record(self, owner_id: str, question: str, result: QueryResult) -> None:
        """Append the query to the history. A failure never fails the query."""
        record = QueryRecord(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            question=question,
            answer=result.answer,
            sources=result.sources,
            created_at=datetime.now(timezone.utc),
        )
        try:
            await self._store.do_insert_query_record(record)
        except Exception as exc:
            self.logging.warning("Could not record query for owner '%s': %s", owner_id, exc)
