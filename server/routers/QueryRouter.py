import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from server.dependencies.auth import get_owner_id, verify_api_key
from server.models.requests import QueryRequest
from shared.models.errors import RAGAssistantError
from shared.models.query import QueryEvent, QueryRecord, QueryResult

router = APIRouter(prefix="/query", tags=["query"], dependencies=[Depends(verify_api_key)])


def _format_sse(event: QueryEvent) -> str:
    return f"event: {event.type}\ndata: {event.model_dump_json(exclude_none=True)}\n\n"


@router.post("")
async def query_documents(
    request: Request,
    body: QueryRequest,
    owner_id: str = Depends(get_owner_id),
) -> QueryResult:
    """Answer a question from the owner's documents.

    Args:
        request (Request): FastAPI request (provides app.state.query_service).
        body (QueryRequest): JSON body with the question and optional top_k.
        owner_id (str): Acting owner from the X-Owner-Id header.

    Returns:
        QueryResult: Answer text and cited sources.
    """
    query_service = request.app.state.query_service
    return await query_service.do_query(owner_id, body.question, body.top_k)


@router.post("/stream")
async def query_documents_stream(
    request: Request,
    body: QueryRequest,
    owner_id: str = Depends(get_owner_id),
) -> StreamingResponse:
    """Server-sent events variant of POST /query.

    Emits "delta" events with answer fragments, then one "sources" event.
    """
    query_service = request.app.state.query_service
    events = query_service.do_query_stream(owner_id, body.question, body.top_k)
    # pull the first event eagerly so validation and retrieval errors become HTTP errors
    first_event = await anext(events)
    logging = request.app.state.logging

    async def event_source() -> AsyncIterator[str]:
        try:
            yield _format_sse(first_event)
            async for event in events:
                yield _format_sse(event)
        except RAGAssistantError as exc:
            logging.error("Streaming answer for owner '%s' aborted: %s", owner_id, exc)
            yield f"event: error\ndata: {json.dumps({'detail': str(exc)})}\n\n"
        finally:
            await events.aclose()

    return StreamingResponse(event_source(), media_type="text/event-stream")


@router.get("/history")
async def query_history(
    request: Request,
    limit: int = 50,
    owner_id: str = Depends(get_owner_id),
) -> list[QueryRecord]:
    return await request.app.state.query_service.do_history(owner_id, limit=max(1, min(limit, 200)))
