"""Pydantic models for questions, answers and the query audit trail."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict


class Source(BaseModel):
    """Citation of one retrieved chunk, taken straight from its vector payload."""

    document_id: str
    filename: str
    chunk_index: int
    page: int | None = None
    offset: int | None = None
    score: float = 0.0


class QueryResult(BaseModel):
    """Answer returned to the caller."""

    answer: str
    sources: list[Source]


class QueryEvent(BaseModel):
    """One event of a streamed answer.

    A stream is zero or more "delta" events followed by exactly one "sources" event.
    """

    type: Literal["delta", "sources"]
    content: str | None = None
    sources: list[Source] | None = None


class QueryRecord(BaseModel):
    """Audit trail entry of an answered question. Append-only."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    question: str
    answer: str
    sources: list[Source]
    created_at: datetime
