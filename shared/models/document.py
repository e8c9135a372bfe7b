"""Pydantic models for documents and ingestion results.

Hierarchy:
  Document      : metadata of one uploaded file, as stored in the metadata store.
  IngestResult  : outcome of an upload: the document plus a duplicate flag.
  SyncReport    : counters of a knowledge-base resync.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Document(BaseModel):
    """One uploaded file.

    (owner_id, content_hash) is unique: identical bytes uploaded twice by the
    same owner resolve to the same Document.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    filename: str
    file_type: str
    file_size: int
    content_hash: str
    storage_key: str
    chunk_count: int
    created_at: datetime


class IngestResult(BaseModel):
    """Outcome of an ingestion. duplicate=True means nothing was processed."""

    document: Document
    duplicate: bool = False


class SyncReport(BaseModel):
    """Counters of a full knowledge-base resync."""

    indexed: int = 0
    skipped: int = 0
    failed: int = 0
