"""Vector record models: the payload stored alongside each chunk vector and search hits."""

import uuid

from pydantic import BaseModel, ConfigDict, Field

# Fixed namespace for deterministic UUIDv5 point IDs.
# Changing this value would invalidate all existing point IDs in the index.
POINT_ID_NAMESPACE = uuid.UUID("3b8f5a9e-7c41-4d2a-9e06-1f5c2d7b8a43")


def make_point_id(document_id: str, chunk_index: int) -> str:
    """Build the stable point ID of a chunk.

    The same document chunk always maps to the same ID, so re-upserting
    overwrites instead of duplicating.

    Args:
        document_id (str): ID of the owning document.
        chunk_index (int): Zero-based chunk position within the document.

    Returns:
        str: UUID string usable as a Qdrant point ID.
    """
    return str(uuid.uuid5(POINT_ID_NAMESPACE, f"{document_id}:{chunk_index}"))


class VectorPoint(BaseModel):
    """Payload stored alongside each chunk vector.

    Validated when a point is built and again when it is read back from a
    search, so a malformed record fails loudly instead of producing a citation
    with missing fields.

    Attributes:
        document_id:  ID of the source document.
        owner_id:     Owner of the document; equal to the collection owner.
        filename:     Original filename, used for citations.
        file_type:    Lower-case extension including the dot (e.g. ".pdf").
        chunk_index:  Zero-based position of this chunk within the document.
        text:         Raw text of the chunk.
        page:         1-based page number for paged formats (PDF), else None.
        offset:       Character offset of the chunk within its page or file.
    """

    model_config = ConfigDict(extra="ignore")

    document_id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    filename: str
    file_type: str
    chunk_index: int = Field(ge=0)
    text: str
    page: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)


class VectorRecord(BaseModel):
    """A point as written to the vector index."""

    id: str
    vector: list[float]
    payload: VectorPoint

    def to_point(self) -> dict:
        return {"id": self.id, "vector": self.vector, "payload": self.payload.model_dump()}


class SearchHit(BaseModel):
    """A single similarity search match with its full payload."""

    id: str
    score: float
    payload: VectorPoint
