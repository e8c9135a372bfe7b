from pydantic import BaseModel

from shared.models.document import Document


class DocumentListResponse(BaseModel):
    documents: list[Document]
    total: int


class RepairResponse(BaseModel):
    document_id: str
    repaired: bool


class ReconcileResponse(BaseModel):
    repaired: list[str]


class HealthResponse(BaseModel):
    status: str
    version: str
    watcher: bool
