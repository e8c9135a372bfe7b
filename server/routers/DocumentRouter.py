import mimetypes

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile, status

from server.dependencies.auth import get_owner_id, verify_api_key
from server.models.responses import DocumentListResponse, ReconcileResponse, RepairResponse
from shared.models.document import Document, IngestResult

router = APIRouter(prefix="/documents", tags=["documents"], dependencies=[Depends(verify_api_key)])


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
) -> IngestResult:
    """Upload and index a document.

    Re-uploading identical content returns the existing document with duplicate=true.

    Args:
        request (Request): FastAPI request (provides app.state.ingestion_service).
        file (UploadFile): Multipart file field.
        owner_id (str): Acting owner from the X-Owner-Id header.

    Returns:
        IngestResult: The document and whether it was a duplicate.
    """
    ingestion_service = request.app.state.ingestion_service
    # one byte over the limit is enough to reject the upload
    data = await file.read(ingestion_service.max_file_size + 1)
    return await ingestion_service.do_ingest(owner_id, data, file.filename or "")


@router.get("")
async def list_documents(request: Request, owner_id: str = Depends(get_owner_id)) -> DocumentListResponse:
    documents = await request.app.state.ingestion_service.do_list(owner_id)
    return DocumentListResponse(documents=documents, total=len(documents))


@router.post("/reconcile")
async def reconcile_documents(request: Request, owner_id: str = Depends(get_owner_id)) -> ReconcileResponse:
    """Re-index every document of the owner whose vectors are incomplete."""
    repaired = await request.app.state.ingestion_service.do_reconcile(owner_id)
    return ReconcileResponse(repaired=repaired)


@router.get("/{document_id}")
async def get_document(request: Request, document_id: str, owner_id: str = Depends(get_owner_id)) -> Document:
    return await request.app.state.ingestion_service.do_get(owner_id, document_id)


@router.get("/{document_id}/content")
async def download_document(request: Request, document_id: str, owner_id: str = Depends(get_owner_id)) -> Response:
    """Return the original uploaded bytes."""
    document, data = await request.app.state.ingestion_service.do_download(owner_id, document_id)
    media_type = mimetypes.guess_type(document.filename)[0] or "application/octet-stream"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(request: Request, document_id: str, owner_id: str = Depends(get_owner_id)) -> Response:
    await request.app.state.ingestion_service.do_delete(owner_id, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{document_id}/repair")
async def repair_document(request: Request, document_id: str, owner_id: str = Depends(get_owner_id)) -> RepairResponse:
    """Re-index a single document if its indexed chunk count is off."""
    repaired = await request.app.state.ingestion_service.do_repair(owner_id, document_id)
    return RepairResponse(document_id=document_id, repaired=repaired)
