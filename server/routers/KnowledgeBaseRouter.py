from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import verify_api_key
from shared.models.document import SyncReport

router = APIRouter(prefix="/knowledge-base", tags=["knowledge-base"], dependencies=[Depends(verify_api_key)])


@router.post("/sync")
async def sync_knowledge_base(request: Request) -> SyncReport:
    """Re-scan the watched knowledge-base directory and index new or changed files.

    Raises:
        HTTPException: 409 if the watcher is disabled.
    """
    watcher = request.app.state.watcher
    if watcher is None:
        raise HTTPException(status_code=409, detail="Knowledge base watcher is disabled (WATCHER_ENABLED)")
    return await watcher.do_sync()
