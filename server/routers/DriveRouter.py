import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from server.core.IngestionStatusService import ChunkAccessDeniedError, ChunkNotFoundError, RetryNotAllowedError
from server.dependencies.auth import verify_api_key
from server.models.requests import RetryRequest, SyncRequest
from server.models.responses import FilesResponse, SyncResponse
from services.drive_sync.SyncService import SyncRateLimitedError
from shared.db.IngestionRepository import FileNotFoundInStoreError
from shared.models.files import ChunkContext, ProgressReport, RetryOutcome
from shared.pipeline.errors import MissingCredentialError

router = APIRouter(prefix="/drive", tags=["drive"])


@router.post("/sync")
async def sync_drive(
    request: Request,
    body: SyncRequest,
    _: None = Depends(verify_api_key),
) -> SyncResponse:
    """Run a discovery pass over the user's drive and enqueue fetch jobs.

    Args:
        request (Request): FastAPI request (provides app.state.sync_service).
        body (SyncRequest): JSON body with user_id and an optional file limit.
        _ (None): Auth dependency result (unused).

    Returns:
        SyncResponse: Found, supported, unsupported and enqueued counts.
    """
    sync_service = request.app.state.sync_service
    try:
        summary = await sync_service.do_sync(body.user_id, limit=body.limit)
    except SyncRateLimitedError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except MissingCredentialError:
        raise HTTPException(status_code=401, detail="Drive account not connected. Please re-authenticate.")
    except httpx.HTTPError as e:
        request.app.state.logging.error("Drive sync for user %s failed: %s", body.user_id, e)
        raise HTTPException(status_code=502, detail="Failed to sync drive files.")
    return SyncResponse(status="Sync completed successfully.", summary=summary)


@router.get("/files")
async def list_files(
    request: Request,
    user_id: str = Query(..., min_length=1),
    _: None = Depends(verify_api_key),
) -> FilesResponse:
    status_service = request.app.state.status_service
    return FilesResponse(files=await status_service.list_files(user_id))


@router.get("/progress")
async def get_progress(
    request: Request,
    user_id: str = Query(..., min_length=1),
    _: None = Depends(verify_api_key),
) -> ProgressReport:
    """Aggregate ingestion totals plus the per-file list, for UI polling."""
    status_service = request.app.state.status_service
    return await status_service.get_progress(user_id)


@router.post("/files/{file_id}/retry")
async def retry_file(
    request: Request,
    file_id: str,
    body: RetryRequest,
    _: None = Depends(verify_api_key),
) -> RetryOutcome:
    """Manually retry a failed file.

    Returns:
        RetryOutcome: Whether the file resumes at fetch or at vectorize.
    """
    status_service = request.app.state.status_service
    try:
        return await status_service.retry_file(body.user_id, file_id)
    except FileNotFoundInStoreError:
        raise HTTPException(status_code=404, detail="File not found")
    except RetryNotAllowedError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/chunks/{chunk_id}")
async def get_chunk_context(
    request: Request,
    chunk_id: str,
    user_id: str = Query(..., min_length=1),
    _: None = Depends(verify_api_key),
) -> ChunkContext:
    status_service = request.app.state.status_service
    try:
        return await status_service.get_chunk_context(user_id, chunk_id)
    except ChunkNotFoundError:
        raise HTTPException(status_code=404, detail="Chunk not found")
    except ChunkAccessDeniedError:
        raise HTTPException(status_code=403, detail="Forbidden")
