import httpx
from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import RetrieveRequest
from server.models.responses import RetrieveResponse

router = APIRouter(prefix="/retrieve", tags=["retrieve"])


@router.post("")
async def retrieve(
    request: Request,
    body: RetrieveRequest,
    _: None = Depends(verify_api_key),
) -> RetrieveResponse:
    """Retrieve cited context from the user's indexed drive files.

    Args:
        request (Request): FastAPI request (provides app.state.retrieval_service).
        body (RetrieveRequest): JSON body with query, user_id and top_k.
        _ (None): Auth dependency result (unused).

    Returns:
        RetrieveResponse: Formatted context block and one citation per file.

    Raises:
        HTTPException: 502 if the embedding provider or vector index fails.
    """
    retrieval_service = request.app.state.retrieval_service
    try:
        result = await retrieval_service.retrieve(body.query, body.user_id, top_k=body.top_k)
    except httpx.HTTPError as e:
        request.app.state.logging.error("Retrieval for user %s failed: %s", body.user_id, e)
        raise HTTPException(status_code=502, detail="Failed to retrieve drive context.")
    return RetrieveResponse(formatted_text=result.formatted_text, citations=result.citations)
