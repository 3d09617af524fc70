from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import DocumentEventRequest
from server.models.responses import AcceptedResponse, DeletedResponse

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("/saved")
async def document_saved(
    request: Request,
    body: DocumentEventRequest,
    _: None = Depends(verify_api_key),
) -> AcceptedResponse:
    """Accept a save event from the host and schedule a debounced re-index.

    Args:
        request (Request): FastAPI request (provides app.state.rag_service).
        body (DocumentEventRequest): JSON body containing the doc_id.
        _ (None): Auth dependency result (unused).

    Returns:
        AcceptedResponse: `scheduled` is False when semantic indexing is disabled.
    """
    rag_service = request.app.state.rag_service
    scheduled = await rag_service.do_notify_document_saved(body.doc_id)
    return AcceptedResponse(doc_id=body.doc_id, scheduled=scheduled)


@router.post("/deleted")
async def document_deleted(
    request: Request,
    body: DocumentEventRequest,
    _: None = Depends(verify_api_key),
) -> DeletedResponse:
    """Remove a deleted document from the index right away."""
    rag_service = request.app.state.rag_service
    result = await rag_service.do_notify_document_deleted(body.doc_id)
    return DeletedResponse(
        status="failed" if result.error else "deleted",
        doc_id=body.doc_id,
        removed_chunks=result.removed_chunks,
        error=result.error,
    )
