from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import (
    ChunkSearchRequest,
    LexicalSearchRequest,
    SemanticSearchRequest,
    SimilarDocumentsRequest,
)
from shared.models.search import ChunkSearchResponse, LexicalSearchResponse, SemanticSearchResponse

router = APIRouter(prefix="/query", tags=["query"])


@router.post("")
async def query_documents(
    request: Request,
    body: SemanticSearchRequest,
    _: None = Depends(verify_api_key),
) -> SemanticSearchResponse:
    """Semantic document search.

    Args:
        request (Request): FastAPI request (provides app.state.rag_service).
        body (SemanticSearchRequest): JSON body with query, limit and an optional doc id to exclude.
        _ (None): Auth dependency result (unused).

    Returns:
        SemanticSearchResponse: Documents ranked by their best chunk, `error` set on failure.
    """
    rag_service = request.app.state.rag_service
    return await rag_service.do_semantic_search_documents(body.query, limit=body.limit, exclude_doc_id=body.exclude_doc_id)


@router.post("/chunks")
async def query_chunks(
    request: Request,
    body: ChunkSearchRequest,
    _: None = Depends(verify_api_key),
) -> ChunkSearchResponse:
    """Nearest chunks without grouping by document."""
    rag_service = request.app.state.rag_service
    return await rag_service.do_search_chunks(body.query, limit=body.limit)


@router.post("/similar")
async def query_similar(
    request: Request,
    body: SimilarDocumentsRequest,
    _: None = Depends(verify_api_key),
) -> SemanticSearchResponse:
    """Documents related to a given document."""
    rag_service = request.app.state.rag_service
    return await rag_service.do_search_similar_documents(body.doc_id, limit=body.limit)


@router.post("/lexical")
async def query_lexical(
    request: Request,
    body: LexicalSearchRequest,
    _: None = Depends(verify_api_key),
) -> LexicalSearchResponse:
    """Substring search over titles, tags and content."""
    rag_service = request.app.state.rag_service
    return rag_service.search_documents(body.query)
