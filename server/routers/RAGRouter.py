from fastapi import APIRouter, Depends, HTTPException, Query, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import IndexBookmarkRequest, IndexFileRequest, IndexFolderRequest
from server.models.responses import BlockRemovedResponse, RebuildStartedResponse
from services.rag_graph.GraphService import DEFAULT_GRAPH_THRESHOLD
from shared.clients.docs.models.Document import ExternalBlockDescriptor
from shared.models.config import EmbeddingConfig
from shared.models.errors import RebuildInProgressError
from shared.models.external import BlockIndexState, ExternalBlockContent, FolderIndexResult, IndexResult
from shared.models.graph import GraphData
from shared.models.status import (
    ConfigSaveResult,
    ModelListResult,
    RAGStatus,
    RebuildResult,
    TestConnectionResult,
)

router = APIRouter(prefix="/rag", tags=["rag"], dependencies=[Depends(verify_api_key)])


##########################################
################ CONFIG ##################
##########################################

@router.get("/config")
async def get_config(request: Request) -> EmbeddingConfig:
    return request.app.state.rag_service.get_config()


@router.put("/config")
async def save_config(request: Request, body: EmbeddingConfig) -> ConfigSaveResult:
    """Save the embedding settings. A model change clears the index (`index_reset`)."""
    return await request.app.state.rag_service.do_save_config(body)


@router.post("/config/test")
async def test_connection(request: Request, body: EmbeddingConfig | None = None) -> TestConnectionResult:
    """Probe the given (or the active) provider settings without saving them."""
    return await request.app.state.rag_service.do_test_connection(body)


@router.post("/config/models")
async def list_models(request: Request, body: EmbeddingConfig | None = None) -> ModelListResult:
    return await request.app.state.rag_service.do_list_models(body)


##########################################
################ STATUS ##################
##########################################

@router.get("/status")
async def get_status(request: Request) -> RAGStatus:
    return await request.app.state.rag_service.do_get_status()


@router.post("/rebuild", status_code=202)
async def start_rebuild(request: Request) -> RebuildStartedResponse:
    """Start a full rebuild in the background. Progress is streamed as `rag:reindex-progress` events.

    Raises:
        HTTPException: 409 if a rebuild is already running.
    """
    rag_service = request.app.state.rag_service
    try:
        rag_service.start_rebuild()
    except RebuildInProgressError as exc:
        raise HTTPException(status_code=409, detail=exc.message)
    return RebuildStartedResponse(rag_status=await rag_service.do_get_status())


@router.get("/rebuild")
async def get_last_rebuild(request: Request) -> RebuildResult | None:
    return request.app.state.rag_service.get_last_rebuild()


@router.delete("/rebuild")
async def cancel_rebuild(request: Request) -> dict:
    return {"cancelled": request.app.state.rag_service.cancel_rebuild()}


##########################################
############ EXTERNAL BLOCKS #############
##########################################

@router.post("/index/bookmark")
async def index_bookmark(request: Request, body: IndexBookmarkRequest) -> IndexResult:
    return await request.app.state.rag_service.do_index_bookmark_content(body.url, body.doc_id, body.block_id)


@router.post("/index/file")
async def index_file(request: Request, body: IndexFileRequest) -> IndexResult:
    return await request.app.state.rag_service.do_index_file_content(
        body.path, body.doc_id, body.block_id, file_name=body.file_name
    )


@router.post("/index/folder")
async def index_folder(request: Request, body: IndexFolderRequest) -> FolderIndexResult:
    return await request.app.state.rag_service.do_index_folder_content(body.path, body.doc_id, body.block_id)


@router.post("/index/submit", status_code=202)
async def submit_block(request: Request, body: ExternalBlockDescriptor) -> BlockIndexState:
    """Index a block in the background; completion is streamed as a `rag:block-indexed` event."""
    return request.app.state.rag_service.submit_external_block(body)


@router.get("/blocks/{doc_id}/{block_id}")
async def get_block_state(request: Request, doc_id: str, block_id: str) -> BlockIndexState:
    return request.app.state.rag_service.get_block_state(doc_id, block_id)


@router.get("/blocks/{doc_id}/{block_id}/content")
async def get_block_content(request: Request, doc_id: str, block_id: str) -> ExternalBlockContent:
    return await request.app.state.rag_service.do_get_external_block_content(doc_id, block_id)


@router.delete("/blocks/{doc_id}/{block_id}")
async def remove_block(request: Request, doc_id: str, block_id: str) -> BlockRemovedResponse:
    result = await request.app.state.rag_service.do_remove_external_block(doc_id, block_id)
    return BlockRemovedResponse(
        doc_id=doc_id, block_id=block_id, removed_chunks=result.removed_chunks, error=result.error
    )


##########################################
################ GRAPH ###################
##########################################

@router.get("/graph")
async def get_graph(
    request: Request,
    threshold: float = Query(DEFAULT_GRAPH_THRESHOLD, ge=0.0, le=1.0),
) -> GraphData:
    return await request.app.state.rag_service.do_get_document_graph(threshold)
