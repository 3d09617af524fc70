from pydantic import BaseModel

from shared.models.status import RAGStatus


class AcceptedResponse(BaseModel):
    status: str = "accepted"
    doc_id: str
    scheduled: bool = True


class RebuildStartedResponse(BaseModel):
    status: str = "started"
    rag_status: RAGStatus


class DeletedResponse(BaseModel):
    status: str = "deleted"
    doc_id: str
    removed_chunks: int
    error: str | None = None


class BlockRemovedResponse(BaseModel):
    doc_id: str
    block_id: str
    removed_chunks: int
    error: str | None = None
