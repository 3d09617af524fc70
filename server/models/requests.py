from pydantic import BaseModel, Field


class DocumentEventRequest(BaseModel):
    doc_id: str


class SemanticSearchRequest(BaseModel):
    query: str
    limit: int = Field(default=10, ge=1, le=100)
    exclude_doc_id: str | None = None


class ChunkSearchRequest(BaseModel):
    query: str
    limit: int = Field(default=10, ge=1, le=200)


class SimilarDocumentsRequest(BaseModel):
    doc_id: str
    limit: int = Field(default=5, ge=1, le=100)


class LexicalSearchRequest(BaseModel):
    query: str


class IndexBookmarkRequest(BaseModel):
    doc_id: str
    block_id: str
    url: str


class IndexFileRequest(BaseModel):
    doc_id: str
    block_id: str
    path: str
    file_name: str = ""


class IndexFolderRequest(BaseModel):
    doc_id: str
    block_id: str
    path: str
