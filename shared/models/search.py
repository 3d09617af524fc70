"""Pydantic models for semantic and lexical search results."""

from pydantic import BaseModel


class ChunkMatch(BaseModel):
    """A chunk that contributed to a document hit."""

    chunk_text: str
    heading_context: str = ""
    block_id: str = ""
    block_type: str = ""
    source_type: str = "document"
    source_title: str = ""
    score: float


class DocumentSearchResult(BaseModel):
    """A document hit. `max_score` is the best score among its chunks."""

    doc_id: str
    doc_title: str
    max_score: float
    matched_chunks: list[ChunkMatch]


class ChunkSearchResult(ChunkMatch):
    """An unaggregated chunk hit."""

    doc_id: str
    doc_title: str = ""


class LexicalSearchResult(BaseModel):
    id: str
    title: str
    snippet: str


class SemanticSearchResponse(BaseModel):
    query: str
    results: list[DocumentSearchResult] = []
    total: int = 0
    error: str | None = None


class ChunkSearchResponse(BaseModel):
    query: str
    results: list[ChunkSearchResult] = []
    total: int = 0
    error: str | None = None


class LexicalSearchResponse(BaseModel):
    query: str
    results: list[LexicalSearchResult] = []
    total: int = 0
    error: str | None = None
