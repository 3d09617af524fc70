"""Pydantic models for extracted external content and its indexing state."""

from pydantic import BaseModel


class ExtractedItem(BaseModel):
    """One file inside a folder extraction."""

    path: str
    text: str = ""
    error: str | None = None


class ExtractedContent(BaseModel):
    """Result of running the content extractor on one locator.

    For folders, `text` is the concatenation of all successfully extracted
    files under `## <relative path>` headers and `items` holds the per-file
    results, including failures.
    """

    text: str = ""
    title: str = ""
    description: str = ""
    site_name: str = ""
    error: str | None = None
    items: list[ExtractedItem] = []
    # recoverable problems, e.g. skipped PDF pages
    warnings: list[str] = []


class BlockIndexState(BaseModel):
    """Indexing state of an external block, surfaced to the UI."""

    doc_id: str
    block_id: str
    indexed: bool = False
    indexing: bool = False
    index_error: str | None = None
    chunk_count: int = 0


class ExternalBlockContent(BaseModel):
    """Full extracted text of an external block, kept for on-demand viewing."""

    doc_id: str
    block_id: str
    block_type: str = ""
    locator: str = ""
    title: str = ""
    raw_content: str = ""
    extracted_at: float | None = None
    error: str | None = None


class IndexResult(BaseModel):
    """Outcome of indexing one external block (bookmark or file)."""

    doc_id: str
    block_id: str
    chunks: int = 0
    title: str = ""
    error: str | None = None


class FolderFileResult(BaseModel):
    path: str
    chunks: int = 0
    error: str | None = None


class FolderIndexResult(IndexResult):
    """Outcome of indexing a folder block. A failing file never aborts the batch."""

    total_files: int = 0
    success_count: int = 0
    failed_count: int = 0
    failed_files: list[str] = []
    files: list[FolderFileResult] = []


class RemovalResult(BaseModel):
    """Outcome of removing a document or one of its blocks from the index."""

    doc_id: str
    block_id: str = ""
    removed_chunks: int = 0
    error: str | None = None
