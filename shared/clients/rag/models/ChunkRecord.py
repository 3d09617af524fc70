"""ChunkRecord model: one embedded slice of a document or of an external block."""

import hashlib
import uuid

from pydantic import BaseModel

SOURCE_TYPES = ("document", "bookmark", "file", "folder")


class ChunkRecord(BaseModel):
    """Metadata and vector of a single chunk stored in the vector index.

    Identity is (doc_id, block_id, chunk_index). Document-internal chunks use an
    empty block_id, chunks of external content carry the id of the owning block.

    Attributes:
        point_id:         Deterministic UUID5 derived from the identity.
        doc_id:           Owning document.
        block_id:         External block id, "" for document-internal chunks.
        chunk_index:      Zero-based position within the document or block.
        source_type:      One of "document", "bookmark", "file", "folder".
        doc_title:        Title of the owning document at index time.
        source_title:     Title of the source (document title, page title, file or folder name).
        block_type:       Block kind the chunk was cut from (heading, paragraph, bookmark, ...).
        heading_context:  Nearest heading or source label, prepended when embedding.
        chunk_text:       Raw text of this chunk.
        content_hash:     SHA-256 over model tag and embedded text, used to skip re-embedding.
        embed_model:      Model-version tag of the vector.
        vector:           The embedding vector.
        updated_at:       Unix timestamp of the last write.
    """

    point_id: str
    doc_id: str
    block_id: str = ""
    chunk_index: int
    source_type: str = "document"
    doc_title: str = ""
    source_title: str = ""
    block_type: str = "paragraph"
    heading_context: str = ""
    chunk_text: str
    content_hash: str = ""
    embed_model: str
    vector: list[float] = []
    updated_at: float = 0.0


class ScoredChunk(BaseModel):
    """A chunk returned by a similarity query. Score is cosine similarity, higher is better."""

    chunk: ChunkRecord
    score: float


class IndexStats(BaseModel):
    """Counts of distinct indexed sources by type."""

    docs: int = 0
    bookmarks: int = 0
    files: int = 0
    folders: int = 0
    chunks: int = 0


class SourceVector(BaseModel):
    """Mean vector of all chunks of one source (a document or one external block)."""

    doc_id: str
    block_id: str = ""
    source_type: str
    title: str
    chunk_count: int
    vector: list[float]


def make_point_id(doc_id: str, block_id: str, chunk_index: int) -> str:
    """Build a deterministic UUID5 point ID for a chunk.

    The same identity always maps to the same point ID so re-indexing
    overwrites rather than duplicates.

    Args:
        doc_id (str): Owning document id.
        block_id (str): External block id or "".
        chunk_index (int): Zero-based chunk index.

    Returns:
        str: UUID string.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{doc_id}:{block_id}:{chunk_index}"))


def make_content_hash(embed_model: str, text: str) -> str:
    return hashlib.sha256(f"{embed_model}\x00{text}".encode("utf-8")).hexdigest()
