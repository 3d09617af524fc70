"""Pydantic models for notes owned by the host application.

Hierarchy:
  DocumentRecord           a note with plain-text content, tags and its external blocks.
  ExternalBlockDescriptor  a block inside a note that points at external content.
"""

from pydantic import BaseModel

EXTERNAL_BLOCK_TYPES = ("bookmark", "file", "folder")


class ExternalBlockDescriptor(BaseModel):
    """A block whose content lives outside the note (a web page, a file or a folder).

    Attributes:
        doc_id:     Owning document.
        block_id:   Block id, unique within the document.
        block_type: "bookmark", "file" or "folder".
        locator:    URL for bookmarks, filesystem path for files and folders.
        file_name:  Display name, falls back to the last path segment.
    """

    doc_id: str
    block_id: str
    block_type: str
    locator: str
    file_name: str = ""


class DocumentRecord(BaseModel):
    """A single note as seen by the retrieval engine."""

    id: str
    title: str = ""
    content: str = ""
    tags: list[str] = []
    external_blocks: list[ExternalBlockDescriptor] = []
    updated_at: float | None = None
