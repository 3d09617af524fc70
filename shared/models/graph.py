from pydantic import BaseModel


class GraphNode(BaseModel):
    """
    A node of the relationship graph: a document or one of its external blocks.

    Attributes:
        id (str): Node id, the doc id for documents, "<doc_id>#<block_id>" for blocks.
        doc_id (str): Owning document.
        block_id (str): Block id, "" for documents.
        label (str): Display title.
        source_type (str): "document", "bookmark", "file" or "folder".
        val (int): Node weight, the number of indexed chunks.
        tags (list[str]): Tags of the owning document.
    """

    id: str
    doc_id: str
    block_id: str = ""
    label: str
    source_type: str
    val: int
    tags: list[str] = []


class GraphLink(BaseModel):
    source: str
    target: str
    similarity: float
    kind: str  # semantic | tag | both
    shared_tags: list[str] = []


class GraphData(BaseModel):
    nodes: list[GraphNode] = []
    links: list[GraphLink] = []
    threshold: float = 0.0
    error: str | None = None
