from abc import abstractmethod
from typing import Callable

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.ChunkRecord import ChunkRecord, IndexStats, ScoredChunk, SourceVector
from shared.helper.HelperConfig import HelperConfig
from shared.models.external import ExternalBlockContent

# evaluated under the index write lock; returning False discards the write
UpsertGuard = Callable[[], bool]


class RAGClientInterface(ClientInterface):
    """Durable store of chunk vectors plus nearest-neighbour search.

    Every mutating call is durable when it returns. Reads may run
    concurrently; writes are exclusive.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    ##########################################
    ################ WRITES ##################
    ##########################################

    @abstractmethod
    async def do_upsert(self, chunks: list[ChunkRecord], guard: UpsertGuard | None = None) -> int:
        """Insert or replace chunks by point_id. Idempotent.

        Args:
            chunks (list[ChunkRecord]): Chunks with vectors.
            guard (UpsertGuard | None): Checked under the write lock, the write is skipped if it returns False.

        Returns:
            int: Number of chunks written (0 if the guard rejected the write).
        """
        pass

    @abstractmethod
    async def do_replace_chunks(
        self,
        doc_id: str,
        block_id: str,
        chunks: list[ChunkRecord],
        guard: UpsertGuard | None = None,
        content: ExternalBlockContent | None = None,
    ) -> int | None:
        """Atomically replace all chunks of one scope.

        The scope is the document-internal chunks of `doc_id` when `block_id`
        is "", otherwise the chunks of that external block. Other scopes of
        the same document are untouched. `content` (external blocks only) is
        stored in the same transaction.

        Returns:
            int | None: Number of chunks written, None if the guard rejected the write.
        """
        pass

    @abstractmethod
    async def do_delete_by_document(self, doc_id: str) -> int:
        """Remove every chunk (document-internal and external) and stored external content of a document.

        Returns:
            int: Number of chunks removed.
        """
        pass

    @abstractmethod
    async def do_delete_by_block(self, doc_id: str, block_id: str) -> int:
        """Remove the chunks and stored content of one external block only.

        Returns:
            int: Number of chunks removed.
        """
        pass

    @abstractmethod
    async def do_delete_document_chunks(self, doc_id: str) -> int:
        """Remove only the document-internal chunks of a document, external chunks stay.

        Returns:
            int: Number of chunks removed.
        """
        pass

    @abstractmethod
    async def do_delete_orphan_blocks(self, doc_id: str, keep_block_ids: set[str]) -> int:
        """Remove external chunks and content of blocks of `doc_id` that are not in `keep_block_ids`.

        Returns:
            int: Number of chunks removed.
        """
        pass

    @abstractmethod
    async def do_purge_other_models(self, embed_model: str) -> int:
        """Remove every chunk not embedded with `embed_model`.

        Returns:
            int: Number of chunks removed.
        """
        pass

    ##########################################
    ################ READS ###################
    ##########################################

    @abstractmethod
    async def do_query(self, vector: list[float], limit: int, embed_model: str | None = None) -> list[ScoredChunk]:
        """Nearest chunks by cosine similarity, best first.

        Args:
            vector (list[float]): Query vector.
            limit (int): Maximum number of results.
            embed_model (str | None): Only consider chunks embedded with this model tag.

        Returns:
            list[ScoredChunk]: Chunks (without vectors) with their similarity score.
        """
        pass

    @abstractmethod
    async def do_stats(self) -> IndexStats:
        """Counts of distinct indexed documents and external blocks by type."""
        pass

    @abstractmethod
    async def do_get_doc_ids(self) -> set[str]:
        """Ids of every document that owns at least one chunk."""
        pass

    @abstractmethod
    async def do_get_chunk_vectors(self, doc_id: str, block_id: str) -> dict[str, list[float]]:
        """Stored vectors of one scope keyed by content_hash, used to skip re-embedding unchanged chunks."""
        pass

    @abstractmethod
    async def do_get_source_vectors(self, embed_model: str | None = None) -> list[SourceVector]:
        """Mean vector and chunk count per source (document or external block)."""
        pass

    ##########################################
    ########### EXTERNAL CONTENT #############
    ##########################################

    @abstractmethod
    async def do_save_external_content(self, content: ExternalBlockContent) -> None:
        """Store the full extracted text of an external block, replacing any previous one."""
        pass

    @abstractmethod
    async def do_get_external_content(self, doc_id: str, block_id: str) -> ExternalBlockContent | None:
        """Return the stored extracted text of an external block, or None."""
        pass

    ##########################################
    ################ META ####################
    ##########################################

    @abstractmethod
    async def do_set_meta(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def do_get_meta(self, key: str) -> str | None:
        pass
