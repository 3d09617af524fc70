from shared.clients.docs.DocumentSourceInterface import DocumentSourceInterface
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.ChunkRecord import ScoredChunk
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EmbeddingConfig
from shared.models.errors import ConfigurationError
from shared.models.search import ChunkMatch, ChunkSearchResult, DocumentSearchResult

CANDIDATE_MULTIPLIER = 5
CANDIDATE_MULTIPLIER_EXCLUDING = 8
MIN_CANDIDATES = 30
MAX_CHUNKS_PER_DOCUMENT = 3
SIMILAR_QUERY_CHARS = 500


class QueryService:
    """Semantic search: embed -> nearest chunks -> group by document."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface,
        document_source: DocumentSourceInterface,
        embedding_config: EmbeddingConfig,
        embed_client: EmbedClientInterface | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._document_source = document_source
        self._embedding_config = embedding_config
        self._embed_client = embed_client

    def set_embedding(self, embedding_config: EmbeddingConfig, embed_client: EmbedClientInterface | None) -> None:
        self._embedding_config = embedding_config
        self._embed_client = embed_client

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _embed_query(self, query: str) -> list[float]:
        if self._embed_client is None:
            raise ConfigurationError("Embedding provider is not configured. Fix the RAG settings and retry.")
        vectors = await self._embed_client.do_embed([query])
        self.logging.debug("Query vector dimension: %d", len(vectors[0]))
        return vectors[0]

    async def _candidates(self, query: str, k: int) -> list[ScoredChunk]:
        vector = await self._embed_query(query)
        return await self._rag_client.do_query(vector, k, embed_model=self._embedding_config.model_tag)

    async def _resolve_titles(self, doc_ids: list[str]) -> dict[str, str]:
        """Current document titles from the document source; ids that no longer exist are left out."""
        titles: dict[str, str] = {}
        for doc_id in doc_ids:
            doc = await self._document_source.do_get_document(doc_id)
            if doc is not None:
                titles[doc_id] = doc.title
        return titles

    ##########################################
    ############### CORE #####################
    ##########################################

    async def do_search_documents(
        self,
        query: str,
        limit: int = 10,
        exclude_doc_id: str | None = None,
    ) -> list[DocumentSearchResult]:
        """Search documents by meaning.

        Chunk hits are grouped by owning document. A document's score is its
        best chunk score (max, not sum), documents are sorted by that score
        and each carries at most three of its best chunks.

        Args:
            query (str): Free text query.
            limit (int): Maximum number of documents.
            exclude_doc_id (str | None): Document to leave out of the results.

        Returns:
            list[DocumentSearchResult]: Best documents first. Empty for a blank query.

        Raises:
            ConfigurationError: If no embedding provider is configured.
            EmbeddingError: If the query cannot be embedded.
        """
        if not query.strip() or limit <= 0:
            return []
        multiplier = CANDIDATE_MULTIPLIER_EXCLUDING if exclude_doc_id else CANDIDATE_MULTIPLIER
        k = max(limit * multiplier, MIN_CANDIDATES)
        self.logging.info("Semantic search: query='%s', limit=%d, candidates=%d", query[:80], limit, k)

        grouped: dict[str, list[ScoredChunk]] = {}
        for hit in await self._candidates(query, k):
            if exclude_doc_id and hit.chunk.doc_id == exclude_doc_id:
                continue
            grouped.setdefault(hit.chunk.doc_id, []).append(hit)

        ranked = sorted(grouped.items(), key=lambda item: max(h.score for h in item[1]), reverse=True)[:limit]
        titles = await self._resolve_titles([doc_id for doc_id, _ in ranked])

        results: list[DocumentSearchResult] = []
        for doc_id, hits in ranked:
            hits = sorted(hits, key=lambda h: h.score, reverse=True)
            results.append(DocumentSearchResult(
                doc_id=doc_id,
                doc_title=titles.get(doc_id) or hits[0].chunk.doc_title,
                max_score=hits[0].score,
                matched_chunks=[
                    ChunkMatch(
                        chunk_text=h.chunk.chunk_text,
                        heading_context=h.chunk.heading_context,
                        block_id=h.chunk.block_id,
                        block_type=h.chunk.block_type,
                        source_type=h.chunk.source_type,
                        source_title=h.chunk.source_title,
                        score=h.score,
                    )
                    for h in hits[:MAX_CHUNKS_PER_DOCUMENT]
                ],
            ))
        self.logging.info("Semantic search: returning %d document(s).", len(results))
        return results

    async def do_search_chunks(self, query: str, limit: int = 10) -> list[ChunkSearchResult]:
        """Nearest chunks without grouping by document."""
        if not query.strip() or limit <= 0:
            return []
        hits = await self._candidates(query, limit)
        titles = await self._resolve_titles(sorted({h.chunk.doc_id for h in hits}))
        return [
            ChunkSearchResult(
                doc_id=h.chunk.doc_id,
                doc_title=titles.get(h.chunk.doc_id) or h.chunk.doc_title,
                chunk_text=h.chunk.chunk_text,
                heading_context=h.chunk.heading_context,
                block_id=h.chunk.block_id,
                block_type=h.chunk.block_type,
                source_type=h.chunk.source_type,
                source_title=h.chunk.source_title,
                score=h.score,
            )
            for h in hits
        ]

    async def do_search_similar_documents(self, doc_id: str, limit: int = 5) -> list[DocumentSearchResult]:
        """Documents related to `doc_id`, using the start of its text as the query.

        Returns:
            list[DocumentSearchResult]: Empty if the document does not exist or has no text.
        """
        doc = await self._document_source.do_get_document(doc_id)
        if doc is None:
            return []
        query = (doc.content.strip() or doc.title.strip())[:SIMILAR_QUERY_CHARS]
        if not query:
            return []
        return await self.do_search_documents(query, limit=limit, exclude_doc_id=doc_id)
