import numpy as np

from shared.clients.docs.DocumentSourceInterface import DocumentSourceInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.ChunkRecord import SourceVector
from shared.helper.HelperConfig import HelperConfig
from shared.models.graph import GraphData, GraphLink, GraphNode

DEFAULT_GRAPH_THRESHOLD = 0.7


class GraphService:
    """Builds the relationship graph between indexed sources.

    Every document and every indexed external block is a node, represented
    by the mean of its chunk vectors. The pairwise comparison is O(n²) in
    the number of sources, done as one matrix product per vector size.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface,
        document_source: DocumentSourceInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._document_source = document_source

    async def do_build_graph(self, threshold: float = DEFAULT_GRAPH_THRESHOLD, embed_model: str | None = None) -> GraphData:
        """Build nodes and links.

        A link exists when the cosine similarity of two sources is at least
        `threshold` ("semantic"), when sources of two different documents
        share a tag ("tag"), or both ("both").

        Args:
            threshold (float): Minimum similarity of a semantic link, 0..1.
            embed_model (str | None): Only use chunks of this model tag.

        Returns:
            GraphData: The graph. Sources of documents that no longer exist are left out.
        """
        docs = {doc.id: doc for doc in await self._document_source.do_get_documents()}
        sources = [s for s in await self._rag_client.do_get_source_vectors(embed_model) if s.doc_id in docs]

        nodes: list[GraphNode] = []
        for source in sources:
            doc = docs[source.doc_id]
            nodes.append(GraphNode(
                id=self._node_id(source),
                doc_id=source.doc_id,
                block_id=source.block_id,
                label=(source.title or doc.title) if source.block_id else (doc.title or source.title),
                source_type=source.source_type,
                val=source.chunk_count,
                tags=list(doc.tags),
            ))

        similarity = self._similarity_matrix(sources)
        links: list[GraphLink] = []
        for i in range(len(sources)):
            for j in range(i + 1, len(sources)):
                score = float(similarity[i, j])
                semantic = score >= threshold
                shared_tags: list[str] = []
                if sources[i].doc_id != sources[j].doc_id:
                    shared_tags = sorted(set(nodes[i].tags) & set(nodes[j].tags))
                if not semantic and not shared_tags:
                    continue
                kind = "both" if semantic and shared_tags else ("semantic" if semantic else "tag")
                links.append(GraphLink(
                    source=nodes[i].id,
                    target=nodes[j].id,
                    similarity=round(score, 4),
                    kind=kind,
                    shared_tags=shared_tags,
                ))

        self.logging.info(
            "Built document graph: %d nodes, %d links (threshold %.2f).", len(nodes), len(links), threshold
        )
        return GraphData(nodes=nodes, links=links, threshold=threshold)

    @staticmethod
    def _node_id(source: SourceVector) -> str:
        return f"{source.doc_id}#{source.block_id}" if source.block_id else source.doc_id

    @staticmethod
    def _similarity_matrix(sources: list[SourceVector]) -> np.ndarray:
        """Pairwise cosine similarity; sources with different vector sizes score 0 against each other."""
        n = len(sources)
        result = np.zeros((n, n), dtype=np.float32)
        by_dim: dict[int, list[int]] = {}
        for i, source in enumerate(sources):
            by_dim.setdefault(len(source.vector), []).append(i)

        for indices in by_dim.values():
            matrix = np.asarray([sources[i].vector for i in indices], dtype=np.float32)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            matrix = matrix / norms
            result[np.ix_(indices, indices)] = matrix @ matrix.T
        return result
