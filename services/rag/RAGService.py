"""Facade of the retrieval engine.

Owns the clients, the embedding configuration and the event bus, and exposes
every engine operation to the API layer. Public operations report failures
in the `error` field of their result instead of raising, the way the host
UI consumes them.
"""

import asyncio
import time

import httpx

from services.rag_graph.GraphService import DEFAULT_GRAPH_THRESHOLD, GraphService
from services.rag_index.IndexService import META_LAST_INDEX_TIME, IndexService
from services.rag_search.QueryService import QueryService
from services.search.LexicalSearchService import LexicalSearchService
from shared.clients.docs.DocumentSourceInterface import DocumentSourceInterface
from shared.clients.docs.DocumentSourceManager import DocumentSourceManager
from shared.clients.docs.models.Document import ExternalBlockDescriptor
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.extract.ContentExtractor import ContentExtractor
from shared.helper.EmbeddingConfigStore import EmbeddingConfigStore
from shared.helper.EventBus import (
    EVENT_BLOCK_INDEXED,
    EVENT_REINDEX_PROGRESS,
    EVENT_STATUS_UPDATED,
    EventBus,
)
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EmbeddingConfig
from shared.models.errors import ConfigurationError, RAGError, RebuildInProgressError
from shared.models.external import BlockIndexState, ExternalBlockContent, FolderIndexResult, IndexResult, RemovalResult
from shared.models.graph import GraphData
from shared.models.search import ChunkSearchResponse, LexicalSearchResponse, SemanticSearchResponse
from shared.models.status import (
    ConfigSaveResult,
    ModelListResult,
    RAGStatus,
    RebuildResult,
    ReindexProgress,
    TestConnectionResult,
)


class RAGService:
    def __init__(
        self,
        helper_config: HelperConfig,
        document_source: DocumentSourceInterface | None = None,
        rag_client: RAGClientInterface | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            helper_config (HelperConfig): Process settings.
            document_source (DocumentSourceInterface | None): Notes of the host, defaults to DOCS_ENGINE.
            rag_client (RAGClientInterface | None): Vector index, defaults to RAG_ENGINE.
            transport (httpx.AsyncBaseTransport | None): HTTP transport for the embedding provider
                and the URL fetcher, mainly for tests.
        """
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self._transport = transport

        self._config_store = EmbeddingConfigStore(helper_config=helper_config)
        self._embedding_config = self._config_store.load()
        self._config_error: str | None = None

        self.rag_client = rag_client or RAGClientManager(helper_config=helper_config).get_client()
        self.document_source = document_source or DocumentSourceManager(helper_config=helper_config).get_client()
        self.content_extractor = ContentExtractor(helper_config=helper_config)
        self.event_bus = EventBus(logger=self.logging)

        self.index_service = IndexService(
            helper_config=helper_config,
            rag_client=self.rag_client,
            document_source=self.document_source,
            content_extractor=self.content_extractor,
            embedding_config=self._embedding_config,
        )
        self.query_service = QueryService(
            helper_config=helper_config,
            rag_client=self.rag_client,
            document_source=self.document_source,
            embedding_config=self._embedding_config,
        )
        self.lexical_service = LexicalSearchService(helper_config=helper_config, document_source=self.document_source)
        self.graph_service = GraphService(
            helper_config=helper_config,
            rag_client=self.rag_client,
            document_source=self.document_source,
        )
        self.index_service.add_status_listener(self._publish_status)
        self.index_service.add_block_listener(self._publish_block_state)

        self._embed_client: EmbedClientInterface | None = None
        self._rebuild_task: asyncio.Task | None = None
        self._last_rebuild: RebuildResult | None = None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        """Open the index, the document source and the HTTP clients, then load the lexical index.

        An invalid embedding configuration does not stop the boot; the engine
        stays disabled and reports the problem in its status.
        """
        await self.rag_client.boot()
        await self.document_source.boot()
        await self.content_extractor.boot(transport=self._transport)
        try:
            await self._activate_embedding(self._embedding_config)
        except ConfigurationError as exc:
            self._config_error = exc.message
            self.logging.warning("Semantic search disabled: %s", exc.message)
        await self.lexical_service.do_load()
        self.logging.info("RAG service booted (embedding model: %s).", self._embedding_config.model_tag, color="green")

    async def close(self) -> None:
        if self._rebuild_task and not self._rebuild_task.done():
            self.index_service.cancel_rebuild()
            await asyncio.gather(self._rebuild_task, return_exceptions=True)
        await self.index_service.close()
        if self._embed_client:
            await self._embed_client.close()
        await self.content_extractor.close()
        await self.document_source.close()
        await self.rag_client.close()
        self.logging.info("RAG service closed.")

    async def do_drain(self) -> None:
        """Wait for every pending indexing job. Used by the CLI runner and tests."""
        await self.index_service.do_drain()
        if self._rebuild_task:
            await asyncio.gather(self._rebuild_task, return_exceptions=True)

    async def _new_embed_client(self, config: EmbeddingConfig) -> EmbedClientInterface:
        client = EmbedClientManager(helper_config=self.helper_config, embedding_config=config).get_client()
        await client.boot(transport=self._transport)
        return client

    async def _activate_embedding(self, config: EmbeddingConfig) -> None:
        """Swap in a client for `config`.

        Raises:
            ConfigurationError: If the config is invalid.
        """
        client = await self._new_embed_client(config)
        old_client = self._embed_client
        self._embed_client = client
        self._embedding_config = config
        self._config_error = None
        self.index_service.set_embedding(config, client)
        self.query_service.set_embedding(config, client)
        if old_client is not None:
            await old_client.close()

    ##########################################
    ################ EVENTS ##################
    ##########################################

    async def _publish_status(self) -> None:
        status = await self.do_get_status()
        self.event_bus.publish(EVENT_STATUS_UPDATED, status.model_dump())

    async def _publish_block_state(self, state: BlockIndexState) -> None:
        self.event_bus.publish(EVENT_BLOCK_INDEXED, state.model_dump())

    def _publish_progress(self, progress: ReindexProgress) -> None:
        self.event_bus.publish(EVENT_REINDEX_PROGRESS, progress.model_dump())

    ##########################################
    ################ CONFIG ##################
    ##########################################

    def get_config(self) -> EmbeddingConfig:
        return self._embedding_config.model_copy()

    async def do_save_config(self, config: EmbeddingConfig) -> ConfigSaveResult:
        """Validate, persist and activate a new embedding configuration.

        If provider or model change, every chunk of the previous model is
        removed, so status reports an empty index until the next rebuild.
        """
        previous = self._embedding_config
        try:
            config.validate_values()
            client = await self._new_embed_client(config)
        except ConfigurationError as exc:
            return ConfigSaveResult(config=previous, error=exc.message)
        await client.close()

        try:
            self._config_store.save(config)
            await self._activate_embedding(config)
        except ConfigurationError as exc:
            return ConfigSaveResult(config=previous, error=exc.message)

        index_reset = config.model_tag != previous.model_tag
        if index_reset:
            self.logging.info(
                "Embedding model changed from '%s' to '%s', clearing the index.",
                previous.model_tag, config.model_tag, color="yellow",
            )
            self.index_service.cancel_rebuild()
            try:
                await self.rag_client.do_purge_other_models(config.model_tag)
            except RAGError as exc:
                return ConfigSaveResult(config=self.get_config(), index_reset=False, error=exc.message)
        await self._publish_status()
        return ConfigSaveResult(config=self.get_config(), index_reset=index_reset)

    async def do_test_connection(self, config: EmbeddingConfig | None = None) -> TestConnectionResult:
        """Embed a probe text with `config` (default: the active config) and report the vector size."""
        try:
            client = await self._new_embed_client(config or self._embedding_config)
        except ConfigurationError as exc:
            return TestConnectionResult(success=False, error=exc.message)
        try:
            dimension = await client.do_detect_dimension()
        except RAGError as exc:
            return TestConnectionResult(success=False, error=exc.message)
        finally:
            await client.close()
        return TestConnectionResult(success=True, dimension=dimension)

    async def do_list_models(self, config: EmbeddingConfig | None = None) -> ModelListResult:
        try:
            client = await self._new_embed_client(config or self._embedding_config)
        except ConfigurationError as exc:
            return ModelListResult(error=exc.message)
        try:
            return ModelListResult(models=await client.do_fetch_models())
        except RAGError as exc:
            return ModelListResult(error=exc.message)
        finally:
            await client.close()

    ##########################################
    ################ STATUS ##################
    ##########################################

    async def do_get_status(self) -> RAGStatus:
        status = RAGStatus(
            enabled=self._embed_client is not None,
            rebuilding=self.is_rebuilding(),
            embed_model=self._embedding_config.model_tag,
            error=self._config_error,
        )
        try:
            stats = await self.rag_client.do_stats()
            status.indexed_docs = stats.docs
            status.indexed_bookmarks = stats.bookmarks
            status.indexed_files = stats.files
            status.indexed_folders = stats.folders
            status.total_docs = await self.document_source.do_count_documents()
            last_index_time = await self.rag_client.do_get_meta(META_LAST_INDEX_TIME)
            status.last_index_time = float(last_index_time) if last_index_time else None
        except RAGError as exc:
            status.error = exc.message
        return status

    ##########################################
    ################ REBUILD #################
    ##########################################

    def is_rebuilding(self) -> bool:
        return self.index_service.is_rebuilding() or bool(self._rebuild_task and not self._rebuild_task.done())

    def get_last_rebuild(self) -> RebuildResult | None:
        return self._last_rebuild

    async def do_rebuild_index(self) -> RebuildResult:
        """Rebuild the whole index, publishing progress events. Waits for completion."""
        if self._embed_client is None:
            return RebuildResult(error=self._config_error or "Embedding provider is not configured.")
        try:
            result = await self.index_service.do_rebuild(on_progress=self._publish_progress)
        except RebuildInProgressError as exc:
            return RebuildResult(error=exc.message)
        except RAGError as exc:
            self.logging.error("Rebuild failed: %s", exc)
            result = RebuildResult(error=exc.message)
        self._last_rebuild = result
        return result

    def start_rebuild(self) -> asyncio.Task:
        """Start a rebuild in the background.

        Raises:
            RebuildInProgressError: If a rebuild is already running.
        """
        if self.is_rebuilding():
            raise RebuildInProgressError()
        self._rebuild_task = asyncio.create_task(self.do_rebuild_index(), name="rag-rebuild")
        return self._rebuild_task

    def cancel_rebuild(self) -> bool:
        return self.index_service.cancel_rebuild()

    ##########################################
    ############ EXTERNAL BLOCKS #############
    ##########################################

    async def do_index_bookmark_content(self, url: str, doc_id: str, block_id: str) -> IndexResult:
        return await self.index_service.do_index_bookmark(doc_id, block_id, url)

    async def do_index_file_content(self, path: str, doc_id: str, block_id: str, file_name: str = "") -> IndexResult:
        return await self.index_service.do_index_file(doc_id, block_id, path, file_name=file_name)

    async def do_index_folder_content(self, path: str, doc_id: str, block_id: str) -> FolderIndexResult:
        return await self.index_service.do_index_folder(doc_id, block_id, path)

    def submit_external_block(self, block: ExternalBlockDescriptor) -> BlockIndexState:
        """Index a block in the background and return its state right away."""
        self.index_service.submit_external_block(block)
        return BlockIndexState(doc_id=block.doc_id, block_id=block.block_id, indexing=True)

    def get_block_state(self, doc_id: str, block_id: str) -> BlockIndexState:
        return self.index_service.get_block_state(doc_id, block_id)

    async def do_remove_external_block(self, doc_id: str, block_id: str) -> RemovalResult:
        """Forget one external block (removed from its document or replaced)."""
        try:
            removed = await self.rag_client.do_delete_by_block(doc_id, block_id)
        except (RAGError, ValueError) as exc:
            self.logging.error("Removing block %s of document %s failed: %s", block_id, doc_id, exc)
            return RemovalResult(doc_id=doc_id, block_id=block_id, error=getattr(exc, "message", str(exc)))
        await self._publish_status()
        return RemovalResult(doc_id=doc_id, block_id=block_id, removed_chunks=removed)

    async def do_get_external_block_content(self, doc_id: str, block_id: str) -> ExternalBlockContent:
        """Stored extracted text of a block; `error` is set if nothing was extracted yet."""
        try:
            content = await self.rag_client.do_get_external_content(doc_id, block_id)
        except RAGError as exc:
            return ExternalBlockContent(doc_id=doc_id, block_id=block_id, error=exc.message)
        if content is None:
            state = self.get_block_state(doc_id, block_id)
            return ExternalBlockContent(
                doc_id=doc_id,
                block_id=block_id,
                error=state.index_error or "No extracted content for this block.",
            )
        return content

    ##########################################
    ################ SEARCH ##################
    ##########################################

    async def do_semantic_search_documents(
        self,
        query: str,
        limit: int = 10,
        exclude_doc_id: str | None = None,
    ) -> SemanticSearchResponse:
        try:
            results = await self.query_service.do_search_documents(query, limit=limit, exclude_doc_id=exclude_doc_id)
        except RAGError as exc:
            self.logging.error("Semantic search failed: %s", exc)
            return SemanticSearchResponse(query=query, error=exc.message)
        return SemanticSearchResponse(query=query, results=results, total=len(results))

    async def do_search_chunks(self, query: str, limit: int = 10) -> ChunkSearchResponse:
        try:
            results = await self.query_service.do_search_chunks(query, limit=limit)
        except RAGError as exc:
            self.logging.error("Chunk search failed: %s", exc)
            return ChunkSearchResponse(query=query, error=exc.message)
        return ChunkSearchResponse(query=query, results=results, total=len(results))

    async def do_search_similar_documents(self, doc_id: str, limit: int = 5) -> SemanticSearchResponse:
        try:
            results = await self.query_service.do_search_similar_documents(doc_id, limit=limit)
        except RAGError as exc:
            self.logging.error("Similar document search for %s failed: %s", doc_id, exc)
            return SemanticSearchResponse(query=doc_id, error=exc.message)
        return SemanticSearchResponse(query=doc_id, results=results, total=len(results))

    def search_documents(self, query: str) -> LexicalSearchResponse:
        results = self.lexical_service.search(query)
        return LexicalSearchResponse(query=query, results=results, total=len(results))

    ##########################################
    ################ GRAPH ###################
    ##########################################

    async def do_get_document_graph(self, threshold: float = DEFAULT_GRAPH_THRESHOLD) -> GraphData:
        started = time.monotonic()
        try:
            graph = await self.graph_service.do_build_graph(threshold, embed_model=self._embedding_config.model_tag)
        except RAGError as exc:
            return GraphData(threshold=threshold, error=exc.message)
        self.logging.debug("Graph built in %.3fs.", time.monotonic() - started)
        return graph

    ##########################################
    ########### DOCUMENT EVENTS ##############
    ##########################################

    async def do_notify_document_saved(self, doc_id: str) -> bool:
        """Refresh the lexical index and schedule a debounced re-index.

        Returns:
            bool: False if semantic indexing is disabled (no valid embedding config).
        """
        await self.lexical_service.do_refresh_document(doc_id)
        if self._embed_client is None:
            return False
        self.index_service.schedule_document_index(doc_id)
        return True

    async def do_notify_document_deleted(self, doc_id: str) -> RemovalResult:
        """Drop a deleted document from both indexes, cancelling its pending jobs."""
        self.lexical_service.remove_document(doc_id)
        try:
            removed = await self.index_service.do_delete_document(doc_id)
        except RAGError as exc:
            self.logging.error("Removing document %s from the index failed: %s", doc_id, exc)
            return RemovalResult(doc_id=doc_id, error=exc.message)
        return RemovalResult(doc_id=doc_id, removed_chunks=removed)
