"""Indexing service.

Keeps the vector index in step with the notes: debounced re-indexing on save,
immediate removal on delete, extraction and indexing of external blocks
(bookmarks, files, folders) and the full rebuild with progress reporting.
"""

import asyncio
import inspect
import os
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from shared.clients.docs.DocumentSourceInterface import DocumentSourceInterface
from shared.clients.docs.models.Document import DocumentRecord, ExternalBlockDescriptor
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface, UpsertGuard
from shared.clients.rag.models.ChunkRecord import ChunkRecord, make_content_hash, make_point_id
from shared.extract.ContentExtractor import ContentExtractor
from shared.helper.BackgroundTaskRunner import BackgroundTaskRunner
from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextChunker import TextChunker
from shared.models.config import EmbeddingConfig
from shared.models.errors import ConfigurationError, RAGError, RebuildInProgressError
from shared.models.external import (
    BlockIndexState,
    ExternalBlockContent,
    ExtractedContent,
    FolderFileResult,
    FolderIndexResult,
    IndexResult,
)
from shared.models.status import RebuildResult, ReindexProgress

META_LAST_INDEX_TIME = "last_index_time"

StatusListener = Callable[[], Awaitable[None]]
BlockListener = Callable[[BlockIndexState], Awaitable[None]]
ProgressCallback = Callable[[ReindexProgress], Awaitable[None] | None]

# one piece of text to embed: (block_type, heading_context, chunk_text)
_Piece = tuple[str, str, str]


class IndexService:
    """Orchestrates extraction, chunking, embedding and index writes."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface,
        document_source: DocumentSourceInterface,
        content_extractor: ContentExtractor,
        embedding_config: EmbeddingConfig,
        embed_client: EmbedClientInterface | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._document_source = document_source
        self._extractor = content_extractor
        self._debounce_seconds = float(helper_config.get_number_val("INDEX_DEBOUNCE_SECONDS", default=2.0))
        self._rebuild_item_timeout = float(helper_config.get_number_val("REBUILD_ITEM_TIMEOUT", default=120))
        self._debug_chunks = helper_config.get_bool_val("DEBUG_RAG_CHUNKS", default=False)
        self._runner = BackgroundTaskRunner(
            logger=self.logging,
            concurrency=int(helper_config.get_number_val("EXTERNAL_TASK_CONCURRENCY", default=2)),
        )

        self._embedding_config = embedding_config
        self._embed_client = embed_client
        self._chunker = TextChunker(embedding_config.max_chunk_size, embedding_config.overlap)
        # bumped on every provider/model switch, writes started before a switch are discarded
        self._epoch = 0

        # per document: pending debounce timer, running job, lock and delete generation
        self._pending: dict[str, asyncio.Task] = {}
        self._running: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        # only deleted documents get an entry, it outlives the delete so late writes stay rejected
        self._generations: dict[str, int] = {}

        self._block_states: dict[tuple[str, str], BlockIndexState] = {}
        self._status_listeners: list[StatusListener] = []
        self._block_listeners: list[BlockListener] = []

        self._rebuild_running = False
        self._rebuild_cancel = False

    ##########################################
    ################ CONFIG ##################
    ##########################################

    def set_embedding(self, embedding_config: EmbeddingConfig, embed_client: EmbedClientInterface | None) -> None:
        """Switch to a new embedding config and client. In-flight writes of the old config are discarded."""
        self._chunker = TextChunker(embedding_config.max_chunk_size, embedding_config.overlap)
        self._embedding_config = embedding_config
        self._embed_client = embed_client
        self._epoch += 1

    def get_model_tag(self) -> str:
        return self._embedding_config.model_tag

    ################ LISTENERS ##################
    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def add_block_listener(self, listener: BlockListener) -> None:
        self._block_listeners.append(listener)

    async def _notify_status(self) -> None:
        for listener in self._status_listeners:
            try:
                await listener()
            except Exception as exc:
                self.logging.error("Status listener failed: %s", exc)

    async def _set_block_state(self, state: BlockIndexState) -> None:
        self._block_states[(state.doc_id, state.block_id)] = state
        for listener in self._block_listeners:
            try:
                await listener(state)
            except Exception as exc:
                self.logging.error("Block state listener failed: %s", exc)

    def get_block_state(self, doc_id: str, block_id: str) -> BlockIndexState:
        return self._block_states.get((doc_id, block_id)) or BlockIndexState(doc_id=doc_id, block_id=block_id)

    ##########################################
    ############### GUARDS ###################
    ##########################################

    @asynccontextmanager
    async def _locked(self, key: str):
        """Hold the per-key lock. The entry is dropped once nobody holds or waits for it."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    def _make_guard(self, doc_id: str) -> UpsertGuard:
        """Snapshot the document generation and config epoch.

        The guard runs under the index write lock and rejects the write if
        the document was deleted or the embedding model switched meanwhile.
        """
        generation = self._generations.get(doc_id, 0)
        epoch = self._epoch
        return lambda: self._generations.get(doc_id, 0) == generation and self._epoch == epoch

    def _require_embed_client(self) -> EmbedClientInterface:
        if self._embed_client is None:
            raise ConfigurationError("Embedding provider is not configured. Fix the RAG settings and retry.")
        return self._embed_client

    ##########################################
    ############ LIVE EDIT PATH ##############
    ##########################################

    def schedule_document_index(self, doc_id: str, delay: float | None = None) -> asyncio.Task:
        """Debounced re-index of a document after a save.

        A new call for the same document cancels the pending timer, so a
        burst of saves results in one job that reads the latest content.

        Args:
            doc_id (str): The saved document.
            delay (float | None): Debounce delay, defaults to INDEX_DEBOUNCE_SECONDS.

        Returns:
            asyncio.Task: The timer task.
        """
        pending = self._pending.pop(doc_id, None)
        if pending is not None:
            pending.cancel()
        task = asyncio.create_task(
            self._debounced_index(doc_id, self._debounce_seconds if delay is None else delay),
            name=f"index-doc-{doc_id}",
        )
        self._pending[doc_id] = task
        return task

    async def _debounced_index(self, doc_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        task = asyncio.current_task()
        if self._pending.get(doc_id) is task:
            del self._pending[doc_id]
        self._running[doc_id] = task
        try:
            await self.do_index_document(doc_id)
        except asyncio.CancelledError:
            self.logging.info("Indexing of document %s cancelled.", doc_id)
            raise
        except Exception as exc:
            self.logging.error("Indexing of document %s failed: %s", doc_id, exc)
        finally:
            if self._running.get(doc_id) is task:
                del self._running[doc_id]

    async def do_index_document(self, doc_id: str, force: bool = False) -> int:
        """Re-index the document-internal chunks of one document.

        External chunks of the document are untouched, except those of blocks
        that no longer exist in the document, which are removed.

        Args:
            doc_id (str): The document to index.
            force (bool): Re-embed every chunk, even unchanged ones.

        Returns:
            int: Number of chunks stored.

        Raises:
            RAGError: On embedding or index errors.
        """
        guard = self._make_guard(doc_id)
        async with self._locked(doc_id):
            if not guard():
                self.logging.info("Document %s was deleted before indexing started, skipping.", doc_id)
                return 0

            doc = await self._document_source.do_get_document(doc_id)
            if doc is None:
                self.logging.info("Document %s no longer exists, removing it from the index.", doc_id)
                await self._rag_client.do_delete_by_document(doc_id)
                await self._notify_status()
                return 0

            pieces = self._document_pieces(doc)
            records = await self._build_records(
                doc_id=doc.id,
                block_id="",
                pieces=pieces,
                source_type="document",
                doc_title=doc.title,
                source_title=doc.title,
                force=force,
            )
            written = await self._rag_client.do_replace_chunks(doc.id, "", records, guard=guard)
            if written is None:
                self.logging.info("Discarded index write for document %s: deleted or model changed meanwhile.", doc_id)
                return 0

            removed = await self._rag_client.do_delete_orphan_blocks(doc.id, {b.block_id for b in doc.external_blocks})
            if removed:
                self.logging.info("Removed %d orphaned external chunk(s) of document %s.", removed, doc_id)

            await self._rag_client.do_set_meta(META_LAST_INDEX_TIME, str(time.time()))
            self.logging.info("Indexed document %s ('%s'): %d chunks.", doc.id, doc.title, written)
            await self._notify_status()
            return written

    def _document_pieces(self, doc: DocumentRecord) -> list[_Piece]:
        pieces: list[_Piece] = []
        for section in self._chunker.split_sections(doc.content):
            for chunk in self._chunker.split(section.text):
                if chunk.strip():
                    pieces.append((section.block_type, section.heading_context, chunk))
        return pieces

    async def do_delete_document(self, doc_id: str) -> int:
        """Remove a deleted document from the index.

        Pending and running jobs of the document are cancelled and its
        generation is bumped first, so a job finishing late cannot write the
        chunks back.

        Returns:
            int: Number of chunks removed.
        """
        pending = self._pending.pop(doc_id, None)
        if pending is not None:
            pending.cancel()
        self._generations[doc_id] = self._generations.get(doc_id, 0) + 1
        running = self._running.get(doc_id)
        if running is not None and running is not asyncio.current_task():
            running.cancel()

        removed = await self._rag_client.do_delete_by_document(doc_id)
        for key in [key for key in self._block_states if key[0] == doc_id]:
            del self._block_states[key]
        self.logging.info("Removed document %s from the index (%d chunks).", doc_id, removed)
        await self._notify_status()
        return removed

    ##########################################
    ########## EXTERNAL BLOCK PATH ###########
    ##########################################

    def submit_external_block(self, block: ExternalBlockDescriptor) -> asyncio.Task:
        """Index an external block in the background. Failures end up in the block state and runner failures."""
        guard = self._make_guard(block.doc_id)
        return self._runner.submit(
            f"index-block-{block.doc_id}-{block.block_id}",
            self.do_index_external_block(block, guard=guard),
        )

    def get_background_failures(self) -> list:
        return list(self._runner.failures)

    async def do_index_bookmark(self, doc_id: str, block_id: str, url: str) -> IndexResult:
        return await self.do_index_external_block(
            ExternalBlockDescriptor(doc_id=doc_id, block_id=block_id, block_type="bookmark", locator=url)
        )

    async def do_index_file(self, doc_id: str, block_id: str, path: str, file_name: str = "") -> IndexResult:
        return await self.do_index_external_block(ExternalBlockDescriptor(
            doc_id=doc_id, block_id=block_id, block_type="file", locator=path,
            file_name=file_name or os.path.basename(path),
        ))

    async def do_index_folder(self, doc_id: str, block_id: str, path: str) -> FolderIndexResult:
        return await self.do_index_external_block(ExternalBlockDescriptor(
            doc_id=doc_id, block_id=block_id, block_type="folder", locator=path,
            file_name=os.path.basename(os.path.abspath(os.path.expanduser(path)).rstrip(os.sep)),
        ))

    async def do_index_external_block(self, block: ExternalBlockDescriptor, guard: UpsertGuard | None = None) -> IndexResult:
        """Extract, chunk, embed and store one external block.

        Errors never propagate; they are returned in `error` and recorded in
        the block state. The final block state is written even when the job is
        cancelled or times out.

        Args:
            block (ExternalBlockDescriptor): The block to index.
            guard (UpsertGuard | None): Delete/model guard taken when the job was
                requested. Defaults to a snapshot taken now.

        Returns:
            IndexResult: FolderIndexResult for folder blocks.
        """
        result_cls = FolderIndexResult if block.block_type == "folder" else IndexResult
        if guard is None:
            guard = self._make_guard(block.doc_id)
        if not guard():
            self.logging.info(
                "Document %s was deleted before block %s was indexed, skipping.", block.doc_id, block.block_id
            )
            return result_cls(doc_id=block.doc_id, block_id=block.block_id, error="Document was deleted.")

        await self._set_block_state(BlockIndexState(doc_id=block.doc_id, block_id=block.block_id, indexing=True))
        result = result_cls(doc_id=block.doc_id, block_id=block.block_id, error="Indexing was cancelled or timed out.")
        try:
            async with self._locked(f"{block.doc_id}#{block.block_id}"):
                if block.block_type == "folder":
                    result = await self._index_folder(block, guard)
                elif block.block_type in ("bookmark", "file"):
                    result = await self._index_single(block, guard)
                else:
                    result = IndexResult(
                        doc_id=block.doc_id,
                        block_id=block.block_id,
                        error=f"Unsupported block type '{block.block_type}'.",
                    )
        except RAGError as exc:
            self.logging.error(
                "Indexing %s block %s of document %s failed: %s",
                block.block_type, block.block_id, block.doc_id, exc.message,
            )
            result = result_cls(doc_id=block.doc_id, block_id=block.block_id, error=exc.message)
        except Exception as exc:
            self.logging.exception(
                "Unexpected error indexing block %s of document %s: %s", block.block_id, block.doc_id, exc
            )
            result = result_cls(doc_id=block.doc_id, block_id=block.block_id, error=str(exc) or type(exc).__name__)
        finally:
            if guard():
                await self._set_block_state(BlockIndexState(
                    doc_id=block.doc_id,
                    block_id=block.block_id,
                    indexed=result.error is None,
                    indexing=False,
                    index_error=result.error,
                    chunk_count=result.chunks,
                ))
            else:
                self._block_states.pop((block.doc_id, block.block_id), None)
            await self._notify_status()
        return result

    async def _index_single(self, block: ExternalBlockDescriptor, guard: UpsertGuard) -> IndexResult:
        kind = "bookmark" if block.block_type == "bookmark" else "file"
        content = await self._extractor.do_extract(kind, block.locator)

        if block.block_type == "bookmark":
            title = content.title or block.file_name or block.locator
            heading = f"{title} - {content.site_name}" if content.site_name else title
        else:
            title = block.file_name or os.path.basename(block.locator) or content.title
            heading = title

        pieces = [(block.block_type, heading, chunk) for chunk in self._chunker.split(content.text) if chunk.strip()]
        written = await self._store_block(block, pieces, content, title, guard)
        return IndexResult(doc_id=block.doc_id, block_id=block.block_id, chunks=written, title=title)

    async def _index_folder(self, block: ExternalBlockDescriptor, guard: UpsertGuard) -> FolderIndexResult:
        content = await self._extractor.do_extract("folder", block.locator)
        folder_name = block.file_name or content.title

        pieces: list[_Piece] = []
        files: list[FolderFileResult] = []
        for item in content.items:
            if item.error:
                files.append(FolderFileResult(path=item.path, error=item.error))
                continue
            item_pieces = [
                ("folder", f"{folder_name}/{item.path}", chunk)
                for chunk in self._chunker.split(item.text)
                if chunk.strip()
            ]
            pieces.extend(item_pieces)
            files.append(FolderFileResult(path=item.path, chunks=len(item_pieces)))

        written = await self._store_block(block, pieces, content, folder_name, guard)
        failed = [f.path for f in files if f.error]
        return FolderIndexResult(
            doc_id=block.doc_id,
            block_id=block.block_id,
            chunks=written,
            title=folder_name,
            total_files=len(files),
            success_count=len(files) - len(failed),
            failed_count=len(failed),
            failed_files=failed,
            files=files,
        )

    async def _store_block(
        self,
        block: ExternalBlockDescriptor,
        pieces: list[_Piece],
        content: ExtractedContent,
        title: str,
        guard: UpsertGuard,
    ) -> int:
        doc = await self._document_source.do_get_document(block.doc_id)
        if doc is None:
            raise RAGError(f"Document {block.doc_id} no longer exists.")
        records = await self._build_records(
            doc_id=block.doc_id,
            block_id=block.block_id,
            pieces=pieces,
            source_type=block.block_type,
            doc_title=doc.title,
            source_title=title,
            force=False,
        )
        stored_content = ExternalBlockContent(
            doc_id=block.doc_id,
            block_id=block.block_id,
            block_type=block.block_type,
            locator=block.locator,
            title=title,
            raw_content=content.text,
            extracted_at=time.time(),
        )
        written = await self._rag_client.do_replace_chunks(
            block.doc_id, block.block_id, records, guard=guard, content=stored_content
        )
        if written is None:
            raise RAGError("Document was deleted or the embedding model changed while indexing.")
        await self._rag_client.do_set_meta(META_LAST_INDEX_TIME, str(time.time()))
        self.logging.info(
            "Indexed %s block %s of document %s: %d chunks.", block.block_type, block.block_id, block.doc_id, written
        )
        return written

    ##########################################
    ############### EMBEDDING ################
    ##########################################

    @staticmethod
    def _embed_text(heading_context: str, chunk: str) -> str:
        if heading_context:
            return f"{heading_context}\n\n{chunk}"
        return chunk

    async def _build_records(
        self,
        doc_id: str,
        block_id: str,
        pieces: list[_Piece],
        source_type: str,
        doc_title: str,
        source_title: str,
        force: bool,
    ) -> list[ChunkRecord]:
        """Embed the pieces of one scope and build its chunk records.

        Unless `force` is set, pieces whose content hash is already stored in
        the scope reuse the stored vector instead of being embedded again.
        """
        if not pieces:
            return []
        embed_client = self._require_embed_client()
        model_tag = self._embedding_config.model_tag

        embed_texts = [self._embed_text(heading, chunk) for _, heading, chunk in pieces]
        hashes = [make_content_hash(model_tag, text) for text in embed_texts]
        known = {} if force else await self._rag_client.do_get_chunk_vectors(doc_id, block_id)

        missing = [i for i, content_hash in enumerate(hashes) if content_hash not in known]
        if missing:
            vectors = await embed_client.do_embed([embed_texts[i] for i in missing])
            for i, vector in zip(missing, vectors):
                known[hashes[i]] = vector
        self.logging.debug(
            "Scope %s/%s: %d chunks, %d embedded, %d reused.",
            doc_id, block_id or "-", len(pieces), len(missing), len(pieces) - len(missing),
        )

        now = time.time()
        records: list[ChunkRecord] = []
        for chunk_index, ((block_type, heading, chunk), content_hash) in enumerate(zip(pieces, hashes)):
            if self._debug_chunks:
                self.logging.debug("[chunk %s/%s #%d] %s | %r", doc_id, block_id or "-", chunk_index, heading, chunk[:120])
            records.append(ChunkRecord(
                point_id=make_point_id(doc_id, block_id, chunk_index),
                doc_id=doc_id,
                block_id=block_id,
                chunk_index=chunk_index,
                source_type=source_type,
                doc_title=doc_title,
                source_title=source_title,
                block_type=block_type,
                heading_context=heading,
                chunk_text=chunk,
                content_hash=content_hash,
                embed_model=model_tag,
                vector=known[content_hash],
                updated_at=now,
            ))
        return records

    ##########################################
    ############## FULL REBUILD ##############
    ##########################################

    def is_rebuilding(self) -> bool:
        return self._rebuild_running

    def cancel_rebuild(self) -> bool:
        """Ask a running rebuild to stop after the current item. Returns False if none is running."""
        if not self._rebuild_running:
            return False
        self._rebuild_cancel = True
        return True

    async def do_rebuild(self, on_progress: ProgressCallback | None = None) -> RebuildResult:
        """Rebuild the whole index from the document source.

        Phase "documents" removes documents that no longer exist and force
        re-indexes every document. Phase "external" re-indexes every external
        block. Progress is reported after each item; a failing or timed out
        item is logged and skipped.

        Raises:
            RebuildInProgressError: If a rebuild is already running.
        """
        if self._rebuild_running:
            raise RebuildInProgressError()
        self._rebuild_running = True
        self._rebuild_cancel = False
        started = time.monotonic()
        result = RebuildResult()
        await self._notify_status()
        self.logging.info("Starting full index rebuild...", color="cyan")

        try:
            docs = await self._document_source.do_get_documents()
            await self._cleanup_orphans({doc.id for doc in docs})

            total = len(docs)
            for current, doc in enumerate(docs, start=1):
                if self._rebuild_cancel:
                    result.aborted = True
                    break
                try:
                    await asyncio.wait_for(self.do_index_document(doc.id, force=True), timeout=self._rebuild_item_timeout)
                    result.documents += 1
                except Exception as exc:
                    result.failed += 1
                    result.errors.append(f"document {doc.id}: {exc or type(exc).__name__}")
                    self.logging.error("Rebuild: document %s failed: %s", doc.id, exc or type(exc).__name__)
                await self._emit_progress(on_progress, ReindexProgress(phase="documents", current=current, total=total))

            blocks = [block for doc in docs for block in doc.external_blocks]
            total = len(blocks)
            for current, block in enumerate(blocks, start=1):
                if self._rebuild_cancel:
                    result.aborted = True
                    break
                try:
                    block_result = await asyncio.wait_for(self.do_index_external_block(block), timeout=self._rebuild_item_timeout)
                    error = block_result.error
                except Exception as exc:
                    error = str(exc) or type(exc).__name__
                if error:
                    result.failed += 1
                    result.errors.append(f"block {block.doc_id}/{block.block_id}: {error}")
                    self.logging.error("Rebuild: block %s/%s failed: %s", block.doc_id, block.block_id, error)
                else:
                    result.external += 1
                await self._emit_progress(on_progress, ReindexProgress(phase="external", current=current, total=total))
        finally:
            self._rebuild_running = False
            self._rebuild_cancel = False
            result.duration_seconds = round(time.monotonic() - started, 3)

        self.logging.info(
            "Rebuild %s: %d documents, %d external blocks, %d failed in %.1fs.",
            "aborted" if result.aborted else "complete",
            result.documents, result.external, result.failed, result.duration_seconds,
            color="yellow" if result.aborted or result.failed else "green",
        )
        await self._notify_status()
        return result

    async def _emit_progress(self, on_progress: ProgressCallback | None, progress: ReindexProgress) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            self.logging.error("Rebuild progress callback failed: %s", exc)

    async def _cleanup_orphans(self, source_ids: set[str]) -> None:
        """Remove index entries of documents that no longer exist in the document source."""
        orphan_ids = await self._rag_client.do_get_doc_ids() - source_ids
        if not orphan_ids:
            self.logging.info("Orphan cleanup: no stale documents found.")
            return
        for orphan_id in sorted(orphan_ids):
            await self._rag_client.do_delete_by_document(orphan_id)
        self.logging.info("Orphan cleanup: removed %d stale document(s).", len(orphan_ids))

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def do_drain(self) -> None:
        """Wait for all pending, running and background jobs to finish."""
        while self._pending or self._running or self._runner.pending_count():
            tasks = [*self._pending.values(), *self._running.values()]
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            await self._runner.do_drain()

    async def close(self) -> None:
        for task in [*self._pending.values(), *self._running.values()]:
            task.cancel()
        await asyncio.gather(*self._pending.values(), *self._running.values(), return_exceptions=True)
        self._pending.clear()
        self._running.clear()
        await self._runner.close()
