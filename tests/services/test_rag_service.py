"""Tests for the RAGService facade: configuration, status, events and document notifications."""

import asyncio
import json
import os

import pytest
import pytest_asyncio

from services.rag.RAGService import RAGService
from shared.clients.docs.models.Document import ExternalBlockDescriptor
from shared.helper.EmbeddingConfigStore import EmbeddingConfigStore
from shared.helper.EventBus import EVENT_BLOCK_INDEXED, EVENT_REINDEX_PROGRESS, EVENT_STATUS_UPDATED
from shared.models.config import EmbeddingConfig
from shared.models.errors import IndexStorageError, RebuildInProgressError
from tests.conftest import FAKE_DIMENSION


def _drain_events(queue: asyncio.Queue) -> list[tuple[str, dict]]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest_asyncio.fixture
async def rag_service(helper_config, embedding_config, transport):
    EmbeddingConfigStore(helper_config=helper_config).save(embedding_config)
    service = RAGService(helper_config=helper_config, transport=transport)
    await service.boot()
    yield service
    await service.close()


@pytest.mark.asyncio
async def test_saved_document_is_indexed_and_counted(rag_service, save_document):
    """Test that a save notification indexes the note and status reflects it."""
    await save_document("doc1", "Notes about the harbour", title="Harbour")

    scheduled = await rag_service.do_notify_document_saved("doc1")
    await rag_service.do_drain()
    status = await rag_service.do_get_status()

    assert scheduled is True
    assert status.enabled is True
    assert status.indexed_docs == 1
    assert status.total_docs == 1
    assert status.last_index_time is not None
    assert status.embed_model == "ollama:nomic-embed-text"
    assert rag_service.search_documents("harbour").total == 1


@pytest.mark.asyncio
async def test_model_change_clears_index(rag_service, save_document, helper_config):
    """Test that switching the model removes old vectors and persists the new config."""
    await save_document("doc1", "some text")
    await rag_service.do_notify_document_saved("doc1")
    await rag_service.do_drain()

    new_config = rag_service.get_config().model_copy(update={"model": "mxbai-embed-large"})
    result = await rag_service.do_save_config(new_config)
    status = await rag_service.do_get_status()

    assert result.error is None
    assert result.index_reset is True
    assert status.indexed_docs == 0
    assert status.embed_model == "ollama:mxbai-embed-large"
    assert EmbeddingConfigStore(helper_config=helper_config).load().model == "mxbai-embed-large"


@pytest.mark.asyncio
async def test_chunk_size_change_keeps_index(rag_service, save_document):
    await save_document("doc1", "some text")
    await rag_service.do_notify_document_saved("doc1")
    await rag_service.do_drain()

    result = await rag_service.do_save_config(rag_service.get_config().model_copy(update={"max_chunk_size": 300}))

    assert result.index_reset is False
    assert result.config.max_chunk_size == 300
    assert (await rag_service.do_get_status()).indexed_docs == 1


@pytest.mark.asyncio
async def test_invalid_config_is_rejected(rag_service):
    before = rag_service.get_config()

    result = await rag_service.do_save_config(before.model_copy(update={"overlap": before.max_chunk_size}))

    assert result.error and "overlap" in result.error
    assert rag_service.get_config() == before


@pytest.mark.asyncio
async def test_connection_and_model_listing(rag_service, provider):
    ok = await rag_service.do_test_connection()
    models = await rag_service.do_list_models()
    provider.fail_status = 404
    failed = await rag_service.do_test_connection()

    assert ok.success is True
    assert ok.dimension == FAKE_DIMENSION
    assert models.models == ["mxbai-embed-large", "nomic-embed-text"]
    assert failed.success is False
    assert "404" in failed.error


@pytest.mark.asyncio
async def test_events_are_published(rag_service, save_document, tmp_path):
    """Test that indexing publishes status and block events to subscribers."""
    queue = rag_service.event_bus.subscribe()
    path = tmp_path / "att.txt"
    path.write_text("attached words", encoding="utf-8")
    await save_document("doc1", "note")

    await rag_service.do_notify_document_saved("doc1")
    await rag_service.do_drain()
    await rag_service.do_index_file_content(str(path), "doc1", "blk1")
    events = _drain_events(queue)
    rag_service.event_bus.unsubscribe(queue)

    names = [name for name, _ in events]
    assert EVENT_STATUS_UPDATED in names
    block_events = [payload for name, payload in events if name == EVENT_BLOCK_INDEXED]
    assert [(p["indexing"], p["indexed"]) for p in block_events] == [(True, False), (False, True)]


@pytest.mark.asyncio
async def test_background_rebuild(rag_service, save_document):
    """Test that a background rebuild reports progress and refuses a second start."""
    queue = rag_service.event_bus.subscribe()
    await save_document("doc1", "first")
    await save_document("doc2", "second")

    task = rag_service.start_rebuild()
    with pytest.raises(RebuildInProgressError):
        rag_service.start_rebuild()
    result = await task

    assert result.documents == 2
    assert rag_service.get_last_rebuild() == result
    assert not rag_service.is_rebuilding()
    progress = [payload for name, payload in _drain_events(queue) if name == EVENT_REINDEX_PROGRESS]
    assert [p["current"] for p in progress] == [1, 2]


@pytest.mark.asyncio
async def test_deleted_document_leaves_both_indexes(rag_service, save_document, document_source):
    await save_document("doc1", "ephemeral words")
    await rag_service.do_notify_document_saved("doc1")
    await rag_service.do_drain()
    await document_source.do_delete_document("doc1")

    removed = await rag_service.do_notify_document_deleted("doc1")
    search = await rag_service.do_semantic_search_documents("ephemeral")

    assert removed.removed_chunks == 1
    assert removed.error is None
    assert search.results == []
    assert rag_service.search_documents("ephemeral").results == []


@pytest.mark.asyncio
async def test_external_block_content(rag_service, save_document, tmp_path):
    path = tmp_path / "manual.md"
    path.write_text("# Manual\nPress the red button.", encoding="utf-8")
    await save_document("doc1", "host")

    result = await rag_service.do_index_file_content(str(path), "doc1", "blk1", file_name="Manual")
    content = await rag_service.do_get_external_block_content("doc1", "blk1")
    missing = await rag_service.do_get_external_block_content("doc1", "nope")
    removed = await rag_service.do_remove_external_block("doc1", "blk1")

    assert result.title == "Manual"
    assert content.raw_content == "# Manual\nPress the red button."
    assert content.title == "Manual"
    assert missing.error
    assert removed.removed_chunks == result.chunks


@pytest.mark.asyncio
async def test_index_storage_failure_on_delete_is_returned(rag_service, monkeypatch):
    """Test that delete operations report storage failures as error values instead of raising."""

    async def disk_full(*args, **kwargs):
        raise IndexStorageError("disk full")

    empty_block = await rag_service.do_remove_external_block("doc1", "")
    monkeypatch.setattr(rag_service.rag_client, "do_delete_by_document", disk_full)
    monkeypatch.setattr(rag_service.rag_client, "do_delete_by_block", disk_full)

    deleted = await rag_service.do_notify_document_deleted("doc1")
    removed = await rag_service.do_remove_external_block("doc1", "blk1")

    assert deleted.error == "disk full"
    assert deleted.removed_chunks == 0
    assert removed.error == "disk full"
    assert "block_id must not be empty" in empty_block.error


@pytest.mark.asyncio
async def test_submit_external_block_returns_indexing_state(rag_service, save_document, tmp_path):
    path = tmp_path / "a.txt"
    path.write_text("background text", encoding="utf-8")
    await save_document("doc1", "host")
    block = ExternalBlockDescriptor(doc_id="doc1", block_id="blk1", block_type="file", locator=str(path))

    state = rag_service.submit_external_block(block)
    await rag_service.do_drain()

    assert state.indexing is True
    assert rag_service.get_block_state("doc1", "blk1").indexed is True


@pytest.mark.asyncio
async def test_invalid_stored_config_disables_semantic_search(helper_config, transport, save_document):
    """Test that the engine boots without a usable provider and reports why."""
    config_path = EmbeddingConfigStore(helper_config=helper_config).get_path()
    os.makedirs(os.path.dirname(config_path), exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump({"provider": "cohere", "model": "embed-v3"}, f)
    await save_document("doc1", "plain words", title="Plain")
    service = RAGService(helper_config=helper_config, transport=transport)

    await service.boot()
    status = await service.do_get_status()
    search = await service.do_semantic_search_documents("plain")
    scheduled = await service.do_notify_document_saved("doc1")
    rebuild = await service.do_rebuild_index()
    lexical = service.search_documents("plain")
    await service.close()

    assert status.enabled is False
    assert "cohere" in status.error
    assert search.error
    assert scheduled is False
    assert rebuild.error
    assert lexical.total == 1
