"""Unit tests for the SQLite vector index."""

import os

import pytest

from shared.clients.rag.models.ChunkRecord import ChunkRecord, make_content_hash, make_point_id
from shared.clients.rag.sqlite.RAGClientSqlite import RAGClientSqlite
from shared.models.external import ExternalBlockContent
from tests.conftest import fake_embedding

MODEL = "ollama:nomic-embed-text"


def _chunk(doc_id: str, text: str, index: int = 0, block_id: str = "", source_type: str = "document", model: str = MODEL) -> ChunkRecord:
    return ChunkRecord(
        point_id=make_point_id(doc_id, block_id, index),
        doc_id=doc_id,
        block_id=block_id,
        chunk_index=index,
        source_type=source_type,
        doc_title=doc_id.upper(),
        source_title=block_id or doc_id.upper(),
        chunk_text=text,
        content_hash=make_content_hash(model, text),
        embed_model=model,
        vector=fake_embedding(text),
    )


@pytest.mark.asyncio
async def test_upsert_is_idempotent(rag_client):
    """Test that upserting the same chunks twice leaves one copy of each."""
    chunks = [_chunk("a", "apples and pears", 0), _chunk("a", "bananas", 1)]

    await rag_client.do_upsert(chunks)
    first_stats = await rag_client.do_stats()
    await rag_client.do_upsert(chunks)
    second_stats = await rag_client.do_stats()

    assert first_stats == second_stats
    assert second_stats.chunks == 2
    assert second_stats.docs == 1


@pytest.mark.asyncio
async def test_query_ranks_by_cosine_similarity(rag_client):
    await rag_client.do_upsert([
        _chunk("a", "red apples"),
        _chunk("b", "blue ocean waves"),
        _chunk("c", "green apples and red cherries"),
    ])

    hits = await rag_client.do_query(fake_embedding("red apples"), limit=2, embed_model=MODEL)

    assert [h.chunk.doc_id for h in hits] == ["a", "c"]
    assert hits[0].score == pytest.approx(1.0, abs=1e-5)
    assert hits[0].score >= hits[1].score > 0
    assert hits[0].chunk.vector == []


@pytest.mark.asyncio
async def test_delete_by_document_isolates_other_documents(rag_client):
    """Test that deleting document A leaves every chunk of B queryable."""
    await rag_client.do_upsert([
        _chunk("a", "shared words here", 0),
        _chunk("a", "file text", 0, block_id="f1", source_type="file"),
        _chunk("b", "shared words here too", 0),
        _chunk("b", "more of b", 1),
    ])

    removed = await rag_client.do_delete_by_document("a")
    hits = await rag_client.do_query(fake_embedding("shared words here"), limit=10, embed_model=MODEL)

    assert removed == 2
    assert {h.chunk.doc_id for h in hits} == {"b"}
    assert len(hits) == 2
    assert await rag_client.do_get_doc_ids() == {"b"}


@pytest.mark.asyncio
async def test_delete_by_block_keeps_sibling_blocks(rag_client):
    """Test that deleting one external block keeps the other block and the document chunks."""
    await rag_client.do_upsert([
        _chunk("a", "note body", 0),
        _chunk("a", "first file", 0, block_id="f1", source_type="file"),
        _chunk("a", "second file", 0, block_id="f2", source_type="file"),
    ])

    removed = await rag_client.do_delete_by_block("a", "f1")
    stats = await rag_client.do_stats()
    hits = await rag_client.do_query(fake_embedding("second file"), limit=10, embed_model=MODEL)

    assert removed == 1
    assert stats.files == 1
    assert stats.docs == 1
    assert {h.chunk.block_id for h in hits} == {"", "f2"}


@pytest.mark.asyncio
async def test_delete_document_chunks_keeps_external_chunks(rag_client):
    await rag_client.do_upsert([
        _chunk("a", "note body", 0),
        _chunk("a", "bookmark page", 0, block_id="b1", source_type="bookmark"),
    ])

    await rag_client.do_delete_document_chunks("a")
    stats = await rag_client.do_stats()

    assert stats.docs == 0
    assert stats.bookmarks == 1


@pytest.mark.asyncio
async def test_replace_chunks_only_touches_its_scope(rag_client):
    """Test that replacing the document scope drops stale chunks but not external ones."""
    await rag_client.do_upsert([
        _chunk("a", "old one", 0),
        _chunk("a", "old two", 1),
        _chunk("a", "folder text", 0, block_id="d1", source_type="folder"),
    ])

    written = await rag_client.do_replace_chunks("a", "", [_chunk("a", "new one", 0)])
    stats = await rag_client.do_stats()

    assert written == 1
    assert stats.chunks == 2
    assert stats.folders == 1


@pytest.mark.asyncio
async def test_replace_chunks_respects_guard(rag_client):
    """Test that a rejecting guard discards the whole write."""
    written = await rag_client.do_replace_chunks("a", "", [_chunk("a", "text")], guard=lambda: False)

    assert written is None
    assert (await rag_client.do_stats()).chunks == 0


@pytest.mark.asyncio
async def test_replace_chunks_stores_external_content(rag_client):
    content = ExternalBlockContent(doc_id="a", block_id="b1", block_type="bookmark", locator="https://x.test", raw_content="page text")

    await rag_client.do_replace_chunks("a", "b1", [_chunk("a", "page text", 0, "b1", "bookmark")], content=content)
    stored = await rag_client.do_get_external_content("a", "b1")
    await rag_client.do_delete_by_block("a", "b1")

    assert stored is not None
    assert stored.raw_content == "page text"
    assert await rag_client.do_get_external_content("a", "b1") is None


@pytest.mark.asyncio
async def test_delete_orphan_blocks(rag_client):
    await rag_client.do_upsert([
        _chunk("a", "body", 0),
        _chunk("a", "keep me", 0, block_id="keep", source_type="file"),
        _chunk("a", "drop me", 0, block_id="drop", source_type="file"),
    ])

    removed = await rag_client.do_delete_orphan_blocks("a", {"keep"})

    assert removed == 1
    assert (await rag_client.do_stats()).chunks == 2


@pytest.mark.asyncio
async def test_purge_other_models(rag_client):
    """Test that chunks of a previous model are removed and never returned for the new one."""
    await rag_client.do_upsert([_chunk("a", "old model text", model="ollama:old"), _chunk("b", "current", model=MODEL)])

    removed = await rag_client.do_purge_other_models(MODEL)

    assert removed == 1
    assert await rag_client.do_get_doc_ids() == {"b"}


@pytest.mark.asyncio
async def test_query_filters_by_model(rag_client):
    await rag_client.do_upsert([_chunk("a", "same text", model="ollama:old"), _chunk("b", "same text", model=MODEL)])

    hits = await rag_client.do_query(fake_embedding("same text"), limit=10, embed_model=MODEL)

    assert [h.chunk.doc_id for h in hits] == ["b"]


@pytest.mark.asyncio
async def test_chunk_vectors_keyed_by_content_hash(rag_client):
    chunk = _chunk("a", "hello world")
    await rag_client.do_upsert([chunk])

    vectors = await rag_client.do_get_chunk_vectors("a", "")

    assert list(vectors) == [chunk.content_hash]
    assert vectors[chunk.content_hash] == pytest.approx(chunk.vector)


@pytest.mark.asyncio
async def test_source_vectors_are_means_per_source(rag_client):
    await rag_client.do_upsert([
        _chunk("a", "one", 0),
        _chunk("a", "two", 1),
        _chunk("a", "file", 0, block_id="f1", source_type="file"),
    ])

    sources = {(s.doc_id, s.block_id): s for s in await rag_client.do_get_source_vectors(MODEL)}

    assert sources[("a", "")].chunk_count == 2
    assert sources[("a", "f1")].source_type == "file"
    expected = [(x + y) / 2 for x, y in zip(fake_embedding("one"), fake_embedding("two"))]
    assert sources[("a", "")].vector == pytest.approx(expected)


@pytest.mark.asyncio
async def test_meta_roundtrip(rag_client):
    await rag_client.do_set_meta("last_index_time", "123.5")

    assert await rag_client.do_get_meta("last_index_time") == "123.5"
    assert await rag_client.do_get_meta("missing") is None


@pytest.mark.asyncio
async def test_corrupt_index_file_is_moved_aside(helper_config):
    """Test that an unreadable index file is preserved and replaced by an empty index."""
    client = RAGClientSqlite(helper_config=helper_config)
    os.makedirs(os.path.dirname(client.get_path()), exist_ok=True)
    with open(client.get_path(), "wb") as f:
        f.write(b"this is not a sqlite database" * 100)

    await client.boot()
    stats = await client.do_stats()

    assert stats.chunks == 0
    siblings = os.listdir(os.path.dirname(client.get_path()))
    assert any(".corrupt-" in name for name in siblings)
    assert await client.do_healthcheck() is True
    await client.close()


@pytest.mark.asyncio
async def test_index_survives_reopen(helper_config):
    """Test that writes are durable across client instances."""
    first = RAGClientSqlite(helper_config=helper_config)
    await first.boot()
    await first.do_upsert([_chunk("a", "persisted text")])
    await first.close()

    second = RAGClientSqlite(helper_config=helper_config)
    await second.boot()
    hits = await second.do_query(fake_embedding("persisted text"), limit=1, embed_model=MODEL)
    await second.close()

    assert [h.chunk.doc_id for h in hits] == ["a"]
