"""Tests for the document relationship graph."""

import pytest
import pytest_asyncio

from services.rag_graph.GraphService import GraphService
from shared.clients.rag.models.ChunkRecord import ChunkRecord, make_content_hash, make_point_id
from tests.conftest import fake_embedding

MODEL = "ollama:nomic-embed-text"


def _chunk(doc_id: str, text: str, block_id: str = "", source_type: str = "document", model: str = MODEL) -> ChunkRecord:
    return ChunkRecord(
        point_id=make_point_id(doc_id, block_id, 0),
        doc_id=doc_id,
        block_id=block_id,
        chunk_index=0,
        source_type=source_type,
        doc_title=doc_id,
        source_title=block_id or doc_id,
        chunk_text=text,
        content_hash=make_content_hash(model, text),
        embed_model=model,
        vector=fake_embedding(text),
    )


@pytest_asyncio.fixture
async def graph_service(helper_config, rag_client, document_source):
    return GraphService(helper_config=helper_config, rag_client=rag_client, document_source=document_source)


def _edges(graph) -> dict[frozenset, str]:
    return {frozenset((link.source, link.target)): link.kind for link in graph.links}


@pytest.mark.asyncio
async def test_semantic_tag_and_both_links(graph_service, rag_client, save_document):
    """Test link kinds: similar and tagged alike, only tagged alike, and unrelated."""
    await save_document("a", "", title="Apples A", tags=["fruit"])
    await save_document("b", "", title="Apples B", tags=["fruit"])
    await save_document("c", "", title="Ocean", tags=[])
    await save_document("d", "", title="Shop", tags=["fruit"])
    await rag_client.do_upsert([
        _chunk("a", "red apples"),
        _chunk("b", "red apples"),
        _chunk("c", "blue ocean waves"),
        _chunk("d", "opening hours monday"),
    ])

    graph = await graph_service.do_build_graph(threshold=0.7)

    assert {node.id for node in graph.nodes} == {"a", "b", "c", "d"}
    edges = _edges(graph)
    assert edges[frozenset(("a", "b"))] == "both"
    assert edges[frozenset(("a", "d"))] == "tag"
    assert edges[frozenset(("b", "d"))] == "tag"
    assert not any("c" in pair for pair in edges)
    assert graph.threshold == 0.7


@pytest.mark.asyncio
async def test_blocks_are_nodes_without_tag_links_to_their_own_document(graph_service, rag_client, save_document):
    await save_document("a", "", title="Trip", tags=["travel"])
    await rag_client.do_upsert([
        _chunk("a", "train tickets to vienna"),
        _chunk("a", "train tickets to vienna", block_id="f1", source_type="file"),
    ])

    graph = await graph_service.do_build_graph(threshold=0.9)

    nodes = {node.id: node for node in graph.nodes}
    assert set(nodes) == {"a", "a#f1"}
    assert nodes["a#f1"].source_type == "file"
    assert nodes["a#f1"].label == "f1"
    assert nodes["a"].label == "Trip"
    [link] = graph.links
    assert link.kind == "semantic"
    assert link.shared_tags == []
    assert link.similarity == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_semantic_threshold(graph_service, rag_client, save_document):
    await save_document("a", "")
    await save_document("b", "")
    await rag_client.do_upsert([_chunk("a", "red apples"), _chunk("b", "red cherries")])

    loose = await graph_service.do_build_graph(threshold=0.4)
    strict = await graph_service.do_build_graph(threshold=0.9)

    assert [link.kind for link in loose.links] == ["semantic"]
    assert loose.links[0].similarity == pytest.approx(0.5, abs=1e-3)
    assert strict.links == []


@pytest.mark.asyncio
async def test_sources_of_deleted_documents_are_left_out(graph_service, rag_client, save_document):
    await save_document("a", "")
    await rag_client.do_upsert([_chunk("a", "kept"), _chunk("ghost", "kept")])

    graph = await graph_service.do_build_graph()

    assert [node.id for node in graph.nodes] == ["a"]
    assert graph.links == []


@pytest.mark.asyncio
async def test_empty_index_gives_empty_graph(graph_service):
    graph = await graph_service.do_build_graph()

    assert graph.nodes == []
    assert graph.links == []
